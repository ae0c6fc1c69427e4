"""
Energy accounting engine.

Drives one sampling cycle over every component group:

  source.read() -> Unit.calibrate() -> Unit.advance() -> Unit.accumulate()
                                                       -> sink.write()

Split pairs (two dies behind one counter) are read once through the
holder and updated together. After every group completed, the cycle's
total energy is optionally compared against the node power probe.

Single-threaded: no unit is mutated outside run_cycle().
"""

from dataclasses import dataclass, field
from typing import List, Optional
import logging

from .overhead import NodePowerProbe, OverheadEstimator
from .sinks import EnergySink
from .splitter import SPLIT_BUSY, split_pair
from .units import ComponentGroup, Unit

logger = logging.getLogger(__name__)


@dataclass
class UnitReport:
    """Per-unit line of a cycle report"""
    group: str
    unit_id: int
    address: str
    energy_interval_j: float
    energy_acc_j: float
    raw: Optional[int]
    busy_percent: Optional[int] = None


@dataclass
class CycleReport:
    """Outcome of one sampling cycle"""
    cycle: int
    energy_j: float
    node_power_w: Optional[int] = None
    overhead_w: Optional[float] = None
    units: List[UnitReport] = field(default_factory=list)


class EnergyEngine:
    """
    Turns raw counter readings into accumulated Joule totals.

    The engine owns no vendor handles; every group carries its own source,
    bound during the setup phase.
    """

    def __init__(
        self,
        groups: List[ComponentGroup],
        sink: EnergySink,
        interval: float,
        estimator: Optional[OverheadEstimator] = None,
        probe: Optional[NodePowerProbe] = None,
    ):
        self.groups = groups
        self.sink = sink
        self.interval = interval
        self.probe = probe
        self.estimator = estimator
        if probe is not None and estimator is None:
            self.estimator = OverheadEstimator(interval)

        self.cycle_count = 0
        self.closed = False

    def open(self):
        """Create one output destination per unit."""
        for group in self.groups:
            for unit in group.units:
                self.sink.open(unit.address)

    @property
    def unit_count(self) -> int:
        return sum(len(group) for group in self.groups)

    def run_cycle(self) -> CycleReport:
        """Update every group, emit every unit, then estimate the overhead."""
        self.cycle_count += 1
        report = CycleReport(cycle=self.cycle_count, energy_j=0.0)

        for group in self.groups:
            self.update_group(group)
            if group.verbose:
                report.units.extend(self._group_report(group))

        report.energy_j = sum(
            unit.energy_interval for group in self.groups for unit in group.units
        )

        if self.probe is not None:
            report.node_power_w = self.probe.read()
            report.overhead_w = self.estimator.update(report.node_power_w, report.energy_j)

        return report

    def update_group(self, group: ComponentGroup):
        """One sequential pass over the units of a group."""
        for unit in group.units:
            peer = group.peer_of(unit)

            if unit.split and peer is not None:
                if unit.holds_peer:
                    self._update_pair(group, unit, peer)
                # else: written by its holder
            else:
                self._update_unit(group, unit)

            self.sink.write(unit.address, unit.energy_acc)

            logger.debug(
                f"{group.label} {unit.id} ({unit.address}): {unit.energy_interval:.1f} J "
                f"(accumulator: {unit.energy_acc:.1f} J, raw: {unit.last_raw})"
            )

    def _update_unit(self, group: ComponentGroup, unit: Unit):
        source = group.source
        sample = source.read(unit.id)
        unit.calibrate(sample, source)

        energy = unit.advance(sample, source.counter_width, source.wraps)
        if energy is None:
            return

        unit.accumulate(energy)

    def _update_pair(self, group: ComponentGroup, holder: Unit, follower: Unit):
        source = group.source

        if holder.split == SPLIT_BUSY:
            holder.busy_percent = source.read_utilization(holder.id)
            follower.busy_percent = source.read_utilization(follower.id)

        last_timestamp = holder.timestamp
        sample = source.read(holder.id)
        holder.calibrate(sample, source)

        combined = holder.advance(sample, source.counter_width, source.wraps)
        follower.timestamp = holder.timestamp
        if combined is None:
            return

        elapsed_s = (sample.timestamp - last_timestamp) / 1e9
        split_pair(holder, follower, combined, elapsed_s, holder.split)

    def _group_report(self, group: ComponentGroup) -> List[UnitReport]:
        return [
            UnitReport(
                group=group.label,
                unit_id=unit.id,
                address=unit.address,
                energy_interval_j=unit.energy_interval,
                energy_acc_j=unit.energy_acc,
                raw=unit.last_raw,
                busy_percent=unit.busy_percent if unit.split else None,
            )
            for unit in group.units
        ]

    def totals(self) -> dict:
        """Accumulated Joules per unit address."""
        return {
            unit.address: unit.energy_acc
            for group in self.groups
            for unit in group.units
        }

    def close(self):
        """Close every output destination and release every source."""
        if self.closed:
            return
        self.closed = True

        self.sink.close()
        for group in self.groups:
            try:
                group.source.shutdown()
            except Exception as e:
                logger.error(f"Failed to shut down {group.source.name}: {e}")
        if self.probe is not None:
            self.probe.close()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
