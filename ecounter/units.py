"""
Per-unit energy state and the wraparound-safe delta computation.

A Unit is created once during discovery with no baseline and no
resolution, then mutated every sampling cycle by the engine.

Known limitation: a counter that wraps more than once between two samples
is indistinguishable from a single wrap. With 32-bit RAPL counters and
sampling intervals of a few seconds this does not happen in practice.
"""

from dataclasses import dataclass, field
from typing import Iterator, Optional, Tuple
import logging

from .errors import CounterError
from .sources.base import CounterSource, RawSample, UnitSpec

logger = logging.getLogger(__name__)


def counter_delta(last_raw: int, raw: int, width: int) -> int:
    """
    Elapsed raw counts between two readings of a `width`-bit counter.

    A reading lower than the previous one is taken as exactly one wrap.
    """
    if raw >= last_raw:
        return raw - last_raw
    return ((1 << width) - last_raw) + raw


@dataclass
class Unit:
    """Energy state of one physical or logical energy-reporting entity."""

    id: int
    address: str
    name: str = ""
    model: int = 0
    split: Optional[str] = None
    peer_id: Optional[int] = None
    holds_peer: bool = False

    last_raw: Optional[int] = None      # None until the baseline sample
    resolution: float = 0.0             # Joules per count, 0.0 = unknown
    energy_acc: float = 0.0             # Joules since process start
    energy_interval: float = 0.0        # Joules of the last sampling period
    timestamp: Optional[int] = None     # ns of the last sample
    busy_percent: int = 0

    @classmethod
    def from_spec(cls, spec: UnitSpec) -> 'Unit':
        return cls(
            id=spec.id,
            address=spec.address,
            name=spec.name,
            model=spec.model,
            split=spec.split,
            peer_id=spec.peer_id,
            holds_peer=spec.holds_peer,
        )

    @property
    def has_baseline(self) -> bool:
        return self.last_raw is not None

    def calibrate(self, sample: RawSample, source: CounterSource) -> float:
        """
        Resolve and cache the counter resolution.

        Once known, the resolution is never fetched again for the lifetime
        of the unit.
        """
        if self.resolution > 0:
            return self.resolution

        resolution = sample.resolution
        if resolution is None:
            resolution = source.read_resolution(self.id)
            logger.debug(f"{self.address}: resolution {resolution} J/count")

        if not resolution or resolution <= 0:
            raise CounterError(f"{self.address}: invalid counter resolution {resolution!r}")

        self.resolution = float(resolution)
        return self.resolution

    def advance(self, sample: RawSample, width: int, wraps: bool = True) -> Optional[float]:
        """
        Move the baseline to `sample` and return the energy since the last one.

        Returns None on the first sample, when no baseline exists yet.
        """
        raw = sample.raw
        if raw < 0 or raw >= (1 << width):
            raise CounterError(f"{self.address}: raw value {raw} does not fit a {width}-bit counter")

        last_raw = self.last_raw
        if last_raw is not None and raw < last_raw and not wraps:
            raise CounterError(
                f"{self.address}: counter went backwards ({last_raw} -> {raw})"
            )

        self.last_raw = raw
        self.timestamp = sample.timestamp

        if last_raw is None:
            return None

        return counter_delta(last_raw, raw, width) * self.resolution

    def accumulate(self, energy: float):
        """Fold one interval energy into the running total."""
        if energy < 0:
            raise CounterError(f"{self.address}: negative interval energy {energy}")
        self.energy_interval = energy
        self.energy_acc += energy


@dataclass
class ComponentGroup:
    """Vendor/type-homogeneous ordered collection of units bound to a source."""

    kind: str
    vendor: str
    source: CounterSource
    units: list[Unit] = field(default_factory=list)
    verbose: bool = False

    @classmethod
    def from_source(cls, source: CounterSource, verbose: bool = False) -> 'ComponentGroup':
        """Run discovery on `source` and wrap the result."""
        units = [Unit.from_spec(spec) for spec in source.discover()]
        return cls(
            kind=source.kind,
            vendor=source.vendor,
            source=source,
            units=units,
            verbose=verbose,
        )

    def unit(self, unit_id: int) -> Unit:
        for unit in self.units:
            if unit.id == unit_id:
                return unit
        raise KeyError(unit_id)

    def peer_of(self, unit: Unit) -> Optional[Unit]:
        if unit.peer_id is None:
            return None
        return self.unit(unit.peer_id)

    def pairs(self) -> Iterator[Tuple[Unit, Unit]]:
        """Yield (holder, follower) for every paired unit."""
        for unit in self.units:
            if unit.holds_peer:
                yield unit, self.peer_of(unit)

    @property
    def label(self) -> str:
        return f"{self.vendor} {self.kind}".upper()

    def __len__(self) -> int:
        return len(self.units)
