"""
AMD Instinct GPU energy counters through the AMD SMI library.

Requires the `amdsmi` Python bindings shipped with ROCm.

MI250 boards carry two GCDs that report the same energy counter. Both
GCDs show up as consecutive devices with the same board serial; the first
one reads the counter and the energy is split using GFX activity.
"""

from typing import Optional
import logging

from ..errors import CounterReadError
from ..splitter import SPLIT_BUSY
from .base import CounterSource, RawSample, SourceUnavailable, UnitSpec, pair_consecutive

logger = logging.getLogger(__name__)

MI250_SUBSYSTEM_ID = 2828


def parse_bus(bdf: str) -> int:
    """PCI bus number from a "dddd:bb:dd.f" address."""
    try:
        return int(bdf.split(":")[-2], 16)
    except (IndexError, ValueError):
        raise CounterReadError(f"Unexpected PCI address '{bdf}'")


def parse_id(value) -> int:
    """AMD SMI reports ids as ints or hex strings depending on the version."""
    if isinstance(value, int):
        return value
    try:
        return int(str(value), 0)
    except ValueError:
        return 0


def board_serial(board_info: dict, asic_info: dict) -> str:
    """
    Serial number of the board carrying a device.

    Both GCDs of an MI250 report the same board serial while their ASIC
    serials differ; the ASIC serial is only used when the board has none.
    """
    def valid(value):
        return value and value != "N/A" and str(value).strip()

    for value in (board_info.get("product_serial"), asic_info.get("asic_serial")):
        if valid(value):
            return str(value).strip()
    return ""


class AmdGpuSource(CounterSource):
    """Energy accumulator of every AMD GPU visible to AMD SMI."""

    kind = "gpu"
    vendor = "amd"

    def __init__(self, amdsmi=None):
        if amdsmi is None:
            try:
                import amdsmi
            except ImportError:
                raise SourceUnavailable("amdsmi not available. Install the ROCm amdsmi bindings")

        self.amdsmi = amdsmi
        try:
            amdsmi.amdsmi_init()
            self.handles = amdsmi.amdsmi_get_processor_handles()
        except amdsmi.AmdSmiException as e:
            raise SourceUnavailable(f"Failed to initialize AMD SMI: {e}")

        self.initialized = True

    def discover(self) -> list[UnitSpec]:
        amdsmi = self.amdsmi
        specs = []

        logger.info(f"{len(self.handles)} AMD GPU devices found")

        for i, handle in enumerate(self.handles):
            try:
                asic = amdsmi.amdsmi_get_gpu_asic_info(handle)
                board = amdsmi.amdsmi_get_gpu_board_info(handle)
                bdf = amdsmi.amdsmi_get_gpu_device_bdf(handle)
            except amdsmi.AmdSmiException as e:
                raise CounterReadError(f"Failed to identify AMD device {i}: {e}")

            model = parse_id(asic.get("subsystem_id", 0))
            bus = parse_bus(bdf)

            spec = UnitSpec(
                id=i,
                address=f"gpu_{bus:02x}",
                name=asic.get("market_name") or f"AMD GPU {i}",
                model=model,
                split=SPLIT_BUSY if model == MI250_SUBSYSTEM_ID else None,
                board=board_serial(board, asic),
            )
            specs.append(spec)

        if any(spec.split for spec in specs):
            logger.info("AMD MI250 found, enabling model to split energy consumption across GCDs")

        return pair_consecutive(specs)

    def read(self, unit_id: int) -> RawSample:
        amdsmi = self.amdsmi
        try:
            energy = amdsmi.amdsmi_get_energy_count(self.handles[unit_id])
        except amdsmi.AmdSmiException as e:
            raise CounterReadError(f"Failed to get energy counter for AMD device {unit_id}: {e}")

        # Older bindings name the accumulator "power"
        raw = energy.get("energy_accumulator", energy.get("power"))
        resolution: Optional[float] = energy.get("counter_resolution")

        return RawSample(
            raw=int(raw),
            resolution=resolution / 1e6 if resolution else None,  # uJ -> J
            timestamp=int(energy["timestamp"]),
        )

    def read_utilization(self, unit_id: int) -> int:
        amdsmi = self.amdsmi
        try:
            activity = amdsmi.amdsmi_get_gpu_activity(self.handles[unit_id])
        except amdsmi.AmdSmiException as e:
            raise CounterReadError(f"Failed to get GPU utilization for AMD device {unit_id}: {e}")
        return int(activity["gfx_activity"])

    def shutdown(self):
        if self.initialized:
            self.amdsmi.amdsmi_shut_down()
            self.initialized = False
