"""
Intel GPU energy counters through the i915 / xe hwmon interface.

Each Intel DRM card exposes a package energy counter in microjoules:

  /sys/class/drm/cardN/device/hwmon/hwmonM/energy1_input

Data Center GPU Max 1550 cards hold two tiles behind that single counter.
They are exposed as two units and the energy is split evenly between them.
"""

from pathlib import Path
import logging
import re
import time

from ..errors import CounterReadError
from ..splitter import SPLIT_EVEN
from .base import CounterSource, RawSample, SourceUnavailable, UnitSpec, pair_consecutive

logger = logging.getLogger(__name__)

INTEL_PCI_VENDOR = 0x8086
MAX1550_DEVICE_IDS = {0x0bd5, 0x0bd6}

DRM_SYSFS = Path("/sys/class/drm")


class IntelGpuSource(CounterSource):
    """Package energy of every Intel GPU with a hwmon energy counter."""

    kind = "gpu"
    vendor = "intel"

    def __init__(self, drm_sysfs: Path = DRM_SYSFS):
        self.drm_sysfs = Path(drm_sysfs)
        self._counters: list[Path] = []

        cards = self._find_cards()
        if not cards:
            raise SourceUnavailable("No Intel GPU with an energy counter found")
        self._cards = cards

    def _find_cards(self) -> list[tuple]:
        cards = []
        for card in sorted(self.drm_sysfs.glob("card[0-9]*")):
            if not re.fullmatch(r"card\d+", card.name):
                continue

            device = card / "device"
            try:
                vendor = int((device / "vendor").read_text().strip(), 16)
                device_id = int((device / "device").read_text().strip(), 16)
            except (OSError, ValueError):
                continue

            if vendor != INTEL_PCI_VENDOR:
                continue

            counters = sorted(device.glob("hwmon/hwmon*/energy1_input"))
            if not counters:
                continue

            # .../0000:3a:00.0 -> bus 0x3a
            bus = int(device.resolve().name.split(":")[-2], 16)
            cards.append((card.name, bus, device_id, counters[0]))

        return cards

    def discover(self) -> list[UnitSpec]:
        specs = []

        for card, bus, device_id, counter in self._cards:
            tiles = 2 if device_id in MAX1550_DEVICE_IDS else 1
            if tiles == 2:
                logger.info(f"Intel Max 1550 found ({card}), enabling split (50/50) energy consumption across tiles")

            for _ in range(tiles):
                unit_id = len(specs)
                specs.append(UnitSpec(
                    id=unit_id,
                    address=f"gpu_{bus:02x}_{unit_id}",
                    name=f"Intel GPU {card}",
                    model=device_id,
                    split=SPLIT_EVEN if tiles == 2 else None,
                    board=f"{bus:02x}",
                ))
                self._counters.append(counter)

        logger.info(f"{len(specs)} Intel GPU devices found")
        return pair_consecutive(specs)

    def read(self, unit_id: int) -> RawSample:
        path = self._counters[unit_id]
        try:
            raw = int(path.read_text().strip())
        except (OSError, ValueError) as e:
            raise CounterReadError(f"Unable to retrieve energy counter from Intel device {unit_id}: {e}")

        return RawSample(raw=raw, resolution=1e-6, timestamp=time.monotonic_ns())
