"""
Mock energy counters based on a fixed power consumption.

Useful to account for components without a counter (a known fixed draw)
and to exercise the pipeline on machines without supported hardware.
"""

import time
import logging

from .base import CounterSource, RawSample, UnitSpec

logger = logging.getLogger(__name__)


class MockSource(CounterSource):
    """Counters advancing by `watts * interval` Joules on every read."""

    kind = "mock"
    vendor = "mock"

    def __init__(self, watts: list[int], interval: float):
        if any(w < 0 for w in watts):
            raise ValueError("Mock power must be >= 0 W")
        self.watts = list(watts)
        self.interval = interval
        self._counters = [0] * len(self.watts)

    def discover(self) -> list[UnitSpec]:
        logger.info(f"Using {len(self.watts)} mock unit(s)")
        return [
            UnitSpec(id=i, address=f"mock_{i}", name=f"Mock {w} W")
            for i, w in enumerate(self.watts)
        ]

    def read(self, unit_id: int) -> RawSample:
        self._counters[unit_id] += int(self.watts[unit_id] * self.interval)
        return RawSample(
            raw=self._counters[unit_id],
            resolution=1.0,
            timestamp=time.monotonic_ns(),
        )
