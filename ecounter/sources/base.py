"""
Base classes for raw counter sources.

Every vendor collaborator implements CounterSource to provide a consistent
interface for reading raw energy counters, their resolution and, for
split-model devices, per-die utilization. Sources never touch accumulated
energy; that belongs to the accounting engine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
import logging

from ..errors import CounterError

logger = logging.getLogger(__name__)


class SourceUnavailable(Exception):
    """The vendor library or hardware is not present on this node."""


@dataclass
class RawSample:
    """One raw counter reading."""

    raw: int
    resolution: Optional[float]   # Joules per count, None if unknown
    timestamp: int                # nanoseconds


@dataclass
class UnitSpec:
    """Static description of a unit produced by discovery."""

    id: int
    address: str                  # output key, e.g. "gpu_c1"
    name: str = ""
    model: int = 0
    split: Optional[str] = None   # None | "busy" | "even"
    peer_id: Optional[int] = None
    holds_peer: bool = False
    board: str = ""              # units on the same board share a counter


class CounterSource(ABC):
    """
    Abstract base class for raw counter sources.

    Implementations wrap one vendor interface (MSR, ROCm/AMD SMI, sysfs,
    NVML) and address units by the index they returned from discover().
    """

    kind: str = "unknown"         # "cpu" | "dram" | "gpu" | "mock"
    vendor: str = "unknown"
    counter_width: int = 64
    wraps: bool = False

    @abstractmethod
    def discover(self) -> list[UnitSpec]:
        """Enumerate the units this source can read, in index order."""
        ...

    @abstractmethod
    def read(self, unit_id: int) -> RawSample:
        """Read the raw counter of a unit. Raises CounterReadError."""
        ...

    def read_resolution(self, unit_id: int) -> float:
        """
        Fetch the counter resolution from hardware.

        Only called when read() returned no resolution hint and the unit
        has not cached one yet.
        """
        raise CounterError(f"{self.name} does not report a resolution")

    def read_utilization(self, unit_id: int) -> int:
        """Busy percentage (0-100) of a unit, for split-model pairs."""
        raise CounterError(f"{self.name} does not report utilization")

    def shutdown(self):
        """Release vendor resources."""

    @property
    def name(self) -> str:
        """Human-readable source name."""
        return f"{self.vendor} {self.kind}"


def pair_consecutive(specs: list[UnitSpec]) -> list[UnitSpec]:
    """
    Link consecutive units that share the same board.

    The earlier unit of a pair holds the peer link; both units record the
    other's index.
    """
    for prev, spec in zip(specs, specs[1:]):
        if prev.peer_id is None and spec.board and prev.board == spec.board:
            prev.peer_id = spec.id
            prev.holds_peer = True
            spec.peer_id = prev.id
            logger.info(f"Units {prev.id} and {spec.id} share the same board")
    return specs
