"""
Power overhead estimation.

Compares the instantaneous node power reported by an external probe with
the average power of every measured unit over the last cycle. The gap is
the power not accounted for by the exposed counters (fans, NICs, PSU
losses, ...). Running min/max/average statistics are kept for the process
lifetime.
"""

from abc import ABC, abstractmethod
from typing import Optional
import subprocess
import logging
import sys

import requests

from .errors import NodePowerError

logger = logging.getLogger(__name__)


def parse_node_power(output: str, origin: str) -> int:
    """Parse a probe output into a strictly positive integer of watts."""
    lines = output.strip().splitlines()
    if not lines:
        raise NodePowerError(f"{origin} does not return any output")

    try:
        power = int(float(lines[0].strip()))
    except (ValueError, OverflowError):
        raise NodePowerError(f"{origin} returns an invalid value: {lines[0]!r}")

    if power <= 0:
        raise NodePowerError(f"{origin} returns an invalid value: {power}")

    return power


class NodePowerProbe(ABC):
    """Source of the instantaneous node power, in watts."""

    @abstractmethod
    def read(self) -> int:
        ...

    def close(self):
        pass


class CommandPowerProbe(NodePowerProbe):
    """
    Runs a shell command or script whose first output line is the node
    power in watts (e.g. an ipmitool wrapper).
    """

    def __init__(self, command: str, timeout: Optional[float] = None):
        self.command = command
        self.timeout = timeout

    def read(self) -> int:
        try:
            result = subprocess.run(
                self.command,
                shell=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise NodePowerError(f"Command ({self.command}) timed out")
        except OSError as e:
            raise NodePowerError(f"Failed to run command ({self.command}): {e}")

        if result.returncode != 0:
            raise NodePowerError(
                f"Command ({self.command}) failed with code {result.returncode}: "
                f"{result.stderr.strip()}"
            )

        return parse_node_power(result.stdout, f"Command ({self.command})")


class HttpPowerProbe(NodePowerProbe):
    """
    Reads the node power from an HTTP endpoint (BMC, PDU, exporter).

    The body is either a plain number or JSON; for JSON, `field` is a dotted
    path to the value, e.g. "PowerControl.0.PowerConsumedWatts" for Redfish.
    """

    def __init__(self, url: str, field: str = '', timeout: Optional[float] = None):
        self.url = url
        self.field = field
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({'Accept': 'application/json, text/plain'})

    def read(self) -> int:
        try:
            response = self.session.get(self.url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NodePowerError(f"Node power request to {self.url} failed: {e}")

        if not self.field:
            return parse_node_power(response.text, self.url)

        try:
            value = response.json()
        except ValueError:
            raise NodePowerError(f"{self.url} did not return JSON")

        for key in self.field.split('.'):
            try:
                value = value[int(key)] if isinstance(value, list) else value[key]
            except (KeyError, IndexError, ValueError, TypeError):
                raise NodePowerError(f"Field '{self.field}' not found in {self.url} response")

        return parse_node_power(str(value), self.url)

    def close(self):
        self.session.close()


class OverheadEstimator:
    """
    Running statistics of the unexplained node power.

    Uninitialized until the first non-degenerate sample; afterwards min,
    max and average are only ever updated, never reset.
    """

    def __init__(self, interval_s: float):
        if interval_s <= 0:
            raise ValueError("Interval must be positive")
        self.interval_s = interval_s
        self.min = sys.float_info.max
        self.max = 0.0
        self.average = 0.0
        self.samples = 0

    @property
    def warm(self) -> bool:
        return self.samples > 0

    def update(self, node_power_w: float, cycle_energy_j: float) -> Optional[float]:
        """
        Fold one cycle into the statistics.

        Returns the overhead sample in watts, or None when the cycle measured
        no power at all (first cycle, no units) and was skipped.
        """
        measured_w = cycle_energy_j / self.interval_s

        # Skip a null power interval
        if measured_w == 0:
            return None

        overhead = max(node_power_w - measured_w, 0.0)

        self.min = min(overhead, self.min)
        self.max = max(overhead, self.max)
        self.average = (self.average * self.samples + overhead) / (self.samples + 1)
        self.samples += 1

        logger.debug(
            f"Node {node_power_w} W, measured {measured_w:.1f} W, overhead {overhead:.1f} W"
        )
        return overhead

    def to_dict(self) -> dict:
        return {
            'min_w': self.min if self.warm else None,
            'max_w': self.max if self.warm else None,
            'avg_w': self.average if self.warm else None,
            'samples': self.samples,
        }
