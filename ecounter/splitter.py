"""
Energy split across dies that share a single energy counter.

AMD MI250 boards report one counter for two GCDs. The model used to split
the measured energy is:

  1. Remove the idle consumption of both GCDs (fixed 40 W each)
  2. Share what is left according to the utilization difference:
       r = 0.5 + 0.005 * (busy_a - busy_b)
  3. Each GCD gets its idle floor plus its share of the active energy

Intel Max 1550 tiles use a plain 50/50 split of the package counter.

The constants are heuristics tuned for these GPU families. Deployments
compare numbers across versions, so they must stay as they are.
"""

from dataclasses import dataclass
import logging

from .units import Unit

logger = logging.getLogger(__name__)

GCD_IDLE_POWER_W = 40       # Each GCD consumes 40W when idle
SHARE_SLOPE = 0.005         # 100 points of utilization gap -> full swing

SPLIT_BUSY = "busy"
SPLIT_EVEN = "even"


@dataclass(frozen=True)
class SplitResult:
    """Interval energies assigned to the two dies of a pair."""

    first: float
    second: float
    idle: float             # per-die idle floor (J)
    above_idle: float       # energy attributed to active work (J)
    ratio: float            # share of above_idle going to the first die


def share_ratio(busy_a: float, busy_b: float) -> float:
    """Share of the active energy attributed to die A, clamped to [0, 1]."""
    ratio = 0.5 + SHARE_SLOPE * (busy_a - busy_b)
    return min(max(ratio, 0.0), 1.0)


def split_energy(
    combined: float,
    elapsed_s: float,
    busy_a: float,
    busy_b: float,
    idle_power_w: float = GCD_IDLE_POWER_W,
) -> SplitResult:
    """
    Split `combined` Joules measured over `elapsed_s` seconds across two dies.

    Both results are at least the idle floor; together they add up to
    2 * idle + above_idle.
    """
    idle = idle_power_w * max(elapsed_s, 0.0)
    above_idle = max(combined - 2 * idle, 0.0)
    ratio = share_ratio(busy_a, busy_b)

    return SplitResult(
        first=idle + ratio * above_idle,
        second=idle + (1.0 - ratio) * above_idle,
        idle=idle,
        above_idle=above_idle,
        ratio=ratio,
    )


def split_pair(holder: Unit, follower: Unit, combined: float, elapsed_s: float, mode: str) -> SplitResult:
    """
    Distribute one combined interval energy over a pair and accumulate both.

    The pair is updated as a single step: either both units receive their
    share or neither does.
    """
    if mode == SPLIT_BUSY:
        result = split_energy(combined, elapsed_s, holder.busy_percent, follower.busy_percent)
    elif mode == SPLIT_EVEN:
        result = split_energy(combined, elapsed_s, 0, 0, idle_power_w=0)
    else:
        raise ValueError(f"Unknown split mode '{mode}'")

    holder.accumulate(result.first)
    follower.accumulate(result.second)

    logger.debug(
        f"{holder.address}/{follower.address}: split {combined:.1f} J "
        f"(idle {result.idle:.1f} J, ratio {result.ratio:.3f})"
    )
    return result
