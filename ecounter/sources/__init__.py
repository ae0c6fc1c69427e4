"""
Raw energy counter sources.

Each source wraps one vendor interface and exposes raw counter readings,
their resolution and, where relevant, per-device utilization. Accounting
(wraparound, accumulation, die splitting) happens in the engine.

Discovery lives in `sources.detect`.
"""

from .base import CounterSource, RawSample, UnitSpec, SourceUnavailable, pair_consecutive

__all__ = [
    'CounterSource',
    'RawSample',
    'UnitSpec',
    'SourceUnavailable',
    'pair_consecutive',
]
