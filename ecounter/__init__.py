"""
ecounter - periodically fetch hardware energy counters and expose them as
per-unit Joule totals.

Supported: AMD and Intel CPU packages, Intel DRAM, AMD Instinct, Intel
Data Center and NVIDIA GPUs, fixed-power mock units.
"""

__version__ = "0.1.0"
