"""
Counter source discovery.

Setup phase of the agent: probes every supported vendor interface, runs
device discovery and returns the component groups handed to the engine.

Order (matches the order of the output in verbose mode):
1. AMD GPUs     - amdsmi
2. Intel GPUs   - hwmon sysfs
3. NVIDIA GPUs  - NVML
4. CPU packages - RAPL MSR
5. DRAM         - RAPL MSR (Intel only)
6. Mocks        - fixed power
"""

from typing import Iterable, Optional
import logging

from ..errors import EcounterError
from ..units import ComponentGroup
from .base import CounterSource, SourceUnavailable

logger = logging.getLogger(__name__)

AMD_GPUS = "gpu-amd"
INTEL_GPUS = "gpu-intel"
NVIDIA_GPUS = "gpu-nvidia"
CPUS = "cpu"
DRAMS = "dram"

INTERFACES = (AMD_GPUS, INTEL_GPUS, NVIDIA_GPUS, CPUS, DRAMS)


def build_groups(
    disabled: Iterable[str] = (),
    mock_watts: Optional[list[int]] = None,
    interval: float = 10,
    verbose: bool = False,
) -> list[ComponentGroup]:
    """
    Create and discover every available, non-disabled counter source.

    Vendors whose library or hardware is missing are skipped. Errors raised
    while enumerating devices of an available vendor propagate.
    """
    disabled = set(disabled)
    groups = []

    try:
        for interface in INTERFACES:
            if interface in disabled:
                logger.info(f"{interface} support disabled")
                continue

            source = _create_source(interface)
            if source is None:
                continue

            try:
                group = ComponentGroup.from_source(source, verbose=verbose)
            except EcounterError:
                source.shutdown()
                raise

            if not group.units:
                source.shutdown()
                continue
            groups.append(group)

    except EcounterError:
        # Release vendors initialized before the failing one
        for group in groups:
            try:
                group.source.shutdown()
            except Exception as e:
                logger.error(f"Failed to shut down {group.source.name}: {e}")
        raise

    if mock_watts:
        from .mock import MockSource
        groups.append(ComponentGroup.from_source(MockSource(mock_watts, interval), verbose=verbose))

    return groups


def _create_source(interface: str) -> Optional[CounterSource]:
    """Instantiate the requested source, None if it is unavailable here."""
    try:
        if interface == AMD_GPUS:
            from .amd_gpu import AmdGpuSource
            return AmdGpuSource()

        elif interface == INTEL_GPUS:
            from .intel_gpu import IntelGpuSource
            return IntelGpuSource()

        elif interface == NVIDIA_GPUS:
            from .nvidia_gpu import NvidiaGpuSource
            return NvidiaGpuSource()

        elif interface == CPUS:
            from .msr import MsrSource
            return MsrSource("cpu")

        elif interface == DRAMS:
            from .msr import MsrSource
            return MsrSource("dram")

        else:
            raise ValueError(f"Unknown interface '{interface}'")

    except SourceUnavailable as e:
        logger.info(f"Skipping {interface}: {e}")
        return None
