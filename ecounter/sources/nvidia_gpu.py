"""
NVIDIA GPU energy counters using NVIDIA Management Library (NVML)

Total energy consumption is reported in millijoules since the driver was
last reloaded (Volta and newer).
"""

import time
import logging

try:
    import pynvml
    NVML_AVAILABLE = True
except ImportError:
    NVML_AVAILABLE = False

from ..errors import CounterReadError
from .base import CounterSource, RawSample, SourceUnavailable, UnitSpec

logger = logging.getLogger(__name__)


class NvidiaGpuSource(CounterSource):
    """
    Reads the total energy counter of every NVIDIA GPU.

    The counter is 64 bits wide and never wraps in practice.
    """

    kind = "gpu"
    vendor = "nvidia"

    def __init__(self):
        if not NVML_AVAILABLE:
            raise SourceUnavailable("NVML not available. Install nvidia-ml-py")

        self.initialized = False
        self.gpu_handles = []

        try:
            pynvml.nvmlInit()
        except pynvml.NVMLError as e:
            raise SourceUnavailable(f"Failed to initialize NVML: {e}")

        self.initialized = True

    def discover(self) -> list[UnitSpec]:
        specs = []
        try:
            gpu_count = pynvml.nvmlDeviceGetCount()

            for i in range(gpu_count):
                handle = pynvml.nvmlDeviceGetHandleByIndex(i)
                self.gpu_handles.append(handle)

                gpu_name = pynvml.nvmlDeviceGetName(handle)
                # Decode if bytes (older bindings)
                if isinstance(gpu_name, bytes):
                    gpu_name = gpu_name.decode('utf-8')

                bus = pynvml.nvmlDeviceGetPciInfo(handle).bus

                specs.append(UnitSpec(
                    id=i,
                    address=f"gpu_{bus:02x}",
                    name=gpu_name,
                ))

        except pynvml.NVMLError as e:
            raise CounterReadError(f"Failed to enumerate NVIDIA GPUs: {e}")

        logger.info(f"{len(specs)} NVIDIA GPU devices found")
        return specs

    def read(self, unit_id: int) -> RawSample:
        try:
            energy_mj = pynvml.nvmlDeviceGetTotalEnergyConsumption(self.gpu_handles[unit_id])
        except pynvml.NVMLError as e:
            raise CounterReadError(f"Failed to get energy counter for NVIDIA device {unit_id}: {e}")

        return RawSample(
            raw=int(energy_mj),
            resolution=1e-3,  # mJ -> J
            timestamp=time.monotonic_ns(),
        )

    def shutdown(self):
        """Cleanup NVML resources"""
        if self.initialized:
            try:
                pynvml.nvmlShutdown()
            finally:
                self.initialized = False
