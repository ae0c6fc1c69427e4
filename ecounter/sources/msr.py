"""
CPU package and DRAM energy counters through RAPL model specific registers.

Reads /dev/cpu/<core>/msr (msr kernel module, root or CAP_SYS_RAWIO).
One core per physical package is used to address the package registers.

Registers:
  Intel  power unit 0x606, package energy 0x611, DRAM energy 0x619
  AMD    power unit 0xc0010299, package energy 0xc001029b (no DRAM domain)

Energy status registers are 32 bits wide and wrap around.
"""

from pathlib import Path
from typing import Dict, Optional
import logging
import re
import struct
import time

from ..errors import CounterReadError
from .base import CounterSource, RawSample, SourceUnavailable, UnitSpec

logger = logging.getLogger(__name__)

INTEL = "intel"
AMD = "amd"

MSR_ENERGY_UNIT_MASK = 0x1f
MSR_INTEL_POWER_UNIT = 0x606
MSR_AMD_POWER_UNIT = 0xc0010299

MSR_INTEL_PACKAGE_ENERGY = 0x611
MSR_AMD_PACKAGE_ENERGY = 0xc001029b
MSR_INTEL_DRAM_ENERGY = 0x619

POWER_UNIT_REGISTERS = {
    INTEL: MSR_INTEL_POWER_UNIT,
    AMD: MSR_AMD_POWER_UNIT,
}

ENERGY_REGISTERS = {
    "cpu": {INTEL: MSR_INTEL_PACKAGE_ENERGY, AMD: MSR_AMD_PACKAGE_ENERGY},
    "dram": {INTEL: MSR_INTEL_DRAM_ENERGY},
}

CPU_SYSFS = Path("/sys/devices/system/cpu")
CPUINFO = Path("/proc/cpuinfo")
MSR_DEV = Path("/dev/cpu")


def decode_energy_unit(msr_unit: int) -> float:
    """Joules per count from the energy status units field (bits 12:8)."""
    return 0.5 ** ((msr_unit >> 8) & MSR_ENERGY_UNIT_MASK)


def detect_cpu_vendor(cpuinfo: Path = CPUINFO) -> Optional[str]:
    """Return "intel", "amd" or None from /proc/cpuinfo."""
    try:
        text = cpuinfo.read_text()
    except OSError:
        return None

    match = re.search(r"^vendor_id\s*:\s*(\S+)", text, re.MULTILINE)
    if not match:
        return None

    return {
        "GenuineIntel": INTEL,
        "AuthenticAMD": AMD,
    }.get(match.group(1))


def package_to_core(cpu_sysfs: Path = CPU_SYSFS) -> Dict[int, int]:
    """Map each physical package id to one core belonging to it."""
    mapping: Dict[int, int] = {}
    cores = sorted(
        (int(p.name[3:]), p) for p in cpu_sysfs.glob("cpu[0-9]*") if p.name[3:].isdigit()
    )

    for core_id, core_dir in cores:
        try:
            package_id = int((core_dir / "topology" / "physical_package_id").read_text().strip())
        except (OSError, ValueError):
            continue
        mapping.setdefault(package_id, core_id)

    return mapping


def read_msr(core_id: int, register: int, msr_dev: Path = MSR_DEV) -> int:
    """Read one 64-bit MSR of a core."""
    path = msr_dev / str(core_id) / "msr"
    try:
        with open(path, "rb", buffering=0) as f:
            f.seek(register)
            data = f.read(8)
    except OSError as e:
        raise CounterReadError(f"Unable to read MSR 0x{register:x} in {path}: {e}") from e

    if len(data) != 8:
        raise CounterReadError(f"Unable to fetch MSR 0x{register:x} in {path}")

    return struct.unpack("<Q", data)[0]


class MsrSource(CounterSource):
    """RAPL package ("cpu") or DRAM ("dram") energy of every CPU package."""

    counter_width = 32
    wraps = True

    def __init__(
        self,
        kind: str,
        vendor: Optional[str] = None,
        cpu_sysfs: Path = CPU_SYSFS,
        msr_dev: Path = MSR_DEV,
    ):
        if kind not in ENERGY_REGISTERS:
            raise ValueError(f"Unknown MSR domain '{kind}'")

        self.kind = kind
        self.vendor = vendor or detect_cpu_vendor()
        if self.vendor not in ENERGY_REGISTERS[kind]:
            raise SourceUnavailable(f"{kind} energy not supported on CPU vendor {self.vendor}")

        self.msr_dev = Path(msr_dev)
        if not self.msr_dev.exists():
            raise SourceUnavailable(f"{self.msr_dev} not found (is the msr module loaded?)")

        self.energy_register = ENERGY_REGISTERS[kind][self.vendor]
        self.unit_register = POWER_UNIT_REGISTERS[self.vendor]
        self._cores = package_to_core(cpu_sysfs)

    def discover(self) -> list[UnitSpec]:
        specs = [
            UnitSpec(
                id=package_id,
                address=f"{self.kind}_package_{package_id}",
                name=f"{self.vendor.upper()} {self.kind.upper()} package {package_id}",
            )
            for package_id in sorted(self._cores)
        ]
        logger.info(f"{self.vendor.upper()} CPU(s) found with {len(specs)} package(s)")
        return specs

    def read(self, unit_id: int) -> RawSample:
        raw = read_msr(self._cores[unit_id], self.energy_register, self.msr_dev)
        return RawSample(
            raw=raw & 0xFFFFFFFF,
            resolution=None,
            timestamp=time.monotonic_ns(),
        )

    def read_resolution(self, unit_id: int) -> float:
        msr_unit = read_msr(self._cores[unit_id], self.unit_register, self.msr_dev)
        return decode_energy_unit(msr_unit)
