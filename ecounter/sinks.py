"""
Energy sinks: where accumulated totals are exposed.

The file sink keeps one open file per unit and overwrites it on every
cycle with a literal "<integer> Joules" value. Consumers re-read the whole
file each time. The directory should live on a tmpfs or ramfs mount to
avoid wearing out a storage device.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, IO
import logging

from .errors import SinkError

logger = logging.getLogger(__name__)


def format_joules(joules: float) -> str:
    return f"{int(joules)} Joules"


class EnergySink(ABC):
    """Destination for accumulated energy totals, keyed by unit address."""

    @abstractmethod
    def open(self, address: str):
        ...

    @abstractmethod
    def write(self, address: str, joules: float):
        ...

    @abstractmethod
    def close(self):
        ...

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class FileEnergySink(EnergySink):
    """One `<address>_energy` file per unit in `directory`."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self._files: Dict[str, IO[str]] = {}

    def path_for(self, address: str) -> Path:
        return self.directory / f"{address}_energy"

    def open(self, address: str):
        path = self.path_for(address)
        try:
            self._files[address] = open(path, 'w')
        except OSError as e:
            raise SinkError(f"Failed to open output file {path}: {e}") from e
        logger.debug(f"Opened {path}")

    def write(self, address: str, joules: float):
        if joules < 0:
            raise SinkError(f"{address}: refusing to write negative energy {joules}")

        f = self._files.get(address)
        if f is None:
            raise SinkError(f"{address}: output file is not open")

        try:
            f.seek(0)
            f.write(format_joules(joules))
            f.truncate()
            f.flush()
        except OSError as e:
            raise SinkError(f"Failed to write {self.path_for(address)}: {e}") from e

    def close(self):
        for address, f in self._files.items():
            try:
                f.close()
            except OSError as e:
                logger.error(f"Failed to close {self.path_for(address)}: {e}")
        self._files = {}

    @property
    def addresses(self) -> list[str]:
        return list(self._files)
