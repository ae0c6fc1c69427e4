"""
Energy Counter - Main Entry Point

Periodically fetches energy counters and exposes the value of each counter
in a file.
"""

import argparse
import logging
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import (
    LOG_LEVEL,
    NODE_POWER_CMD,
    NODE_POWER_FIELD,
    NODE_POWER_URL,
    OUTPUT_DIR,
    PROBE_TIMEOUT,
    SAMPLE_INTERVAL,
)
from .engine import CycleReport, EnergyEngine
from .errors import EcounterError, SinkError
from .overhead import CommandPowerProbe, HttpPowerProbe, NodePowerProbe
from .sinks import FileEnergySink
from .sources.detect import INTERFACES, build_groups

logger = logging.getLogger(__name__)


class EnergyCounterAgent:
    """Main agent class: owns the engine and the process lifecycle"""

    def __init__(
        self,
        directory: Path = OUTPUT_DIR,
        interval: int = SAMPLE_INTERVAL,
        disabled: tuple = (),
        mock_watts: Optional[list] = None,
        probe: Optional[NodePowerProbe] = None,
        duration: Optional[int] = None,
        verbose: bool = False,
    ):
        """
        Initialize the agent.

        Args:
            directory: Directory where the energy files are written
            interval: Sampling interval in seconds
            disabled: Interfaces to skip (see sources.detect.INTERFACES)
            mock_watts: Fixed power of each mock unit
            probe: Node power probe, enables overhead estimation
            duration: Run duration in seconds (None = until signalled)
            verbose: Print every cycle
        """
        self.directory = Path(directory)
        self.interval = interval
        self.disabled = disabled
        self.mock_watts = mock_watts or []
        self.probe = probe
        self.duration = duration
        self.verbose = verbose

        self.engine: Optional[EnergyEngine] = None
        self._stop = threading.Event()
        self.console = Console()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info("Stopping ecounter")
        self._stop.set()

    def stop(self):
        self._stop.set()

    def setup(self) -> EnergyEngine:
        """Discover units and open one output file per unit."""
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SinkError(f"Unable to create {self.directory}: {e}") from e

        groups = build_groups(
            disabled=self.disabled,
            mock_watts=self.mock_watts,
            interval=self.interval,
            verbose=self.verbose,
        )

        engine = EnergyEngine(
            groups,
            FileEnergySink(self.directory),
            self.interval,
            probe=self.probe,
        )
        try:
            engine.open()
        except EcounterError:
            engine.close()
            raise
        return engine

    def run(self) -> int:
        """Main agent loop"""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        start_time = time.time()

        try:
            self.engine = self.setup()
        except EcounterError as e:
            logger.error(f"Failed to initialize: {e}")
            if self.probe is not None:
                self.probe.close()
            return 1

        self.console.print(
            f"Starting ecounter -- Directory path: {self.directory} -- "
            f"Interval: {self.interval}s -- Units: {self.engine.unit_count}"
        )

        try:
            while not self._stop.is_set():
                loop_start = time.time()

                report = self.engine.run_cycle()

                if self.verbose:
                    self._display_cycle(report)

                if self.duration and (time.time() - start_time) >= self.duration:
                    logger.info(f"Duration limit reached ({self.duration}s)")
                    break

                # Sleep until next sample, wakes up on SIGTERM/SIGINT
                elapsed = time.time() - loop_start
                self._stop.wait(max(0, self.interval - elapsed))

        except EcounterError as e:
            logger.error(f"Error during collection: {e}")
            return 1

        finally:
            self.engine.close()
            self._print_summary(time.time() - start_time)

        return 0

    def _display_cycle(self, report: CycleReport):
        """Display the last cycle to console"""
        table = Table(title=f"Cycle #{report.cycle}")
        table.add_column("Component", style="cyan")
        table.add_column("Unit", justify="right")
        table.add_column("File")
        table.add_column("Energy Δ", justify="right")
        table.add_column("Total", justify="right")
        table.add_column("Busy", justify="right")
        table.add_column("Raw", justify="right")

        for u in report.units:
            table.add_row(
                u.group,
                str(u.unit_id),
                u.address,
                f"{u.energy_interval_j:.1f} J",
                f"{int(u.energy_acc_j)} J",
                f"{u.busy_percent}%" if u.busy_percent is not None else "",
                str(u.raw) if u.raw is not None else "N/A",
            )

        self.console.print(table)

        if report.node_power_w is not None:
            stats = self.engine.estimator
            self.console.print(f"Node instant. power: {report.node_power_w} W")
            if stats.warm:
                self.console.print(
                    f"Power overhead - min: {stats.min:.0f} W, max: {stats.max:.0f} W, "
                    f"avg: {stats.average:.0f} W"
                )

        self.console.print(f"[dim]Next data collection in {self.interval}s[/dim]")

    def _print_summary(self, runtime: float):
        """Print final summary"""
        if self.engine is None:
            return

        print("\n" + "="*60)
        print("SUMMARY")
        print("="*60)
        print(f"Runtime:         {runtime:.1f}s")
        print(f"Cycles:          {self.engine.cycle_count}")
        print(f"Sample interval: {self.interval}s")

        print(f"\nTotal Energy Accumulated:")
        total_all = 0.0
        for address, joules in self.engine.totals().items():
            print(f"  {address:<20} {int(joules)} J")
            total_all += joules
        print(f"  {'TOTAL':<20} {int(total_all)} J ({total_all / 3_600_000:.6f} kWh)")

        estimator = self.engine.estimator
        if estimator is not None and estimator.warm:
            print(f"\nPower overhead ({estimator.samples} samples):")
            print(f"  min: {estimator.min:.0f} W, max: {estimator.max:.0f} W, avg: {estimator.average:.0f} W")

        print("="*60 + "\n")


def build_probe(args) -> Optional[NodePowerProbe]:
    if args.find_overhead:
        return CommandPowerProbe(args.find_overhead, timeout=PROBE_TIMEOUT)
    if args.node_power_url:
        return HttpPowerProbe(args.node_power_url, field=args.node_power_field, timeout=PROBE_TIMEOUT)
    return None


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='ecounter',
        description='Periodically fetch energy counters and expose the value of each '
                    'counter in a file. AMD and Intel CPUs, DRAM (Intel CPUs only), '
                    'AMD (MI), Intel (Max) and NVIDIA (starting from Volta) GPUs are supported.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Expose counters in /tmp/ecounter every 10s
  ecounter

  # Faster sampling, verbose output
  ecounter --interval 2 --verbose

  # Add two fixed-power components (fans, NIC) as mock counters
  ecounter --mock 25 --mock 15

  # Find the power overhead using a BMC reading
  ecounter --find-overhead "ipmitool dcmi power reading | awk '/Instantaneous/ {print $4}'"
        """
    )

    parser.add_argument(
        '--dir', '-d',
        type=Path,
        default=OUTPUT_DIR,
        help='Directory path where the files are stored. Should be in a tmpfs or ramfs '
             f'mount point to avoid wearing out a storage device (default: {OUTPUT_DIR})'
    )

    parser.add_argument(
        '--interval', '-i',
        type=int,
        default=SAMPLE_INTERVAL,
        help=f'Interval in seconds before collecting new values (default: {SAMPLE_INTERVAL})'
    )

    parser.add_argument(
        '--mock', '-m',
        type=int,
        action='append',
        default=[],
        metavar='WATTS',
        help='Add a mock energy counter based on a fixed power consumption in watts. '
             'Repeat to create multiple mock counters'
    )

    parser.add_argument(
        '--find-overhead', '-o',
        default=NODE_POWER_CMD,
        metavar='CMD',
        help='Find the power overhead. CMD is a shell command or script returning '
             'the instantaneous power consumption of the node in watts'
    )

    parser.add_argument(
        '--node-power-url',
        default=NODE_POWER_URL,
        metavar='URL',
        help='Find the power overhead using an HTTP endpoint returning the node power'
    )

    parser.add_argument(
        '--node-power-field',
        default=NODE_POWER_FIELD,
        metavar='PATH',
        help='Dotted path of the power value in a JSON response '
             '(e.g. PowerControl.0.PowerConsumedWatts)'
    )

    for interface in INTERFACES:
        parser.add_argument(
            f'--disable-{interface}',
            dest='disabled',
            action='append_const',
            const=interface,
            help=f'Disable {interface.upper()} energy support'
        )

    parser.add_argument(
        '--duration',
        type=int,
        default=None,
        help='Run duration in seconds (default: until SIGTERM)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbosity'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    return parser.parse_args(argv)


def main(argv=None):
    """CLI entry point"""
    args = parse_args(argv)

    logging.basicConfig(
        level=LOG_LEVEL,
        format='%(message)s',
        handlers=[RichHandler(show_path=False)],
    )

    # Validate arguments
    if args.interval <= 0:
        logger.error(f"Cannot use interval {args.interval}s, must be > 0")
        return 1

    if any(w < 0 for w in args.mock):
        logger.error("Mock power must be >= 0 W")
        return 1

    agent = EnergyCounterAgent(
        directory=args.dir,
        interval=args.interval,
        disabled=tuple(args.disabled or ()),
        mock_watts=args.mock,
        probe=build_probe(args),
        duration=args.duration,
        verbose=args.verbose,
    )

    return agent.run()


if __name__ == '__main__':
    sys.exit(main())
