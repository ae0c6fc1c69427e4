"""
Tests for the command line and the agent lifecycle
"""

import signal
from pathlib import Path

import pytest

from ecounter.config import OUTPUT_DIR, SAMPLE_INTERVAL
from ecounter.errors import NodePowerError
from ecounter.main import EnergyCounterAgent, build_probe, main, parse_args
from ecounter.overhead import CommandPowerProbe, HttpPowerProbe, NodePowerProbe
from ecounter.sources.detect import INTERFACES


ALL_DISABLED = [f"--disable-{interface}" for interface in INTERFACES]


class StoppingProbe(NodePowerProbe):
    """Reports a fixed node power and stops the agent after a few cycles."""

    def __init__(self, agent_ref, watts, cycles):
        self.agent_ref = agent_ref
        self.watts = watts
        self.cycles = cycles
        self.calls = 0
        self.closed = False

    def read(self):
        self.calls += 1
        if self.calls >= self.cycles:
            self.agent_ref[0].stop()
        return self.watts

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def keep_signal_handlers(monkeypatch):
    monkeypatch.setattr(signal, "signal", lambda signum, handler: None)


def test_parse_args_defaults():
    args = parse_args([])

    assert args.dir == Path(OUTPUT_DIR)
    assert args.interval == SAMPLE_INTERVAL
    assert args.mock == []
    assert args.disabled is None
    assert args.duration is None
    assert not args.verbose


def test_parse_args_disable_and_mocks():
    args = parse_args(["-d", "/run/energy", "-i", "2", "-m", "25", "--mock", "15",
                       "--disable-dram", "--disable-gpu-nvidia", "-v"])

    assert args.dir == Path("/run/energy")
    assert args.interval == 2
    assert args.mock == [25, 15]
    assert args.disabled == ["dram", "gpu-nvidia"]
    assert args.verbose


def test_build_probe():
    assert build_probe(parse_args([])) is None

    probe = build_probe(parse_args(["-o", "echo 300"]))
    assert isinstance(probe, CommandPowerProbe)

    probe = build_probe(parse_args(["--node-power-url", "http://bmc/power",
                                    "--node-power-field", "Power.Watts"]))
    assert isinstance(probe, HttpPowerProbe)
    assert probe.field == "Power.Watts"
    probe.close()

    # A command takes precedence over a URL
    probe = build_probe(parse_args(["-o", "echo 1", "--node-power-url", "http://bmc/power"]))
    assert isinstance(probe, CommandPowerProbe)


@pytest.mark.parametrize("argv", [["-i", "0"], ["-i", "-5"], ["-m", "-1"]])
def test_main_rejects_invalid_arguments(argv, tmp_path):
    assert main(argv + ["-d", str(tmp_path)] + ALL_DISABLED) == 1


def test_agent_writes_mock_counters(tmp_path):
    agent_ref = []
    probe = StoppingProbe(agent_ref, watts=500, cycles=3)
    agent = EnergyCounterAgent(
        directory=tmp_path / "out",
        interval=1,
        disabled=INTERFACES,
        mock_watts=[100, 0],
        probe=probe,
        verbose=True,
    )
    agent_ref.append(agent)

    assert agent.run() == 0

    assert (tmp_path / "out" / "mock_0_energy").read_text() == "200 Joules"
    assert (tmp_path / "out" / "mock_1_energy").read_text() == "0 Joules"
    assert probe.calls == 3
    assert probe.closed
    assert agent.engine.closed
    assert agent.engine.estimator.samples == 2
    assert agent.engine.estimator.average == 400


def test_agent_duration_limit(tmp_path):
    agent = EnergyCounterAgent(
        directory=tmp_path,
        interval=1,
        disabled=INTERFACES,
        mock_watts=[10],
        duration=1,
    )

    assert agent.run() == 0
    assert agent.engine.cycle_count >= 2
    assert (tmp_path / "mock_0_energy").exists()


def test_agent_stops_on_collection_error(tmp_path):
    class FailingProbe(NodePowerProbe):
        def read(self):
            raise NodePowerError("BMC unreachable")

    agent = EnergyCounterAgent(
        directory=tmp_path,
        interval=1,
        disabled=INTERFACES,
        mock_watts=[10],
        probe=FailingProbe(),
    )

    assert agent.run() == 1
    assert agent.engine.closed
    assert (tmp_path / "mock_0_energy").read_text() == "0 Joules"


def test_agent_setup_failure(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")

    agent = EnergyCounterAgent(
        directory=blocker / "sub",
        interval=1,
        disabled=INTERFACES,
        mock_watts=[10],
    )

    assert agent.run() == 1
    assert agent.engine is None
