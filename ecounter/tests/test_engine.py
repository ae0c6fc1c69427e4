"""
Unit tests for the accounting engine
"""

import pytest

from ecounter.engine import EnergyEngine
from ecounter.errors import CounterError, CounterReadError, NodePowerError, SinkError
from ecounter.overhead import OverheadEstimator
from ecounter.sinks import FileEnergySink
from ecounter.sources.base import CounterSource
from ecounter.units import ComponentGroup

from fakes import FakeSource, FixedProbe, MemorySink, spec


def make_engine(*sources, sink=None, interval=10, **kwargs):
    groups = [ComponentGroup.from_source(source, verbose=True) for source in sources]
    engine = EnergyEngine(groups, sink or MemorySink(), interval, **kwargs)
    engine.open()
    return engine


def test_plain_units_accumulate():
    source = FakeSource(
        [spec(0, "cpu_package_0"), spec(1, "cpu_package_1")],
        {0: [100, 300, 600], 1: [50, 50, 150]},
        resolution=0.5,
    )
    engine = make_engine(source)

    first = engine.run_cycle()
    assert first.energy_j == 0
    assert engine.sink.values == {"cpu_package_0": 0, "cpu_package_1": 0}

    second = engine.run_cycle()
    assert second.energy_j == 100 + 0
    third = engine.run_cycle()
    assert third.energy_j == 150 + 50

    assert engine.totals() == {"cpu_package_0": 250, "cpu_package_1": 50}
    assert engine.cycle_count == 3


def test_every_unit_is_emitted_every_cycle():
    source = FakeSource([spec(0), spec(1)], {0: [1, 2], 1: [1, 2]}, resolution=1.0)
    engine = make_engine(source)

    engine.run_cycle()
    engine.run_cycle()

    addresses = [address for address, _ in engine.sink.history]
    assert addresses == ["unit_0", "unit_1", "unit_0", "unit_1"]


def test_wrapping_counter():
    source = FakeSource(
        [spec(0, "cpu_package_0")],
        {0: [(1 << 32) - 100, 924]},
        hardware_resolution=2 ** -10,
        width=32,
    )
    engine = make_engine(source)

    engine.run_cycle()
    engine.run_cycle()

    assert engine.totals()["cpu_package_0"] == 1.0
    assert source.resolution_reads == 1


def test_split_pair_is_read_once_through_holder():
    """MI250 scenario through the engine: 1000 J split 520/480"""
    specs = [
        spec(0, "gpu_c1", split="busy", peer_id=1, holds_peer=True),
        spec(1, "gpu_c9", split="busy", peer_id=0),
    ]
    # resolution 1 J/count, samples 10 s apart
    source = FakeSource(specs, {0: [5000, 6000]}, resolution=1.0, utilization={0: 60, 1: 40})
    engine = make_engine(source)

    engine.run_cycle()
    assert engine.totals() == {"gpu_c1": 0, "gpu_c9": 0}

    report = engine.run_cycle()

    assert source.reads == [0, 0]
    assert engine.totals()["gpu_c1"] == pytest.approx(520)
    assert engine.totals()["gpu_c9"] == pytest.approx(480)
    assert report.energy_j == pytest.approx(1000)
    assert [u.busy_percent for u in report.units] == [60, 40]


def test_peer_without_split_model_reads_independently():
    specs = [
        spec(0, "gpu_03", peer_id=1, holds_peer=True),
        spec(1, "gpu_83", peer_id=0),
    ]
    source = FakeSource(specs, {0: [10, 20], 1: [100, 130]}, resolution=1.0)
    engine = make_engine(source)

    engine.run_cycle()
    engine.run_cycle()

    assert source.reads == [0, 1, 0, 1]
    assert engine.totals() == {"gpu_03": 10, "gpu_83": 30}


def test_overhead_runs_once_per_cycle():
    source = FakeSource([spec(0)], {0: [0, 2500, 2500]}, resolution=1.0)
    probe = FixedProbe(300, 300, 300)
    engine = make_engine(source, probe=probe)

    first = engine.run_cycle()
    assert first.node_power_w == 300
    assert first.overhead_w is None

    second = engine.run_cycle()
    assert second.overhead_w == 50

    third = engine.run_cycle()
    assert third.overhead_w is None

    assert probe.calls == 3
    assert engine.estimator.samples == 1
    assert engine.estimator.average == 50


def test_overhead_uses_every_group():
    gpus = FakeSource([spec(0, "gpu_01")], {0: [0, 1000]}, resolution=1.0)
    cpus = FakeSource([spec(0, "cpu_package_0")], {0: [0, 500]}, resolution=1.0)
    estimator = OverheadEstimator(interval_s=10)
    engine = make_engine(gpus, cpus, probe=FixedProbe(400, 400), estimator=estimator)

    engine.run_cycle()
    report = engine.run_cycle()

    assert report.energy_j == 1500
    assert report.overhead_w == 250
    assert engine.estimator is estimator


def test_no_probe_no_overhead():
    source = FakeSource([spec(0)], {0: [0, 10]}, resolution=1.0)
    engine = make_engine(source)

    engine.run_cycle()
    report = engine.run_cycle()

    assert engine.estimator is None
    assert report.node_power_w is None


def test_read_errors_propagate():
    class BrokenSource(FakeSource):
        def read(self, unit_id):
            raise CounterReadError("device lost")

    engine = make_engine(BrokenSource([spec(0)], {}))

    with pytest.raises(CounterReadError):
        engine.run_cycle()


def test_probe_errors_propagate():
    class BrokenProbe(FixedProbe):
        def read(self):
            raise NodePowerError("bad output")

    source = FakeSource([spec(0)], {0: [0]}, resolution=1.0)
    engine = make_engine(source, probe=BrokenProbe())

    with pytest.raises(NodePowerError):
        engine.run_cycle()


def test_monotonicity_violation_is_fatal():
    source = FakeSource([spec(0)], {0: [500, 400]}, resolution=1.0, wraps=False)
    engine = make_engine(source)

    engine.run_cycle()
    with pytest.raises(CounterError):
        engine.run_cycle()


def test_file_sink_output(tmp_path):
    source = FakeSource(
        [spec(0, "gpu_c1"), spec(1, "mock_0")],
        {0: [0, 4002, 7999], 1: [0, 10, 20]},
        resolution=0.25,
    )
    engine = make_engine(source, sink=FileEnergySink(tmp_path))

    for _ in range(3):
        engine.run_cycle()
    engine.close()

    assert (tmp_path / "gpu_c1_energy").read_text() == "1999 Joules"
    assert (tmp_path / "mock_0_energy").read_text() == "5 Joules"
    assert source.shutdown_called


def test_sink_errors_propagate(tmp_path):
    source = FakeSource([spec(0)], {0: [0]}, resolution=1.0)
    groups = [ComponentGroup.from_source(source)]
    engine = EnergyEngine(groups, FileEnergySink(tmp_path / "missing"), 10)

    with pytest.raises(SinkError):
        engine.open()


def test_close_is_idempotent():
    source = FakeSource([spec(0)], {0: []})
    probe = FixedProbe()
    with make_engine(source, probe=probe) as engine:
        pass
    engine.close()

    assert engine.closed
    assert engine.sink.closed
    assert source.shutdown_called


def test_quiet_groups_are_not_reported():
    source = FakeSource([spec(0)], {0: [0]}, resolution=1.0)
    engine = EnergyEngine([ComponentGroup.from_source(source, verbose=False)], MemorySink(), 10)
    engine.open()

    report = engine.run_cycle()

    assert report.units == []
    assert engine.sink.values == {"unit_0": 0}


def test_source_without_resolution_is_a_counter_error():
    """No resolution hint and no resolution register stops the agent cleanly"""
    class NoResolutionSource(FakeSource):
        read_resolution = CounterSource.read_resolution

    source = NoResolutionSource([spec(0)], {0: [0]}, resolution=None)
    engine = make_engine(source)

    with pytest.raises(CounterError):
        engine.run_cycle()


def test_even_split_pair_needs_no_utilization():
    specs = [
        spec(0, "gpu_3a_0", split="even", peer_id=1, holds_peer=True),
        spec(1, "gpu_3a_1", split="even", peer_id=0),
    ]

    class NoUtilizationSource(FakeSource):
        read_utilization = CounterSource.read_utilization

    engine = make_engine(NoUtilizationSource(specs, {0: [0, 300]}, resolution=1.0))
    engine.run_cycle()
    engine.run_cycle()

    assert engine.totals() == {"gpu_3a_0": 150, "gpu_3a_1": 150}
