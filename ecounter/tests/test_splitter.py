"""
Unit tests for the dual-die energy split
"""

import pytest

from ecounter.splitter import (
    GCD_IDLE_POWER_W,
    SPLIT_BUSY,
    SPLIT_EVEN,
    share_ratio,
    split_energy,
    split_pair,
)
from ecounter.units import Unit


def test_mi250_scenario():
    """40 W idle, 10 s, 1000 J, 60% vs 40% busy -> 520 J / 480 J"""
    result = split_energy(1000, 10, 60, 40, idle_power_w=40)

    assert result.idle == 400
    assert result.above_idle == 200
    assert result.ratio == pytest.approx(0.6)
    assert result.first == pytest.approx(520)
    assert result.second == pytest.approx(480)
    assert result.first + result.second == pytest.approx(1000)


def test_default_idle_power_is_40w():
    assert GCD_IDLE_POWER_W == 40
    assert split_energy(0, 1, 0, 0).idle == 40


def test_equal_utilization_splits_evenly():
    assert share_ratio(0, 0) == 0.5
    assert share_ratio(73, 73) == 0.5

    result = split_energy(900, 5, 30, 30)
    assert result.first == result.second


def test_ratio_is_clamped_and_monotonic():
    assert share_ratio(100, 0) == 1.0
    assert share_ratio(0, 100) == 0.0
    assert share_ratio(250, 0) == 1.0
    assert share_ratio(0, 250) == 0.0

    gaps = range(-150, 151, 5)
    ratios = [share_ratio(max(g, 0), max(-g, 0)) for g in gaps]
    assert ratios == sorted(ratios)
    assert all(0.0 <= r <= 1.0 for r in ratios)


def test_below_idle_floor_is_clamped():
    """Measured energy under both idle floors gives idle to each die"""
    result = split_energy(500, 10, 90, 10)

    assert result.above_idle == 0
    assert result.first == 400
    assert result.second == 400


def test_split_invariants():
    """Both shares >= idle and their sum is 2*idle + above_idle"""
    for combined in (0, 1, 799.5, 800, 1234.5, 10_000):
        for busy_a in (0, 25, 50, 100):
            for busy_b in (0, 40, 100):
                r = split_energy(combined, 10, busy_a, busy_b)
                assert r.first >= r.idle
                assert r.second >= r.idle
                assert r.first + r.second == pytest.approx(2 * r.idle + r.above_idle)


def test_split_pair_updates_both_units():
    holder = Unit(id=0, address="gpu_c1", split=SPLIT_BUSY, busy_percent=60, energy_acc=100)
    follower = Unit(id=1, address="gpu_c9", split=SPLIT_BUSY, busy_percent=40, energy_acc=50)

    split_pair(holder, follower, 1000, 10, SPLIT_BUSY)

    assert holder.energy_interval == pytest.approx(520)
    assert follower.energy_interval == pytest.approx(480)
    assert holder.energy_acc == pytest.approx(620)
    assert follower.energy_acc == pytest.approx(530)


def test_even_split_has_no_idle_floor():
    holder = Unit(id=0, address="gpu_3a_0", split=SPLIT_EVEN, busy_percent=100)
    follower = Unit(id=1, address="gpu_3a_1", split=SPLIT_EVEN)

    result = split_pair(holder, follower, 300, 10, SPLIT_EVEN)

    assert result.idle == 0
    assert holder.energy_interval == 150
    assert follower.energy_interval == 150


def test_unknown_split_mode():
    with pytest.raises(ValueError):
        split_pair(Unit(id=0, address="a"), Unit(id=1, address="b"), 10, 1, "thirds")
