"""Tests for routine delay statistics."""

from datetime import datetime, timezone

import pytest

from home_patterns.core.delay_stats import add_sample, is_outlier, median_delay, outlier_cutoff
from home_patterns.models import DelayEvidence
from home_patterns.policy.snapshot import RoutinePolicy

T0 = datetime(2026, 1, 5, 18, 0, tzinfo=timezone.utc)


def _accumulate(delays, policy=None):
    policy = policy or RoutinePolicy()
    evidence, median = [], None
    for d in delays:
        evidence, median = add_sample(evidence, DelayEvidence(d, T0), policy)
    return evidence, median


def test_empty_median():
    assert median_delay([]) is None


def test_first_sample_is_never_outlier():
    evidence, median = _accumulate([9000])
    assert evidence[0].is_outlier is False
    assert median == 9000


def test_half_hour_detour_is_flagged():
    evidence, median = _accumulate([120, 130, 1800])
    assert [e.is_outlier for e in evidence] == [False, False, True]
    assert 120 <= median <= 130


def test_couple_of_minutes_jitter_is_tolerated():
    evidence, _ = _accumulate([180, 300, 240])
    assert not any(e.is_outlier for e in evidence)


def test_long_delay_is_flagged():
    evidence, median = _accumulate([180, 200, 190, 9000])
    assert evidence[-1].is_outlier is True
    assert median == pytest.approx(190)


def test_cutoff_floor():
    evidence, _ = _accumulate([100, 100, 100])
    assert outlier_cutoff(evidence, RoutinePolicy()) == 300


def test_cutoff_scales_with_median():
    evidence, _ = _accumulate([1200, 1300])
    assert outlier_cutoff(evidence, RoutinePolicy()) == pytest.approx(1250)
    assert not is_outlier(2400, evidence, RoutinePolicy())


def test_floor_is_configurable():
    evidence, _ = _accumulate([120, 130])
    strict = RoutinePolicy(outlier_min_tolerance_seconds=0, outlier_relative_tolerance=0.1)
    assert is_outlier(200, evidence, strict)


def test_detour_between_normal_days_does_not_taint_the_next_sample():
    evidence, median = _accumulate([120, 1800])
    assert [e.is_outlier for e in evidence] == [False, True]
    assert median == 120

    evidence, median = _accumulate([120, 1800, 130])
    assert [e.is_outlier for e in evidence] == [False, True, False]
    assert median == pytest.approx(125)


def test_detour_on_first_day_is_flagged_once_the_habit_settles():
    evidence, median = _accumulate([1800, 120, 130])
    assert [e.is_outlier for e in evidence] == [True, False, False]
    assert median == pytest.approx(125)


def test_flags_do_not_depend_on_arrival_order():
    orders = ([120, 130, 1800], [120, 1800, 130], [1800, 120, 130])
    results = []
    for delays in orders:
        evidence, median = _accumulate(delays)
        results.append(({e.delay_seconds for e in evidence if e.is_outlier}, median))
    assert all(r == ({1800}, pytest.approx(125)) for r in results)
