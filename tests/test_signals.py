"""Tests for signal selection, normalization and similarity."""

from datetime import datetime, timezone

import pytest

from home_patterns.models import SignalProfile, SignalProfileEntry, SignalState, SignalValue
from home_patterns.policy.signal_policy import SignalPolicy
from home_patterns.signals.selector import SignalSelector, default_importance, normalize, sensor_type
from home_patterns.signals.similarity import SignalSimilarityEvaluator

T0 = datetime(2026, 1, 5, 20, 0, tzinfo=timezone.utc)


def _state(sensor_id, raw, importance=None):
    return SignalState(sensor_id, SignalValue.parse(raw), importance)


def _profile(states, limit=10):
    return SignalSelector().select(states, SignalPolicy(selection_limit=limit), at=T0)


def test_sensor_type():
    assert sensor_type("sensor.presence.kitchen") == "presence"
    assert sensor_type("Thermostat") == "thermostat"


def test_default_importance_table():
    assert default_importance("sensor.presence.lr") == 1.0
    assert default_importance("sensor.humidity.bath") == 0.1
    assert default_importance("sensor.unknown.x") == 0.5


def test_normalize_variants():
    assert normalize("sensor.motion.hall", SignalValue.parse(True)) == (1.0, None)
    assert normalize("sensor.temperature.lr", SignalValue.parse(21)) == (pytest.approx(0.21), None)
    assert normalize("sensor.light.lr", SignalValue.parse(5000)) == (1.0, None)
    assert normalize("sensor.presence.lr", SignalValue.parse("away")) == (0.0, "away")
    assert normalize("sensor.door.front", SignalValue.parse("open")) == (1.0, "open")
    assert normalize("sensor.tv.lr", SignalValue.parse("netflix")) == (0.5, "netflix")


def test_select_keeps_top_k_by_importance():
    profile = _profile([
        _state("sensor.humidity.bath", 40),
        _state("sensor.presence.lr", "home"),
        _state("sensor.light.lr", 300),
    ], limit=2)
    assert set(profile.entries) == {"sensor.presence.lr", "sensor.light.lr"}
    assert sum(e.weight for e in profile.entries.values()) == pytest.approx(1.0)
    assert profile.entries["sensor.presence.lr"].weight > profile.entries["sensor.light.lr"].weight


def test_importance_hint_wins():
    profile = _profile([
        _state("sensor.presence.lr", "home", importance=0.05),
        _state("sensor.humidity.bath", 40),
    ], limit=1)
    assert list(profile.entries) == ["sensor.humidity.bath"]


def test_selection_disabled_gives_empty_profile():
    profile = SignalSelector().select(
        [_state("sensor.presence.lr", "home")], SignalPolicy(selection_enabled=False),
    )
    assert not profile


def test_identical_profiles_are_fully_similar():
    states = [_state("sensor.presence.lr", "home"), _state("sensor.light.lr", 300)]
    baseline = _profile(states)
    assert SignalSimilarityEvaluator().similarity(baseline, _profile(states)) == pytest.approx(1.0)


def test_guests_present_lowers_similarity():
    baseline = _profile([
        _state("sensor.presence.lr", "home"),
        _state("sensor.audio.lr", "stopped"),
        _state("sensor.light.lr", 300),
    ])
    event = _profile([
        _state("sensor.presence.lr", "guests"),
        _state("sensor.audio.lr", "playing"),
        _state("sensor.light.lr", 800),
    ])
    sim = SignalSimilarityEvaluator().similarity(baseline, event)
    assert 0.0 <= sim < 0.7


def test_numeric_similarity_is_graded():
    baseline = _profile([_state("sensor.temperature.lr", 20)])
    close = _profile([_state("sensor.temperature.lr", 25)])
    far = _profile([_state("sensor.temperature.lr", 80)])
    evaluator = SignalSimilarityEvaluator()
    assert evaluator.similarity(baseline, close) == pytest.approx(0.95)
    assert evaluator.similarity(baseline, far) == pytest.approx(0.4)


def test_missing_sensor_counts_as_zero():
    baseline = SignalProfile(entries={
        "a": SignalProfileEntry(weight=0.5, normalized_value=1.0, kind="bool"),
        "b": SignalProfileEntry(weight=0.5, normalized_value=1.0, kind="bool"),
    })
    event = SignalProfile(entries={"a": SignalProfileEntry(weight=1.0, normalized_value=1.0, kind="bool")})
    assert SignalSimilarityEvaluator().similarity(baseline, event) == pytest.approx(0.5)


def test_empty_baseline_similarity_is_zero():
    event = _profile([_state("sensor.presence.lr", "home")])
    assert SignalSimilarityEvaluator().similarity(None, event) == 0.0


def test_update_baseline_cold_start_copies_event():
    event = _profile([_state("sensor.presence.lr", "home")])
    baseline = SignalSimilarityEvaluator().update_baseline(None, event, alpha=0.1, limit=10, at=T0)
    assert baseline.sample_count == 1
    assert baseline.entries["sensor.presence.lr"].reference == "home"
    assert baseline.entries is not event.entries


def test_update_baseline_ema():
    evaluator = SignalSimilarityEvaluator()
    baseline = _profile([_state("sensor.temperature.lr", 20)])
    event = _profile([_state("sensor.temperature.lr", 30)])
    updated = evaluator.update_baseline(baseline, event, alpha=0.1, limit=10, at=T0)
    assert updated.entries["sensor.temperature.lr"].normalized_value == pytest.approx(0.21)
    assert updated.sample_count == 2


def test_update_baseline_respects_limit():
    evaluator = SignalSimilarityEvaluator()
    baseline = _profile([_state("sensor.presence.lr", "home")])
    event = _profile([_state("sensor.light.lr", 100), _state("sensor.humidity.bath", 50)])
    updated = evaluator.update_baseline(baseline, event, alpha=0.1, limit=2, at=T0)
    assert len(updated.entries) == 2
    assert "sensor.presence.lr" in updated.entries
    assert sum(e.weight for e in updated.entries.values()) == pytest.approx(1.0)


def test_non_finite_reading_is_unknown():
    profile = _profile([_state("sensor.temperature.lr", float("nan"))])
    entry = profile.entries["sensor.temperature.lr"]
    assert entry.kind == "text"
    assert entry.normalized_value == 0.5
    assert entry.reference == "nan"

    raw = normalize("sensor.temperature.lr", SignalValue("number", float("inf")))
    assert raw == (0.5, "inf")


def test_non_finite_reading_scores_zero_against_numeric_baseline():
    evaluator = SignalSimilarityEvaluator()
    baseline = _profile([_state("sensor.temperature.lr", 20)])
    assert evaluator.similarity(baseline, _profile([_state("sensor.temperature.lr", "nan")])) == 0.0

    corrupt = SignalProfile(entries={
        "sensor.temperature.lr": SignalProfileEntry(weight=1.0, normalized_value=float("nan"), kind="number"),
    })
    assert evaluator.similarity(baseline, corrupt) == 0.0


def test_update_baseline_ignores_non_finite_and_changed_kind():
    evaluator = SignalSimilarityEvaluator()
    baseline = _profile([_state("sensor.temperature.lr", 20)])
    nan_number = SignalProfile(entries={
        "sensor.temperature.lr": SignalProfileEntry(weight=1.0, normalized_value=float("nan"), kind="number"),
    })
    updated = evaluator.update_baseline(baseline, nan_number, alpha=0.1, limit=10, at=T0)
    assert updated.entries["sensor.temperature.lr"].normalized_value == pytest.approx(0.2)

    unavailable = _profile([_state("sensor.temperature.lr", "unavailable")])
    updated = evaluator.update_baseline(baseline, unavailable, alpha=0.1, limit=10, at=T0)
    entry = updated.entries["sensor.temperature.lr"]
    assert entry.normalized_value == pytest.approx(0.2)
    assert entry.kind == "number"
