"""Tests for the SQLite store and repositories."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from home_patterns.models import (
    EXECUTED,
    ActionContext,
    ActionEvent,
    ActionTransition,
    ReminderCandidate,
    SignalState,
    SignalValue,
    UserReminderPreferences,
)
from home_patterns.storage.repositories import (
    ConfigurationRepository,
    EventRepository,
    PreferencesRepository,
    ReminderCandidateRepository,
    TransitionRepository,
)
from home_patterns.storage.sqlite_store import ConcurrencyConflict, SQLiteStore

T0 = datetime(2026, 1, 5, 20, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def store(tmp_path):
    s = SQLiteStore(tmp_path / "test.db")
    await s.initialize()
    yield s
    await s.close()


def _make_event(**kwargs) -> ActionEvent:
    defaults = dict(
        person_id="p1",
        action_type="play_music",
        timestamp=T0,
        context=ActionContext(day_type="weekday", time_bucket="evening", location="living_room",
                              state_signals={"tv": "off"}),
        signal_states=[SignalState("sensor.presence.lr", SignalValue.parse("home"))],
        context_key="weekday*evening*living_room",
    )
    defaults.update(kwargs)
    return ActionEvent(**defaults)


def _make_transition(**kwargs) -> ActionTransition:
    defaults = dict(
        person_id="p1", from_action="sit_on_couch", to_action="play_music",
        context_key="weekday*evening*living_room", last_observed_at=T0,
    )
    defaults.update(kwargs)
    return ActionTransition(**defaults)


@pytest.mark.asyncio
async def test_uninitialized_store_asserts(tmp_path):
    s = SQLiteStore(tmp_path / "never.db")
    with pytest.raises(AssertionError):
        _ = s.db


@pytest.mark.asyncio
async def test_event_round_trip(store):
    repo = EventRepository(store)
    event = _make_event(custom_data={"room": "lr"})
    await repo.add(event)

    loaded = await repo.get_by_id(event.id)
    assert loaded is not None
    assert loaded.timestamp == T0
    assert loaded.context.state_signals == {"tv": "off"}
    assert loaded.signal_states[0].value == SignalValue("text", "home")
    assert loaded.custom_data == {"room": "lr"}
    assert loaded.context_key == "weekday*evening*living_room"


@pytest.mark.asyncio
async def test_events_are_append_only(store):
    repo = EventRepository(store)
    event = await repo.add(_make_event())
    with pytest.raises(TypeError):
        await repo.update(event)


@pytest.mark.asyncio
async def test_get_last_in_bucket(store):
    repo = EventRepository(store)
    first = await repo.add(_make_event(action_type="sit_on_couch", timestamp=T0 - timedelta(minutes=5)))
    await repo.add(_make_event(action_type="cook", timestamp=T0 - timedelta(minutes=3),
                               context_key="weekday*evening*kitchen"))
    current = await repo.add(_make_event(timestamp=T0))

    prior = await repo.get_last_in_bucket(
        "p1", current.context_key, since=T0 - timedelta(minutes=30), until=T0, exclude_id=current.id,
    )
    assert prior.id == first.id

    none = await repo.get_last_in_bucket(
        "p1", current.context_key, since=T0 - timedelta(minutes=2), until=T0, exclude_id=current.id,
    )
    assert none is None


@pytest.mark.asyncio
async def test_versioned_update(store):
    repo = TransitionRepository(store)
    t = await repo.add(_make_transition())
    assert t.version == 1

    t.confidence = 0.6
    await repo.update(t)
    assert t.version == 2
    loaded = await repo.get_by_id(t.id)
    assert loaded.confidence == 0.6
    assert loaded.version == 2


@pytest.mark.asyncio
async def test_stale_update_conflicts(store):
    repo = TransitionRepository(store)
    t = await repo.add(_make_transition())
    a = await repo.get_by_id(t.id)
    b = await repo.get_by_id(t.id)

    a.confidence = 0.7
    await repo.update(a)
    b.confidence = 0.1
    with pytest.raises(ConcurrencyConflict):
        await repo.update(b)
    assert (await repo.get_by_id(t.id)).confidence == 0.7


@pytest.mark.asyncio
async def test_modify_applies_to_fresh_copy(store):
    repo = TransitionRepository(store)
    t = await repo.add(_make_transition())
    stale = await repo.get_by_id(t.id)
    stale.confidence = 0.9
    await repo.update(stale)

    def bump(tr):
        tr.observation_count += 1
        return tr

    result = await repo.modify(t.id, bump)
    assert result.observation_count == 2
    assert result.confidence == 0.9
    assert result.version == 3


@pytest.mark.asyncio
async def test_modify_missing_raises(store):
    repo = TransitionRepository(store)
    with pytest.raises(LookupError):
        await repo.modify("nope", lambda t: t)


@pytest.mark.asyncio
async def test_transition_unique_key(store):
    import sqlite3

    repo = TransitionRepository(store)
    await repo.add(_make_transition())
    with pytest.raises(sqlite3.IntegrityError):
        await repo.add(_make_transition())


@pytest.mark.asyncio
async def test_get_filtered_paging_and_filters(store):
    repo = ReminderCandidateRepository(store)
    for i in range(5):
        await repo.add(ReminderCandidate(
            person_id="p1", suggested_action=f"a{i}", check_at=T0 + timedelta(days=i),
        ))
    await repo.add(ReminderCandidate(person_id="p2", suggested_action="x", check_at=T0))
    await repo.add(ReminderCandidate(person_id="p1", suggested_action="done", check_at=T0, status=EXECUTED))

    page, total = await repo.get_filtered(person_id="p1", status="scheduled", page=1, page_size=2)
    assert total == 5
    assert [c.suggested_action for c in page] == ["a4", "a3"]

    page3, _ = await repo.get_filtered(person_id="p1", status="scheduled", page=3, page_size=2)
    assert [c.suggested_action for c in page3] == ["a0"]

    ranged, total = await repo.get_filtered(
        date_from=T0 + timedelta(days=1), date_to=T0 + timedelta(days=2),
    )
    assert total == 2

    with pytest.raises(ValueError):
        await repo.get_filtered(page=0)


@pytest.mark.asyncio
async def test_filter_by_person_not_supported_for_config(store):
    repo = ConfigurationRepository(store)
    with pytest.raises(ValueError):
        await repo.get_filtered(person_id="p1")


@pytest.mark.asyncio
async def test_get_by_source_event_id(store):
    repo = ReminderCandidateRepository(store)
    await repo.add(ReminderCandidate(person_id="p1", suggested_action="coffee", source_event_id="ev-1"))
    await repo.add(ReminderCandidate(person_id="p1", suggested_action="tea", source_event_id="ev-2"))
    found = await repo.get_by_source_event_id("ev-1")
    assert [c.suggested_action for c in found] == ["coffee"]


@pytest.mark.asyncio
async def test_configuration_set_value_upserts(store):
    repo = ConfigurationRepository(store)
    await repo.set_value("MatchingPolicy", "TimeOffsetMinutes", 45)
    entry = await repo.set_value("MatchingPolicy", "TimeOffsetMinutes", 60)
    assert entry.value == "60"
    assert entry.version == 2
    assert len(await repo.get_all()) == 1

    flag = await repo.set_value("LLM", "Enabled", True)
    assert flag.value == "true"


@pytest.mark.asyncio
async def test_preferences_default_and_save(store):
    repo = PreferencesRepository(store)
    prefs = await repo.get_by_person("p1")
    assert prefs.enabled is True
    assert prefs.allow_auto_execute is False

    await repo.save(UserReminderPreferences(person_id="p1", enabled=False))
    await repo.save(UserReminderPreferences(person_id="p1", enabled=False, allow_auto_execute=True))
    loaded = await repo.get_by_person("p1")
    assert loaded.enabled is False
    assert loaded.allow_auto_execute is True


@pytest.mark.asyncio
async def test_transitions_are_listed_per_person_through_get_filtered(store):
    repo = TransitionRepository(store)
    await repo.add(_make_transition())
    await repo.add(_make_transition(to_action="dim_lights"))
    await repo.add(_make_transition(person_id="p2"))

    items, total = await repo.get_filtered(person_id="p1")
    assert total == 2
    assert {t.to_action for t in items} == {"play_music", "dim_lights"}


@pytest.mark.asyncio
async def test_candidate_settlement_round_trip(store):
    repo = ReminderCandidateRepository(store)
    cand = await repo.add(ReminderCandidate(person_id="p1", suggested_action="coffee", check_at=T0))
    assert (await repo.get_by_id(cand.id)).processed_at is None

    cand.status = EXECUTED
    cand.processed_at = T0 + timedelta(minutes=2)
    cand.decision_reason = "reminder due"
    await repo.update(cand)

    loaded = await repo.get_by_id(cand.id)
    assert loaded.status == EXECUTED
    assert loaded.processed_at == T0 + timedelta(minutes=2)
    assert loaded.decision_reason == "reminder due"
    assert await repo.get_scheduled_for_person("p1") == []
