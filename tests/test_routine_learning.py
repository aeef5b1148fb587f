"""Tests for intent-anchored routine learning."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from home_patterns.core.routine_learning import RoutineLearningService
from home_patterns.models import STATE_CHANGE, ActionEvent
from home_patterns.policy.snapshot import default_policy
from home_patterns.storage.repositories import (
    ReminderCandidateRepository,
    RoutineReminderRepository,
    RoutineRepository,
)
from home_patterns.storage.sqlite_store import SQLiteStore

HOME = datetime(2026, 1, 5, 18, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def store(tmp_path):
    s = SQLiteStore(tmp_path / "test.db")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def service(store):
    return RoutineLearningService(
        RoutineRepository(store), RoutineReminderRepository(store), ReminderCandidateRepository(store),
    )


def _intent(ts=HOME, intent="arrived_home", person="p1"):
    return ActionEvent(person_id=person, action_type=intent, timestamp=ts, event_type=STATE_CHANGE)


def _action(ts, action="make_coffee", person="p1"):
    return ActionEvent(person_id=person, action_type=action, timestamp=ts)


@pytest.mark.asyncio
async def test_intent_opens_window(service):
    routine, scheduled = await service.handle_intent(_intent(), default_policy())
    assert routine.window_start == HOME
    assert routine.window_end == HOME + timedelta(minutes=45)
    assert routine.active_bucket == "evening"
    assert routine.last_intent_at == HOME
    assert scheduled == []
    assert await service.is_within_learning_window("p1", HOME + timedelta(minutes=10))


@pytest.mark.asyncio
async def test_new_intent_closes_other_window(service):
    policy = default_policy()
    first, _ = await service.handle_intent(_intent(), policy)
    second, _ = await service.handle_intent(_intent(HOME + timedelta(minutes=5), "movie_night"), policy)

    open_routines = await service.routines.get_open_for_person("p1")
    assert [r.id for r in open_routines] == [second.id]
    assert (await service.routines.get_by_id(first.id)).window_start is None


@pytest.mark.asyncio
async def test_action_in_window_is_learned(service):
    policy = default_policy()
    routine, _ = await service.handle_intent(_intent(), policy)
    reminder = await service.process_observed_event(_action(HOME + timedelta(minutes=3)), policy)

    assert reminder.routine_id == routine.id
    assert reminder.suggested_action == "make_coffee"
    assert reminder.bucket == "evening"
    assert reminder.confidence == 0.5
    assert reminder.observation_count == 1
    assert reminder.median_delay_seconds == 180


@pytest.mark.asyncio
async def test_repeat_raises_probability(service):
    policy = default_policy()
    for day in range(3):
        start = HOME + timedelta(days=day)
        await service.handle_intent(_intent(start), policy)
        reminder = await service.process_observed_event(
            _action(start + timedelta(seconds=[120, 130, 1800][day])), policy,
        )

    assert reminder.observation_count == 3
    assert reminder.confidence == pytest.approx(0.7)
    assert [e.is_outlier for e in reminder.delay_evidence] == [False, False, True]
    assert 120 <= reminder.median_delay_seconds <= 130


@pytest.mark.asyncio
async def test_event_after_window_closes_without_learning(service):
    policy = default_policy()
    routine, _ = await service.handle_intent(_intent(), policy)
    result = await service.process_observed_event(_action(HOME + timedelta(minutes=46)), policy)

    assert result is None
    assert (await service.routines.get_by_id(routine.id)).window_start is None
    assert await service.reminders.get_by_routine(routine.id) == []


@pytest.mark.asyncio
async def test_intent_action_is_not_learned(service):
    policy = default_policy()
    await service.handle_intent(_intent(), policy)
    assert await service.process_observed_event(
        _action(HOME + timedelta(minutes=1), action="arrived_home"), policy,
    ) is None


@pytest.mark.asyncio
async def test_state_change_is_not_learned(service):
    policy = default_policy()
    await service.handle_intent(_intent(), policy)
    event = _action(HOME + timedelta(minutes=1), action="door_opened")
    event.event_type = STATE_CHANGE
    assert await service.process_observed_event(event, policy) is None


@pytest.mark.asyncio
async def test_windows_are_per_person(service):
    policy = default_policy()
    await service.handle_intent(_intent(person="alice"), policy)
    assert await service.process_observed_event(
        _action(HOME + timedelta(minutes=2), person="bob"), policy,
    ) is None


@pytest.mark.asyncio
async def test_activation_schedules_routine_candidate(service):
    policy = default_policy()
    await service.handle_intent(_intent(), policy)
    reminder = await service.process_observed_event(_action(HOME + timedelta(minutes=3)), policy)

    next_day = _intent(HOME + timedelta(days=1))
    _, scheduled = await service.handle_intent(next_day, policy)
    assert len(scheduled) == 1
    cand = scheduled[0]
    assert cand.routine_reminder_id == reminder.id
    assert cand.suggested_action == "make_coffee"
    assert cand.check_at == next_day.timestamp + timedelta(minutes=3)

    by_source = await service.candidates.get_by_source_event_id(next_day.id)
    assert [c.id for c in by_source] == [cand.id]

    # Reactivating moves the same candidate rather than adding another
    third = _intent(HOME + timedelta(days=2))
    _, again = await service.handle_intent(third, policy)
    assert again[0].id == cand.id
    assert again[0].source_event_id == third.id
    _, total = await service.candidates.get_filtered(person_id="p1")
    assert total == 1


@pytest.mark.asyncio
async def test_activation_respects_bucket(service):
    policy = default_policy()
    await service.handle_intent(_intent(), policy)
    await service.process_observed_event(_action(HOME + timedelta(minutes=3)), policy)

    morning = _intent(datetime(2026, 1, 6, 8, 0, tzinfo=timezone.utc))
    _, scheduled = await service.handle_intent(morning, policy)
    assert scheduled == []


@pytest.mark.asyncio
async def test_feedback_adjusts_confidence(service):
    policy = default_policy()
    await service.handle_intent(_intent(), policy)
    reminder = await service.process_observed_event(_action(HOME + timedelta(minutes=3)), policy)

    lowered = await service.handle_feedback(reminder.id, "decrease", 0.3)
    assert lowered.confidence == pytest.approx(0.2)
    raised = await service.handle_feedback(reminder.id, "increase", 0.9)
    assert raised.confidence == 1.0

    found = await service.get_reminders_for_intent("p1", "arrived_home")
    assert [r.id for r in found] == [reminder.id]
