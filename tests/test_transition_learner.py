"""Tests for transition learning."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from home_patterns.core.context_bucket import build_context_key
from home_patterns.core.transition_learner import TransitionLearner
from home_patterns.models import ActionContext, ActionEvent
from home_patterns.policy.snapshot import default_policy
from home_patterns.storage.repositories import EventRepository, TransitionRepository
from home_patterns.storage.sqlite_store import SQLiteStore

T0 = datetime(2026, 1, 5, 20, 0, tzinfo=timezone.utc)
LIVING_ROOM = ActionContext(day_type="weekday", time_bucket="evening", location="living_room")


@pytest_asyncio.fixture
async def store(tmp_path):
    s = SQLiteStore(tmp_path / "test.db")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def learner(store):
    return TransitionLearner(EventRepository(store), TransitionRepository(store))


async def _observe(learner, action, ts, context=LIVING_ROOM, person="p1"):
    event = ActionEvent(person_id=person, action_type=action, timestamp=ts, context=context)
    event.context_key = build_context_key(context)
    await learner.events.add(event)
    return await learner.learn(event, default_policy())


@pytest.mark.asyncio
async def test_first_event_learns_nothing(learner):
    assert await _observe(learner, "sit_on_couch", T0) is None


@pytest.mark.asyncio
async def test_couch_then_music_creates_one_transition(learner):
    await _observe(learner, "sit_on_couch", T0)
    t = await _observe(learner, "play_music", T0 + timedelta(minutes=2))

    assert t.from_action == "sit_on_couch"
    assert t.to_action == "play_music"
    assert t.context_key == "weekday*evening*living_room"
    assert t.confidence == 0.5
    assert t.observation_count == 1
    assert t.average_delay_seconds == 120

    all_transitions, total = await learner.transitions.get_filtered(person_id="p1")
    assert total == 1


@pytest.mark.asyncio
async def test_repeat_reinforces_same_row(learner):
    for day in range(2):
        start = T0 + timedelta(days=day)
        await _observe(learner, "sit_on_couch", start)
        t = await _observe(learner, "play_music", start + timedelta(minutes=4))

    assert t.observation_count == 2
    assert t.confidence == pytest.approx(0.55)
    assert t.average_delay_seconds == pytest.approx(0.2 * 240 + 0.8 * 240)
    _, total = await learner.transitions.get_filtered(person_id="p1")
    assert total == 1


@pytest.mark.asyncio
async def test_different_bucket_is_not_paired(learner):
    await _observe(learner, "cook", T0, context=ActionContext(day_type="weekday", time_bucket="evening",
                                                               location="kitchen"))
    assert await _observe(learner, "play_music", T0 + timedelta(minutes=1)) is None


@pytest.mark.asyncio
async def test_outside_session_window(learner):
    await _observe(learner, "sit_on_couch", T0)
    assert await _observe(learner, "play_music", T0 + timedelta(minutes=31)) is None


@pytest.mark.asyncio
async def test_people_do_not_pair(learner):
    await _observe(learner, "sit_on_couch", T0, person="alice")
    assert await _observe(learner, "play_music", T0 + timedelta(minutes=1), person="bob") is None


@pytest.mark.asyncio
async def test_negative_reinforcement(learner):
    await _observe(learner, "sit_on_couch", T0)
    t = await _observe(learner, "play_music", T0 + timedelta(minutes=1))

    weakened = await learner.reinforce(t.id, positive=False, policy=default_policy())
    assert weakened.confidence == pytest.approx(0.45)
    strengthened = await learner.reinforce(t.id, positive=True, policy=default_policy())
    assert strengthened.confidence == pytest.approx(0.505)
