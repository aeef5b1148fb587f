"""Event Pipeline: orchestrates learning from one ingested event.

This is the primary interface for callers. Each event is persisted, then
read once by the transition learner, the reminder scheduler (matching and
creation) and the routine learner. Events of one person are processed
strictly one at a time; different people never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime
from pathlib import Path
from typing import Any

from home_patterns.config import DB_PATH
from home_patterns.core.context_bucket import build_context_key
from home_patterns.core.cooldown import CooldownService
from home_patterns.core.feedback import FeedbackService
from home_patterns.core.matching import MatchingRemindersService
from home_patterns.core.reminder_evaluation import ProcessOutcome, ReminderEvaluationService
from home_patterns.core.reminder_scheduler import ReminderScheduler
from home_patterns.core.routine_learning import RoutineLearningService
from home_patterns.core.transition_learner import TransitionLearner
from home_patterns.models import (
    ACTION,
    STATE_CHANGE,
    ActionEvent,
    ConfigurationEntry,
    IngestResult,
    ReminderCandidate,
    ReminderDecision,
    UserReminderPreferences,
)
from home_patterns.policy.matching_policy import MatchingPolicyService
from home_patterns.policy.signal_policy import SignalPolicyService
from home_patterns.policy.snapshot import PolicySnapshot, load_policy
from home_patterns.storage.repositories import (
    ConfigurationRepository,
    CooldownRepository,
    EventRepository,
    PreferencesRepository,
    ReminderCandidateRepository,
    RoutineReminderRepository,
    RoutineRepository,
    TransitionRepository,
)
from home_patterns.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


def validate_event(event: ActionEvent) -> None:
    if not event.person_id or not event.person_id.strip():
        raise ValueError("event has no person_id")
    if not event.action_type or not event.action_type.strip():
        raise ValueError("event has no action_type")
    if event.event_type not in (ACTION, STATE_CHANGE):
        raise ValueError(f"unknown event_type: {event.event_type!r}")


class EventPipeline:
    """Top-level orchestrator for behavioural pattern learning."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.store = SQLiteStore(db_path or DB_PATH)

        # Repositories
        self.events = EventRepository(self.store)
        self.transitions = TransitionRepository(self.store)
        self.candidates = ReminderCandidateRepository(self.store)
        self.routines = RoutineRepository(self.store)
        self.routine_reminders = RoutineReminderRepository(self.store)
        self.cooldowns = CooldownRepository(self.store)
        self.configurations = ConfigurationRepository(self.store)
        self.preferences = PreferencesRepository(self.store)

        # Services
        self.matching_policy = MatchingPolicyService(self.configurations)
        self.signal_policy = SignalPolicyService(self.configurations)
        self.cooldown_service = CooldownService(self.cooldowns)
        self.transition_learner = TransitionLearner(self.events, self.transitions)
        self.matching = MatchingRemindersService(self.candidates)
        self.scheduler = ReminderScheduler(
            self.candidates, self.matching, self.cooldown_service, self.preferences,
        )
        self.routine_learning = RoutineLearningService(
            self.routines, self.routine_reminders, self.candidates,
        )
        self.feedback = FeedbackService(
            self.candidates, self.transition_learner, self.routine_learning, self.cooldown_service,
        )
        self.evaluation = ReminderEvaluationService(
            self.candidates, self.preferences, self.cooldown_service,
        )

        # Entries vanish once no task holds or awaits the lock
        self._person_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    async def initialize(self) -> None:
        """Open the database. Must be called before any operations."""
        await self.store.initialize()

    async def close(self) -> None:
        await self.store.close()

    def _lock_for(self, person_id: str) -> asyncio.Lock:
        lock = self._person_locks.get(person_id)
        if lock is None:
            lock = asyncio.Lock()
            self._person_locks[person_id] = lock
        return lock

    async def policy(self) -> PolicySnapshot:
        return await load_policy(self.configurations)

    # ── Ingestion ──

    async def ingest_event(self, event: ActionEvent, now: datetime | None = None) -> IngestResult:
        """Persist one event and update everything learned from it.

        ``now`` is the wall-clock used for cooldown checks; it defaults to the
        current time.
        """
        validate_event(event)
        async with self._lock_for(event.person_id):
            policy = await self.policy()
            event.context_key = build_context_key(event.context, policy.learning.context_bucket_format)
            await self.events.add(event)
            result = IngestResult(event_id=event.id)

            transition = await self.transition_learner.learn(event, policy)
            if transition is not None:
                result.transition_id = transition.id

            outcome = await self.scheduler.schedule_for_event(event, transition, policy, now=now)
            if outcome.candidate is not None:
                result.related_reminder_id = outcome.candidate.id
                if outcome.created:
                    result.scheduled_candidate_ids.append(outcome.candidate.id)

            if event.is_state_change:
                routine, scheduled = await self.routine_learning.handle_intent(event, policy)
                result.routine_id = routine.id
                result.scheduled_candidate_ids.extend(c.id for c in scheduled)
            else:
                reminder = await self.routine_learning.process_observed_event(event, policy)
                if reminder is not None:
                    result.routine_id = reminder.routine_id
                    result.routine_reminder_id = reminder.id

        logger.debug("Ingested %s %s for %s: %s", event.event_type, event.action_type,
                     event.person_id, result)
        return result

    # ── Feedback and evaluation ──

    async def submit_feedback(
        self, candidate_id: str, feedback_type: str, now: datetime | None = None,
    ) -> ReminderCandidate:
        candidate = await self.candidates.get_by_id(candidate_id)
        if candidate is None:
            raise LookupError(f"reminder candidate {candidate_id} not found")
        async with self._lock_for(candidate.person_id):
            return await self.feedback.submit_feedback(
                candidate_id, feedback_type, await self.policy(), now=now,
            )

    async def evaluate_candidate(
        self, candidate_id: str, now: datetime | None = None, safe_to_auto_execute: bool = False,
    ) -> ReminderDecision:
        return await self.evaluation.evaluate(
            candidate_id, await self.policy(), now=now, safe_to_auto_execute=safe_to_auto_execute,
        )

    async def process_candidate(
        self,
        candidate_id: str,
        now: datetime | None = None,
        bypass_due: bool = False,
        safe_to_auto_execute: bool = False,
    ) -> ProcessOutcome:
        """Mark a due candidate executed or skipped. ``bypass_due`` forces an early run."""
        candidate = await self.candidates.get_by_id(candidate_id)
        if candidate is None:
            raise LookupError(f"reminder candidate {candidate_id} not found")
        async with self._lock_for(candidate.person_id):
            return await self.evaluation.process(
                candidate_id, await self.policy(), now=now, bypass_due=bypass_due,
                safe_to_auto_execute=safe_to_auto_execute,
            )

    async def create_manual_candidate(
        self,
        person_id: str,
        action: str,
        check_at: datetime,
        confidence: float | None = None,
        custom_data: dict[str, str] | None = None,
    ) -> ReminderCandidate:
        async with self._lock_for(person_id):
            return await self.scheduler.create_manual(
                person_id, action, check_at, await self.policy(),
                confidence=confidence, custom_data=custom_data,
            )

    # ── Configuration ──

    async def set_configuration(
        self, category: str, key: str, value: Any, description: str | None = None,
    ) -> ConfigurationEntry:
        return await self.configurations.set_value(category, key, value, description)

    async def save_preferences(self, prefs: UserReminderPreferences) -> UserReminderPreferences:
        return await self.preferences.save(prefs)
