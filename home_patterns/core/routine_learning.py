"""Intent-anchored routine learning.

An intent (a state-change event such as "arrived home") opens a bounded
observation window for that person. Actions observed inside the window are
learned as RoutineReminders for the intent and the window's time bucket,
each carrying the delay since the intent. The next time the intent fires,
every well-established reminder for that bucket is scheduled as a
routine-scoped candidate at intent time + median delay.

Windows expire lazily: the first event seen after the end closes the window
and is not learned from.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta

from home_patterns.core.delay_stats import add_sample
from home_patterns.core.time_buckets import local_time, minute_of_day, select_time_bucket
from home_patterns.models import (
    DECREASE,
    SCHEDULED,
    ActionContext,
    ActionEvent,
    DelayEvidence,
    ReminderCandidate,
    Routine,
    RoutineReminder,
    ensure_utc,
)
from home_patterns.policy.snapshot import PolicySnapshot
from home_patterns.storage.repositories import (
    ReminderCandidateRepository,
    RoutineReminderRepository,
    RoutineRepository,
)

logger = logging.getLogger(__name__)


def _close(routine: Routine) -> Routine:
    routine.close_window()
    return routine


class RoutineLearningService:
    def __init__(
        self,
        routines: RoutineRepository,
        reminders: RoutineReminderRepository,
        candidates: ReminderCandidateRepository,
    ) -> None:
        self.routines = routines
        self.reminders = reminders
        self.candidates = candidates

    # ── Intents ──

    async def handle_intent(
        self, event: ActionEvent, policy: PolicySnapshot,
    ) -> tuple[Routine, list[ReminderCandidate]]:
        """Open (or re-open) the routine window for an intent event.

        Any other open window of the same person is closed first. Returns the
        routine and the routine-scoped candidates scheduled for this activation.
        """
        ts = event.timestamp
        minutes = policy.routines.observation_window_minutes
        bucket = select_time_bucket(ts, policy.time_buckets)

        for other in await self.routines.get_open_for_person(event.person_id):
            if other.intent_type != event.action_type:
                await self.routines.modify(other.id, _close)
                logger.info("Closed routine window %s (%s) for new intent %s",
                            other.id, other.intent_type, event.action_type)

        def _open(routine: Routine) -> Routine:
            routine.observation_window_minutes = minutes
            routine.last_intent_at = ts
            routine.window_start = ts
            routine.window_end = ts + timedelta(minutes=minutes)
            routine.active_bucket = bucket
            return routine

        routine = await self.routines.get_by_person_and_intent(event.person_id, event.action_type)
        if routine is None:
            try:
                routine = await self.routines.add(
                    _open(Routine(person_id=event.person_id, intent_type=event.action_type))
                )
                logger.info("New routine %s for %s (%s)", routine.id, event.person_id, event.action_type)
            except sqlite3.IntegrityError:
                routine = await self.routines.get_by_person_and_intent(event.person_id, event.action_type)
                if routine is None:
                    raise
                routine = await self.routines.modify(routine.id, _open)
        else:
            routine = await self.routines.modify(routine.id, _open)

        logger.info("Routine window %s open %s -> %s (%s)", routine.id,
                    routine.window_start.isoformat(), routine.window_end.isoformat(), bucket)
        scheduled = await self._schedule_reminders(routine, event, bucket, policy)
        return routine, scheduled

    async def _schedule_reminders(
        self, routine: Routine, event: ActionEvent, bucket: str, policy: PolicySnapshot,
    ) -> list[ReminderCandidate]:
        scheduled = []
        for reminder in await self.reminders.get_by_routine_and_bucket(routine.id, bucket):
            if reminder.median_delay_seconds is None:
                continue
            if reminder.confidence < policy.reminders.minimum_confidence:
                continue

            check_at = event.timestamp + timedelta(seconds=reminder.median_delay_seconds)
            center = minute_of_day(local_time(check_at, policy.time_buckets))
            occurrence = (
                f"About {round(reminder.median_delay_seconds / 60)} min after {routine.intent_type}"
            )

            def _reschedule(candidate: ReminderCandidate) -> ReminderCandidate:
                return replace(
                    candidate,
                    check_at=check_at,
                    source_event_id=event.id,
                    confidence=reminder.confidence,
                    status=SCHEDULED,
                    processed_at=None,
                    decision_reason=None,
                    time_window_center_minutes=center,
                    occurrence=occurrence,
                )

            existing = await self.candidates.get_by_routine_reminder_id(reminder.id)
            if existing is None:
                candidate = await self.candidates.add(ReminderCandidate(
                    person_id=event.person_id,
                    suggested_action=reminder.suggested_action,
                    check_at=check_at,
                    confidence=reminder.confidence,
                    occurrence=occurrence,
                    source_event_id=event.id,
                    routine_reminder_id=reminder.id,
                    custom_data=dict(reminder.custom_data),
                    context=ActionContext.from_dict(event.context.to_dict()),
                    time_window_center_minutes=center,
                ))
            else:
                candidate = await self.candidates.modify(existing.id, _reschedule)
            scheduled.append(candidate)
        return scheduled

    # ── Observations ──

    async def process_observed_event(
        self, event: ActionEvent, policy: PolicySnapshot,
    ) -> RoutineReminder | None:
        """Learn from an action inside the person's open window, if there is one."""
        if event.is_state_change:
            return None

        for routine in await self.routines.get_open_for_person(event.person_id):
            if routine.is_observation_window_open(event.timestamp):
                if event.action_type == routine.intent_type:
                    return None
                return await self._learn(routine, event, policy)
            if event.timestamp > routine.window_end:
                await self.routines.modify(routine.id, _close)
                logger.info("Routine window %s expired at %s, closed",
                            routine.id, routine.window_end.isoformat())
        return None

    async def _learn(
        self, routine: Routine, event: ActionEvent, policy: PolicySnapshot,
    ) -> RoutineReminder:
        cfg = policy.routines
        bucket = routine.active_bucket or select_time_bucket(routine.window_start, policy.time_buckets)
        sample = DelayEvidence(
            delay_seconds=(event.timestamp - routine.window_start).total_seconds(),
            observed_at=event.timestamp,
        )

        def _reinforce(reminder: RoutineReminder) -> RoutineReminder:
            evidence, median = add_sample(reminder.delay_evidence, sample, cfg)
            return replace(
                reminder,
                confidence=min(1.0, reminder.confidence + cfg.increase_step),
                observation_count=reminder.observation_count + 1,
                delay_evidence=evidence,
                median_delay_seconds=median,
                last_observed_at=event.timestamp,
            )

        existing = await self.reminders.get_by_routine_bucket_action(
            routine.id, bucket, event.action_type,
        )
        if existing is None:
            evidence, median = add_sample([], sample, cfg)
            reminder = RoutineReminder(
                routine_id=routine.id,
                person_id=event.person_id,
                suggested_action=event.action_type,
                bucket=bucket,
                confidence=cfg.default_probability,
                observation_count=1,
                delay_evidence=evidence,
                median_delay_seconds=median,
                last_observed_at=event.timestamp,
                custom_data=dict(event.custom_data),
            )
            try:
                await self.reminders.add(reminder)
                logger.info("New routine reminder %s: %s after %s (%s)",
                            reminder.id, reminder.suggested_action, routine.intent_type, bucket)
                return reminder
            except sqlite3.IntegrityError:
                existing = await self.reminders.get_by_routine_bucket_action(
                    routine.id, bucket, event.action_type,
                )
                if existing is None:
                    raise

        return await self.reminders.modify(existing.id, _reinforce)

    # ── Feedback and queries ──

    async def handle_feedback(self, reminder_id: str, action: str, step: float) -> RoutineReminder:
        """Apply an explicit increase/decrease to a routine reminder's confidence."""
        delta = -step if action == DECREASE else step

        def _apply(reminder: RoutineReminder) -> RoutineReminder:
            reminder.confidence = min(1.0, max(0.0, reminder.confidence + delta))
            return reminder

        return await self.reminders.modify(reminder_id, _apply)

    async def is_within_learning_window(self, person_id: str, ts: datetime) -> bool:
        ts = ensure_utc(ts)
        return any(
            r.is_observation_window_open(ts)
            for r in await self.routines.get_open_for_person(person_id)
        )

    async def get_reminders_for_intent(self, person_id: str, intent_type: str) -> list[RoutineReminder]:
        routine = await self.routines.get_by_person_and_intent(person_id, intent_type)
        if routine is None:
            return []
        return await self.reminders.get_by_routine(routine.id)
