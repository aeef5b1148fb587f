"""Creates and reinforces general reminder candidates from observed actions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime

from home_patterns.core.cooldown import CooldownService
from home_patterns.core.matching import MatchingRemindersService, MatchOutcome
from home_patterns.core.pattern_inference import record_evidence
from home_patterns.core.reminder_policy import ReminderPolicyEvaluator
from home_patterns.core.time_buckets import local_time, minute_of_day
from home_patterns.models import (
    DECREASE,
    INCREASE,
    ActionContext,
    ActionEvent,
    ActionTransition,
    ReminderCandidate,
    ensure_utc,
)
from home_patterns.policy.snapshot import PolicySnapshot
from home_patterns.signals.similarity import SignalSimilarityEvaluator
from home_patterns.storage.repositories import PreferencesRepository, ReminderCandidateRepository

logger = logging.getLogger(__name__)


@dataclass
class ScheduleOutcome:
    candidate: ReminderCandidate | None = None
    created: bool = False
    reinforced: bool = False
    reason: str = ""


def adjust_confidence(confidence: float, step: float, direction: str) -> float:
    delta = -step if direction == DECREASE else step
    return min(1.0, max(0.0, confidence + delta))


class ReminderScheduler:
    def __init__(
        self,
        candidates: ReminderCandidateRepository,
        matching: MatchingRemindersService,
        cooldowns: CooldownService,
        preferences: PreferencesRepository,
        evaluator: ReminderPolicyEvaluator | None = None,
        similarity: SignalSimilarityEvaluator | None = None,
    ) -> None:
        self.candidates = candidates
        self.matching = matching
        self.cooldowns = cooldowns
        self.preferences = preferences
        self.evaluator = evaluator or ReminderPolicyEvaluator()
        self.similarity = similarity or SignalSimilarityEvaluator()

    async def schedule_for_event(
        self,
        event: ActionEvent,
        transition: ActionTransition | None,
        policy: PolicySnapshot,
        now: datetime | None = None,
    ) -> ScheduleOutcome:
        """Reinforce the one matching candidate, or create one when the event earns it.

        At most one candidate is touched per event.
        """
        if event.is_state_change:
            return ScheduleOutcome(reason="state changes never schedule general reminders")
        if await self.cooldowns.is_cooldown_active(event.person_id, event.action_type, now):
            logger.debug("Cooldown active for %s/%s, skipping", event.person_id, event.action_type)
            return ScheduleOutcome(reason="cooldown active")

        match = await self.matching.find_best_match(event, policy)
        if match is not None:
            candidate = await self.reinforce(match, event, transition, policy)
            return ScheduleOutcome(candidate, reinforced=True, reason="matched existing candidate")

        prefs = await self.preferences.get_by_person(event.person_id)
        if not prefs.enabled:
            return ScheduleOutcome(reason="reminders disabled for person")
        if event.has_probability_hint:
            if event.probability_action != INCREASE:
                return ScheduleOutcome(reason="decrease hint with nothing to decrease")
        elif transition is not None:
            decision = self.evaluator.evaluate(transition, event.context_key, prefs, policy)
            if not decision.should_schedule:
                logger.debug("Transition %s not scheduled: %s", transition.id, decision.reason)
                return ScheduleOutcome(reason=decision.reason)
        else:
            return ScheduleOutcome(reason="nothing to learn from")

        duplicate = await self.matching.find_duplicate(event, policy)
        if duplicate is not None:
            # Same action, same time of day, but the event failed a softer gate.
            return ScheduleOutcome(reason=f"rejected against existing candidate {duplicate.id}")

        candidate = await self.create(event, transition, policy)
        return ScheduleOutcome(candidate, created=True, reason="new candidate")

    async def reinforce(
        self,
        match: MatchOutcome,
        event: ActionEvent,
        transition: ActionTransition | None,
        policy: PolicySnapshot,
    ) -> ReminderCandidate:
        if event.has_probability_hint:
            step, direction = event.probability_value, event.probability_action
        else:
            step, direction = policy.reminders.confidence_step, INCREASE

        def _apply(candidate: ReminderCandidate) -> ReminderCandidate:
            updated = replace(
                candidate,
                confidence=adjust_confidence(candidate.confidence, step, direction),
                transition_id=candidate.transition_id or (transition.id if transition else None),
            )
            if policy.signals.selection_enabled and match.event_profile:
                updated.signal_profile = self.similarity.update_baseline(
                    updated.signal_profile, match.event_profile,
                    alpha=policy.signals.profile_update_alpha,
                    limit=policy.signals.selection_limit,
                    at=event.timestamp,
                )
            return record_evidence(updated, event, policy)

        candidate = await self.candidates.modify(match.candidate.id, _apply)
        logger.debug(
            "Reinforced %s (%s) to %.2f, %d samples, %s",
            candidate.id, candidate.suggested_action, candidate.confidence,
            candidate.evidence_count, candidate.pattern_status,
        )
        return candidate

    async def create(
        self,
        event: ActionEvent,
        transition: ActionTransition | None,
        policy: PolicySnapshot,
    ) -> ReminderCandidate:
        profile = self.matching.selector.select(event.signal_states, policy.signals, at=event.timestamp)
        candidate = ReminderCandidate(
            person_id=event.person_id,
            suggested_action=event.action_type,
            check_at=event.timestamp,
            confidence=policy.reminders.default_confidence,
            source_event_id=event.id,
            transition_id=transition.id if transition else None,
            custom_data=dict(event.custom_data),
            context=ActionContext.from_dict(event.context.to_dict()),
            signal_profile=profile if profile else None,
        )
        candidate = record_evidence(candidate, event, policy)
        await self.candidates.add(candidate)
        logger.info(
            "New reminder candidate %s: %s for %s at %s",
            candidate.id, candidate.suggested_action, candidate.person_id,
            candidate.check_at.isoformat(),
        )
        return candidate

    async def create_manual(
        self,
        person_id: str,
        action: str,
        check_at: datetime,
        policy: PolicySnapshot,
        confidence: float | None = None,
        custom_data: dict[str, str] | None = None,
    ) -> ReminderCandidate:
        """A reminder the person asked for directly. Later matching actions reinforce it like any other."""
        if not person_id or not person_id.strip():
            raise ValueError("manual reminder has no person_id")
        if not action or not action.strip():
            raise ValueError("manual reminder has no action")
        if confidence is None:
            confidence = policy.reminders.default_confidence
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {confidence}")

        check_at = ensure_utc(check_at)
        candidate = ReminderCandidate(
            person_id=person_id,
            suggested_action=action,
            check_at=check_at,
            confidence=confidence,
            custom_data=dict(custom_data or {}),
            time_window_center_minutes=minute_of_day(local_time(check_at, policy.time_buckets)),
        )
        await self.candidates.add(candidate)
        logger.info("Manual reminder %s: %s for %s at %s", candidate.id, action, person_id,
                    check_at.isoformat())
        return candidate
