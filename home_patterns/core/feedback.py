"""Explicit yes / no / later answers to a reminder."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from home_patterns.core.cooldown import CooldownService
from home_patterns.core.reminder_scheduler import adjust_confidence
from home_patterns.core.routine_learning import RoutineLearningService
from home_patterns.core.transition_learner import TransitionLearner
from home_patterns.models import DECREASE, FEEDBACK_TYPES, INCREASE, ReminderCandidate
from home_patterns.policy.snapshot import PolicySnapshot
from home_patterns.storage.repositories import ReminderCandidateRepository

logger = logging.getLogger(__name__)


class FeedbackService:
    def __init__(
        self,
        candidates: ReminderCandidateRepository,
        transitions: TransitionLearner,
        routines: RoutineLearningService,
        cooldowns: CooldownService,
    ) -> None:
        self.candidates = candidates
        self.transitions = transitions
        self.routines = routines
        self.cooldowns = cooldowns

    async def submit_feedback(
        self,
        candidate_id: str,
        feedback_type: str,
        policy: PolicySnapshot,
        now: datetime | None = None,
    ) -> ReminderCandidate:
        """Apply a person's answer to a reminder and return the updated candidate.

        "no" lowers the candidate (and its transition or routine reminder) and
        starts a cooldown on the action. "yes" raises them. "later" is a no-op.
        """
        feedback = feedback_type.strip().lower()
        if feedback not in FEEDBACK_TYPES:
            raise ValueError(f"unknown feedback type: {feedback_type!r}")

        candidate = await self.candidates.get_by_id(candidate_id)
        if candidate is None:
            raise LookupError(f"reminder candidate {candidate_id} not found")
        if feedback == "later":
            logger.debug("Deferred feedback on %s, nothing changes", candidate_id)
            return candidate

        direction = INCREASE if feedback == "yes" else DECREASE
        step = policy.reminders.confidence_step
        candidate = await self.candidates.modify(
            candidate_id,
            lambda c: replace(c, confidence=adjust_confidence(c.confidence, step, direction)),
        )

        if candidate.transition_id:
            try:
                await self.transitions.reinforce(candidate.transition_id, feedback == "yes", policy)
            except LookupError:
                logger.warning("Candidate %s points at missing transition %s",
                               candidate_id, candidate.transition_id)
        if candidate.routine_reminder_id:
            await self.routines.handle_feedback(
                candidate.routine_reminder_id, direction, policy.routines.increase_step,
            )
        if feedback == "no":
            await self.cooldowns.record_negative_feedback(
                candidate.person_id, candidate.suggested_action, policy, now=now,
            )

        logger.info("Feedback %r on %s (%s): confidence now %.2f",
                    feedback, candidate_id, candidate.suggested_action, candidate.confidence)
        return candidate
