"""Turns a due reminder candidate into a spoken proposal.

Nothing here actuates a device. The decision says whether to speak, how
strongly to offer the action (suggest / ask / execute), and what to say.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime

from home_patterns.core.cooldown import CooldownService
from home_patterns.core.reminder_policy import ASK, EXECUTE, SUGGEST, evaluate_execution_action
from home_patterns.llm.client import phrase_reminder
from home_patterns.models import (
    EXECUTED,
    SCHEDULED,
    SKIPPED,
    ReminderCandidate,
    ReminderDecision,
    _now,
    ensure_utc,
)
from home_patterns.policy.snapshot import PolicySnapshot
from home_patterns.storage.repositories import PreferencesRepository, ReminderCandidateRepository

logger = logging.getLogger(__name__)

_TEMPLATES = {
    SUGGEST: "You might want to {action} now.",
    ASK: "Would you like me to {action} now?",
    EXECUTE: "I'll {action} now, just say stop if you'd rather not.",
}


@dataclass
class ProcessOutcome:
    candidate: ReminderCandidate
    decision: ReminderDecision
    processed: bool = False


def template_phrase(action: str, execution_action: str) -> str:
    text = action.replace("_", " ").strip()
    return _TEMPLATES.get(execution_action, _TEMPLATES[ASK]).format(action=text)


class ReminderEvaluationService:
    def __init__(
        self,
        candidates: ReminderCandidateRepository,
        preferences: PreferencesRepository,
        cooldowns: CooldownService,
    ) -> None:
        self.candidates = candidates
        self.preferences = preferences
        self.cooldowns = cooldowns

    async def evaluate(
        self,
        candidate_id: str,
        policy: PolicySnapshot,
        now: datetime | None = None,
        safe_to_auto_execute: bool = False,
    ) -> ReminderDecision:
        candidate = await self.candidates.get_by_id(candidate_id)
        if candidate is None:
            raise LookupError(f"reminder candidate {candidate_id} not found")

        if candidate.status != SCHEDULED:
            return ReminderDecision(False, f"candidate is {candidate.status}", candidate.confidence)
        prefs = await self.preferences.get_by_person(candidate.person_id)
        if not prefs.enabled:
            return ReminderDecision(False, "reminders disabled for person", candidate.confidence)
        if prefs.default_style == "silent":
            return ReminderDecision(False, "person prefers silent reminders", candidate.confidence)
        if await self.cooldowns.is_cooldown_active(candidate.person_id, candidate.suggested_action, now):
            return ReminderDecision(False, "cooldown active", candidate.confidence)

        execution_action = evaluate_execution_action(
            candidate.confidence,
            safe_to_auto_execute=safe_to_auto_execute,
            allow_auto_execute=prefs.allow_auto_execute,
            threshold=policy.reminders.execute_auto_threshold,
        )
        phrase = await self.generate_phrase(candidate, execution_action, policy)
        return ReminderDecision(
            should_speak=True,
            reason="reminder due",
            confidence=candidate.confidence,
            execution_action=execution_action,
            phrase=phrase,
        )

    async def process(
        self,
        candidate_id: str,
        policy: PolicySnapshot,
        now: datetime | None = None,
        bypass_due: bool = False,
        safe_to_auto_execute: bool = False,
    ) -> ProcessOutcome:
        """Settle a due candidate: executed when the decision is to speak, skipped otherwise.

        Candidates that are not yet due (unless ``bypass_due``) or already
        settled are left untouched.
        """
        now = ensure_utc(now or _now())
        candidate = await self.candidates.get_by_id(candidate_id)
        if candidate is None:
            raise LookupError(f"reminder candidate {candidate_id} not found")
        if candidate.status != SCHEDULED:
            return ProcessOutcome(
                candidate, ReminderDecision(False, f"candidate is {candidate.status}", candidate.confidence),
            )
        if not bypass_due and not candidate.is_due(now):
            return ProcessOutcome(
                candidate, ReminderDecision(False, "candidate is not yet due", candidate.confidence),
            )

        decision = await self.evaluate(
            candidate_id, policy, now=now, safe_to_auto_execute=safe_to_auto_execute,
        )
        status = EXECUTED if decision.should_speak else SKIPPED

        def _settle(current: ReminderCandidate) -> ReminderCandidate:
            return replace(current, status=status, processed_at=now, decision_reason=decision.reason)

        settled = await self.candidates.modify(candidate_id, _settle)
        logger.info("Candidate %s (%s) %s: %s", settled.id, settled.suggested_action,
                    status, decision.reason)
        return ProcessOutcome(settled, decision, processed=True)

    async def generate_phrase(
        self, candidate: ReminderCandidate, execution_action: str, policy: PolicySnapshot,
    ) -> str:
        fallback = template_phrase(candidate.suggested_action, execution_action)
        if not policy.llm.enabled:
            return fallback
        try:
            text = await phrase_reminder(
                candidate.suggested_action,
                execution_action,
                candidate.occurrence,
                model=policy.llm.model,
                temperature=policy.llm.temperature,
            )
        except Exception:
            logger.warning("Reminder phrasing failed for %s, using template", candidate.id, exc_info=True)
            return fallback
        return text or fallback
