"""Rules deciding whether a learned transition earns a reminder, and how to offer it."""

from __future__ import annotations

from dataclasses import dataclass

from home_patterns.models import ActionTransition, UserReminderPreferences
from home_patterns.policy.snapshot import PolicySnapshot

SUGGEST = "suggest"
ASK = "ask"
EXECUTE = "execute"


@dataclass
class PolicyDecision:
    should_schedule: bool
    reason: str


class ReminderPolicyEvaluator:
    def evaluate(
        self,
        transition: ActionTransition,
        context_key: str,
        preferences: UserReminderPreferences,
        policy: PolicySnapshot,
    ) -> PolicyDecision:
        cfg = policy.reminders
        if not preferences.enabled:
            return PolicyDecision(False, "reminders disabled for person")
        if transition.context_key != context_key:
            return PolicyDecision(False, "context bucket changed")
        if transition.observation_count < cfg.minimum_occurrences:
            return PolicyDecision(
                False, f"seen {transition.observation_count}x, need {cfg.minimum_occurrences}",
            )
        if transition.confidence < cfg.minimum_confidence:
            return PolicyDecision(
                False, f"confidence {transition.confidence:.2f} below {cfg.minimum_confidence:.2f}",
            )
        return PolicyDecision(True, "transition qualifies")


def evaluate_execution_action(
    confidence: float,
    safe_to_auto_execute: bool,
    allow_auto_execute: bool,
    threshold: float = 0.95,
) -> str:
    """How strongly to offer an action. This is a proposal, never an actuation.

    Low confidence only suggests; very high confidence on a safe action the
    person opted into may be proposed for automatic execution; anything in
    between asks first.
    """
    if confidence < 0.5:
        return SUGGEST
    if confidence >= threshold and safe_to_auto_execute and allow_auto_execute:
        return EXECUTE
    return ASK
