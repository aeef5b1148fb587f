"""Learns "after A, the person does B" transitions within a context bucket.

Each event is paired with the person's most recent earlier event that fell
inside the session window and shares its context bucket key. The pair is
folded into one ActionTransition per (person, from, to, bucket): confidence
moves toward 1 by ``ConfidenceAlpha`` on every observation and the
from -> to delay is tracked as an exponential moving average.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta

from home_patterns.models import ActionEvent, ActionTransition
from home_patterns.policy.snapshot import LearningPolicy, PolicySnapshot
from home_patterns.storage.repositories import EventRepository, TransitionRepository

logger = logging.getLogger(__name__)


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def observe(
    transition: ActionTransition, observed_at: datetime, delay_seconds: float,
    policy: LearningPolicy,
) -> ActionTransition:
    """One more observation of the transition."""
    avg = transition.average_delay_seconds
    if avg is None:
        avg = delay_seconds
    else:
        avg = policy.delay_beta * delay_seconds + (1 - policy.delay_beta) * avg
    return replace(
        transition,
        confidence=_clamp(transition.confidence + policy.confidence_alpha * (1 - transition.confidence)),
        observation_count=transition.observation_count + 1,
        average_delay_seconds=avg,
        last_observed_at=max(transition.last_observed_at, observed_at),
    )


def weaken(transition: ActionTransition, policy: LearningPolicy) -> ActionTransition:
    """Negative reinforcement: shrink confidence toward 0 by the same alpha."""
    return replace(
        transition,
        confidence=_clamp(transition.confidence - policy.confidence_alpha * transition.confidence),
    )


def strengthen(transition: ActionTransition, policy: LearningPolicy) -> ActionTransition:
    return replace(
        transition,
        confidence=_clamp(transition.confidence + policy.confidence_alpha * (1 - transition.confidence)),
    )


class TransitionLearner:
    def __init__(self, events: EventRepository, transitions: TransitionRepository) -> None:
        self.events = events
        self.transitions = transitions

    async def learn(self, event: ActionEvent, policy: PolicySnapshot) -> ActionTransition | None:
        """Fold ``event`` into the transition from its predecessor, if it has one.

        The event must already be persisted with its context key set.
        """
        cfg = policy.learning
        window = timedelta(minutes=cfg.session_window_minutes)
        prior = await self.events.get_last_in_bucket(
            event.person_id, event.context_key,
            since=event.timestamp - window, until=event.timestamp, exclude_id=event.id,
        )
        if prior is None:
            logger.debug("No prior event for %s in bucket %r, nothing to learn",
                         event.person_id, event.context_key)
            return None

        delay = (event.timestamp - prior.timestamp).total_seconds()
        existing = await self.transitions.get_by_key(
            event.person_id, prior.action_type, event.action_type, event.context_key,
        )
        if existing is None:
            transition = ActionTransition(
                person_id=event.person_id,
                from_action=prior.action_type,
                to_action=event.action_type,
                context_key=event.context_key,
                confidence=cfg.default_transition_confidence,
                observation_count=1,
                average_delay_seconds=delay,
                last_observed_at=event.timestamp,
            )
            try:
                await self.transitions.add(transition)
                logger.info(
                    "New transition %s -> %s for %s in %r",
                    transition.from_action, transition.to_action,
                    event.person_id, event.context_key,
                )
                return transition
            except sqlite3.IntegrityError:
                # Another writer created it first; fold into theirs.
                existing = await self.transitions.get_by_key(
                    event.person_id, prior.action_type, event.action_type, event.context_key,
                )
                if existing is None:
                    raise

        return await self.transitions.modify(
            existing.id, lambda t: observe(t, event.timestamp, delay, cfg),
        )

    async def reinforce(
        self, transition_id: str, positive: bool, policy: PolicySnapshot,
    ) -> ActionTransition:
        """Apply explicit feedback to a transition."""
        step = strengthen if positive else weaken
        return await self.transitions.modify(transition_id, lambda t: step(t, policy.learning))
