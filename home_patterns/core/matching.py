"""Finds the one existing reminder candidate an observed action reinforces.

Matching runs three gates in order: configurable hard filters on the
candidate's stored context, a wrap-aware time-of-day gate against the
candidate's time-window centre, and a soft signal-similarity gate against
the candidate's learned baseline. Among survivors the closest in time wins,
ties going to the most recently scheduled candidate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from home_patterns.core.time_buckets import circular_difference, local_time, minute_of_day
from home_patterns.models import ActionEvent, ReminderCandidate, SignalProfile
from home_patterns.policy.matching_policy import MatchingCriteria
from home_patterns.policy.snapshot import PolicySnapshot
from home_patterns.signals.selector import SignalSelector
from home_patterns.signals.similarity import SignalSimilarityEvaluator
from home_patterns.storage.repositories import ReminderCandidateRepository

logger = logging.getLogger(__name__)


@dataclass
class MatchOutcome:
    candidate: ReminderCandidate
    offset_minutes: float
    similarity: float | None
    event_profile: SignalProfile


def passes_hard_filters(
    event: ActionEvent, candidate: ReminderCandidate, criteria: MatchingCriteria,
) -> bool:
    observed, stored = event.context, candidate.context
    if criteria.match_by_action_type and candidate.suggested_action != event.action_type:
        return False
    if criteria.match_by_day_type and stored.day_type != observed.day_type:
        return False
    if criteria.match_by_people_present and set(stored.present_people) != set(observed.present_people):
        return False
    if criteria.match_by_state_signals and stored.state_signals != observed.state_signals:
        return False
    if criteria.match_by_time_bucket and stored.time_bucket != observed.time_bucket:
        return False
    if criteria.match_by_location and stored.location != observed.location:
        return False
    return True


def time_offset_minutes(
    event: ActionEvent, candidate: ReminderCandidate, policy: PolicySnapshot,
) -> float:
    """Absolute time-of-day distance, wrapping at midnight."""
    observed = minute_of_day(local_time(event.timestamp, policy.time_buckets))
    center = candidate.time_window_center_minutes
    if center is None:
        center = minute_of_day(local_time(candidate.check_at, policy.time_buckets))
    return abs(circular_difference(observed, center))


class MatchingRemindersService:
    def __init__(
        self,
        candidates: ReminderCandidateRepository,
        selector: SignalSelector | None = None,
        evaluator: SignalSimilarityEvaluator | None = None,
    ) -> None:
        self.candidates = candidates
        self.selector = selector or SignalSelector()
        self.evaluator = evaluator or SignalSimilarityEvaluator()

    async def find_best_match(
        self, event: ActionEvent, policy: PolicySnapshot,
    ) -> MatchOutcome | None:
        """Best scheduled candidate for ``event``, or None. Never writes."""
        if event.is_state_change:
            return None

        event_profile = self.selector.select(event.signal_states, policy.signals, at=event.timestamp)
        best: MatchOutcome | None = None
        for candidate in await self.candidates.get_scheduled_for_person(event.person_id):
            if not passes_hard_filters(event, candidate, policy.matching):
                continue

            offset = time_offset_minutes(event, candidate, policy)
            if offset > policy.matching.time_offset_minutes:
                logger.debug(
                    "Candidate %s outside time window (%.1f > %d min)",
                    candidate.id, offset, policy.matching.time_offset_minutes,
                )
                continue

            similarity = None
            if policy.signals.selection_enabled and event_profile and candidate.signal_profile:
                similarity = self.evaluator.similarity(candidate.signal_profile, event_profile)
                if not similarity >= policy.signals.similarity_threshold:
                    logger.debug(
                        "Candidate %s rejected on signals (%.2f < %.2f)",
                        candidate.id, similarity, policy.signals.similarity_threshold,
                    )
                    continue

            if best is None or (offset, -candidate.check_at.timestamp()) < (
                best.offset_minutes, -best.candidate.check_at.timestamp()
            ):
                best = MatchOutcome(candidate, offset, similarity, event_profile)

        return best

    async def find_duplicate(
        self, event: ActionEvent, policy: PolicySnapshot,
    ) -> ReminderCandidate | None:
        """A scheduled candidate for the same action inside the time window, whatever the other gates say."""
        for candidate in await self.candidates.get_scheduled_for_person(event.person_id):
            if candidate.suggested_action != event.action_type:
                continue
            if time_offset_minutes(event, candidate, policy) <= policy.matching.time_offset_minutes:
                return candidate
        return None
