"""Which hard criteria a reminder match must satisfy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from home_patterns.policy.settings import load_settings
from home_patterns.storage.repositories import ConfigurationRepository


@dataclass(frozen=True)
class MatchingCriteria:
    match_by_action_type: bool = True
    match_by_day_type: bool = False
    match_by_people_present: bool = False
    match_by_state_signals: bool = False
    match_by_time_bucket: bool = False
    match_by_location: bool = False
    time_offset_minutes: int = 30


def build_matching_criteria(settings: dict[str, dict[str, Any]]) -> MatchingCriteria:
    cfg = settings["MatchingPolicy"]
    return MatchingCriteria(
        match_by_action_type=cfg["MatchByActionType"],
        match_by_day_type=cfg["MatchByDayType"],
        match_by_people_present=cfg["MatchByPeoplePresent"],
        match_by_state_signals=cfg["MatchByStateSignals"],
        match_by_time_bucket=cfg["MatchByTimeBucket"],
        match_by_location=cfg["MatchByLocation"],
        time_offset_minutes=max(0, cfg["TimeOffsetMinutes"]),
    )


class MatchingPolicyService:
    """Reads the MatchingPolicy category into a MatchingCriteria value.

    Ingestion takes the same values from ``PolicySnapshot.matching``; this
    service answers for the current configuration outside an ingestion.
    """

    def __init__(self, config_repo: ConfigurationRepository | None = None) -> None:
        self.config_repo = config_repo

    async def get_matching_criteria(self) -> MatchingCriteria:
        return build_matching_criteria(await load_settings(self.config_repo))
