"""Immutable policy snapshot handed to every component of one ingestion.

Components never read configuration on their own; the pipeline loads one
snapshot per event (or feedback call) and threads it through, so a single
event is always processed under a single consistent set of knobs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from home_patterns.policy.matching_policy import MatchingCriteria, build_matching_criteria
from home_patterns.policy.settings import load_settings, resolve_settings
from home_patterns.policy.signal_policy import SignalPolicy, build_signal_policy
from home_patterns.storage.repositories import ConfigurationRepository


@dataclass(frozen=True)
class LearningPolicy:
    session_window_minutes: int = 30
    confidence_alpha: float = 0.1
    default_transition_confidence: float = 0.5
    delay_beta: float = 0.2
    context_bucket_format: str = "{dayType}*{timeBucket}*{location}"


@dataclass(frozen=True)
class ReminderPolicy:
    default_confidence: float = 0.5
    confidence_step: float = 0.1
    minimum_occurrences: int = 1
    minimum_confidence: float = 0.4
    time_window_alpha: float = 0.1
    min_daily_evidence: int = 3
    min_weekly_evidence: int = 3
    cooldown_hours: float = 24.0
    execute_auto_threshold: float = 0.95


@dataclass(frozen=True)
class RoutinePolicy:
    observation_window_minutes: int = 45
    default_probability: float = 0.5
    increase_step: float = 0.1
    outlier_min_tolerance_seconds: float = 300.0
    outlier_mad_multiplier: float = 3.0
    outlier_relative_tolerance: float = 1.0


@dataclass(frozen=True)
class TimeBucketPolicy:
    local_offset_minutes: int = 0
    morning_start_hour: int = 5
    afternoon_start_hour: int = 12
    evening_start_hour: int = 17
    night_start_hour: int = 22


@dataclass(frozen=True)
class LLMPolicy:
    enabled: bool = False
    model: str = "claude-sonnet-4-6"
    temperature: float = 0.2


@dataclass(frozen=True)
class PolicySnapshot:
    learning: LearningPolicy = field(default_factory=LearningPolicy)
    reminders: ReminderPolicy = field(default_factory=ReminderPolicy)
    matching: MatchingCriteria = field(default_factory=MatchingCriteria)
    signals: SignalPolicy = field(default_factory=SignalPolicy)
    routines: RoutinePolicy = field(default_factory=RoutinePolicy)
    time_buckets: TimeBucketPolicy = field(default_factory=TimeBucketPolicy)
    llm: LLMPolicy = field(default_factory=LLMPolicy)


def build_policy(settings: dict[str, dict[str, Any]]) -> PolicySnapshot:
    learning = settings["Learning"]
    policy = settings["Policy"]
    routine = settings["Routine"]
    buckets = settings["TimeBuckets"]
    llm = settings["LLM"]
    return PolicySnapshot(
        learning=LearningPolicy(
            session_window_minutes=learning["SessionWindowMinutes"],
            confidence_alpha=learning["ConfidenceAlpha"],
            default_transition_confidence=learning["DefaultTransitionConfidence"],
            delay_beta=learning["DelayBeta"],
            context_bucket_format=settings["ContextBucket"]["Format"],
        ),
        reminders=ReminderPolicy(
            default_confidence=policy["DefaultReminderConfidence"],
            confidence_step=policy["ConfidenceStepValue"],
            minimum_occurrences=policy["MinimumOccurrences"],
            minimum_confidence=policy["MinimumConfidence"],
            time_window_alpha=policy["TimeWindowAlpha"],
            min_daily_evidence=policy["MinDailyEvidence"],
            min_weekly_evidence=policy["MinWeeklyEvidence"],
            cooldown_hours=policy["CooldownHours"],
            execute_auto_threshold=policy["ExecuteAutoThreshold"],
        ),
        matching=build_matching_criteria(settings),
        signals=build_signal_policy(settings),
        routines=RoutinePolicy(
            observation_window_minutes=routine["RoutineObservationWindowMinutes"],
            default_probability=routine["DefaultRoutineProbability"],
            increase_step=routine["ProbabilityIncreaseStep"],
            outlier_min_tolerance_seconds=routine["OutlierMinToleranceSeconds"],
            outlier_mad_multiplier=routine["OutlierMadMultiplier"],
            outlier_relative_tolerance=routine["OutlierRelativeTolerance"],
        ),
        time_buckets=TimeBucketPolicy(
            local_offset_minutes=buckets["LocalTimeOffsetMinutes"],
            morning_start_hour=buckets["MorningStartHour"],
            afternoon_start_hour=buckets["AfternoonStartHour"],
            evening_start_hour=buckets["EveningStartHour"],
            night_start_hour=buckets["NightStartHour"],
        ),
        llm=LLMPolicy(
            enabled=llm["Enabled"],
            model=llm["Model"],
            temperature=llm["Temperature"],
        ),
    )


def default_policy() -> PolicySnapshot:
    return build_policy(resolve_settings([]))


async def load_policy(config_repo: ConfigurationRepository | None) -> PolicySnapshot:
    return build_policy(await load_settings(config_repo))
