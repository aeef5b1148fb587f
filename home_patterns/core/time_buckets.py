"""Time-of-day helpers: named buckets and wrap-aware minute arithmetic."""

from __future__ import annotations

from datetime import datetime, timedelta

from home_patterns.models import ensure_utc
from home_patterns.policy.snapshot import TimeBucketPolicy

MINUTES_PER_DAY = 24 * 60

MORNING = "morning"
AFTERNOON = "afternoon"
EVENING = "evening"
NIGHT = "night"


def local_time(ts: datetime, policy: TimeBucketPolicy | None = None) -> datetime:
    offset = (policy or TimeBucketPolicy()).local_offset_minutes
    return ensure_utc(ts) + timedelta(minutes=offset)


def minute_of_day(ts: datetime) -> float:
    return ts.hour * 60 + ts.minute + ts.second / 60


def select_time_bucket(ts: datetime, policy: TimeBucketPolicy | None = None) -> str:
    """Bucket a timestamp into morning/afternoon/evening/night (night wraps midnight)."""
    policy = policy or TimeBucketPolicy()
    return bucket_for_minute(minute_of_day(local_time(ts, policy)), policy)


def bucket_for_minute(minute: float, policy: TimeBucketPolicy | None = None) -> str:
    policy = policy or TimeBucketPolicy()
    hour = int(minute // 60) % 24
    if policy.morning_start_hour <= hour < policy.afternoon_start_hour:
        return MORNING
    if policy.afternoon_start_hour <= hour < policy.evening_start_hour:
        return AFTERNOON
    if policy.evening_start_hour <= hour < policy.night_start_hour:
        return EVENING
    return NIGHT


def circular_difference(a: float, b: float) -> float:
    """Signed shortest distance from ``b`` to ``a`` in minutes, in (-720, 720]."""
    diff = (a - b) % MINUTES_PER_DAY
    if diff > MINUTES_PER_DAY / 2:
        diff -= MINUTES_PER_DAY
    return diff


def circular_ema(center: float | None, sample: float, alpha: float) -> float:
    """Move ``center`` toward ``sample`` along the shorter way round the clock."""
    if center is None:
        return sample % MINUTES_PER_DAY
    return (center + alpha * circular_difference(sample, center)) % MINUTES_PER_DAY


def format_hhmm(minute: float) -> str:
    total = int(round(minute)) % MINUTES_PER_DAY
    return f"{total // 60:02d}:{total % 60:02d}"
