"""Evidence bookkeeping and recurrence classification for reminder candidates.

A candidate accumulates one piece of evidence per accepted occurrence: the
calendar day, weekday, time bucket and day type it happened on, plus a
circular moving average of its time of day. From that evidence the
candidate is classified as Unknown, Flexible, Weekly or Daily:

    evidence == 1                                  -> unknown
    >= MinDailyEvidence consecutive calendar days  -> daily
    a weekday seen >= MinWeeklyEvidence times
      across >= MinWeeklyEvidence distinct weeks   -> weekly (that weekday)
    evidence on >= 2 distinct days                 -> flexible

Daily and Weekly are sticky: later scattered evidence does not demote them.
"""

from __future__ import annotations

import calendar
from dataclasses import replace
from datetime import date, timedelta

from home_patterns.core.time_buckets import (
    bucket_for_minute,
    circular_ema,
    format_hhmm,
    local_time,
    minute_of_day,
    select_time_bucket,
)
from home_patterns.models import (
    DAILY,
    FLEXIBLE,
    UNKNOWN,
    WEEKLY,
    ActionEvent,
    ReminderCandidate,
)
from home_patterns.policy.snapshot import PolicySnapshot, ReminderPolicy


def _day_type(weekday: int) -> str:
    return "weekend" if weekday >= 5 else "weekday"


def record_evidence(
    candidate: ReminderCandidate, event: ActionEvent, policy: PolicySnapshot,
) -> ReminderCandidate:
    """Return ``candidate`` with one more accepted occurrence folded in."""
    local = local_time(event.timestamp, policy.time_buckets)
    weekday = local.weekday()

    days = set(candidate.observed_days)
    days.add(local.date().isoformat())

    dow = list(candidate.day_of_week_histogram) or [0] * 7
    dow[weekday] += 1

    bucket = event.context.time_bucket or select_time_bucket(event.timestamp, policy.time_buckets)
    buckets = dict(candidate.time_bucket_histogram)
    buckets[bucket] = buckets.get(bucket, 0) + 1

    day_type = event.context.day_type or _day_type(weekday)
    day_types = dict(candidate.day_type_histogram)
    day_types[day_type] = day_types.get(day_type, 0) + 1

    updated = replace(
        candidate,
        evidence_count=candidate.evidence_count + 1,
        observed_days=sorted(days),
        day_of_week_histogram=dow,
        time_bucket_histogram=buckets,
        day_type_histogram=day_types,
        time_window_center_minutes=circular_ema(
            candidate.time_window_center_minutes, minute_of_day(local),
            policy.reminders.time_window_alpha,
        ),
    )
    status, weekday_hint = infer_pattern(updated, policy.reminders)
    updated = replace(updated, pattern_status=status, inferred_weekday=weekday_hint)
    return replace(updated, occurrence=describe_occurrence(updated, policy))


def _longest_run(days: list[date]) -> int:
    longest = run = 0
    previous: date | None = None
    for day in days:
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day
    return longest


def _weekly_weekday(
    days: list[date], histogram: list[int], min_evidence: int,
) -> int | None:
    best: tuple[int, date] | None = None
    result = None
    for weekday in range(7):
        same_day = [d for d in days if d.weekday() == weekday]
        if not same_day or histogram[weekday] < min_evidence:
            continue
        weeks = {d.isocalendar()[:2] for d in same_day}
        if len(weeks) < min_evidence:
            continue
        rank = (histogram[weekday], max(same_day))
        if best is None or rank > best:
            best, result = rank, weekday
    return result


def infer_pattern(
    candidate: ReminderCandidate, policy: ReminderPolicy,
) -> tuple[str, int | None]:
    """Classify a candidate's recurrence. Returns (status, inferred weekday)."""
    if candidate.evidence_count <= 1:
        return UNKNOWN, None

    days = sorted(date.fromisoformat(d) for d in candidate.observed_days)
    if _longest_run(days) >= policy.min_daily_evidence:
        return DAILY, None
    if candidate.pattern_status == DAILY:
        return DAILY, None

    weekday = _weekly_weekday(days, candidate.day_of_week_histogram, policy.min_weekly_evidence)
    if weekday is not None:
        return WEEKLY, weekday
    if candidate.pattern_status == WEEKLY:
        return WEEKLY, candidate.inferred_weekday

    if len(days) >= 2:
        return FLEXIBLE, None
    return UNKNOWN, None


def describe_occurrence(candidate: ReminderCandidate, policy: PolicySnapshot) -> str:
    center = candidate.time_window_center_minutes or 0.0
    at = format_hhmm(center)
    status = candidate.pattern_status

    if status == DAILY:
        return f"Occurs daily at {at}"
    if status == WEEKLY and candidate.inferred_weekday is not None:
        return f"Occurs every {calendar.day_name[candidate.inferred_weekday]} at {at}"
    if status == FLEXIBLE:
        bucket = _most_common(candidate.time_bucket_histogram) or bucket_for_minute(
            center, policy.time_buckets,
        )
        text = f"Occurs around {at} in the {bucket} (flexible timing)"
        return text + _day_type_suffix(candidate.day_type_histogram)
    return f"Still learning, observed around {at}"


def _most_common(histogram: dict[str, int]) -> str | None:
    if not histogram:
        return None
    return max(histogram.items(), key=lambda kv: (kv[1], kv[0]))[0]


def _day_type_suffix(histogram: dict[str, int]) -> str:
    if len(histogram) != 1 or sum(histogram.values()) < 2:
        return ""
    only = next(iter(histogram))
    if only == "weekday":
        return " (weekdays only)"
    if only == "weekend":
        return " (weekends only)"
    return ""
