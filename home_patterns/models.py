"""Data models for the behavioural pattern engine."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


def ensure_utc(ts: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


# Event types
ACTION = "action"
STATE_CHANGE = "state_change"

# Probability hint directions
INCREASE = "increase"
DECREASE = "decrease"

# Candidate lifecycle
SCHEDULED = "scheduled"
EXECUTED = "executed"
SKIPPED = "skipped"
EXPIRED = "expired"

# Pattern classification
UNKNOWN = "unknown"
FLEXIBLE = "flexible"
DAILY = "daily"
WEEKLY = "weekly"

FEEDBACK_TYPES = ("yes", "no", "later")


@dataclass
class ActionContext:
    time_bucket: str | None = None
    day_type: str | None = None
    location: str | None = None
    present_people: list[str] = field(default_factory=list)
    state_signals: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "time_bucket": self.time_bucket,
            "day_type": self.day_type,
            "location": self.location,
            "present_people": list(self.present_people),
            "state_signals": dict(self.state_signals),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ActionContext:
        data = data or {}
        return cls(
            time_bucket=data.get("time_bucket"),
            day_type=data.get("day_type"),
            location=data.get("location"),
            present_people=list(data.get("present_people") or []),
            state_signals=dict(data.get("state_signals") or {}),
        )


@dataclass(frozen=True)
class SignalValue:
    """A sensor reading, tagged with its kind: bool, number or text."""

    kind: str
    value: bool | float | str

    @classmethod
    def parse(cls, raw: Any) -> SignalValue:
        """Non-finite numbers ("nan", "inf") are kept as unrecognised text."""
        if isinstance(raw, SignalValue):
            return raw
        if isinstance(raw, bool):
            return cls("bool", raw)
        text = "" if raw is None else str(raw).strip()
        try:
            number = float(raw) if isinstance(raw, (int, float)) else float(text)
        except ValueError:
            return cls("text", text.lower())
        if not math.isfinite(number):
            return cls("text", text.lower())
        return cls("number", number)

    def to_json(self) -> Any:
        return self.value


@dataclass
class SignalState:
    sensor_id: str
    value: SignalValue
    importance: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sensor_id": self.sensor_id,
            "value": self.value.to_json(),
            "importance": self.importance,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SignalState:
        return cls(
            sensor_id=data["sensor_id"],
            value=SignalValue.parse(data.get("value")),
            importance=data.get("importance"),
        )


@dataclass
class ActionEvent:
    person_id: str = ""
    action_type: str = ""
    id: str = field(default_factory=_uuid)
    timestamp: datetime = field(default_factory=_now)
    event_type: str = ACTION
    context: ActionContext = field(default_factory=ActionContext)
    signal_states: list[SignalState] = field(default_factory=list)
    custom_data: dict[str, str] = field(default_factory=dict)
    context_key: str = ""  # filled in at ingestion

    # Optional hint that nudges a matched candidate's confidence
    probability_value: float | None = None
    probability_action: str | None = None

    created_at: datetime = field(default_factory=_now)

    def __post_init__(self) -> None:
        self.timestamp = ensure_utc(self.timestamp)
        if self.probability_value is not None and not 0.0 <= self.probability_value <= 1.0:
            raise ValueError(f"probability_value out of range: {self.probability_value}")
        if self.probability_action not in (None, INCREASE, DECREASE):
            raise ValueError(f"unknown probability_action: {self.probability_action}")

    @property
    def is_state_change(self) -> bool:
        return self.event_type == STATE_CHANGE

    @property
    def has_probability_hint(self) -> bool:
        return self.probability_value is not None and self.probability_action is not None


@dataclass
class ActionTransition:
    person_id: str = ""
    from_action: str = ""
    to_action: str = ""
    context_key: str = ""
    id: str = field(default_factory=_uuid)
    confidence: float = 0.5
    observation_count: int = 1
    average_delay_seconds: float | None = None
    last_observed_at: datetime = field(default_factory=_now)
    created_at: datetime = field(default_factory=_now)
    version: int = 1


@dataclass
class SignalProfileEntry:
    weight: float
    normalized_value: float
    kind: str = "number"
    reference: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "weight": self.weight,
            "normalized_value": self.normalized_value,
            "kind": self.kind,
            "reference": self.reference,
        }


@dataclass
class SignalProfile:
    entries: dict[str, SignalProfileEntry] = field(default_factory=dict)
    sample_count: int = 0
    last_updated: datetime | None = None

    def __bool__(self) -> bool:
        return bool(self.entries)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": {k: e.to_dict() for k, e in self.entries.items()},
            "sample_count": self.sample_count,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SignalProfile | None:
        if not data:
            return None
        last = data.get("last_updated")
        return cls(
            entries={k: SignalProfileEntry(**e) for k, e in data.get("entries", {}).items()},
            sample_count=data.get("sample_count", 0),
            last_updated=datetime.fromisoformat(last) if last else None,
        )


@dataclass
class ReminderCandidate:
    person_id: str = ""
    suggested_action: str = ""
    check_at: datetime = field(default_factory=_now)
    id: str = field(default_factory=_uuid)
    confidence: float = 0.5
    status: str = SCHEDULED
    occurrence: str | None = None
    source_event_id: str | None = None
    transition_id: str | None = None
    routine_reminder_id: str | None = None
    custom_data: dict[str, str] = field(default_factory=dict)
    context: ActionContext = field(default_factory=ActionContext)
    signal_profile: SignalProfile | None = None

    # Evidence and pattern inference
    time_window_center_minutes: float | None = None
    evidence_count: int = 0
    observed_days: list[str] = field(default_factory=list)  # ISO dates, sorted
    day_of_week_histogram: list[int] = field(default_factory=lambda: [0] * 7)  # Monday=0
    time_bucket_histogram: dict[str, int] = field(default_factory=dict)
    day_type_histogram: dict[str, int] = field(default_factory=dict)
    pattern_status: str = UNKNOWN
    inferred_weekday: int | None = None

    # Set when the candidate leaves the scheduled state
    processed_at: datetime | None = None
    decision_reason: str | None = None

    created_at: datetime = field(default_factory=_now)
    version: int = 1

    @property
    def is_routine_scoped(self) -> bool:
        return self.routine_reminder_id is not None

    def is_due(self, now: datetime) -> bool:
        return self.status == SCHEDULED and self.check_at <= ensure_utc(now)


@dataclass
class Routine:
    person_id: str = ""
    intent_type: str = ""
    id: str = field(default_factory=_uuid)
    observation_window_minutes: int = 45
    last_intent_at: datetime | None = None
    window_start: datetime | None = None
    window_end: datetime | None = None
    active_bucket: str | None = None
    created_at: datetime = field(default_factory=_now)
    version: int = 1

    def is_observation_window_open(self, now: datetime) -> bool:
        if self.window_start is None or self.window_end is None:
            return False
        return self.window_start <= ensure_utc(now) <= self.window_end

    def close_window(self) -> None:
        self.window_start = None
        self.window_end = None
        self.active_bucket = None


@dataclass
class DelayEvidence:
    delay_seconds: float
    observed_at: datetime
    is_outlier: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "delay_seconds": self.delay_seconds,
            "observed_at": self.observed_at.isoformat(),
            "is_outlier": self.is_outlier,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DelayEvidence:
        return cls(
            delay_seconds=data["delay_seconds"],
            observed_at=datetime.fromisoformat(data["observed_at"]),
            is_outlier=bool(data.get("is_outlier", False)),
        )


@dataclass
class RoutineReminder:
    routine_id: str = ""
    person_id: str = ""
    suggested_action: str = ""
    bucket: str = ""
    id: str = field(default_factory=_uuid)
    confidence: float = 0.5
    observation_count: int = 1
    delay_evidence: list[DelayEvidence] = field(default_factory=list)
    median_delay_seconds: float | None = None
    last_observed_at: datetime | None = None
    custom_data: dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now)
    version: int = 1


@dataclass
class ReminderCooldown:
    person_id: str = ""
    action_type: str = ""
    expires_at: datetime = field(default_factory=_now)
    id: str = field(default_factory=_uuid)
    reason: str | None = None
    created_at: datetime = field(default_factory=_now)
    version: int = 1

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > ensure_utc(now)


@dataclass
class UserReminderPreferences:
    person_id: str = ""
    enabled: bool = True
    default_style: str = "ask"  # ask | suggest | silent
    allow_auto_execute: bool = False
    id: str = field(default_factory=_uuid)
    version: int = 1


@dataclass
class ConfigurationEntry:
    category: str = ""
    key: str = ""
    value: str = ""
    description: str | None = None
    id: str = field(default_factory=_uuid)
    updated_at: datetime = field(default_factory=_now)
    version: int = 1


@dataclass
class ReminderDecision:
    should_speak: bool
    reason: str
    confidence: float = 0.0
    execution_action: str | None = None  # suggest | ask | execute
    phrase: str | None = None


@dataclass
class IngestResult:
    event_id: str
    related_reminder_id: str | None = None
    scheduled_candidate_ids: list[str] = field(default_factory=list)
    transition_id: str | None = None
    routine_id: str | None = None
    routine_reminder_id: str | None = None
