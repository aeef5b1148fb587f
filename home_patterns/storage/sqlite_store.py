"""SQLite storage for events, learned transitions, reminders and routines."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from home_patterns.config import DB_PATH
from home_patterns.models import ensure_utc

_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id                  TEXT PRIMARY KEY,
    person_id           TEXT NOT NULL,
    action_type         TEXT NOT NULL,
    timestamp           TEXT NOT NULL,
    event_type          TEXT NOT NULL,
    context_key         TEXT NOT NULL DEFAULT '',
    context             TEXT,
    signal_states       TEXT,
    custom_data         TEXT,
    probability_value   REAL,
    probability_action  TEXT,
    created_at          TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_person_key ON events(person_id, context_key, timestamp);

CREATE TABLE IF NOT EXISTS transitions (
    id                     TEXT PRIMARY KEY,
    person_id              TEXT NOT NULL,
    from_action            TEXT NOT NULL,
    to_action              TEXT NOT NULL,
    context_key            TEXT NOT NULL,
    confidence             REAL NOT NULL,
    observation_count      INTEGER NOT NULL,
    average_delay_seconds  REAL,
    last_observed_at       TEXT NOT NULL,
    created_at             TEXT NOT NULL,
    version                INTEGER NOT NULL DEFAULT 1,
    UNIQUE (person_id, from_action, to_action, context_key)
);

CREATE TABLE IF NOT EXISTS reminder_candidates (
    id                          TEXT PRIMARY KEY,
    person_id                   TEXT NOT NULL,
    suggested_action            TEXT NOT NULL,
    check_at                    TEXT NOT NULL,
    confidence                  REAL NOT NULL,
    status                      TEXT NOT NULL,
    occurrence                  TEXT,
    source_event_id             TEXT,
    transition_id               TEXT,
    routine_reminder_id         TEXT,
    custom_data                 TEXT,
    context                     TEXT,
    signal_profile              TEXT,
    time_window_center_minutes  REAL,
    evidence_count              INTEGER NOT NULL DEFAULT 0,
    observed_days               TEXT,
    day_of_week_histogram       TEXT,
    time_bucket_histogram       TEXT,
    day_type_histogram          TEXT,
    pattern_status              TEXT NOT NULL,
    inferred_weekday            INTEGER,
    processed_at                TEXT,
    decision_reason             TEXT,
    created_at                  TEXT NOT NULL,
    version                     INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_candidates_person ON reminder_candidates(person_id, status);
CREATE INDEX IF NOT EXISTS idx_candidates_source ON reminder_candidates(source_event_id);

CREATE TABLE IF NOT EXISTS routines (
    id                          TEXT PRIMARY KEY,
    person_id                   TEXT NOT NULL,
    intent_type                 TEXT NOT NULL,
    observation_window_minutes  INTEGER NOT NULL,
    last_intent_at              TEXT,
    window_start                TEXT,
    window_end                  TEXT,
    active_bucket               TEXT,
    created_at                  TEXT NOT NULL,
    version                     INTEGER NOT NULL DEFAULT 1,
    UNIQUE (person_id, intent_type)
);

CREATE TABLE IF NOT EXISTS routine_reminders (
    id                    TEXT PRIMARY KEY,
    routine_id            TEXT NOT NULL,
    person_id             TEXT NOT NULL,
    suggested_action      TEXT NOT NULL,
    bucket                TEXT NOT NULL,
    confidence            REAL NOT NULL,
    observation_count     INTEGER NOT NULL,
    delay_evidence        TEXT,
    median_delay_seconds  REAL,
    last_observed_at      TEXT,
    custom_data           TEXT,
    created_at            TEXT NOT NULL,
    version               INTEGER NOT NULL DEFAULT 1,
    UNIQUE (routine_id, bucket, suggested_action),
    FOREIGN KEY (routine_id) REFERENCES routines(id)
);

CREATE TABLE IF NOT EXISTS cooldowns (
    id           TEXT PRIMARY KEY,
    person_id    TEXT NOT NULL,
    action_type  TEXT NOT NULL,
    expires_at   TEXT NOT NULL,
    reason       TEXT,
    created_at   TEXT NOT NULL,
    version      INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_cooldowns_person_action ON cooldowns(person_id, action_type);

CREATE TABLE IF NOT EXISTS configurations (
    id           TEXT PRIMARY KEY,
    category     TEXT NOT NULL,
    key          TEXT NOT NULL,
    value        TEXT NOT NULL,
    description  TEXT,
    updated_at   TEXT NOT NULL,
    version      INTEGER NOT NULL DEFAULT 1,
    UNIQUE (category, key)
);

CREATE TABLE IF NOT EXISTS user_preferences (
    id                  TEXT PRIMARY KEY,
    person_id           TEXT NOT NULL UNIQUE,
    enabled             INTEGER NOT NULL DEFAULT 1,
    default_style       TEXT NOT NULL,
    allow_auto_execute  INTEGER NOT NULL DEFAULT 0,
    version             INTEGER NOT NULL DEFAULT 1
);
"""


class ConcurrencyConflict(Exception):
    """Raised when a versioned update finds the row changed underneath it."""

    def __init__(self, table: str, entity_id: str, expected_version: int) -> None:
        super().__init__(f"{table}:{entity_id} is no longer at version {expected_version}")
        self.table = table
        self.entity_id = entity_id
        self.expected_version = expected_version


class SQLiteStore:
    """Async SQLite connection holder shared by the repositories."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or DB_PATH
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "SQLiteStore not initialized, call initialize() first"
        return self._db


# ── Column codecs ──

def ts_to_db(value: datetime | None) -> str | None:
    """Fixed-width UTC ISO text so timestamps compare correctly as strings."""
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def ts_from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def dumps(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value)


def loads(value: str | None, default: Any = None) -> Any:
    if value is None:
        return default
    return json.loads(value)
