"""Per-aggregate repositories on top of SQLiteStore.

Every repository shares the same surface: ``add``, ``update`` (a
compare-and-swap on the ``version`` column), ``get_by_id``, paged
``get_filtered`` and ``modify``, which re-reads and re-applies a command
when a concurrent writer got there first.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Generic, TypeVar

from home_patterns.models import (
    SCHEDULED,
    ActionContext,
    ActionEvent,
    ActionTransition,
    ConfigurationEntry,
    DelayEvidence,
    ReminderCandidate,
    ReminderCooldown,
    Routine,
    RoutineReminder,
    SignalProfile,
    SignalState,
    UserReminderPreferences,
    _now,
)
from home_patterns.storage.sqlite_store import (
    ConcurrencyConflict,
    SQLiteStore,
    dumps,
    loads,
    ts_from_db,
    ts_to_db,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Repository(Generic[T]):
    table: str = ""
    date_column: str | None = None
    status_column: str | None = None
    person_column: str | None = "person_id"
    versioned: bool = True

    def __init__(self, store: SQLiteStore) -> None:
        self.store = store

    def to_row(self, entity: T) -> dict[str, Any]:
        raise NotImplementedError

    def from_row(self, row: dict[str, Any]) -> T:
        raise NotImplementedError

    async def add(self, entity: T) -> T:
        row = self.to_row(entity)
        cols = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        await self.store.db.execute(
            f"INSERT INTO {self.table} ({cols}) VALUES ({placeholders})",
            tuple(row.values()),
        )
        await self.store.db.commit()
        return entity

    async def update(self, entity: T) -> T:
        if not self.versioned:
            raise TypeError(f"{self.table} rows are append-only")
        row = self.to_row(entity)
        entity_id = row.pop("id")
        expected = row.pop("version")
        assignments = ", ".join(f"{col} = ?" for col in row)
        cur = await self.store.db.execute(
            f"UPDATE {self.table} SET {assignments}, version = version + 1 "
            "WHERE id = ? AND version = ?",
            (*row.values(), entity_id, expected),
        )
        if cur.rowcount == 0:
            raise ConcurrencyConflict(self.table, entity_id, expected)
        await self.store.db.commit()
        entity.version = expected + 1
        return entity

    async def get_by_id(self, entity_id: str) -> T | None:
        return await self._fetch_one(f"SELECT * FROM {self.table} WHERE id = ?", (entity_id,))

    async def modify(self, entity_id: str, command: Callable[[T], T], retries: int = 3) -> T:
        """Apply ``command`` to the freshest copy of an aggregate and persist it."""
        for attempt in range(retries):
            current = await self.get_by_id(entity_id)
            if current is None:
                raise LookupError(f"{self.table}:{entity_id} not found")
            try:
                return await self.update(command(current))
            except ConcurrencyConflict:
                if attempt == retries - 1:
                    raise
                logger.warning(
                    "Write conflict on %s:%s (attempt %d/%d), retrying...",
                    self.table, entity_id, attempt + 1, retries,
                )
        raise ConcurrencyConflict(self.table, entity_id, -1)  # retries < 1

    async def get_filtered(
        self,
        person_id: str | None = None,
        status: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[T], int]:
        """Return one page of matching rows, newest first, plus the total count."""
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")

        clauses: list[str] = []
        params: list[Any] = []
        if person_id is not None:
            if self.person_column is None:
                raise ValueError(f"{self.table} cannot be filtered by person")
            clauses.append(f"{self.person_column} = ?")
            params.append(person_id)
        if status is not None:
            if self.status_column is None:
                raise ValueError(f"{self.table} has no status")
            clauses.append(f"{self.status_column} = ?")
            params.append(status)
        if (date_from or date_to) and self.date_column is None:
            raise ValueError(f"{self.table} cannot be filtered by date")
        if date_from is not None:
            clauses.append(f"{self.date_column} >= ?")
            params.append(ts_to_db(date_from))
        if date_to is not None:
            clauses.append(f"{self.date_column} <= ?")
            params.append(ts_to_db(date_to))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        order = self.date_column or "id"

        async with self.store.db.execute(
            f"SELECT COUNT(*) AS cnt FROM {self.table}{where}", params
        ) as cur:
            row = await cur.fetchone()
            total = row["cnt"] if row else 0

        items = await self._fetch_all(
            f"SELECT * FROM {self.table}{where} ORDER BY {order} DESC LIMIT ? OFFSET ?",
            (*params, page_size, (page - 1) * page_size),
        )
        return items, total

    async def _fetch_one(self, sql: str, params: tuple | list = ()) -> T | None:
        async with self.store.db.execute(sql, params) as cur:
            row = await cur.fetchone()
            return self.from_row(dict(row)) if row else None

    async def _fetch_all(self, sql: str, params: tuple | list = ()) -> list[T]:
        async with self.store.db.execute(sql, params) as cur:
            return [self.from_row(dict(row)) async for row in cur]


# ── Events ──

class EventRepository(Repository[ActionEvent]):
    table = "events"
    date_column = "timestamp"
    versioned = False

    def to_row(self, event: ActionEvent) -> dict[str, Any]:
        return {
            "id": event.id,
            "person_id": event.person_id,
            "action_type": event.action_type,
            "timestamp": ts_to_db(event.timestamp),
            "event_type": event.event_type,
            "context_key": event.context_key,
            "context": dumps(event.context.to_dict()),
            "signal_states": dumps([s.to_dict() for s in event.signal_states]),
            "custom_data": dumps(event.custom_data),
            "probability_value": event.probability_value,
            "probability_action": event.probability_action,
            "created_at": ts_to_db(event.created_at),
        }

    def from_row(self, row: dict[str, Any]) -> ActionEvent:
        return ActionEvent(
            id=row["id"],
            person_id=row["person_id"],
            action_type=row["action_type"],
            timestamp=ts_from_db(row["timestamp"]),
            event_type=row["event_type"],
            context_key=row["context_key"],
            context=ActionContext.from_dict(loads(row["context"])),
            signal_states=[SignalState.from_dict(s) for s in loads(row["signal_states"], [])],
            custom_data=loads(row["custom_data"], {}),
            probability_value=row["probability_value"],
            probability_action=row["probability_action"],
            created_at=ts_from_db(row["created_at"]),
        )

    async def get_last_in_bucket(
        self, person_id: str, context_key: str, since: datetime, until: datetime,
        exclude_id: str | None = None,
    ) -> ActionEvent | None:
        """Most recent event of a person in one context bucket inside [since, until]."""
        return await self._fetch_one(
            "SELECT * FROM events WHERE person_id = ? AND context_key = ? "
            "AND timestamp >= ? AND timestamp <= ? AND id != ? "
            "ORDER BY timestamp DESC, rowid DESC LIMIT 1",
            (person_id, context_key, ts_to_db(since), ts_to_db(until), exclude_id or ""),
        )


# ── Transitions ──

class TransitionRepository(Repository[ActionTransition]):
    table = "transitions"
    date_column = "last_observed_at"

    def to_row(self, t: ActionTransition) -> dict[str, Any]:
        return {
            "id": t.id,
            "person_id": t.person_id,
            "from_action": t.from_action,
            "to_action": t.to_action,
            "context_key": t.context_key,
            "confidence": t.confidence,
            "observation_count": t.observation_count,
            "average_delay_seconds": t.average_delay_seconds,
            "last_observed_at": ts_to_db(t.last_observed_at),
            "created_at": ts_to_db(t.created_at),
            "version": t.version,
        }

    def from_row(self, row: dict[str, Any]) -> ActionTransition:
        return ActionTransition(
            id=row["id"],
            person_id=row["person_id"],
            from_action=row["from_action"],
            to_action=row["to_action"],
            context_key=row["context_key"],
            confidence=row["confidence"],
            observation_count=row["observation_count"],
            average_delay_seconds=row["average_delay_seconds"],
            last_observed_at=ts_from_db(row["last_observed_at"]),
            created_at=ts_from_db(row["created_at"]),
            version=row["version"],
        )

    async def get_by_key(
        self, person_id: str, from_action: str, to_action: str, context_key: str,
    ) -> ActionTransition | None:
        return await self._fetch_one(
            "SELECT * FROM transitions WHERE person_id = ? AND from_action = ? "
            "AND to_action = ? AND context_key = ?",
            (person_id, from_action, to_action, context_key),
        )


# ── Reminder candidates ──

class ReminderCandidateRepository(Repository[ReminderCandidate]):
    table = "reminder_candidates"
    date_column = "check_at"
    status_column = "status"

    def to_row(self, c: ReminderCandidate) -> dict[str, Any]:
        return {
            "id": c.id,
            "person_id": c.person_id,
            "suggested_action": c.suggested_action,
            "check_at": ts_to_db(c.check_at),
            "confidence": c.confidence,
            "status": c.status,
            "occurrence": c.occurrence,
            "source_event_id": c.source_event_id,
            "transition_id": c.transition_id,
            "routine_reminder_id": c.routine_reminder_id,
            "custom_data": dumps(c.custom_data),
            "context": dumps(c.context.to_dict()),
            "signal_profile": dumps(c.signal_profile.to_dict()) if c.signal_profile else None,
            "time_window_center_minutes": c.time_window_center_minutes,
            "evidence_count": c.evidence_count,
            "observed_days": dumps(c.observed_days),
            "day_of_week_histogram": dumps(c.day_of_week_histogram),
            "time_bucket_histogram": dumps(c.time_bucket_histogram),
            "day_type_histogram": dumps(c.day_type_histogram),
            "pattern_status": c.pattern_status,
            "inferred_weekday": c.inferred_weekday,
            "processed_at": ts_to_db(c.processed_at),
            "decision_reason": c.decision_reason,
            "created_at": ts_to_db(c.created_at),
            "version": c.version,
        }

    def from_row(self, row: dict[str, Any]) -> ReminderCandidate:
        return ReminderCandidate(
            id=row["id"],
            person_id=row["person_id"],
            suggested_action=row["suggested_action"],
            check_at=ts_from_db(row["check_at"]),
            confidence=row["confidence"],
            status=row["status"],
            occurrence=row["occurrence"],
            source_event_id=row["source_event_id"],
            transition_id=row["transition_id"],
            routine_reminder_id=row["routine_reminder_id"],
            custom_data=loads(row["custom_data"], {}),
            context=ActionContext.from_dict(loads(row["context"])),
            signal_profile=SignalProfile.from_dict(loads(row["signal_profile"])),
            time_window_center_minutes=row["time_window_center_minutes"],
            evidence_count=row["evidence_count"],
            observed_days=loads(row["observed_days"], []),
            day_of_week_histogram=loads(row["day_of_week_histogram"], [0] * 7),
            time_bucket_histogram=loads(row["time_bucket_histogram"], {}),
            day_type_histogram=loads(row["day_type_histogram"], {}),
            pattern_status=row["pattern_status"],
            inferred_weekday=row["inferred_weekday"],
            processed_at=ts_from_db(row["processed_at"]),
            decision_reason=row["decision_reason"],
            created_at=ts_from_db(row["created_at"]),
            version=row["version"],
        )

    async def get_scheduled_for_person(self, person_id: str) -> list[ReminderCandidate]:
        return await self._fetch_all(
            "SELECT * FROM reminder_candidates WHERE person_id = ? AND status = ? "
            "ORDER BY check_at DESC",
            (person_id, SCHEDULED),
        )

    async def get_by_source_event_id(self, event_id: str) -> list[ReminderCandidate]:
        return await self._fetch_all(
            "SELECT * FROM reminder_candidates WHERE source_event_id = ? ORDER BY check_at",
            (event_id,),
        )

    async def get_by_routine_reminder_id(self, routine_reminder_id: str) -> ReminderCandidate | None:
        return await self._fetch_one(
            "SELECT * FROM reminder_candidates WHERE routine_reminder_id = ? "
            "ORDER BY created_at DESC LIMIT 1",
            (routine_reminder_id,),
        )


# ── Routines ──

class RoutineRepository(Repository[Routine]):
    table = "routines"
    date_column = "created_at"

    def to_row(self, r: Routine) -> dict[str, Any]:
        return {
            "id": r.id,
            "person_id": r.person_id,
            "intent_type": r.intent_type,
            "observation_window_minutes": r.observation_window_minutes,
            "last_intent_at": ts_to_db(r.last_intent_at),
            "window_start": ts_to_db(r.window_start),
            "window_end": ts_to_db(r.window_end),
            "active_bucket": r.active_bucket,
            "created_at": ts_to_db(r.created_at),
            "version": r.version,
        }

    def from_row(self, row: dict[str, Any]) -> Routine:
        return Routine(
            id=row["id"],
            person_id=row["person_id"],
            intent_type=row["intent_type"],
            observation_window_minutes=row["observation_window_minutes"],
            last_intent_at=ts_from_db(row["last_intent_at"]),
            window_start=ts_from_db(row["window_start"]),
            window_end=ts_from_db(row["window_end"]),
            active_bucket=row["active_bucket"],
            created_at=ts_from_db(row["created_at"]),
            version=row["version"],
        )

    async def get_by_person_and_intent(self, person_id: str, intent_type: str) -> Routine | None:
        return await self._fetch_one(
            "SELECT * FROM routines WHERE person_id = ? AND intent_type = ?",
            (person_id, intent_type),
        )

    async def get_open_for_person(self, person_id: str) -> list[Routine]:
        return await self._fetch_all(
            "SELECT * FROM routines WHERE person_id = ? AND window_start IS NOT NULL "
            "ORDER BY window_start DESC",
            (person_id,),
        )


class RoutineReminderRepository(Repository[RoutineReminder]):
    table = "routine_reminders"
    date_column = "created_at"

    def to_row(self, r: RoutineReminder) -> dict[str, Any]:
        return {
            "id": r.id,
            "routine_id": r.routine_id,
            "person_id": r.person_id,
            "suggested_action": r.suggested_action,
            "bucket": r.bucket,
            "confidence": r.confidence,
            "observation_count": r.observation_count,
            "delay_evidence": dumps([d.to_dict() for d in r.delay_evidence]),
            "median_delay_seconds": r.median_delay_seconds,
            "last_observed_at": ts_to_db(r.last_observed_at),
            "custom_data": dumps(r.custom_data),
            "created_at": ts_to_db(r.created_at),
            "version": r.version,
        }

    def from_row(self, row: dict[str, Any]) -> RoutineReminder:
        return RoutineReminder(
            id=row["id"],
            routine_id=row["routine_id"],
            person_id=row["person_id"],
            suggested_action=row["suggested_action"],
            bucket=row["bucket"],
            confidence=row["confidence"],
            observation_count=row["observation_count"],
            delay_evidence=[DelayEvidence.from_dict(d) for d in loads(row["delay_evidence"], [])],
            median_delay_seconds=row["median_delay_seconds"],
            last_observed_at=ts_from_db(row["last_observed_at"]),
            custom_data=loads(row["custom_data"], {}),
            created_at=ts_from_db(row["created_at"]),
            version=row["version"],
        )

    async def get_by_routine_and_bucket(self, routine_id: str, bucket: str) -> list[RoutineReminder]:
        return await self._fetch_all(
            "SELECT * FROM routine_reminders WHERE routine_id = ? AND bucket = ? "
            "ORDER BY confidence DESC",
            (routine_id, bucket),
        )

    async def get_by_routine_bucket_action(
        self, routine_id: str, bucket: str, action: str,
    ) -> RoutineReminder | None:
        return await self._fetch_one(
            "SELECT * FROM routine_reminders WHERE routine_id = ? AND bucket = ? "
            "AND suggested_action = ?",
            (routine_id, bucket, action),
        )

    async def get_by_routine(self, routine_id: str) -> list[RoutineReminder]:
        return await self._fetch_all(
            "SELECT * FROM routine_reminders WHERE routine_id = ? ORDER BY confidence DESC",
            (routine_id,),
        )


# ── Cooldowns ──

class CooldownRepository(Repository[ReminderCooldown]):
    table = "cooldowns"
    date_column = "expires_at"

    def to_row(self, c: ReminderCooldown) -> dict[str, Any]:
        return {
            "id": c.id,
            "person_id": c.person_id,
            "action_type": c.action_type,
            "expires_at": ts_to_db(c.expires_at),
            "reason": c.reason,
            "created_at": ts_to_db(c.created_at),
            "version": c.version,
        }

    def from_row(self, row: dict[str, Any]) -> ReminderCooldown:
        return ReminderCooldown(
            id=row["id"],
            person_id=row["person_id"],
            action_type=row["action_type"],
            expires_at=ts_from_db(row["expires_at"]),
            reason=row["reason"],
            created_at=ts_from_db(row["created_at"]),
            version=row["version"],
        )

    async def get_latest(self, person_id: str, action_type: str) -> ReminderCooldown | None:
        return await self._fetch_one(
            "SELECT * FROM cooldowns WHERE person_id = ? AND action_type = ? "
            "ORDER BY expires_at DESC LIMIT 1",
            (person_id, action_type),
        )


# ── Configuration and preferences ──

class ConfigurationRepository(Repository[ConfigurationEntry]):
    table = "configurations"
    date_column = "updated_at"
    person_column = None

    def to_row(self, e: ConfigurationEntry) -> dict[str, Any]:
        return {
            "id": e.id,
            "category": e.category,
            "key": e.key,
            "value": e.value,
            "description": e.description,
            "updated_at": ts_to_db(e.updated_at),
            "version": e.version,
        }

    def from_row(self, row: dict[str, Any]) -> ConfigurationEntry:
        return ConfigurationEntry(
            id=row["id"],
            category=row["category"],
            key=row["key"],
            value=row["value"],
            description=row["description"],
            updated_at=ts_from_db(row["updated_at"]),
            version=row["version"],
        )

    async def get_all(self) -> list[ConfigurationEntry]:
        return await self._fetch_all("SELECT * FROM configurations ORDER BY category, key")

    async def get_by_key(self, category: str, key: str) -> ConfigurationEntry | None:
        return await self._fetch_one(
            "SELECT * FROM configurations WHERE category = ? AND key = ?", (category, key),
        )

    async def set_value(
        self, category: str, key: str, value: Any, description: str | None = None,
    ) -> ConfigurationEntry:
        """Insert or overwrite one configuration value (stored as text)."""
        text = _config_text(value)
        existing = await self.get_by_key(category, key)
        if existing is None:
            return await self.add(ConfigurationEntry(
                category=category, key=key, value=text, description=description,
            ))

        def _apply(entry: ConfigurationEntry) -> ConfigurationEntry:
            entry.value = text
            entry.description = description or entry.description
            entry.updated_at = _now()
            return entry

        return await self.modify(existing.id, _apply)


def _config_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class PreferencesRepository(Repository[UserReminderPreferences]):
    table = "user_preferences"

    def to_row(self, p: UserReminderPreferences) -> dict[str, Any]:
        return {
            "id": p.id,
            "person_id": p.person_id,
            "enabled": int(p.enabled),
            "default_style": p.default_style,
            "allow_auto_execute": int(p.allow_auto_execute),
            "version": p.version,
        }

    def from_row(self, row: dict[str, Any]) -> UserReminderPreferences:
        return UserReminderPreferences(
            id=row["id"],
            person_id=row["person_id"],
            enabled=bool(row["enabled"]),
            default_style=row["default_style"],
            allow_auto_execute=bool(row["allow_auto_execute"]),
            version=row["version"],
        )

    async def get_by_person(self, person_id: str) -> UserReminderPreferences:
        """Stored preferences, or the defaults when the person has none."""
        prefs = await self._fetch_one(
            "SELECT * FROM user_preferences WHERE person_id = ?", (person_id,),
        )
        return prefs or UserReminderPreferences(person_id=person_id)

    async def save(self, prefs: UserReminderPreferences) -> UserReminderPreferences:
        existing = await self._fetch_one(
            "SELECT * FROM user_preferences WHERE person_id = ?", (prefs.person_id,),
        )
        if existing is None:
            return await self.add(prefs)
        prefs.id = existing.id
        prefs.version = existing.version
        return await self.update(prefs)
