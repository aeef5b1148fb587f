"""Per-person, per-action suppression after a declined reminder."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from home_patterns.models import ReminderCooldown, _now, ensure_utc
from home_patterns.policy.snapshot import PolicySnapshot
from home_patterns.storage.repositories import CooldownRepository

logger = logging.getLogger(__name__)


class CooldownService:
    def __init__(self, cooldowns: CooldownRepository) -> None:
        self.cooldowns = cooldowns

    async def is_cooldown_active(
        self, person_id: str, action_type: str, now: datetime | None = None,
    ) -> bool:
        latest = await self.cooldowns.get_latest(person_id, action_type)
        return latest is not None and latest.is_active(now or _now())

    async def record_negative_feedback(
        self,
        person_id: str,
        action_type: str,
        policy: PolicySnapshot,
        now: datetime | None = None,
        reason: str = "User declined reminder",
    ) -> ReminderCooldown:
        """Start a cooldown, or push out the end of one that is still running."""
        now = ensure_utc(now or _now())
        until = now + timedelta(hours=policy.reminders.cooldown_hours)

        latest = await self.cooldowns.get_latest(person_id, action_type)
        if latest is not None and latest.is_active(now):
            def _extend(cooldown: ReminderCooldown) -> ReminderCooldown:
                cooldown.expires_at = max(cooldown.expires_at, until)
                cooldown.reason = reason
                return cooldown

            cooldown = await self.cooldowns.modify(latest.id, _extend)
        else:
            cooldown = await self.cooldowns.add(ReminderCooldown(
                person_id=person_id, action_type=action_type, expires_at=until, reason=reason,
            ))
        logger.info("Cooldown on %s for %s until %s", action_type, person_id,
                    cooldown.expires_at.isoformat())
        return cooldown
