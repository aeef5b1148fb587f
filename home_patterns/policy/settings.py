"""Resolution of stored configuration overrides against PATTERN_CONFIG defaults."""

from __future__ import annotations

import logging
from typing import Any

from home_patterns.config import PATTERN_CONFIG
from home_patterns.models import ConfigurationEntry
from home_patterns.storage.repositories import ConfigurationRepository

logger = logging.getLogger(__name__)

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def coerce(raw: str, default: Any) -> Any:
    """Parse a stored text value into the type of its default."""
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(f"not a boolean: {raw!r}")
    if isinstance(default, int):
        number = float(raw)
        if not number.is_integer():
            raise ValueError(f"not a whole number: {raw!r}")
        return int(number)
    if isinstance(default, float):
        return float(raw)
    return raw


def resolve_settings(entries: list[ConfigurationEntry]) -> dict[str, dict[str, Any]]:
    """Overlay stored entries on the defaults. Unknown keys are kept as text."""
    settings = {category: dict(values) for category, values in PATTERN_CONFIG.items()}
    for entry in entries:
        category = settings.setdefault(entry.category, {})
        default = category.get(entry.key)
        if default is None:
            category[entry.key] = entry.value
            continue
        try:
            category[entry.key] = coerce(entry.value, default)
        except ValueError:
            logger.warning(
                "Ignoring unparseable setting %s.%s=%r, using default %r",
                entry.category, entry.key, entry.value, default,
            )
    return settings


async def load_settings(config_repo: ConfigurationRepository | None) -> dict[str, dict[str, Any]]:
    if config_repo is None:
        return resolve_settings([])
    return resolve_settings(await config_repo.get_all())
