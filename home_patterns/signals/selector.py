"""Picks the most informative sensor readings of an event and normalizes them."""

from __future__ import annotations

import logging
import math
from datetime import datetime

import numpy as np

from home_patterns.config import (
    DEFAULT_SIGNAL_IMPORTANCE,
    DEFAULT_SIGNAL_RANGE,
    SIGNAL_IMPORTANCE,
    SIGNAL_RANGES,
    SIGNAL_TEXT_MAPPINGS,
    UNKNOWN_TEXT_VALUE,
)
from home_patterns.models import SignalProfile, SignalProfileEntry, SignalState, SignalValue
from home_patterns.policy.signal_policy import SignalPolicy

logger = logging.getLogger(__name__)


def sensor_type(sensor_id: str) -> str:
    """``sensor.presence.kitchen`` -> ``presence``; ids without dots are their own type."""
    parts = sensor_id.strip().lower().split(".")
    return parts[1] if len(parts) >= 2 and parts[1] else parts[0]


def default_importance(sensor_id: str) -> float:
    return SIGNAL_IMPORTANCE.get(sensor_type(sensor_id), DEFAULT_SIGNAL_IMPORTANCE)


def normalize(sensor_id: str, value: SignalValue) -> tuple[float, str | None]:
    """Map a reading onto [0, 1]. Text readings also keep their raw value as reference."""
    if value.kind == "bool":
        return (1.0 if value.value else 0.0), None
    if value.kind == "number":
        lo, hi = SIGNAL_RANGES.get(sensor_type(sensor_id), DEFAULT_SIGNAL_RANGE)
        number = float(value.value)
        if not math.isfinite(number):
            logger.debug("Non-finite reading %s=%r, treating as unknown", sensor_id, value.value)
            return UNKNOWN_TEXT_VALUE, str(value.value).lower()
        if hi <= lo:
            return 0.0, None
        return float(np.clip((number - lo) / (hi - lo), 0.0, 1.0)), None

    text = str(value.value)
    mapped = SIGNAL_TEXT_MAPPINGS.get(sensor_type(sensor_id), {}).get(text)
    if mapped is None:
        logger.debug("No mapping for %s=%r, treating as unknown", sensor_id, text)
        mapped = UNKNOWN_TEXT_VALUE
    return mapped, text


class SignalSelector:
    def select(
        self, states: list[SignalState], policy: SignalPolicy, at: datetime | None = None,
    ) -> SignalProfile:
        """Top-K readings by importance, weights normalized to sum to 1.

        An explicit importance hint on a reading wins over the sensor-type default.
        Empty when selection is disabled or the event carries no readings.
        """
        if not policy.selection_enabled or not states:
            return SignalProfile(last_updated=at)

        latest: dict[str, SignalState] = {}
        for state in states:
            if state.sensor_id:
                latest[state.sensor_id] = state

        scored = []
        for sensor_id, state in latest.items():
            if state.importance is not None and math.isfinite(state.importance):
                importance = float(np.clip(state.importance, 0.0, 1.0))
            else:
                importance = default_importance(sensor_id)
            scored.append((importance, sensor_id, state))
        scored.sort(key=lambda s: (-s[0], s[1]))
        top = scored[: policy.selection_limit]
        if not top:
            return SignalProfile(last_updated=at)

        weights = np.array([imp for imp, _, _ in top], dtype=float)
        total = weights.sum()
        weights = weights / total if total > 0 else np.full(len(top), 1.0 / len(top))

        entries = {}
        for weight, (_, sensor_id, state) in zip(weights, top):
            normalized, reference = normalize(sensor_id, state.value)
            entries[sensor_id] = SignalProfileEntry(
                weight=float(weight),
                normalized_value=normalized,
                kind="text" if reference is not None else state.value.kind,
                reference=reference,
            )
        return SignalProfile(entries=entries, sample_count=1, last_updated=at)
