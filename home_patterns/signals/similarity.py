"""Compares an event's signal profile with a candidate's learned baseline."""

from __future__ import annotations

import math
from datetime import datetime

import numpy as np

from home_patterns.models import SignalProfile, SignalProfileEntry


def sensor_similarity(reference: SignalProfileEntry, observed: SignalProfileEntry | None) -> float:
    """Per-sensor score in [0, 1]. Missing or non-finite readings score 0."""
    if observed is None:
        return 0.0
    if not (math.isfinite(reference.normalized_value) and math.isfinite(observed.normalized_value)):
        return 0.0
    if reference.kind == "text" or observed.kind == "text":
        if reference.reference is None or observed.reference is None:
            return 0.0
        return 1.0 if reference.reference == observed.reference else 0.0
    if reference.kind == "bool" or observed.kind == "bool":
        same_side = (reference.normalized_value >= 0.5) == (observed.normalized_value >= 0.5)
        return 1.0 if same_side else 0.0
    return float(np.clip(1.0 - abs(reference.normalized_value - observed.normalized_value), 0.0, 1.0))


class SignalSimilarityEvaluator:
    def similarity(self, baseline: SignalProfile | None, event_profile: SignalProfile) -> float:
        """Weight-normalized mean of per-sensor similarity over the baseline's sensors.

        Sensors the event does not report count as 0. Result is in [0, 1].
        """
        if not baseline:
            return 0.0
        weights = np.array([e.weight for e in baseline.entries.values()], dtype=float)
        scores = np.array(
            [sensor_similarity(ref, event_profile.entries.get(sensor_id))
             for sensor_id, ref in baseline.entries.items()],
            dtype=float,
        )
        total = weights.sum()
        if not np.isfinite(total) or total <= 0:
            return float(scores.mean())
        return float(np.clip(np.dot(weights, scores) / total, 0.0, 1.0))

    def update_baseline(
        self,
        baseline: SignalProfile | None,
        event_profile: SignalProfile,
        alpha: float,
        limit: int,
        at: datetime | None = None,
    ) -> SignalProfile | None:
        """EMA-blend an accepted event into the baseline. Seeds it on cold start."""
        if not event_profile and not baseline:
            return baseline
        if not baseline:
            return SignalProfile(
                entries={
                    k: SignalProfileEntry(**e.to_dict())
                    for k, e in event_profile.entries.items()
                    if math.isfinite(e.normalized_value)
                },
                sample_count=1,
                last_updated=at,
            )

        entries: dict[str, SignalProfileEntry] = {}
        for sensor_id in set(baseline.entries) | set(event_profile.entries):
            old = baseline.entries.get(sensor_id)
            new = event_profile.entries.get(sensor_id)
            if new is not None and not math.isfinite(new.normalized_value):
                new = None
            # A reading that changed kind (e.g. a thermometer reporting "unavailable") is not blended
            if old is not None and new is not None and new.kind != old.kind:
                new = None
            if old is None and new is None:
                continue
            if old is None:
                entries[sensor_id] = SignalProfileEntry(
                    weight=alpha * new.weight,
                    normalized_value=new.normalized_value,
                    kind=new.kind,
                    reference=new.reference,
                )
            elif new is None:
                entries[sensor_id] = SignalProfileEntry(
                    weight=(1 - alpha) * old.weight,
                    normalized_value=old.normalized_value,
                    kind=old.kind,
                    reference=old.reference,
                )
            else:
                entries[sensor_id] = SignalProfileEntry(
                    weight=old.weight + alpha * (new.weight - old.weight),
                    normalized_value=old.normalized_value + alpha * (new.normalized_value - old.normalized_value),
                    kind=old.kind,
                    reference=old.reference or new.reference,
                )

        kept = sorted(entries.items(), key=lambda kv: (-kv[1].weight, kv[0]))[: max(limit, 1)]
        total = sum(e.weight for _, e in kept)
        if total > 0:
            for _, entry in kept:
                entry.weight /= total
        return SignalProfile(
            entries=dict(kept),
            sample_count=baseline.sample_count + 1,
            last_updated=at,
        )
