"""Knobs for sensor-signal selection and similarity gating."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from home_patterns.policy.settings import load_settings
from home_patterns.storage.repositories import ConfigurationRepository


@dataclass(frozen=True)
class SignalPolicy:
    selection_enabled: bool = True
    selection_limit: int = 10
    similarity_threshold: float = 0.70
    profile_update_alpha: float = 0.10


def build_signal_policy(settings: dict[str, dict[str, Any]]) -> SignalPolicy:
    cfg = settings["MatchingPolicy"]
    limit = max(0, cfg["SignalSelectionLimit"])
    return SignalPolicy(
        selection_enabled=cfg["SignalSelectionEnabled"] and limit > 0,
        selection_limit=limit,
        similarity_threshold=min(1.0, max(0.0, cfg["SignalSimilarityThreshold"])),
        profile_update_alpha=min(1.0, max(0.0, cfg["SignalProfileUpdateAlpha"])),
    )


class SignalPolicyService:
    """Reads the signal knobs straight from configuration.

    Ingestion takes the same values from ``PolicySnapshot.signals``; this
    service is for callers that need the current signal policy outside an
    ingestion.
    """

    def __init__(self, config_repo: ConfigurationRepository | None = None) -> None:
        self.config_repo = config_repo

    async def get_signal_policy(self) -> SignalPolicy:
        return build_signal_policy(await load_settings(self.config_repo))
