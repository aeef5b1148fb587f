"""Robust statistics over intent -> action delays.

A delay is an outlier when it sits further from the reference median than
the cutoff

    max(OutlierMinToleranceSeconds,
        OutlierMadMultiplier * 1.4826 * MAD,
        OutlierRelativeTolerance * median)

With fewer than three samples there is no robust centre yet, so a new delay
is judged against the earlier non-outlier delays. From three samples on,
every sample is re-tagged against the median and MAD of the whole set, which
makes the tags independent of arrival order. The reported median is taken
over the non-outlier delays.
"""

from __future__ import annotations

import numpy as np

from home_patterns.models import DelayEvidence
from home_patterns.policy.snapshot import RoutinePolicy

# Scales MAD to a standard-deviation estimate for normally distributed data
MAD_SCALE = 1.4826

MIN_SAMPLES_FOR_RETAG = 3


def _inlier_delays(evidence: list[DelayEvidence]) -> np.ndarray:
    """Non-outlier delays, or every delay when all are flagged."""
    inliers = np.array([e.delay_seconds for e in evidence if not e.is_outlier], dtype=float)
    if inliers.size == 0:
        inliers = np.array([e.delay_seconds for e in evidence], dtype=float)
    return inliers


def _centre_and_cutoff(delays: np.ndarray, policy: RoutinePolicy) -> tuple[float, float]:
    median = float(np.median(delays))
    mad = float(np.median(np.abs(delays - median)))
    cutoff = max(
        float(policy.outlier_min_tolerance_seconds),
        policy.outlier_mad_multiplier * MAD_SCALE * mad,
        policy.outlier_relative_tolerance * median,
    )
    return median, cutoff


def median_delay(evidence: list[DelayEvidence]) -> float | None:
    if not evidence:
        return None
    return float(np.median(_inlier_delays(evidence)))


def outlier_cutoff(evidence: list[DelayEvidence], policy: RoutinePolicy) -> float:
    return _centre_and_cutoff(_inlier_delays(evidence), policy)[1]


def is_outlier(delay_seconds: float, evidence: list[DelayEvidence], policy: RoutinePolicy) -> bool:
    """Judge one delay against the inliers of ``evidence``. The first sample never is."""
    if not evidence:
        return False
    median, cutoff = _centre_and_cutoff(_inlier_delays(evidence), policy)
    return abs(delay_seconds - median) > cutoff


def retag(evidence: list[DelayEvidence], policy: RoutinePolicy) -> list[DelayEvidence]:
    """Re-flag every sample against the median and MAD of all samples."""
    delays = np.array([e.delay_seconds for e in evidence], dtype=float)
    median, cutoff = _centre_and_cutoff(delays, policy)
    return [
        DelayEvidence(
            delay_seconds=e.delay_seconds,
            observed_at=e.observed_at,
            is_outlier=bool(abs(e.delay_seconds - median) > cutoff),
        )
        for e in evidence
    ]


def add_sample(
    evidence: list[DelayEvidence], sample: DelayEvidence, policy: RoutinePolicy,
) -> tuple[list[DelayEvidence], float | None]:
    """Append ``sample``, refresh the outlier flags and return the new median."""
    flagged = DelayEvidence(
        delay_seconds=sample.delay_seconds,
        observed_at=sample.observed_at,
        is_outlier=is_outlier(sample.delay_seconds, evidence, policy),
    )
    updated = [*evidence, flagged]
    if len(updated) >= MIN_SAMPLES_FOR_RETAG:
        updated = retag(updated, policy)
    return updated, median_delay(updated)
