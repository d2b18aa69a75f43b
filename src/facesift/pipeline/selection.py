"""Result selection policy."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from facesift.pipeline.detections import ScoredDetection, SelectionPolicy

CENSUS_MIN_QUALITY = 0.15
FRONTAL_MIN_QUALITY = 0.4
FRONTAL_CAP = 5
FALLBACK_MIN_QUALITY = 0.25
FALLBACK_CAP = 8


def select_results(scored: Sequence[ScoredDetection], policy: SelectionPolicy) -> list[ScoredDetection]:
    """Apply ``policy`` to detections, highest quality first.

    With ``return_all`` every face above a permissive floor is kept. Otherwise
    frontal high-quality faces are preferred, falling back to any reasonable
    face when no frontal one qualifies.
    """
    ranked = sorted(scored, key=lambda det: det.quality_score, reverse=True)
    if policy.return_all:
        return [det for det in ranked if det.quality_score > CENSUS_MIN_QUALITY]

    frontal = [
        det
        for det in ranked
        if det.pose is not None and det.pose.frontal and det.quality_score > FRONTAL_MIN_QUALITY
    ]
    if frontal:
        return frontal[:FRONTAL_CAP]
    return [det for det in ranked if det.quality_score > FALLBACK_MIN_QUALITY][:FALLBACK_CAP]
