"""Greedy confidence-ordered deduplication of multi-strategy candidates."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from facesift.pipeline.detections import RawDetection

IOU_THRESHOLD = 0.30


def deduplicate(candidates: Iterable[RawDetection], iou_threshold: float = IOU_THRESHOLD) -> list[RawDetection]:
    """Keep the most confident candidate from every overlapping group.

    Candidates are visited in descending confidence (stable for ties) and a
    candidate is dropped when its IoU with any already accepted box reaches
    ``iou_threshold``. There is no score decay: this is not soft-NMS.
    """
    ordered = sorted(candidates, key=lambda det: det.confidence, reverse=True)
    accepted: list[RawDetection] = []
    for candidate in ordered:
        if all(candidate.box.iou(kept.box) < iou_threshold for kept in accepted):
            accepted.append(candidate)
    return accepted
