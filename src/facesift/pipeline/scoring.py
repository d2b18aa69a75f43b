"""Composite quality scoring and landmark-based pose estimation."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from facesift.errors import PoseDegenerate
from facesift.pipeline.detections import PoseEstimate, ScoredDetection
from facesift.pipeline.geometry import center_distance

if TYPE_CHECKING:
    from collections.abc import Iterable

    import numpy as np
    from numpy.typing import NDArray

    from facesift.pipeline.detections import RawDetection

logger = logging.getLogger(__name__)

# Fixed indices of the 68-point landmark layout.
LEFT_EYE = 36
RIGHT_EYE = 45
NOSE_TIP = 30
MOUTH_CORNER = 48

FRONTAL_LIMIT = 0.3
_EPSILON = 1e-6


def _clamp(value: float, low: float = -1.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def quality_score(detection: RawDetection, image_width: int, image_height: int) -> float:
    """Blend confidence with face size, landmark presence, and centrality.

    Always in [0, 1].
    """
    image_area = image_width * image_height
    size_factor = min(detection.box.area / image_area * 100, 1.0)
    landmark_factor = 0.1 if detection.landmarks is not None else 0.0

    half_diagonal = math.hypot(image_width / 2, image_height / 2)
    distance = center_distance(detection.box, (image_width / 2, image_height / 2))
    normalized_distance = min(distance / half_diagonal, 1.0)
    position_factor = (1.0 - normalized_distance) * 0.1

    score = detection.confidence + size_factor * 0.2 + landmark_factor + position_factor
    return _clamp(score, 0.0, 1.0)


def _pose_from_landmarks(landmarks: NDArray[np.float32]) -> PoseEstimate:
    if landmarks.ndim != 2 or landmarks.shape[0] <= MOUTH_CORNER or landmarks.shape[1] < 2:
        raise PoseDegenerate(f"Expected 68x2 landmarks, got shape {landmarks.shape}")

    left_x, left_y = float(landmarks[LEFT_EYE][0]), float(landmarks[LEFT_EYE][1])
    right_x, right_y = float(landmarks[RIGHT_EYE][0]), float(landmarks[RIGHT_EYE][1])
    nose_x, nose_y = float(landmarks[NOSE_TIP][0]), float(landmarks[NOSE_TIP][1])
    mouth_y = float(landmarks[MOUTH_CORNER][1])

    eye_mid_x = (left_x + right_x) / 2
    eye_mid_y = (left_y + right_y) / 2
    eye_distance = math.hypot(right_x - left_x, right_y - left_y)
    mouth_offset = abs(mouth_y - eye_mid_y)
    if not (eye_distance > _EPSILON and mouth_offset > _EPSILON):
        raise PoseDegenerate("Landmark geometry has a near-zero denominator")

    yaw = ((abs(nose_x - eye_mid_x) / eye_distance) - 0.5) * 2
    pitch = (nose_y - eye_mid_y) / mouth_offset
    if not (math.isfinite(yaw) and math.isfinite(pitch)):
        raise PoseDegenerate("Landmark geometry produced a non-finite pose")

    yaw, pitch = _clamp(yaw), _clamp(pitch)
    return PoseEstimate(
        yaw=yaw,
        pitch=pitch,
        frontal=abs(yaw) < FRONTAL_LIMIT and abs(pitch) < FRONTAL_LIMIT,
    )


def estimate_pose(landmarks: NDArray[np.float32] | None) -> PoseEstimate | None:
    """Pose for one face, or None when landmarks are missing or unusable."""
    if landmarks is None:
        return None
    try:
        return _pose_from_landmarks(landmarks)
    except PoseDegenerate as exc:
        logger.debug("Pose unavailable: %s", exc.message)
        return None


def score_detections(
    detections: Iterable[RawDetection],
    image_width: int,
    image_height: int,
) -> list[ScoredDetection]:
    """Score every detection and rank them by quality, best first."""
    scored = [
        (detection, quality_score(detection, image_width, image_height), estimate_pose(detection.landmarks))
        for detection in detections
    ]
    scored.sort(key=lambda item: item[1], reverse=True)
    return [
        ScoredDetection(detection=detection, quality_score=score, pose=pose, rank=rank)
        for rank, (detection, score, pose) in enumerate(scored, start=1)
    ]
