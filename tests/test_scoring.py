"""Tests for quality scoring and pose estimation."""

from __future__ import annotations

import random

import numpy as np
import pytest

from facesift.pipeline.detections import RawDetection
from facesift.pipeline.geometry import BoundingBox
from facesift.pipeline.scoring import estimate_pose, quality_score, score_detections


# Yaw is 0 when the nose sits half an eye distance from the eye midpoint
# (midpoint x=50, eye distance 20), hence the nose at x=60 in the default face.
def _make_landmarks(
    left_eye: tuple[float, float] = (40, 50),
    right_eye: tuple[float, float] = (60, 50),
    nose: tuple[float, float] = (60, 55),
    mouth: tuple[float, float] = (45, 80),
) -> np.ndarray:
    points = np.zeros((68, 2), dtype=np.float32)
    points[36] = left_eye
    points[45] = right_eye
    points[30] = nose
    points[48] = mouth
    return points


def _make_detection(
    box: BoundingBox,
    confidence: float,
    landmarks: np.ndarray | None = None,
) -> RawDetection:
    return RawDetection(
        box=box,
        confidence=confidence,
        descriptor=np.zeros(4, dtype=np.float32),
        strategy="primary",
        landmarks=landmarks,
    )


class TestQualityScore:
    def test_centered_quarter_area_face(self) -> None:
        box = BoundingBox(x=250, y=250, width=500, height=500)
        det = _make_detection(box, 0.5, landmarks=_make_landmarks())
        # 0.5 + size 1.0 * 0.2 + landmarks 0.1 + centered 0.1
        assert quality_score(det, 1000, 1000) == pytest.approx(0.9)

    def test_score_is_capped_at_one(self) -> None:
        box = BoundingBox(x=250, y=250, width=500, height=500)
        det = _make_detection(box, 0.8, landmarks=_make_landmarks())
        assert quality_score(det, 1000, 1000) == 1.0

    def test_small_face_in_corner_without_landmarks(self) -> None:
        box = BoundingBox(x=0, y=0, width=10, height=10)
        det = _make_detection(box, 0.4)
        # size: 100 / 1e6 * 100 = 0.01; position: distance ~= diagonal
        expected_size = 0.01 * 0.2
        center_dist = np.hypot(495, 495)
        expected_pos = (1 - center_dist / np.hypot(500, 500)) * 0.1
        assert quality_score(det, 1000, 1000) == pytest.approx(0.4 + expected_size + expected_pos)

    def test_score_always_in_unit_interval(self) -> None:
        rng = random.Random(5)
        for _ in range(300):
            width, height = rng.randint(1, 4000), rng.randint(1, 4000)
            box = BoundingBox(
                x=rng.uniform(-width, 2 * width),
                y=rng.uniform(-height, 2 * height),
                width=rng.uniform(0.1, 3 * width),
                height=rng.uniform(0.1, 3 * height),
            )
            landmarks = _make_landmarks() if rng.random() < 0.5 else None
            det = _make_detection(box, rng.random(), landmarks=landmarks)
            assert 0.0 <= quality_score(det, width, height) <= 1.0


class TestEstimatePose:
    def test_no_landmarks_means_no_pose(self) -> None:
        assert estimate_pose(None) is None

    def test_frontal_pose(self) -> None:
        # The default nose is level with the right eye; see _make_landmarks.
        pose = estimate_pose(_make_landmarks())
        assert pose is not None
        assert pose.yaw == pytest.approx(0.0)
        assert pose.pitch == pytest.approx(5 / 30)
        assert pose.frontal is True

    def test_turned_pose_is_not_frontal(self) -> None:
        pose = estimate_pose(_make_landmarks(nose=(50, 55)))
        assert pose is not None
        assert pose.yaw == pytest.approx(-1.0)
        assert pose.frontal is False

    def test_extreme_geometry_is_clamped(self) -> None:
        pose = estimate_pose(_make_landmarks(nose=(5000, 9000), mouth=(45, 51)))
        assert pose is not None
        assert pose.yaw == 1.0
        assert pose.pitch == 1.0
        assert pose.frontal is False

    def test_negative_pitch_is_clamped(self) -> None:
        pose = estimate_pose(_make_landmarks(nose=(60, -5000)))
        assert pose is not None
        assert pose.pitch == -1.0

    def test_coincident_eyes_yield_no_pose(self) -> None:
        assert estimate_pose(_make_landmarks(left_eye=(50, 50), right_eye=(50, 50))) is None

    def test_mouth_level_with_eyes_yields_no_pose(self) -> None:
        assert estimate_pose(_make_landmarks(mouth=(45, 50))) is None

    def test_non_finite_landmarks_yield_no_pose(self) -> None:
        assert estimate_pose(_make_landmarks(nose=(float("nan"), 55))) is None

    def test_wrong_landmark_count_yields_no_pose(self) -> None:
        assert estimate_pose(np.zeros((5, 2), dtype=np.float32)) is None

    def test_random_geometry_stays_in_range(self) -> None:
        rng = np.random.default_rng(9)
        for _ in range(200):
            pose = estimate_pose(rng.normal(0, 100, size=(68, 2)).astype(np.float32))
            if pose is not None:
                assert -1.0 <= pose.yaw <= 1.0
                assert -1.0 <= pose.pitch <= 1.0


class TestScoreDetections:
    def test_ranked_by_quality_descending(self) -> None:
        low = _make_detection(BoundingBox(x=0, y=0, width=10, height=10), 0.3)
        high = _make_detection(BoundingBox(x=40, y=40, width=20, height=20), 0.9, landmarks=_make_landmarks())
        mid = _make_detection(BoundingBox(x=40, y=40, width=20, height=20), 0.5)

        scored = score_detections([low, high, mid], 100, 100)

        assert [s.detection for s in scored] == [high, mid, low]
        assert [s.rank for s in scored] == [1, 2, 3]
        assert scored[0].pose is not None
        assert scored[1].pose is None

    def test_empty(self) -> None:
        assert score_detections([], 100, 100) == []
