"""Tests for the per-image detection orchestrator."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import pytest

from facesift.errors import InputError
from facesift.ml.face_analyzer import FaceObservation
from facesift.pipeline.detections import RawDetection, SelectionPolicy
from facesift.pipeline.geometry import BoundingBox
from facesift.pipeline.orchestrator import DetectionOrchestrator, validate_image
from facesift.pipeline.strategies import StrategyRunner

if TYPE_CHECKING:
    from collections.abc import Iterator

    from facesift.ml.face_detector import DetectionParams


class _NullResources:
    def __init__(self) -> None:
        self.scopes = 0

    @contextmanager
    def scope(self, label: str) -> Iterator[None]:
        try:
            yield
        finally:
            self.scopes += 1


class _UnusedAnalyzer:
    def detect_faces(self, image: np.ndarray, params: DetectionParams) -> list[FaceObservation]:
        raise AssertionError("fixed strategies never call the analyzer")


@dataclass(frozen=True)
class _FixedStrategy:
    name: str
    boxes: tuple[tuple[float, float, float, float, float], ...] = ()
    error: Exception | None = None

    def detect(self, image: np.ndarray, analyzer: object, policy: SelectionPolicy) -> Iterator[RawDetection]:
        if self.error is not None:
            raise self.error
        for x, y, w, h, confidence in self.boxes:
            yield RawDetection(
                box=BoundingBox(x=x, y=y, width=w, height=h),
                confidence=confidence,
                descriptor=np.zeros(4, dtype=np.float32),
                strategy=self.name,
            )


def _make_orchestrator(*strategies: _FixedStrategy) -> tuple[DetectionOrchestrator, _NullResources]:
    resources = _NullResources()
    runner = StrategyRunner(_UnusedAnalyzer(), resources)  # type: ignore[arg-type]
    return DetectionOrchestrator(runner, strategies), resources


def _make_image(width: int = 400, height: int = 400) -> np.ndarray:
    return np.zeros((height, width, 3), dtype=np.uint8)


class TestValidateImage:
    @pytest.mark.parametrize(
        "image",
        [
            np.zeros((10, 10), dtype=np.uint8),
            np.zeros((10, 10, 4), dtype=np.uint8),
            np.zeros((0, 10, 3), dtype=np.uint8),
            np.zeros((10, 10, 3), dtype=np.float32),
            b"not an image",
        ],
    )
    def test_rejects_unusable_images(self, image: object) -> None:
        with pytest.raises(InputError):
            validate_image(image)

    def test_accepts_rgb_raster(self) -> None:
        image = _make_image()
        assert validate_image(image) is image


class TestDetectionOrchestrator:
    def test_merges_strategies_and_removes_duplicates(self) -> None:
        orchestrator, resources = _make_orchestrator(
            _FixedStrategy("primary", boxes=((100, 100, 100, 100, 0.9),)),
            _FixedStrategy("secondary", boxes=((110, 110, 100, 100, 0.6), (300, 10, 60, 60, 0.7))),
        )

        faces = orchestrator.detect(_make_image(), SelectionPolicy(return_all=True))

        assert [f.strategy for f in faces] == ["primary", "secondary"]
        assert faces[0].confidence == 0.9
        assert [f.rank for f in faces] == [1, 2]
        assert resources.scopes == 2

    def test_failing_strategy_degrades_to_fewer_faces(self) -> None:
        orchestrator, _ = _make_orchestrator(
            _FixedStrategy("primary", error=RuntimeError("model missing")),
            _FixedStrategy("secondary", boxes=((150, 150, 100, 100, 0.8),)),
        )

        faces = orchestrator.detect(_make_image(), SelectionPolicy(return_all=True))

        assert len(faces) == 1
        assert faces[0].strategy == "secondary"

    def test_no_faces_is_a_successful_empty_result(self) -> None:
        orchestrator, _ = _make_orchestrator(_FixedStrategy("primary"))
        assert orchestrator.detect(_make_image(), SelectionPolicy()) == []

    def test_best_effort_policy_falls_back_without_landmarks(self) -> None:
        orchestrator, _ = _make_orchestrator(
            _FixedStrategy("primary", boxes=((150, 150, 100, 100, 0.5), (0, 0, 5, 5, 0.05))),
        )

        faces = orchestrator.detect(_make_image(), SelectionPolicy(return_all=False))

        assert len(faces) == 1
        assert faces[0].pose is None
        assert faces[0].quality_score > 0.25

    def test_invalid_image_fails_whole_request(self) -> None:
        orchestrator, resources = _make_orchestrator(_FixedStrategy("primary", boxes=((0, 0, 10, 10, 0.9),)))

        with pytest.raises(InputError):
            orchestrator.detect(np.zeros((5, 5), dtype=np.uint8), SelectionPolicy())
        assert resources.scopes == 0

    def test_unexpected_fault_propagates(self, caplog: pytest.LogCaptureFixture) -> None:
        orchestrator, _ = _make_orchestrator(_FixedStrategy("primary"))
        orchestrator._runner = None  # type: ignore[assignment]

        with caplog.at_level("ERROR", logger="facesift.pipeline.orchestrator"), pytest.raises(AttributeError):
            orchestrator.detect(_make_image(), SelectionPolicy())

        # The traceback is logged once, by the HTTP layer.
        [record] = caplog.records
        assert "running_strategies" in record.getMessage()
        assert record.exc_info is None

    def test_strategy_names(self) -> None:
        orchestrator, _ = _make_orchestrator(_FixedStrategy("a"), _FixedStrategy("b"))
        assert orchestrator.strategy_names == ["a", "b"]
