"""Tests for detection strategy presets and the strategy runner."""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING

import numpy as np
import pytest

from facesift.config import Settings
from facesift.ml.face_analyzer import FaceObservation
from facesift.pipeline.detections import SelectionPolicy
from facesift.pipeline.geometry import BoundingBox
from facesift.pipeline.strategies import (
    EnhancedContrastStrategy,
    MultiScaleStrategy,
    PrimaryStrategy,
    SecondaryStrategy,
    StrategyRunner,
    build_strategies,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from facesift.ml.face_detector import DetectionParams

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _RecordingAnalyzer:
    def __init__(self, observations: list[FaceObservation] | None = None, error: Exception | None = None) -> None:
        self.observations = observations or []
        self.error = error
        self.calls: list[tuple[tuple[int, ...], DetectionParams, np.ndarray]] = []

    def detect_faces(self, image: np.ndarray, params: DetectionParams) -> list[FaceObservation]:
        self.calls.append((image.shape, params, image))
        if self.error is not None:
            raise self.error
        return self.observations


class _ScopeTracker:
    def __init__(self) -> None:
        self.entered: list[str] = []
        self.exited: list[str] = []

    @contextmanager
    def scope(self, label: str) -> Iterator[None]:
        self.entered.append(label)
        try:
            yield
        finally:
            self.exited.append(label)


def _make_observation(x: float = 10, y: float = 20, size: float = 30, confidence: float = 0.8) -> FaceObservation:
    landmarks = np.full((68, 2), 5.0, dtype=np.float32)
    return FaceObservation(
        box=BoundingBox(x=x, y=y, width=size, height=size),
        confidence=confidence,
        descriptor=np.ones(4, dtype=np.float32),
        landmarks=landmarks,
    )


def _make_image(width: int = 320, height: int = 240, value: int = 100) -> np.ndarray:
    image = np.full((height, width, 3), value, dtype=np.uint8)
    image.flags.writeable = False
    return image


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------


class TestPrimaryStrategy:
    def test_tags_detections_with_strategy_name(self) -> None:
        analyzer = _RecordingAnalyzer([_make_observation(), _make_observation(x=100)])
        detections = list(PrimaryStrategy().detect(_make_image(), analyzer, SelectionPolicy()))

        assert len(detections) == 2
        assert all(d.strategy == "primary" for d in detections)
        assert detections[0].box == BoundingBox(x=10, y=20, width=30, height=30)

    def test_cap_depends_on_policy(self) -> None:
        analyzer = _RecordingAnalyzer()
        strategy = PrimaryStrategy()
        list(strategy.detect(_make_image(), analyzer, SelectionPolicy(return_all=False)))
        list(strategy.detect(_make_image(), analyzer, SelectionPolicy(return_all=True)))

        single, multi = analyzer.calls[0][1], analyzer.calls[1][1]
        assert single.max_results < multi.max_results
        assert single.min_confidence == multi.min_confidence == 0.3

    def test_is_lazy(self) -> None:
        analyzer = _RecordingAnalyzer([_make_observation()])
        PrimaryStrategy().detect(_make_image(), analyzer, SelectionPolicy())
        assert analyzer.calls == []


class TestSecondaryStrategy:
    def test_uses_higher_input_resolution(self) -> None:
        analyzer = _RecordingAnalyzer([_make_observation()])
        detections = list(SecondaryStrategy().detect(_make_image(), analyzer, SelectionPolicy()))

        params = analyzer.calls[0][1]
        assert params.input_size > PrimaryStrategy().input_size
        assert detections[0].strategy == "secondary"


class TestEnhancedContrastStrategy:
    def test_runs_on_boosted_copy(self) -> None:
        image = _make_image(value=100)
        analyzer = _RecordingAnalyzer([_make_observation()])
        strategy = EnhancedContrastStrategy(base=PrimaryStrategy())

        detections = list(strategy.detect(image, analyzer, SelectionPolicy()))

        seen = analyzer.calls[0][2]
        assert seen is not image
        assert seen.shape == image.shape
        assert int(seen.mean()) != 100
        assert int(image.mean()) == 100
        assert detections[0].strategy == "enhanced_contrast"

    def test_uses_primary_parameters(self) -> None:
        analyzer = _RecordingAnalyzer()
        strategy = EnhancedContrastStrategy(base=PrimaryStrategy())
        list(strategy.detect(_make_image(), analyzer, SelectionPolicy()))
        assert analyzer.calls[0][1] == PrimaryStrategy().params(SelectionPolicy())


class TestMultiScaleStrategy:
    def test_skipped_for_small_images(self) -> None:
        analyzer = _RecordingAnalyzer([_make_observation()])
        strategy = MultiScaleStrategy(base=SecondaryStrategy())

        detections = list(strategy.detect(_make_image(800, 600), analyzer, SelectionPolicy()))

        assert detections == []
        assert analyzer.calls == []

    def test_downsamples_and_rescales(self) -> None:
        observation = _make_observation(x=10, y=20, size=30)
        analyzer = _RecordingAnalyzer([observation])
        strategy = MultiScaleStrategy(base=SecondaryStrategy(), factor=0.5)

        detections = list(strategy.detect(_make_image(1200, 900), analyzer, SelectionPolicy()))

        assert analyzer.calls[0][0] == (450, 600, 3)
        assert analyzer.calls[0][1].input_size == SecondaryStrategy().input_size
        det = detections[0]
        assert det.box == BoundingBox(x=20, y=40, width=60, height=60)
        assert det.landmarks is not None
        np.testing.assert_allclose(det.landmarks, observation.landmarks * 2)
        assert det.strategy == "multi_scale"

    def test_triggers_on_either_dimension(self) -> None:
        strategy = MultiScaleStrategy(base=SecondaryStrategy())
        assert strategy.applies_to(_make_image(801, 100))
        assert strategy.applies_to(_make_image(100, 601))
        assert not strategy.applies_to(_make_image(800, 600))


class TestBuildStrategies:
    def test_fixed_order(self) -> None:
        strategies = build_strategies(Settings())
        assert [s.name for s in strategies] == ["primary", "secondary", "enhanced_contrast", "multi_scale"]

    def test_multi_scale_follows_settings(self) -> None:
        settings = Settings(multi_scale_min_width=1000, multi_scale_min_height=1000, multi_scale_factor=0.25)
        multi = build_strategies(settings)[-1]
        assert isinstance(multi, MultiScaleStrategy)
        assert multi.factor == 0.25
        assert not multi.applies_to(_make_image(1000, 1000))


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class TestStrategyRunner:
    def test_runs_inside_resource_scope(self) -> None:
        tracker = _ScopeTracker()
        runner = StrategyRunner(_RecordingAnalyzer([_make_observation()]), tracker)  # type: ignore[arg-type]

        detections = runner.run(PrimaryStrategy(), _make_image(), SelectionPolicy())

        assert len(detections) == 1
        assert tracker.entered == ["primary"]
        assert tracker.exited == ["primary"]

    def test_failure_yields_no_detections(self) -> None:
        tracker = _ScopeTracker()
        analyzer = _RecordingAnalyzer(error=RuntimeError("onnx blew up"))
        runner = StrategyRunner(analyzer, tracker)  # type: ignore[arg-type]

        detections = runner.run(SecondaryStrategy(), _make_image(), SelectionPolicy())

        assert detections == []
        assert tracker.exited == ["secondary"]

    def test_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        analyzer = _RecordingAnalyzer(error=ValueError("bad tensor"))
        runner = StrategyRunner(analyzer, _ScopeTracker())  # type: ignore[arg-type]
        with caplog.at_level("WARNING", logger="facesift.pipeline.strategies"):
            runner.run(PrimaryStrategy(), _make_image(), SelectionPolicy())
        assert "Strategy 'primary' failed" in caplog.text
