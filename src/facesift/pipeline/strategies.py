"""Detection strategy presets and the runner that isolates their failures.

Each strategy is an independent pass of the face analyzer over the same
image. Presets run in a fixed order; their outputs are merged and
deduplicated by the orchestrator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from facesift.errors import StrategyFailure
from facesift.ml.face_detector import DetectionParams
from facesift.ml.preprocessing import enhance_image, resize_image
from facesift.pipeline.detections import RawDetection

if TYPE_CHECKING:
    from collections.abc import Iterator

    import numpy as np
    from numpy.typing import NDArray

    from facesift.config import Settings
    from facesift.ml.face_analyzer import FaceAnalyzer
    from facesift.ml.runtime import RuntimeResources
    from facesift.pipeline.detections import SelectionPolicy

logger = logging.getLogger(__name__)

PRIMARY_INPUT_SIZE = 640
PRIMARY_MIN_CONFIDENCE = 0.3
SECONDARY_INPUT_SIZE = 960
SECONDARY_MIN_CONFIDENCE = 0.25
SINGLE_FACE_CAP = 10
MULTI_FACE_CAP = 50


class Strategy(Protocol):
    """One configured invocation of the face analyzer."""

    @property
    def name(self) -> str: ...

    def detect(
        self,
        image: NDArray[np.uint8],
        analyzer: FaceAnalyzer,
        policy: SelectionPolicy,
    ) -> Iterator[RawDetection]:
        """Yield detections tagged with this strategy's name."""
        ...


@dataclass(frozen=True)
class PrimaryStrategy:
    """General-purpose pass with a low confidence floor and a result cap.

    The cap is raised when the caller asks for every face in the image.
    """

    name: str = "primary"
    min_confidence: float = PRIMARY_MIN_CONFIDENCE
    input_size: int = PRIMARY_INPUT_SIZE
    single_face_cap: int = SINGLE_FACE_CAP
    multi_face_cap: int = MULTI_FACE_CAP

    def params(self, policy: SelectionPolicy) -> DetectionParams:
        return DetectionParams(
            min_confidence=self.min_confidence,
            max_results=self.multi_face_cap if policy.return_all else self.single_face_cap,
            input_size=self.input_size,
        )

    def detect(
        self,
        image: NDArray[np.uint8],
        analyzer: FaceAnalyzer,
        policy: SelectionPolicy,
    ) -> Iterator[RawDetection]:
        for observation in analyzer.detect_faces(image, self.params(policy)):
            yield RawDetection.from_observation(observation, self.name)


@dataclass(frozen=True)
class SecondaryStrategy(PrimaryStrategy):
    """Small and distant faces: higher detector input resolution, always run."""

    name: str = "secondary"
    min_confidence: float = SECONDARY_MIN_CONFIDENCE
    input_size: int = SECONDARY_INPUT_SIZE


@dataclass(frozen=True)
class EnhancedContrastStrategy:
    """Re-runs the primary pass on a contrast/brightness/saturation boosted copy."""

    base: PrimaryStrategy
    name: str = "enhanced_contrast"
    contrast: float = 1.5
    brightness: float = 1.2
    saturation: float = 1.3

    def detect(
        self,
        image: NDArray[np.uint8],
        analyzer: FaceAnalyzer,
        policy: SelectionPolicy,
    ) -> Iterator[RawDetection]:
        boosted = enhance_image(
            image,
            contrast=self.contrast,
            brightness=self.brightness,
            saturation=self.saturation,
        )
        observations = analyzer.detect_faces(boosted, self.base.params(policy))
        del boosted
        for observation in observations:
            yield RawDetection.from_observation(observation, self.name)


@dataclass(frozen=True)
class MultiScaleStrategy:
    """Downsampled small-face pass for large images.

    Boxes and landmarks are multiplied by ``1 / factor`` to land back in
    original image coordinates.
    """

    base: PrimaryStrategy
    name: str = "multi_scale"
    min_width: int = 800
    min_height: int = 600
    factor: float = 0.5

    def applies_to(self, image: NDArray[np.uint8]) -> bool:
        height, width = image.shape[:2]
        return width > self.min_width or height > self.min_height

    def detect(
        self,
        image: NDArray[np.uint8],
        analyzer: FaceAnalyzer,
        policy: SelectionPolicy,
    ) -> Iterator[RawDetection]:
        if not self.applies_to(image):
            return
        small = resize_image(image, self.factor)
        observations = analyzer.detect_faces(small, self.base.params(policy))
        del small
        inverse = 1.0 / self.factor
        for observation in observations:
            yield RawDetection.from_observation(observation, self.name, scale=inverse)


def build_strategies(settings: Settings) -> tuple[Strategy, ...]:
    """Build the ordered, process-wide strategy presets."""
    primary = PrimaryStrategy()
    secondary = SecondaryStrategy()
    return (
        primary,
        secondary,
        EnhancedContrastStrategy(base=primary),
        MultiScaleStrategy(
            base=secondary,
            min_width=settings.multi_scale_min_width,
            min_height=settings.multi_scale_min_height,
            factor=settings.multi_scale_factor,
        ),
    )


class StrategyRunner:
    """Runs one strategy inside a runtime resource scope.

    A failing strategy is logged and contributes zero detections; it never
    fails the request.
    """

    def __init__(self, analyzer: FaceAnalyzer, resources: RuntimeResources) -> None:
        self._analyzer = analyzer
        self._resources = resources

    def run(self, strategy: Strategy, image: NDArray[np.uint8], policy: SelectionPolicy) -> list[RawDetection]:
        with self._resources.scope(strategy.name):
            try:
                detections = list(strategy.detect(image, self._analyzer, policy))
            except Exception as exc:
                failure = StrategyFailure(strategy.name, exc)
                logger.warning("%s", failure.message, exc_info=exc)
                return []
        logger.debug("Strategy %s produced %d candidates", strategy.name, len(detections))
        return detections
