"""Request-scoped detection records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from facesift.ml.face_analyzer import FaceObservation
    from facesift.pipeline.geometry import BoundingBox


@dataclass(frozen=True)
class SelectionPolicy:
    """Caller-supplied result selection knob."""

    return_all: bool = False


@dataclass(frozen=True)
class PoseEstimate:
    """Normalised head pose derived from landmarks."""

    yaw: float
    pitch: float
    frontal: bool


@dataclass(frozen=True, eq=False)
class RawDetection:
    """A candidate face produced by one strategy.

    Compared by identity: two candidates with equal fields are still
    distinct detections.
    """

    box: BoundingBox
    confidence: float
    descriptor: NDArray[np.float32]
    strategy: str
    landmarks: NDArray[np.float32] | None = None

    @classmethod
    def from_observation(cls, observation: FaceObservation, strategy: str, scale: float = 1.0) -> RawDetection:
        """Tag an analyzer observation, mapping coordinates by ``scale``."""
        box = observation.box if scale == 1.0 else observation.box.scaled(scale)
        landmarks = observation.landmarks
        if landmarks is not None and scale != 1.0:
            landmarks = landmarks * scale
        return cls(
            box=box,
            confidence=min(1.0, max(0.0, float(observation.confidence))),
            descriptor=observation.descriptor,
            strategy=strategy,
            landmarks=landmarks,
        )


@dataclass(frozen=True, eq=False)
class ScoredDetection:
    """A deduplicated detection with its quality score, pose, and rank."""

    detection: RawDetection
    quality_score: float
    pose: PoseEstimate | None
    rank: int

    @property
    def box(self) -> BoundingBox:
        return self.detection.box

    @property
    def confidence(self) -> float:
        return self.detection.confidence

    @property
    def descriptor(self) -> NDArray[np.float32]:
        return self.detection.descriptor

    @property
    def strategy(self) -> str:
        return self.detection.strategy
