"""Face analysis capability consumed by the detection pipeline.

A face analyzer locates faces and, per face, returns optional 68-point
landmarks and a fixed-length descriptor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from facesift.ml.face_detector import DetectionParams, ScrfdFaceDetector
    from facesift.ml.face_landmarks import OnnxLandmarkModel
    from facesift.ml.face_recognizer import OnnxFaceRecognizer
    from facesift.pipeline.geometry import BoundingBox

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class FaceObservation:
    """One located face, before any strategy tagging."""

    box: BoundingBox
    confidence: float
    descriptor: NDArray[np.float32]
    landmarks: NDArray[np.float32] | None = None


class FaceAnalyzer(Protocol):
    """Protocol for the external face analysis capability."""

    def detect_faces(self, image: NDArray[np.uint8], params: DetectionParams) -> list[FaceObservation]:
        """Locate faces and describe each one.

        Args:
            image: HxWx3 RGB uint8 array.
            params: Confidence floor, result cap, and detector input size.

        Returns:
            Observations in image coordinates, highest confidence first.
        """
        ...


class OnnxFaceAnalyzer:
    """Detector + landmark model + recognizer, all backed by ONNX Runtime."""

    def __init__(
        self,
        detector: ScrfdFaceDetector,
        recognizer: OnnxFaceRecognizer,
        landmark_model: OnnxLandmarkModel | None = None,
    ) -> None:
        self._detector = detector
        self._recognizer = recognizer
        self._landmark_model = landmark_model

    @property
    def model_names(self) -> list[str]:
        names = [self._detector.model_name, self._recognizer.model_name]
        if self._landmark_model is not None:
            names.append(self._landmark_model.model_name)
        return names

    def detect_faces(self, image: NDArray[np.uint8], params: DetectionParams) -> list[FaceObservation]:
        hits = self._detector.detect(image, params)
        observations: list[FaceObservation] = []
        for hit in hits:
            landmarks = None
            if self._landmark_model is not None:
                landmarks = self._landmark_model.predict(image, hit.box)
            observations.append(
                FaceObservation(
                    box=hit.box,
                    confidence=hit.score,
                    descriptor=self._recognizer.embed(image, hit.keypoints),
                    landmarks=landmarks,
                )
            )
        logger.debug("Analyzed %d faces at input size %d", len(observations), params.input_size)
        return observations
