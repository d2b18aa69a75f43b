"""68-point facial landmark model (InsightFace ``1k3d68`` layout).

The model sees a square crop centred on the face box with 1.5x context and
predicts normalised (x, y, z) points; only x and y are kept. Index positions
follow the iBUG 68-point convention (36 left eye, 45 right eye, 30 nose tip,
48 mouth corner).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from facesift.ml.preprocessing import to_chw_blob, warp_affine

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facesift.ml.model_manager import ModelManager
    from facesift.pipeline.geometry import BoundingBox

LANDMARK_COUNT = 68
INPUT_SIZE = 192
CONTEXT_SCALE = 1.5


class OnnxLandmarkModel:
    """Predicts 68 landmarks for one face box at a time."""

    def __init__(self, model_manager: ModelManager, model_name: str) -> None:
        self._model_manager = model_manager
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        return self._model_name

    def predict(self, image: NDArray[np.uint8], box: BoundingBox) -> NDArray[np.float32]:
        """Return a 68x2 array of landmarks in ``image`` coordinates."""
        cx, cy = box.center
        scale = INPUT_SIZE / (max(box.width, box.height) * CONTEXT_SCALE)
        half = INPUT_SIZE / 2
        matrix = np.array(
            [
                [scale, 0.0, half - cx * scale],
                [0.0, scale, half - cy * scale],
            ],
            dtype=np.float64,
        )
        crop = warp_affine(image, matrix, INPUT_SIZE)
        blob = to_chw_blob(crop, mean=0.0, std=1.0)

        input_name = self._model_manager.input_name(self._model_name)
        pred = self._model_manager.run(self._model_name, {input_name: blob})[0][0]
        dims = 3 if pred.shape[0] >= 3000 else 2
        points = pred.reshape(-1, dims)[-LANDMARK_COUNT:, :2].astype(np.float64)

        points = (points + 1.0) * (INPUT_SIZE // 2)
        points[:, 0] = (points[:, 0] - half) / scale + cx
        points[:, 1] = (points[:, 1] - half) / scale + cy
        return points.astype(np.float32)
