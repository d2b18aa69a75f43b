"""Face recognition (embedding) model.

Implementations: AuraFace v1 (default), ArcFace w600k_r50 (opt-in). Faces are
aligned to the ArcFace 112x112 template with a similarity transform estimated
from the detector's five keypoints.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from facesift.ml.preprocessing import to_chw_blob, warp_affine

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facesift.ml.model_manager import ModelManager

ARCFACE_SIZE = 112

# left eye, right eye, nose tip, left mouth corner, right mouth corner
ARCFACE_REFERENCE = np.array(
    [
        [38.2946, 51.6963],
        [73.5318, 51.5014],
        [56.0252, 71.7366],
        [41.5493, 92.3655],
        [70.7299, 92.2041],
    ],
    dtype=np.float64,
)


def estimate_similarity(src: NDArray[np.float64], dst: NDArray[np.float64]) -> NDArray[np.float64]:
    """Least-squares similarity transform (Umeyama) mapping ``src`` onto ``dst``.

    Returns:
        A 2x3 forward affine matrix.
    """
    num, dim = src.shape
    src_mean = src.mean(axis=0)
    dst_mean = dst.mean(axis=0)
    src_demean = src - src_mean
    dst_demean = dst - dst_mean

    cov = dst_demean.T @ src_demean / num
    u, s, vt = np.linalg.svd(cov)

    d = np.ones(dim, dtype=np.float64)
    if np.linalg.det(cov) < 0:
        d[dim - 1] = -1

    transform = np.eye(dim + 1, dtype=np.float64)
    transform[:dim, :dim] = u @ np.diag(d) @ vt
    src_var = src_demean.var(axis=0).sum()
    if src_var > 0:
        transform[:dim, :dim] *= (s * d).sum() / src_var
    transform[:dim, dim] = dst_mean - transform[:dim, :dim] @ src_mean
    return transform[:2, :]


def align_face(image: NDArray[np.uint8], keypoints: NDArray[np.float32]) -> NDArray[np.uint8]:
    """Warp a face onto the 112x112 ArcFace template."""
    matrix = estimate_similarity(keypoints.astype(np.float64), ARCFACE_REFERENCE)
    return warp_affine(image, matrix, ARCFACE_SIZE)


class OnnxFaceRecognizer:
    """Produces L2-normalised descriptors from aligned face crops."""

    def __init__(self, model_manager: ModelManager, model_name: str) -> None:
        self._model_manager = model_manager
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        return self._model_name

    def embed(self, image: NDArray[np.uint8], keypoints: NDArray[np.float32]) -> NDArray[np.float32]:
        """Return the descriptor for the face described by ``keypoints``."""
        crop = align_face(image, keypoints)
        blob = to_chw_blob(crop, mean=127.5, std=127.5)
        input_name = self._model_manager.input_name(self._model_name)
        vector = np.asarray(self._model_manager.run(self._model_name, {input_name: blob})[0][0], dtype=np.float32)
        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector = vector / norm
        return vector.astype(np.float32)
