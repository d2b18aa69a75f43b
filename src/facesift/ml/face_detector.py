"""SCRFD face detection.

SCRFD emits nine tensors, one score/bbox/keypoint triple per FPN stride
(8, 16, 32) with two anchors per feature-map position. Box and keypoint
outputs are distances from the anchor center in stride units.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from facesift.ml.preprocessing import letterbox, to_chw_blob
from facesift.pipeline.geometry import BoundingBox

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facesift.ml.model_manager import ModelManager

FPN_STRIDES = (8, 16, 32)
NUM_ANCHORS = 2
NMS_THRESHOLD = 0.4


@dataclass(frozen=True)
class DetectionParams:
    """Per-call detector tuning."""

    min_confidence: float
    max_results: int
    input_size: int = 640


@dataclass(frozen=True, eq=False)
class KeypointDetection:
    """A detector hit in original image coordinates.

    ``keypoints`` is a 5x2 array: left eye, right eye, nose, left and right
    mouth corners.
    """

    box: BoundingBox
    score: float
    keypoints: NDArray[np.float32]


def _anchor_centers(height: int, width: int, stride: int) -> NDArray[np.float32]:
    centers = np.stack(np.mgrid[:height, :width][::-1], axis=-1).astype(np.float32)
    centers = (centers * stride).reshape(-1, 2)
    return np.stack([centers] * NUM_ANCHORS, axis=1).reshape(-1, 2)


def _distance_to_boxes(points: NDArray[np.float32], distance: NDArray[np.float32]) -> NDArray[np.float32]:
    return np.stack(
        [
            points[:, 0] - distance[:, 0],
            points[:, 1] - distance[:, 1],
            points[:, 0] + distance[:, 2],
            points[:, 1] + distance[:, 3],
        ],
        axis=-1,
    )


def _distance_to_keypoints(points: NDArray[np.float32], distance: NDArray[np.float32]) -> NDArray[np.float32]:
    kps = np.zeros((len(points), 5, 2), dtype=np.float32)
    for i in range(5):
        kps[:, i, 0] = points[:, 0] + distance[:, i * 2]
        kps[:, i, 1] = points[:, 1] + distance[:, i * 2 + 1]
    return kps


def nms(boxes: NDArray[np.float32], scores: NDArray[np.float32], threshold: float = NMS_THRESHOLD) -> list[int]:
    """Greedy non-maximum suppression over xyxy boxes, highest score first."""
    x1, y1, x2, y2 = boxes[:, 0], boxes[:, 1], boxes[:, 2], boxes[:, 3]
    areas = (x2 - x1) * (y2 - y1)
    order = scores.argsort()[::-1]

    keep: list[int] = []
    while order.size > 0:
        i = int(order[0])
        keep.append(i)
        if order.size == 1:
            break
        xx1 = np.maximum(x1[i], x1[order[1:]])
        yy1 = np.maximum(y1[i], y1[order[1:]])
        xx2 = np.minimum(x2[i], x2[order[1:]])
        yy2 = np.minimum(y2[i], y2[order[1:]])
        inter = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
        overlap = inter / (areas[i] + areas[order[1:]] - inter)
        order = order[np.where(overlap <= threshold)[0] + 1]
    return keep


def decode_outputs(
    outputs: list[NDArray[np.float32]],
    *,
    input_size: int,
    scale: float,
    min_confidence: float,
) -> tuple[NDArray[np.float32], NDArray[np.float32], NDArray[np.float32]]:
    """Decode raw SCRFD outputs into xyxy boxes, scores, and 5-point keypoints.

    Coordinates are divided by ``scale`` to map them back onto the original
    image. Results are NMS-filtered and sorted by score, highest first.
    """
    levels = len(FPN_STRIDES)
    all_scores, all_boxes, all_kps = [], [], []
    for idx, stride in enumerate(FPN_STRIDES):
        scores = outputs[idx]
        bbox_preds = outputs[idx + levels]
        kps_preds = outputs[idx + levels * 2]
        if scores.ndim == 3:
            scores, bbox_preds, kps_preds = scores[0], bbox_preds[0], kps_preds[0]

        side = input_size // stride
        anchors = _anchor_centers(side, side, stride)
        flat_scores = scores.reshape(-1)
        positive = np.where(flat_scores >= min_confidence)[0]
        if positive.size == 0:
            continue

        boxes = _distance_to_boxes(anchors, bbox_preds * stride)
        kps = _distance_to_keypoints(anchors, kps_preds * stride)
        all_scores.append(flat_scores[positive])
        all_boxes.append(boxes[positive] / scale)
        all_kps.append(kps[positive] / scale)

    if not all_scores:
        empty = np.zeros((0,), dtype=np.float32)
        return np.zeros((0, 4), dtype=np.float32), empty, np.zeros((0, 5, 2), dtype=np.float32)

    scores_cat = np.concatenate(all_scores).astype(np.float32)
    boxes_cat = np.concatenate(all_boxes).astype(np.float32)
    kps_cat = np.concatenate(all_kps).astype(np.float32)
    keep = nms(boxes_cat, scores_cat)
    return boxes_cat[keep], scores_cat[keep], kps_cat[keep]


class ScrfdFaceDetector:
    """Runs an SCRFD ONNX model through the model manager."""

    def __init__(self, model_manager: ModelManager, model_name: str) -> None:
        self._model_manager = model_manager
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        return self._model_name

    def detect(self, image: NDArray[np.uint8], params: DetectionParams) -> list[KeypointDetection]:
        """Detect faces in an HxWx3 RGB image, capped at ``params.max_results``."""
        canvas, scale = letterbox(image, params.input_size)
        blob = to_chw_blob(canvas, mean=127.5, std=128.0)
        input_name = self._model_manager.input_name(self._model_name)
        outputs = self._model_manager.run(self._model_name, {input_name: blob})

        boxes, scores, kps = decode_outputs(
            outputs,
            input_size=params.input_size,
            scale=scale,
            min_confidence=params.min_confidence,
        )

        height, width = image.shape[:2]
        detections: list[KeypointDetection] = []
        for box, score, points in zip(boxes, scores, kps, strict=True):
            x1, y1 = max(0.0, float(box[0])), max(0.0, float(box[1]))
            x2, y2 = min(float(width), float(box[2])), min(float(height), float(box[3]))
            if x2 <= x1 or y2 <= y1:
                continue
            detections.append(
                KeypointDetection(
                    box=BoundingBox.from_corners(x1, y1, x2, y2),
                    score=min(1.0, max(0.0, float(score))),
                    keypoints=points,
                )
            )
            if len(detections) >= params.max_results:
                break
        return detections
