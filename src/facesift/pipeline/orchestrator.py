"""Per-image detection pipeline: strategies, dedup, scoring, selection."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np

from facesift.errors import InputError
from facesift.pipeline.dedup import IOU_THRESHOLD, deduplicate
from facesift.pipeline.scoring import score_detections
from facesift.pipeline.selection import select_results

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from facesift.pipeline.detections import RawDetection, ScoredDetection, SelectionPolicy
    from facesift.pipeline.strategies import Strategy, StrategyRunner

logger = logging.getLogger(__name__)


class DetectionStage(StrEnum):
    FETCHING_INPUT = "fetching_input"
    RUNNING_STRATEGIES = "running_strategies"
    DEDUPLICATING = "deduplicating"
    SCORING = "scoring"
    SELECTING = "selecting"
    DONE = "done"
    FAILED = "failed"


def validate_image(image: object) -> NDArray[np.uint8]:
    """Check that ``image`` is an HxWx3 raster with positive size.

    Raises:
        InputError: If the image is not a usable RGB raster.
    """
    if not isinstance(image, np.ndarray):
        raise InputError(f"Expected a numpy image, got {type(image).__name__}")
    if image.ndim != 3 or image.shape[2] != 3:
        raise InputError(f"Expected an HxWx3 image, got shape {image.shape}")
    if image.shape[0] <= 0 or image.shape[1] <= 0:
        raise InputError("Image has zero width or height")
    if image.dtype != np.uint8:
        raise InputError(f"Expected uint8 pixels, got {image.dtype}")
    return image


class DetectionOrchestrator:
    """Sequences every configured strategy through dedup, scoring, and selection.

    Stages run strictly one after another. A request either completes with
    zero or more faces or fails as a whole; partial results are never
    returned.
    """

    def __init__(
        self,
        runner: StrategyRunner,
        strategies: Sequence[Strategy],
        iou_threshold: float = IOU_THRESHOLD,
    ) -> None:
        self._runner = runner
        self._strategies = tuple(strategies)
        self._iou_threshold = iou_threshold

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.name for strategy in self._strategies]

    def detect(self, image: NDArray[np.uint8], policy: SelectionPolicy) -> list[ScoredDetection]:
        stage = DetectionStage.FETCHING_INPUT
        try:
            image = validate_image(image)
            height, width = image.shape[:2]

            stage = DetectionStage.RUNNING_STRATEGIES
            candidates: list[RawDetection] = []
            for strategy in self._strategies:
                candidates.extend(self._runner.run(strategy, image, policy))

            stage = DetectionStage.DEDUPLICATING
            unique = deduplicate(candidates, self._iou_threshold)

            stage = DetectionStage.SCORING
            scored = score_detections(unique, width, height)

            stage = DetectionStage.SELECTING
            selected = select_results(scored, policy)
        except InputError as exc:
            logger.warning("Detection %s during %s: %s", DetectionStage.FAILED, stage, exc.message)
            raise
        except Exception as exc:
            logger.error("Detection %s during %s: %r", DetectionStage.FAILED, stage, exc)
            raise

        logger.info(
            "Detection %s: %dx%d image, %d candidates, %d unique, %d selected (return_all=%s)",
            DetectionStage.DONE,
            width,
            height,
            len(candidates),
            len(unique),
            len(selected),
            policy.return_all,
        )
        return selected
