"""Process-wide inference resource accounting and reclamation."""

from __future__ import annotations

import gc
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

import psutil

if TYPE_CHECKING:
    from collections.abc import Iterator

    from facesift.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceUsage:
    """Snapshot of runtime resource usage."""

    units_in_use: int
    bytes_in_use: int


class RuntimeResources:
    """Reads and reclaims the inference runtime's process-wide resources.

    ``units_in_use`` counts loaded ONNX sessions and ``bytes_in_use`` is the
    resident set size of the process. Reclamation evicts idle sessions and
    forces a garbage collection pass; it is idempotent and safe to call with
    no pending work.
    """

    def __init__(self, model_manager: ModelManager) -> None:
        self._model_manager = model_manager
        self._process = psutil.Process()
        self._lock = threading.Lock()
        self._reclaim_count = 0

    def estimate_usage(self) -> ResourceUsage:
        return ResourceUsage(
            units_in_use=len(self._model_manager.get_loaded_models()),
            bytes_in_use=self._process.memory_info().rss,
        )

    def reclaim(self) -> ResourceUsage:
        """Release idle sessions and unreachable buffers, then re-measure."""
        with self._lock:
            evicted = self._model_manager.unload_idle_models()
            collected = gc.collect()
            self._reclaim_count += 1
        usage = self.estimate_usage()
        logger.debug(
            "Reclaimed runtime resources (evicted=%d, collected=%d, sessions=%d, rss=%d)",
            len(evicted),
            collected,
            usage.units_in_use,
            usage.bytes_in_use,
        )
        return usage

    @property
    def reclaim_count(self) -> int:
        with self._lock:
            return self._reclaim_count

    @contextmanager
    def scope(self, label: str) -> Iterator[None]:
        """Bracket one unit of inference work; reclaims on every exit path."""
        logger.debug("Entering resource scope %s", label)
        try:
            yield
        finally:
            self.reclaim()
