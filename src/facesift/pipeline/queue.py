"""Single-flight, memory-pressure-aware detection queue.

Architecture:
    FastAPI (async) -> FIFO deque -> one batch at a time -> ThreadPoolExecutor(1) -> orchestrator

Tasks within a batch run strictly one after another on a single worker
thread, with forced reclamation after each. Between batches the drain is
rescheduled after a short delay instead of looping.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from facesift.errors import QueueClosed, ResourceExhaustion

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from facesift.ml.runtime import RuntimeResources
    from facesift.pipeline.detections import ScoredDetection, SelectionPolicy
    from facesift.pipeline.orchestrator import DetectionOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 3
DEFAULT_RESCHEDULE_DELAY = 0.05


@dataclass(eq=False)
class QueueTask:
    """A pending detection request; resolved exactly once."""

    image: NDArray[np.uint8]
    policy: SelectionPolicy
    future: asyncio.Future[list[ScoredDetection]]


def _cancel_all(tasks: list[QueueTask]) -> None:
    for task in tasks:
        if not task.future.done():
            task.future.cancel()


class ResourceBoundedQueue:
    """Serializes detection requests against the orchestrator."""

    def __init__(
        self,
        orchestrator: DetectionOrchestrator,
        resources: RuntimeResources,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        reschedule_delay: float = DEFAULT_RESCHEDULE_DELAY,
        memory_threshold_bytes: int,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._orchestrator = orchestrator
        self._resources = resources
        self._batch_size = batch_size
        self._reschedule_delay = reschedule_delay
        self._memory_threshold = memory_threshold_bytes

        self._pending: deque[QueueTask] = deque()
        self._is_processing = False
        self._degraded = False
        self._closed = False
        self._in_flight: list[QueueTask] = []
        self._drain_tasks: set[asyncio.Task[None]] = set()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="face-detection")

    async def submit(self, image: NDArray[np.uint8], policy: SelectionPolicy) -> list[ScoredDetection]:
        """Queue a detection and wait for its result.

        Raises:
            QueueClosed: If the queue has been shut down.
        """
        if self._closed:
            raise QueueClosed("Detection queue is shut down")
        loop = asyncio.get_running_loop()
        task = QueueTask(image=image, policy=policy, future=loop.create_future())
        self._pending.append(task)
        if not self._is_processing:
            self._is_processing = True
            loop.call_soon(self._start_batch, loop)
        return await task.future

    @property
    def queue_depth(self) -> int:
        """Number of tasks waiting to be dequeued."""
        return len(self._pending)

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @property
    def degraded(self) -> bool:
        """True when reclamation last failed to get under the memory threshold."""
        return self._degraded

    def shutdown(self) -> None:
        """Cancel queued and in-flight tasks and stop the worker thread.

        A detection already running on the worker thread is allowed to
        finish; its result is discarded.
        """
        self._closed = True
        _cancel_all(self._in_flight)
        while self._pending:
            task = self._pending.popleft()
            if not task.future.done():
                task.future.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)

    # -- Internal -----------------------------------------------------------

    def _start_batch(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._closed:
            self._is_processing = False
            return
        drain = loop.create_task(self._process_batch())
        self._drain_tasks.add(drain)
        drain.add_done_callback(self._drain_tasks.discard)

    async def _process_batch(self) -> None:
        loop = asyncio.get_running_loop()
        batch: list[QueueTask] = []
        try:
            try:
                await loop.run_in_executor(self._executor, self._relieve_pressure)
            except Exception:
                logger.exception("Memory pressure check failed")

            while self._pending and len(batch) < self._batch_size:
                batch.append(self._pending.popleft())
            self._in_flight = batch
            logger.debug("Processing batch of %d (%d still queued)", len(batch), len(self._pending))

            for task in batch:
                if self._closed:
                    break
                try:
                    result = await loop.run_in_executor(
                        self._executor, self._orchestrator.detect, task.image, task.policy
                    )
                except Exception as exc:
                    if not task.future.done():
                        task.future.set_exception(exc)
                else:
                    if not task.future.done():
                        task.future.set_result(result)
                finally:
                    await self._reclaim_after_task(loop)
        except Exception as exc:
            logger.exception("Detection batch aborted")
            for task in batch:
                if not task.future.done():
                    task.future.set_exception(exc)
        finally:
            # Tasks skipped by shutdown or by cancellation of this drain.
            _cancel_all(batch)
            self._in_flight = []
            if self._pending and not self._closed:
                loop.call_later(self._reschedule_delay, self._start_batch, loop)
            else:
                self._is_processing = False

    async def _reclaim_after_task(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._closed:
            return
        try:
            await loop.run_in_executor(self._executor, self._resources.reclaim)
        except Exception:
            logger.exception("Reclamation after detection failed")

    def _relieve_pressure(self) -> None:
        usage = self._resources.estimate_usage()
        if usage.bytes_in_use <= self._memory_threshold:
            self._degraded = False
            return

        usage = self._resources.reclaim()
        if usage.bytes_in_use > self._memory_threshold:
            self._degraded = True
            exhaustion = ResourceExhaustion(usage.bytes_in_use, self._memory_threshold)
            logger.warning("%s", exhaustion.message)
        else:
            self._degraded = False
