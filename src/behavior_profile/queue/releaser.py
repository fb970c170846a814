"""Background batch releaser.

An external poller calls :meth:`BackgroundTaskReleaser.tick` on its own
cadence. Each tick hands at most one small batch of deferred tasks to
the scheduler at background priority, and only when the scheduler has
room for them.
"""

import asyncio
import sqlite3
from dataclasses import replace
from functools import partial

from behavior_profile.config import get_settings
from behavior_profile.inference.topics import UNKNOWN_TOPICS
from behavior_profile.logging import get_logger
from behavior_profile.queue.models import (
    AITask,
    TaskPriority,
    TaskResult,
    TaskType,
    TopicInferencePayload,
)
from behavior_profile.queue.processors import EventWriter
from behavior_profile.queue.scheduler import PriorityTaskScheduler
from behavior_profile.queue.storage import PendingTaskStorage

log = get_logger("behavior_profile.queue.releaser")


class BackgroundTaskReleaser:
    """Releases deferred tasks to the scheduler under backpressure."""

    def __init__(
        self,
        scheduler: PriorityTaskScheduler,
        storage: PendingTaskStorage,
        events: EventWriter,
        min_pending: int | None = None,
        batch_size: int | None = None,
    ) -> None:
        """Initialize the releaser.

        Args:
            scheduler: Scheduler receiving released tasks. Its health check
                gates each release.
            storage: Store of deferred tasks.
            events: Event store updated when a topic inference fails.
            min_pending: Smallest backlog worth releasing (defaults to settings).
            batch_size: Maximum tasks per tick (defaults to settings).
        """
        settings = get_settings()
        self._scheduler = scheduler
        self._storage = storage
        self._events = events
        self._min_pending = (
            min_pending if min_pending is not None else settings.releaser_min_pending
        )
        self._batch_size = batch_size if batch_size is not None else settings.releaser_batch_size

    async def tick(self) -> list[asyncio.Future[TaskResult]]:
        """Release one batch if the scheduler can take it.

        Returns:
            Futures of the released tasks (empty when nothing was released).
        """
        skip_reason = self._gate()
        if skip_reason is None and not await self._scheduler.check_health():
            skip_reason = "model_unhealthy"
        if skip_reason is None:
            pending = self._storage.count_pending()
            if pending < self._min_pending:
                skip_reason = "not_enough_pending"
        if skip_reason is not None:
            log.debug("background_release_skipped", reason=skip_reason)
            return []

        tasks = self._storage.get_pending(self._batch_size)
        self._storage.mark_released([task.id for task in tasks])

        futures = []
        for task in tasks:
            released = replace(task, priority=TaskPriority.BACKGROUND)
            future = self._scheduler.submit(released)
            future.add_done_callback(partial(self._on_complete, released))
            futures.append(future)

        log.info(
            "background_batch_released",
            count=len(futures),
            remaining=pending - len(futures),
        )
        return futures

    def _gate(self) -> str | None:
        if self._scheduler.is_busy:
            return "scheduler_busy"
        if not self._scheduler.accepts_background_tasks():
            return "scheduler_not_accepting"
        return None

    def _on_complete(self, task: AITask, future: asyncio.Future[TaskResult]) -> None:
        try:
            if future.cancelled():
                self._storage.mark_done(task.id, success=False, error="cancelled")
                return
            result = future.result()
            self._storage.mark_done(task.id, success=result.success, error=result.error)
            if not result.success and task.type == TaskType.TOPIC_INFERENCE:
                payload = task.payload
                assert isinstance(payload, TopicInferencePayload)
                self._events.apply_page_topics(payload.page_id, UNKNOWN_TOPICS)
                log.warning(
                    "background_topic_inference_failed",
                    page_id=payload.page_id,
                    error=result.error,
                )
        except sqlite3.Error:
            log.exception("background_task_bookkeeping_failed", task_id=task.id)
