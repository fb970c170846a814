"""Priority task scheduler serializing access to the inference resource.

A single cooperative ``asyncio.Task`` drains a heap keyed by
``(priority, created_at, sequence)``. Before every dequeue the inference
client is health-checked; an unhealthy or raising client gets one
recreation attempt, after which the worker halts and leaves the queue
intact until the next :meth:`PriorityTaskScheduler.submit` or
:meth:`PriorityTaskScheduler.kick`.

Callers get an ``asyncio.Future`` per task. There is no internal
cancellation; callers needing a deadline race the future themselves::

    result = await asyncio.wait_for(asyncio.shield(future), timeout=10)
"""

from __future__ import annotations

import asyncio
import contextlib
import heapq
import itertools
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from behavior_profile.config import get_settings
from behavior_profile.inference.client import InferenceClient
from behavior_profile.logging import get_logger
from behavior_profile.queue.models import AITask, TaskPriority, TaskResult

log = get_logger("behavior_profile.queue.scheduler")


class TaskExecutor(Protocol):
    """Runs one task against the inference resource."""

    async def execute(self, task: AITask) -> TaskResult: ...


@dataclass
class _QueuedTask:
    task: AITask
    future: asyncio.Future[TaskResult]


_HeapEntry = tuple[int, datetime, int, _QueuedTask]


class PriorityTaskScheduler:
    """Runs submitted tasks one at a time in priority order."""

    def __init__(
        self,
        client: InferenceClient,
        executor: TaskExecutor,
        background_queue_limit: int | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            client: Inference client probed before each dequeue.
            executor: Dispatches tasks to their handlers.
            background_queue_limit: Queue depth at which background work
                is refused (defaults to settings).
        """
        self._client = client
        self._executor = executor
        self._background_queue_limit = (
            background_queue_limit
            if background_queue_limit is not None
            else get_settings().scheduler_background_queue_limit
        )
        self._heap: list[_HeapEntry] = []
        self._sequence = itertools.count()
        self._worker: asyncio.Task[None] | None = None
        self._current: AITask | None = None
        self._halted = False
        self._last_heartbeat: datetime | None = None
        # Held for every call into the inference client
        self._client_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, task: AITask) -> asyncio.Future[TaskResult]:
        """Queue a task and return a future resolving to its result.

        Must be called from within the running event loop.
        """
        future: asyncio.Future[TaskResult] = asyncio.get_running_loop().create_future()
        entry = _QueuedTask(task=task, future=future)
        heapq.heappush(
            self._heap,
            (int(task.priority), task.created_at, next(self._sequence), entry),
        )
        log.debug(
            "task_submitted",
            task_id=task.id,
            task_type=task.type.value,
            priority=int(task.priority),
            queue_depth=len(self._heap),
        )
        self._ensure_worker()
        return future

    def kick(self) -> None:
        """Restart the worker if tasks are waiting and nothing is running."""
        if self._heap:
            self._ensure_worker()

    @property
    def is_busy(self) -> bool:
        """Whether a task is executing right now."""
        return self._current is not None

    @property
    def queue_depth(self) -> int:
        """Number of tasks waiting to run."""
        return len(self._heap)

    @property
    def current_task(self) -> AITask | None:
        """The task currently executing, if any."""
        return self._current

    @property
    def is_halted(self) -> bool:
        """Whether the worker stopped on an unhealthy inference client."""
        return self._halted

    @property
    def last_heartbeat(self) -> datetime | None:
        """Time of the last health probe or task completion."""
        return self._last_heartbeat

    def has_high_priority_pending(self) -> bool:
        """Whether a priority-1 task is waiting."""
        return any(entry[0] == TaskPriority.HIGH for entry in self._heap)

    def accepts_background_tasks(self) -> bool:
        """Whether background batches may be submitted now."""
        return (
            not self.has_high_priority_pending()
            and len(self._heap) < self._background_queue_limit
        )

    def get_status(self) -> dict[str, Any]:
        """Snapshot of scheduler state for status displays."""
        current = self._current
        return {
            "model_available": self._client.is_available,
            "model_name": self._client.model_name,
            "is_busy": self.is_busy,
            "queue_size": len(self._heap),
            "current_task": {
                "id": current.id,
                "type": current.type.value,
                "priority": int(current.priority),
            }
            if current
            else None,
            "halted": self._halted,
            "last_heartbeat": self._last_heartbeat.isoformat() if self._last_heartbeat else None,
            "accepts_background_tasks": self.accepts_background_tasks(),
        }

    async def check_health(self) -> bool:
        """Health-check the inference client without recreating it.

        Waits until the worker is between tasks, so the client never
        serves this check and a task or recreation at the same time.
        """
        async with self._client_lock:
            return await self._check_client()

    async def close(self) -> None:
        """Stop the worker and cancel every waiting future."""
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        self._worker = None

        cancelled = 0
        while self._heap:
            _, _, _, entry = heapq.heappop(self._heap)
            if not entry.future.done():
                entry.future.cancel()
                cancelled += 1
        log.info("scheduler_closed", cancelled_tasks=cancelled)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._halted = False
            self._worker = asyncio.create_task(self._run())

    async def _ensure_healthy(self) -> bool:
        """Check the client, recreating it once if the check fails or raises."""
        if await self._check_client():
            return True

        log.warning("inference_unhealthy_recreating", model=self._client.model_name)
        try:
            healthy = await self._client.recreate()
        except Exception:
            log.exception("inference_recreate_error", model=self._client.model_name)
            return False

        if healthy:
            self._last_heartbeat = datetime.now()
        return healthy

    async def _check_client(self) -> bool:
        try:
            healthy = await self._client.health_check()
        except Exception:
            log.exception("inference_health_check_error", model=self._client.model_name)
            return False
        if healthy:
            self._last_heartbeat = datetime.now()
        return healthy

    async def _run(self) -> None:
        while self._heap:
            async with self._client_lock:
                if not await self._ensure_healthy():
                    self._halted = True
                    log.error("scheduler_halted_unhealthy", queue_depth=len(self._heap))
                    return

                _, _, _, entry = heapq.heappop(self._heap)
                if entry.future.done():
                    # Caller cancelled the future before the task started
                    continue

                try:
                    result = await self._execute(entry.task)
                except asyncio.CancelledError:
                    entry.future.cancel()
                    raise
            if not entry.future.done():
                entry.future.set_result(result)
            self._last_heartbeat = datetime.now()

    async def _execute(self, task: AITask) -> TaskResult:
        self._current = task
        start = datetime.now()
        try:
            result = await self._executor.execute(task)
        except Exception as exc:
            log.exception("task_failed", task_id=task.id, task_type=task.type.value)
            result = TaskResult(success=False, error=str(exc))
        finally:
            self._current = None

        log.info(
            "task_completed",
            task_id=task.id,
            task_type=task.type.value,
            priority=int(task.priority),
            success=result.success,
            duration_seconds=round((datetime.now() - start).total_seconds(), 3),
            queue_depth=len(self._heap),
        )
        return result
