"""Priority task scheduling for the shared inference resource."""

from behavior_profile.queue.models import (
    AITask,
    TaskPayloadError,
    TaskPriority,
    TaskRequest,
    TaskResult,
    TaskType,
)
from behavior_profile.queue.processors import TaskProcessors
from behavior_profile.queue.releaser import BackgroundTaskReleaser
from behavior_profile.queue.scheduler import PriorityTaskScheduler
from behavior_profile.queue.storage import PendingTaskStorage

__all__ = [
    "AITask",
    "BackgroundTaskReleaser",
    "PendingTaskStorage",
    "PriorityTaskScheduler",
    "TaskPayloadError",
    "TaskPriority",
    "TaskProcessors",
    "TaskRequest",
    "TaskResult",
    "TaskType",
]
