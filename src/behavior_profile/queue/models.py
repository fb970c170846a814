"""Task models: priority and type enums, typed payloads, task and result records.

Tasks submitted to the scheduler carry a payload validated against the
model registered for their type, so malformed submissions fail at
submit time rather than inside the worker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum, StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from behavior_profile.events.models import parse_timestamp


class TaskPriority(IntEnum):
    """Priority levels for tasks (lower = higher priority)."""

    HIGH = 1  # User is waiting on the result
    MEDIUM = 2  # Fresh events from the active tab
    LOW = 3  # Opportunistic enrichment
    BACKGROUND = 4  # Deferred batches released by the poller


class TaskType(StrEnum):
    """Closed set of task types the processors understand."""

    SEARCH_ENRICHMENT = "search_enrichment"
    TOPIC_INFERENCE = "topic_inference"
    PAGE_ANALYSIS = "page_analysis"
    PROFILE_SUMMARY_GENERATION = "profile_summary_generation"


class TaskPayloadError(ValueError):
    """Raised when a task submission is malformed."""


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class SearchEnrichmentPayload(_Payload):
    """Classify a stored search query."""

    search_id: str = Field(min_length=1)
    query: str = Field(min_length=1)


class TopicInferencePayload(_Payload):
    """Infer topic domains for a stored page visit."""

    page_id: str = Field(min_length=1)
    url: str | None = None
    content_sample: str | None = None


class PageAnalysisPayload(_Payload):
    """Rate a page against the current profile."""

    page_id: str | None = None
    content_sample: str = ""
    keywords: list[str] = Field(default_factory=list)
    profile_context: str | None = None


class ProfileSummaryPayload(_Payload):
    """Regenerate the natural-language profile summaries."""

    reason: str | None = None


TaskPayload = (
    SearchEnrichmentPayload | TopicInferencePayload | PageAnalysisPayload | ProfileSummaryPayload
)

PAYLOAD_MODELS: dict[TaskType, type[_Payload]] = {
    TaskType.SEARCH_ENRICHMENT: SearchEnrichmentPayload,
    TaskType.TOPIC_INFERENCE: TopicInferencePayload,
    TaskType.PAGE_ANALYSIS: PageAnalysisPayload,
    TaskType.PROFILE_SUMMARY_GENERATION: ProfileSummaryPayload,
}


def parse_payload(task_type: TaskType | str, data: Any) -> TaskPayload:
    """Validate raw payload data for a task type.

    Raises:
        TaskPayloadError: If the type is unknown or the data is invalid.
    """
    try:
        key = TaskType(task_type)
    except ValueError as e:
        raise TaskPayloadError(f"Unknown task type: {task_type}") from e

    model = PAYLOAD_MODELS[key]
    if isinstance(data, model):
        return data  # type: ignore[return-value]
    if isinstance(data, BaseModel):
        raise TaskPayloadError(f"Payload {type(data).__name__} does not match task type {key}")
    try:
        return model.model_validate(data or {})  # type: ignore[return-value]
    except ValidationError as e:
        raise TaskPayloadError(f"Invalid {key} payload: {e.error_count()} errors") from e


def parse_priority(value: Any) -> TaskPriority:
    """Coerce a raw priority to :class:`TaskPriority`.

    Raises:
        TaskPayloadError: If the value is not an integer in 1..4.
    """
    if isinstance(value, bool):
        raise TaskPayloadError(f"Invalid priority: {value!r}")
    try:
        return TaskPriority(int(value))
    except (TypeError, ValueError) as e:
        raise TaskPayloadError(f"Invalid priority: {value!r}") from e


# ---------------------------------------------------------------------------
# Tasks and results
# ---------------------------------------------------------------------------


@dataclass
class AITask:
    """A unit of inference work.

    Attributes:
        type: What the task does.
        payload: Validated payload for ``type``.
        priority: 1 (highest) to 4 (background).
        id: Unique task identifier.
        created_at: Submission time; orders tasks within a priority band.
        tab_id: Browser tab that produced the task, if any.
    """

    type: TaskType
    payload: TaskPayload
    priority: TaskPriority = TaskPriority.MEDIUM
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=datetime.now)
    tab_id: int | None = None

    def __post_init__(self) -> None:
        try:
            self.type = TaskType(self.type)
        except ValueError as e:
            raise TaskPayloadError(f"Unknown task type: {self.type}") from e
        self.priority = parse_priority(self.priority)
        self.payload = parse_payload(self.type, self.payload)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "id": self.id,
            "type": self.type.value,
            "priority": int(self.priority),
            "data": self.payload.model_dump(),
            "created_at": self.created_at.isoformat(),
            "tab_id": self.tab_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AITask:
        """Create a task from a dictionary produced by :meth:`to_dict`."""
        return cls(
            id=str(data.get("id") or uuid4()),
            type=data.get("type", ""),  # type: ignore[arg-type]
            priority=data.get("priority", TaskPriority.MEDIUM),
            payload=data.get("data") or {},  # type: ignore[arg-type]
            created_at=parse_timestamp(data.get("created_at")) or datetime.now(),
            tab_id=data.get("tab_id"),
        )


@dataclass
class TaskResult:
    """Outcome of executing a task."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {"success": self.success, "data": self.data, "error": self.error}


class TaskRequest(BaseModel):
    """Raw task submission as sent by producers.

    Example::

        {"type": "search_enrichment", "id": "t1", "priority": 2,
         "data": {"searchId": "s1", "query": "python asyncio"}, "tabId": 7}
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str
    id: str | None = None
    priority: int = TaskPriority.MEDIUM
    data: dict[str, Any] = Field(default_factory=dict)
    tab_id: int | None = Field(default=None, alias="tabId")

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> AITask:
        """Validate a raw submission and build the typed task.

        Raises:
            TaskPayloadError: If any field is missing or invalid.
        """
        if not isinstance(raw, dict):
            raise TaskPayloadError("Task submission must be a mapping")
        try:
            request = cls.model_validate(raw)
        except ValidationError as e:
            raise TaskPayloadError(f"Invalid task submission: {e.error_count()} errors") from e
        return AITask(
            id=request.id or str(uuid4()),
            type=request.type,  # type: ignore[arg-type]
            priority=request.priority,  # type: ignore[arg-type]
            payload=request.data,  # type: ignore[arg-type]
            tab_id=request.tab_id,
        )
