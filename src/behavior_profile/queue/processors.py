"""Task-type dispatchers for the scheduler.

Each :class:`TaskType` maps to a handler that runs the inference step
for the task and writes the result back into the event records or the
profile summaries.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

from behavior_profile.events.models import PageEvent, SearchEnrichment, SearchEvent, TopicDomain
from behavior_profile.inference.enrichment import EnrichmentService
from behavior_profile.logging import get_logger
from behavior_profile.profile.storage import ProfileSummaries
from behavior_profile.queue.models import (
    AITask,
    PageAnalysisPayload,
    ProfileSummaryPayload,
    SearchEnrichmentPayload,
    TaskResult,
    TaskType,
    TopicInferencePayload,
)

log = get_logger("behavior_profile.queue.processors")


# ---------------------------------------------------------------------------
# Protocols for loose coupling
# ---------------------------------------------------------------------------


class EventWriter(Protocol):
    """Event store operations the handlers write results through."""

    def apply_search_enrichment(
        self, event_id: str, enrichment: SearchEnrichment
    ) -> SearchEvent | None: ...

    def apply_page_topics(
        self, event_id: str, topic_domains: tuple[TopicDomain, ...]
    ) -> PageEvent | None: ...


class SummaryGenerator(Protocol):
    """Produces and stores profile summaries."""

    async def generate(self) -> ProfileSummaries: ...


# ---------------------------------------------------------------------------
# Processor registry
# ---------------------------------------------------------------------------


class TaskProcessors:
    """Dispatch tasks to the handler registered for their type."""

    def __init__(
        self,
        *,
        enrichment: EnrichmentService,
        events: EventWriter,
        summaries: SummaryGenerator | None = None,
    ) -> None:
        self._enrichment = enrichment
        self._events = events
        self._summaries = summaries
        self._handlers: dict[TaskType, Callable[[AITask], Awaitable[TaskResult]]] = {
            TaskType.SEARCH_ENRICHMENT: self._handle_search_enrichment,
            TaskType.TOPIC_INFERENCE: self._handle_topic_inference,
            TaskType.PAGE_ANALYSIS: self._handle_page_analysis,
            TaskType.PROFILE_SUMMARY_GENERATION: self._handle_profile_summary,
        }

    async def execute(self, task: AITask) -> TaskResult:
        """Run a task through its handler.

        Handler exceptions are logged and returned as failed results.
        """
        handler = self._handlers[task.type]
        try:
            return await handler(task)
        except Exception as exc:
            log.exception("processor_error", task_id=task.id, task_type=task.type.value)
            return TaskResult(success=False, error=str(exc))

    # ------------------------------------------------------------------
    # Individual handlers
    # ------------------------------------------------------------------

    async def _handle_search_enrichment(self, task: AITask) -> TaskResult:
        payload = task.payload
        assert isinstance(payload, SearchEnrichmentPayload)

        enrichment = await self._enrichment.analyze_search_query(payload.query)
        stored = self._events.apply_search_enrichment(payload.search_id, enrichment)
        log.debug(
            "search_enriched",
            search_id=payload.search_id,
            intent=enrichment.intent_type,
            model_used=enrichment.model_used,
            stored=stored is not None,
        )
        return TaskResult(
            success=True,
            data={"search_id": payload.search_id, **enrichment.to_dict()},
        )

    async def _handle_topic_inference(self, task: AITask) -> TaskResult:
        """Infer and store topic domains for a page.

        A missing page record is not an error: the topics are still
        returned to the caller.
        """
        payload = task.payload
        assert isinstance(payload, TopicInferencePayload)

        topics = await self._enrichment.infer_page_topics(payload.content_sample, payload.url)
        stored = self._events.apply_page_topics(payload.page_id, topics)
        log.debug(
            "page_topics_inferred",
            page_id=payload.page_id,
            primary_topic=topics[0].topic,
            stored=stored is not None,
        )
        return TaskResult(
            success=True,
            data={
                "page_id": payload.page_id,
                "topic_domains": [td.to_dict() for td in topics],
                "primary_topic": topics[0].topic,
            },
        )

    async def _handle_page_analysis(self, task: AITask) -> TaskResult:
        payload = task.payload
        assert isinstance(payload, PageAnalysisPayload)

        analysis = await self._enrichment.analyze_page(
            payload.content_sample,
            keywords=payload.keywords,
            profile_context=payload.profile_context,
        )
        return TaskResult(success=True, data={"page_id": payload.page_id, **analysis})

    async def _handle_profile_summary(self, task: AITask) -> TaskResult:
        payload = task.payload
        assert isinstance(payload, ProfileSummaryPayload)

        if self._summaries is None:
            return TaskResult(success=False, error="Summary generator not available")
        summaries = await self._summaries.generate()
        log.debug("profile_summary_task_done", reason=payload.reason)
        return TaskResult(success=True, data=summaries.to_dict())
