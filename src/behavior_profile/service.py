"""Profile synthesis service.

Wires the stores, the inference client, the scheduler and the profile
builders into one instance. Build it once at startup::

    service = ProfileSynthesisService.from_settings()
    await service.observe_session("session-42")

Session closes are serialized by an ``asyncio.Lock`` so the long-term
profile has a single writer.
"""

from __future__ import annotations

import asyncio
from typing import Any

from behavior_profile.config import Settings, get_settings
from behavior_profile.events.storage import EventStorage
from behavior_profile.inference.client import InferenceClient, OllamaInferenceClient
from behavior_profile.inference.enrichment import EnrichmentService
from behavior_profile.logging import bound_context, get_logger
from behavior_profile.profile.longterm import LongTermProfileUpdater, LtpUpdateResult
from behavior_profile.profile.session import SessionTopicAggregator
from behavior_profile.profile.storage import ProfileStorage
from behavior_profile.profile.summary import ProfileSummaryGenerator, describe_ltp, top_topics
from behavior_profile.queue.models import (
    AITask,
    ProfileSummaryPayload,
    TaskPriority,
    TaskRequest,
    TaskResult,
    TaskType,
)
from behavior_profile.queue.processors import TaskProcessors
from behavior_profile.queue.releaser import BackgroundTaskReleaser
from behavior_profile.queue.scheduler import PriorityTaskScheduler
from behavior_profile.queue.storage import PendingTaskStorage

log = get_logger("behavior_profile.service")

LAST_SESSION_KEY = "last_session_id"


class ProfileSynthesisService:
    """Entry point for session boundaries and task submission."""

    def __init__(
        self,
        *,
        events: EventStorage,
        profiles: ProfileStorage,
        pending: PendingTaskStorage,
        client: InferenceClient,
        settings: Settings | None = None,
        summarize_after_update: bool = True,
    ) -> None:
        """Initialize the service.

        Args:
            events: Activity event store.
            profiles: Profile record store.
            pending: Deferred background task store.
            client: Inference client shared by every task.
            settings: Settings to size the scheduler and releaser.
            summarize_after_update: Queue a summary refresh after each
                successful long-term profile update.
        """
        settings = settings or get_settings()
        self.events = events
        self.profiles = profiles
        self.pending = pending
        self.client = client
        self._summarize_after_update = summarize_after_update
        self._session_lock = asyncio.Lock()

        self.aggregator = SessionTopicAggregator(events)
        self.updater = LongTermProfileUpdater(profiles)
        self.enrichment = EnrichmentService(client)
        self.summaries = ProfileSummaryGenerator(client, profiles)
        self.processors = TaskProcessors(
            enrichment=self.enrichment,
            events=events,
            summaries=self.summaries,
        )
        self.scheduler = PriorityTaskScheduler(
            client,
            self.processors,
            background_queue_limit=settings.scheduler_background_queue_limit,
        )
        self.releaser = BackgroundTaskReleaser(
            self.scheduler,
            pending,
            events,
            min_pending=settings.releaser_min_pending,
            batch_size=settings.releaser_batch_size,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ProfileSynthesisService:
        """Build the service and its stores from settings."""
        settings = settings or get_settings()
        return cls(
            events=EventStorage(settings.events_db_path),
            profiles=ProfileStorage(
                settings.profile_db_path,
                user_id=settings.profile_user_id,
                history_limit=settings.stp_history_limit,
            ),
            pending=PendingTaskStorage(settings.tasks_db_path),
            client=OllamaInferenceClient(
                url=settings.ollama_url,
                model=settings.ollama_model,
                timeout=settings.ollama_timeout,
            ),
            settings=settings,
        )

    # ------------------------------------------------------------------
    # Session boundaries
    # ------------------------------------------------------------------

    async def on_session_closed(self, session_id: str) -> LtpUpdateResult | None:
        """Aggregate a closed session and fold it into the long-term profile.

        Each session is merged once; repeated calls and sessions without
        usable events return None. The snapshot joins the history only
        after the long-term profile was saved, so a failed update can be
        retried with the same session id.
        """
        async with self._session_lock:
            with bound_context(session_id=session_id):
                if self.profiles.has_stp(session_id):
                    log.info("session_already_closed")
                    return None

                stp = self.aggregator.build(session_id)
                if stp.is_empty:
                    log.info("session_empty_skipped")
                    return None

                result = self.updater.update(stp)
                if result.success:
                    self.profiles.append_stp(stp)

        log.info(
            "session_closed",
            session_id=session_id,
            success=result.success,
            reset=result.reset,
            sessions_seen=result.ltp.sessions_seen,
        )
        if result.success and not result.ltp.is_empty and self._summarize_after_update:
            self.scheduler.submit(
                AITask(
                    type=TaskType.PROFILE_SUMMARY_GENERATION,
                    payload=ProfileSummaryPayload(reason=f"session_closed:{session_id}"),
                    priority=TaskPriority.LOW,
                )
            )
        return result

    async def observe_session(self, current_session_id: str) -> LtpUpdateResult | None:
        """Record the active session and close the previous one on change."""
        previous = self.events.get_state(LAST_SESSION_KEY)
        if previous == current_session_id:
            return None

        self.events.set_state(LAST_SESSION_KEY, current_session_id)
        log.info("session_boundary", previous=previous, current=current_session_id)
        if not previous:
            return None
        return await self.on_session_closed(previous)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def submit(self, task: AITask | dict[str, Any]) -> asyncio.Future[TaskResult]:
        """Submit a task, given typed or as a raw ``{type, id, priority, data, tabId}`` dict.

        Raises:
            TaskPayloadError: If a raw submission is invalid.
        """
        if not isinstance(task, AITask):
            task = TaskRequest.from_dict(task)
        return self.scheduler.submit(task)

    def defer(self, task: AITask | dict[str, Any]) -> AITask:
        """Park a task for a later background release.

        Raises:
            TaskPayloadError: If a raw submission is invalid.
        """
        if not isinstance(task, AITask):
            task = TaskRequest.from_dict(task)
        self.pending.add(task)
        return task

    async def release_background_tasks(self) -> list[asyncio.Future[TaskResult]]:
        """Run one releaser tick; called by the external poller."""
        return await self.releaser.tick()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_profile_overview(self) -> dict[str, Any]:
        """Current profiles, summaries and top topics in one dict."""
        ltp = self.profiles.load_ltp()
        stp = self.profiles.get_last_stp()
        summaries = self.profiles.get_summaries()
        return {
            "ltp": ltp.to_dict(),
            "last_stp": stp.to_dict() if stp else None,
            "description": describe_ltp(ltp),
            "summaries": summaries.to_dict() if summaries else None,
            "top_topics": top_topics(ltp, stp),
            "scheduler": self.scheduler.get_status(),
        }

    async def close(self) -> None:
        """Stop the scheduler and release the inference client."""
        await self.scheduler.close()
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()
        log.info("profile_service_closed")
