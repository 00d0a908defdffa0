"""Background loop draining the durable work queue.

One item at a time: claim atomically, decode once into a queue event,
process, then mark ``completed`` or ``failed``. With the default
``queue_max_attempts = 1`` nothing is retried; a higher limit puts items that
hit a retryable external failure back on the queue with exponential backoff.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from ..config import AppConfig
from ..exceptions import (
    AnalysisInProgressError,
    CodeFamilyError,
    NotFoundError,
    TransientExternalFailure,
)
from ..history import RepositorySource
from ..logging_config import get_logger
from ..models import ConflictAssessment, QueueItem, QueueStatus, ReviewRequest
from ..persistence import AnalysisStore
from ..services import ExternalServices
from ..services.retry import is_retryable
from .events import PushEvent, QueueEvent, ReviewRequestEvent, UnsupportedEvent, decode_event
from .ingestion import AnalysisRun, RunSummary
from .supervisor import AnalysisSupervisor

logger = get_logger(__name__)

SourceProvider = Callable[[str, str], RepositorySource]


class PipelineCoordinator:
    def __init__(
        self,
        store: AnalysisStore,
        config: AppConfig,
        services: Optional[ExternalServices] = None,
        supervisor: Optional[AnalysisSupervisor] = None,
        source_provider: Optional[SourceProvider] = None,
    ):
        self.store = store
        self.config = config
        self.services = services or ExternalServices()
        self.supervisor = supervisor or AnalysisSupervisor()
        self.source_provider = source_provider

    async def run(self, stop_event: asyncio.Event) -> None:
        """Process items until ``stop_event`` is set."""
        logger.info("Worker started")
        while not stop_event.is_set():
            try:
                item = await self.process_one()
            except Exception as e:
                logger.error("Worker loop error: %s", e, exc_info=True)
                await _wait(stop_event, self.config.error_backoff_seconds)
                continue
            if item is None:
                await _wait(stop_event, self.config.poll_interval_seconds)
        logger.info("Worker stopped")

    async def process_one(self) -> Optional[QueueItem]:
        """Claim and process the next item. Returns its final state, or None when idle."""
        item = self.store.claim_next()
        if item is None:
            return None
        logger.info("Processing queue item %d (%s, attempt %d)", item.id, item.event_type, item.attempts)

        try:
            event = decode_event(item.event_type, item.payload)
            await self.handle(event)
        except NotFoundError as e:
            self._fail(item, e)
        except (TransientExternalFailure, AnalysisInProgressError) as e:
            retryable = not isinstance(e, TransientExternalFailure) or is_retryable(e)
            if retryable and item.attempts < self.config.queue_max_attempts:
                delay = self.config.queue_retry_base_seconds * 2 ** (item.attempts - 1)
                logger.warning("Queue item %d deferred %.0fs: %s", item.id, delay, e)
                self.store.reschedule(item.id, delay, str(e))
            else:
                self._fail(item, e)
        except (CodeFamilyError, ValueError) as e:
            self._fail(item, e)
        except Exception as e:
            logger.error("Unexpected error in queue item %d", item.id, exc_info=True)
            self._fail(item, e)
        else:
            self.store.mark_status(item.id, QueueStatus.COMPLETED.value)
            logger.info("Queue item %d completed", item.id)
        return self.store.get_queue_item(item.id)

    async def handle(self, event: QueueEvent) -> None:
        if isinstance(event, PushEvent):
            summary = await self.handle_push(event)
            if summary.conflict is not None:
                await self.dispatch(event, summary.conflict)
        elif isinstance(event, ReviewRequestEvent):
            await self.handle_review_request(event)
        elif isinstance(event, UnsupportedEvent):
            logger.debug("Ignoring unsupported event type %s", event.event_type)

    async def handle_push(self, event: PushEvent) -> RunSummary:
        source = self.source_provider(event.owner, event.name) if self.source_provider else None

        async def analyze(token) -> RunSummary:
            run = AnalysisRun(self.store, self.config, self.services, token=token)
            return await run.push(event, source)

        return await self.supervisor.run(f"{event.owner}/{event.name}", analyze)

    async def handle_review_request(self, event: ReviewRequestEvent) -> None:
        repo = self.store.get_repository(event.owner, event.name)
        if repo is None:
            raise NotFoundError("repository", f"{event.owner}/{event.name}")

        files = None
        platform = self.services.platform
        if platform is not None and event.state == "open":
            files = await platform.list_review_request_files(event.owner, event.name, event.number)
        self.store.upsert_review_request(
            ReviewRequest(repo.id, event.number, event.title, event.state, event.author, event.head_sha),
            files,
        )
        logger.info("Review request #%d %s (%s)", event.number, event.action or "updated", event.state)

    async def dispatch(self, event: PushEvent, assessment: ConflictAssessment) -> None:
        """Fail the pushed commit's status and notify the pusher, or pass it."""
        platform = self.services.platform
        context = self.config.status_context
        if not assessment.is_blocking:
            if platform is not None:
                await platform.create_status(
                    event.owner, event.name, event.after, "success", "No conflicting review requests", context
                )
            return

        numbers = ", ".join(f"#{r.number}" for r in assessment.conflicting)
        description = f"Conflict risk {assessment.risk_score:.0%} with {numbers}"
        logger.warning("%s/%s@%s: %s", event.owner, event.name, event.after[:8], description)
        if platform is not None:
            await platform.create_status(event.owner, event.name, event.after, "failure", description, context)

        notifier = self.services.notifier
        if notifier is not None and event.pusher:
            lines = [f"Your push to {event.owner}/{event.name} ({event.branch}) may conflict with open work:"]
            for request in assessment.conflicting:
                lines.append(f"  #{request.number} {request.title} (risk {request.risk:.0%})")
            await notifier.send_direct_message(event.pusher, "\n".join(lines))

    def _fail(self, item: QueueItem, error: BaseException) -> None:
        logger.error("Queue item %d failed: %s", item.id, error)
        self.store.mark_status(item.id, QueueStatus.FAILED.value, str(error))


async def _wait(stop_event: asyncio.Event, seconds: float) -> None:
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
