"""Supervised analysis tasks: at most one in flight per repository."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..cancellation import CancellationToken
from ..exceptions import AnalysisCancelledError, AnalysisInProgressError
from ..logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

AnalysisFactory = Callable[[CancellationToken], Awaitable[T]]


class AnalysisSupervisor:
    """Track background analyses and cancel them cooperatively.

    Each task receives its own :class:`CancellationToken`; long-running steps
    check it between commits and files and raise
    :class:`AnalysisCancelledError` once it fires.
    """

    def __init__(self) -> None:
        self._running: dict[str, tuple[asyncio.Task, CancellationToken]] = {}

    def launch(self, repository: str, factory: AnalysisFactory) -> asyncio.Task:
        """Start ``factory(token)`` as a task for ``repository``.

        Raises:
            AnalysisInProgressError: if an analysis for the repository is still running.
        """
        if self.is_running(repository):
            raise AnalysisInProgressError(repository)
        token = CancellationToken(repository)
        task = asyncio.create_task(factory(token), name=f"analysis:{repository}")
        self._running[repository] = (task, token)
        task.add_done_callback(lambda t: self._finished(repository, t))
        logger.debug("Launched analysis for %s", repository)
        return task

    async def run(self, repository: str, factory: AnalysisFactory) -> Any:
        """Launch and wait for the result."""
        return await self.launch(repository, factory)

    def is_running(self, repository: str) -> bool:
        entry = self._running.get(repository)
        return entry is not None and not entry[0].done()

    def cancel(self, repository: str, reason: str = "cancelled") -> bool:
        entry = self._running.get(repository)
        if entry is None or entry[0].done():
            return False
        entry[1].cancel(reason)
        logger.info("Cancellation requested for %s: %s", repository, reason)
        return True

    async def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        """Cancel every running analysis and wait for them to stop."""
        tasks = []
        for repository, (task, token) in list(self._running.items()):
            if not task.done():
                token.cancel("shutdown")
                tasks.append(task)
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _finished(self, repository: str, task: asyncio.Task) -> None:
        entry = self._running.get(repository)
        if entry is not None and entry[0] is task:
            del self._running[repository]
        if task.cancelled():
            logger.info("Analysis task for %s was cancelled", repository)
            return
        exc = task.exception()
        if isinstance(exc, AnalysisCancelledError):
            logger.info("Analysis for %s stopped after cancellation", repository)
        elif exc is not None:
            logger.error("Analysis for %s failed: %s", repository, exc)
