"""Cooperative cancellation threaded through long-running analysis calls."""

from __future__ import annotations

import asyncio
from typing import Optional

from .exceptions import AnalysisCancelledError


class CancellationToken:
    """Set once; checked between commits and files by every long-running step."""

    def __init__(self, label: str = "") -> None:
        self.label = label
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AnalysisCancelledError(self.label)

    async def wait(self) -> None:
        await self._event.wait()
