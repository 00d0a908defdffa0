"""One retry policy applied to every outbound call."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from ..exceptions import TransientExternalFailure
from ..logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    """Transport failures, throttling and 5xx are retried; other rejections are not."""
    if not isinstance(exc, TransientExternalFailure):
        return False
    code = exc.status_code
    return code is None or code == 429 or code >= 500


class RetryPolicy:
    """Bounded attempts with jittered exponential backoff.

    Only retryable :class:`TransientExternalFailure`s are retried; anything else (for
    instance :class:`NotFoundError`) propagates on the first attempt. When
    attempts run out the last failure is re-raised unchanged.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_seconds: float = 0.5,
        max_delay_seconds: float = 10.0,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds

    @classmethod
    def from_config(cls, config: Any) -> "RetryPolicy":
        return cls(
            max_attempts=config.retry_max_attempts,
            base_delay_seconds=config.retry_base_delay_seconds,
            max_delay_seconds=config.retry_max_delay_seconds,
        )

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_random_exponential(multiplier=self.base_delay_seconds, max=self.max_delay_seconds),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
        ):
            with attempt:
                return await fn(*args, **kwargs)
        raise AssertionError("unreachable")  # pragma: no cover
