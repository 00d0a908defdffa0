"""Shared httpx plumbing for the outbound service clients."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from ..exceptions import NotFoundError, TransientExternalFailure
from ..logging_config import get_logger
from .retry import RetryPolicy

logger = get_logger(__name__)


def check_response(service: str, response: httpx.Response, resource: str) -> httpx.Response:
    """Map HTTP failures onto the error taxonomy."""
    code = response.status_code
    if code == 404:
        raise NotFoundError(resource, str(response.request.url))
    if code >= 400:
        raise TransientExternalFailure(service, f"HTTP {code}: {response.text[:200]}", status_code=code)
    return response


class HttpService:
    """One ``httpx.AsyncClient`` per service, every request wrapped by the retry policy."""

    service_name = "http"

    def __init__(
        self,
        base_url: str,
        headers: Optional[dict[str, str]] = None,
        timeout_seconds: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.retry = retry or RetryPolicy()
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers or {},
            timeout=timeout_seconds,
            transport=transport,
        )

    async def request(self, method: str, url: str, resource: str = "resource", **kwargs: Any) -> httpx.Response:
        return await self.retry.call(self._send, method, url, resource, **kwargs)

    async def _send(self, method: str, url: str, resource: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientExternalFailure(self.service_name, "request timed out") from e
        except httpx.TransportError as e:
            raise TransientExternalFailure(self.service_name, str(e) or type(e).__name__) from e
        return check_response(self.service_name, response, resource)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
