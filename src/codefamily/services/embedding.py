"""Embedding gateway backed by the Gemini ``embedContent`` endpoint."""

from __future__ import annotations

from typing import Optional

import httpx

from ..exceptions import TransientExternalFailure
from .http import HttpService
from .retry import RetryPolicy


class GeminiEmbeddingGateway(HttpService):
    """Turn a code fragment into a fixed-length vector.

    A response whose vector has the wrong length is treated like an
    unreachable service: the caller skips the chunk.
    """

    service_name = "embedding"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        model: str = "text-embedding-004",
        dimensions: int = 768,
        timeout_seconds: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, timeout_seconds=timeout_seconds, retry=retry, transport=transport)
        self.api_key = api_key
        self.model = model
        self.dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        response = await self.request(
            "POST",
            f"/models/{self.model}:embedContent",
            resource="embedding model",
            params={"key": self.api_key},
            json={"model": f"models/{self.model}", "content": {"parts": [{"text": text}]}},
        )
        try:
            values = [float(v) for v in response.json()["embedding"]["values"]]
        except (KeyError, TypeError, ValueError) as e:
            raise TransientExternalFailure(self.service_name, f"malformed response: {e}") from e
        if len(values) != self.dimensions:
            raise TransientExternalFailure(
                self.service_name, f"expected {self.dimensions} dimensions, got {len(values)}"
            )
        return values
