"""Client for the tree-sitter parsing sidecar (``POST /parse``)."""

from __future__ import annotations

from typing import Optional

import httpx

from ..exceptions import ParseError, TransientExternalFailure
from ..logging_config import get_logger
from .http import HttpService
from .protocols import FunctionChunk, ParseResult
from .retry import RetryPolicy

logger = get_logger(__name__)

SUPPORTED_LANGUAGES = frozenset({"javascript", "jsx", "typescript", "tsx", "python", "go"})


class SidecarParserService(HttpService):
    service_name = "parser"

    def __init__(
        self,
        base_url: str = "http://localhost:3002",
        max_bytes: int = 1_000_000,
        timeout_seconds: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, timeout_seconds=timeout_seconds, retry=retry, transport=transport)
        self.max_bytes = max_bytes

    async def parse(self, code: str, language: str, path: str = "") -> ParseResult:
        """Extract functions and imports.

        Unsupported languages and blank input give an empty result without a
        request. Input over ``max_bytes`` raises :class:`ParseError`.
        """
        if language not in SUPPORTED_LANGUAGES or not code.strip():
            return ParseResult()
        size = len(code.encode("utf-8"))
        if size > self.max_bytes:
            raise ParseError(path, language, f"{size} bytes exceeds limit of {self.max_bytes}")

        try:
            response = await self.request(
                "POST", "/parse", resource="parser endpoint", json={"code": code, "language": language}
            )
        except TransientExternalFailure as e:
            if e.status_code == 400:
                raise ParseError(path, language, e.reason) from e
            raise
        try:
            body = response.json()
            functions = [
                FunctionChunk(
                    name=f.get("name") or "anonymous",
                    code=f.get("code", ""),
                    start_line=int(f.get("startLine", 0)),
                    end_line=int(f.get("endLine", 0)),
                )
                for f in body.get("functions", [])
            ]
            imports = [_module_name(i) for i in body.get("imports", [])]
            imports = [i for i in imports if i]
        except (AttributeError, TypeError, ValueError) as e:
            raise TransientExternalFailure(self.service_name, f"malformed response: {e}") from e
        logger.debug("Parsed %s: %d functions, %d imports", path or language, len(functions), len(imports))
        return ParseResult(functions=functions, imports=imports)


def _module_name(entry) -> str:
    """Import entries arrive as ``{"module": "..."}`` or bare strings."""
    if isinstance(entry, dict):
        return str(entry.get("module") or "")
    return str(entry or "")
