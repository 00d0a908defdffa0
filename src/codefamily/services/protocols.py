"""Contracts of the external collaborators the analysis core talks to."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol


@dataclass(frozen=True)
class FunctionChunk:
    """One function-level code fragment reported by the parser."""

    name: str
    code: str
    start_line: int = 0
    end_line: int = 0


@dataclass
class ParseResult:
    functions: list[FunctionChunk] = field(default_factory=list)
    imports: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.functions and not self.imports


@dataclass(frozen=True)
class RemoteReviewRequest:
    """A review request as listed by the hosting platform."""

    number: int
    title: str
    state: str
    author: str
    head_sha: Optional[str] = None


class EmbeddingGateway(Protocol):
    async def embed(self, text: str) -> list[float]: ...


class ParserService(Protocol):
    async def parse(self, code: str, language: str, path: str = "") -> ParseResult: ...


class HostingPlatform(Protocol):
    async def list_review_requests(self, owner: str, name: str, state: str = "open") -> list[RemoteReviewRequest]: ...

    async def list_review_request_files(self, owner: str, name: str, number: int) -> list[str]: ...

    async def create_status(
        self,
        owner: str,
        name: str,
        sha: str,
        state: str,
        description: str,
        context: str,
    ) -> None: ...

    async def get_commit_author(self, owner: str, name: str, sha: str) -> Optional[str]: ...


class NotificationChannel(Protocol):
    async def send_direct_message(self, user: str, text: str) -> None: ...
