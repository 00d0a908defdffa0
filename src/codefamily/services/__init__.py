"""External collaborators: contracts, retry policy and HTTP clients."""

from .bundle import ExternalServices
from .embedding import GeminiEmbeddingGateway
from .github import GitHubPlatform
from .parser import SUPPORTED_LANGUAGES, SidecarParserService
from .protocols import (
    EmbeddingGateway,
    FunctionChunk,
    HostingPlatform,
    NotificationChannel,
    ParseResult,
    ParserService,
    RemoteReviewRequest,
)
from .retry import RetryPolicy, is_retryable
from .slack import SlackNotifier

__all__ = [
    "EmbeddingGateway",
    "ExternalServices",
    "FunctionChunk",
    "GeminiEmbeddingGateway",
    "GitHubPlatform",
    "HostingPlatform",
    "NotificationChannel",
    "ParseResult",
    "ParserService",
    "RemoteReviewRequest",
    "RetryPolicy",
    "SUPPORTED_LANGUAGES",
    "SidecarParserService",
    "SlackNotifier",
    "is_retryable",
]
