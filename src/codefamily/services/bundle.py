"""Construct the configured set of external service clients."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..config import AppConfig
from ..logging_config import get_logger
from .embedding import GeminiEmbeddingGateway
from .github import GitHubPlatform
from .parser import SidecarParserService
from .protocols import EmbeddingGateway, HostingPlatform, NotificationChannel, ParserService
from .retry import RetryPolicy
from .slack import SlackNotifier

logger = get_logger(__name__)


@dataclass
class ExternalServices:
    """Collaborators of an analysis run. Any of them may be absent."""

    embedder: Optional[EmbeddingGateway] = None
    parser: Optional[ParserService] = None
    platform: Optional[HostingPlatform] = None
    notifier: Optional[NotificationChannel] = None

    @classmethod
    def from_config(cls, config: AppConfig) -> "ExternalServices":
        retry = RetryPolicy.from_config(config)
        timeout = config.http_timeout_seconds

        embedder = None
        if config.embedding_api_key:
            embedder = GeminiEmbeddingGateway(
                api_key=config.embedding_api_key,
                base_url=config.embedding_api_url,
                model=config.embedding_model,
                dimensions=config.embedding_dimensions,
                timeout_seconds=timeout,
                retry=retry,
            )
        else:
            logger.warning("No embedding API key configured; ownership and semantic overlap are disabled")

        parser = None
        if config.parser_url:
            parser = SidecarParserService(
                config.parser_url, max_bytes=config.max_parse_bytes, timeout_seconds=timeout, retry=retry
            )

        platform = GitHubPlatform(
            token=config.github_token, base_url=config.github_api_url, timeout_seconds=timeout, retry=retry
        )

        notifier = None
        if config.slack_token:
            notifier = SlackNotifier(
                config.slack_token, base_url=config.slack_api_url, timeout_seconds=timeout, retry=retry
            )

        return cls(embedder=embedder, parser=parser, platform=platform, notifier=notifier)

    async def aclose(self) -> None:
        for client in (self.embedder, self.parser, self.platform, self.notifier):
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()
