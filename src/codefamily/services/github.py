"""Hosting platform client for the GitHub REST API."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from ..exceptions import NotFoundError
from ..logging_config import get_logger
from .http import HttpService
from .protocols import RemoteReviewRequest
from .retry import RetryPolicy

logger = get_logger(__name__)

_PAGE_SIZE = 100
_MAX_PAGES = 30


class GitHubPlatform(HttpService):
    service_name = "github"

    def __init__(
        self,
        token: str = "",
        base_url: str = "https://api.github.com",
        timeout_seconds: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        super().__init__(base_url, headers=headers, timeout_seconds=timeout_seconds, retry=retry, transport=transport)

    async def list_review_requests(self, owner: str, name: str, state: str = "open") -> list[RemoteReviewRequest]:
        items = await self._paginate(f"/repos/{owner}/{name}/pulls", "repository", state=state)
        return [
            RemoteReviewRequest(
                number=int(pr["number"]),
                title=pr.get("title") or "",
                state=pr.get("state") or state,
                author=(pr.get("user") or {}).get("login") or "",
                head_sha=(pr.get("head") or {}).get("sha"),
            )
            for pr in items
        ]

    async def list_review_request_files(self, owner: str, name: str, number: int) -> list[str]:
        items = await self._paginate(f"/repos/{owner}/{name}/pulls/{number}/files", "review request")
        return [f["filename"] for f in items if f.get("filename")]

    async def create_status(
        self,
        owner: str,
        name: str,
        sha: str,
        state: str,
        description: str,
        context: str,
    ) -> None:
        await self.request(
            "POST",
            f"/repos/{owner}/{name}/statuses/{sha}",
            resource="commit",
            json={"state": state, "description": description[:140], "context": context},
        )
        logger.info("Set %s status on %s/%s@%s", state, owner, name, sha[:8])

    async def get_commit_author(self, owner: str, name: str, sha: str) -> Optional[str]:
        """Login of the account GitHub associates with a commit, if any."""
        try:
            response = await self.request("GET", f"/repos/{owner}/{name}/commits/{sha}", resource="commit")
        except NotFoundError:
            return None
        author = response.json().get("author") or {}
        return author.get("login")

    async def _paginate(self, url: str, resource: str, **params: Any) -> list[dict]:
        results: list[dict] = []
        for page in range(1, _MAX_PAGES + 1):
            response = await self.request(
                "GET", url, resource=resource, params={**params, "per_page": _PAGE_SIZE, "page": page}
            )
            batch = response.json()
            results.extend(batch)
            if len(batch) < _PAGE_SIZE:
                break
        return results
