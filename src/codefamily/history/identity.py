"""Best-effort mapping of commit author metadata to a stable contributor id.

Ids are hosting-platform logins where one can be determined, otherwise the
lower-cased author email. Display names are never used as keys, so two people
sharing a name are not merged.
"""

from __future__ import annotations

import re
from typing import Optional

from ..exceptions import CodeFamilyError
from ..logging_config import get_logger
from ..services.protocols import HostingPlatform

logger = get_logger(__name__)

# 12345+octocat@users.noreply.github.com  or  octocat@users.noreply.github.com
_NOREPLY_RE = re.compile(r"^(?:\d+\+)?(?P<login>[^@]+)@users\.noreply\.github\.com$", re.IGNORECASE)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def login_from_noreply(email: str) -> Optional[str]:
    match = _NOREPLY_RE.match(email.strip())
    return match.group("login").lower() if match else None


class IdentityResolver:
    """Resolve and cache contributor ids per author email."""

    def __init__(
        self,
        platform: Optional[HostingPlatform] = None,
        owner: str = "",
        name: str = "",
    ) -> None:
        self.platform = platform
        self.owner = owner
        self.name = name
        self._cache: dict[str, str] = {}

    async def resolve(self, author_name: str, author_email: str, sha: str) -> str:
        email = normalize_email(author_email)
        if email in self._cache:
            return self._cache[email]

        contributor_id = login_from_noreply(email)
        if contributor_id is None and self.platform is not None:
            contributor_id = await self._lookup(sha)
        if contributor_id is None:
            contributor_id = email or author_name.strip().lower() or "unknown"

        self._cache[email] = contributor_id
        return contributor_id

    async def _lookup(self, sha: str) -> Optional[str]:
        assert self.platform is not None
        try:
            login = await self.platform.get_commit_author(self.owner, self.name, sha)
        except CodeFamilyError as e:
            logger.debug("Author lookup failed for %s: %s", sha[:8], e)
            return None
        return login.lower() if login else None
