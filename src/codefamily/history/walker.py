"""Walk every branch of a repository into ordered commit facts."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable, Optional

from ..cancellation import CancellationToken
from ..logging_config import get_logger
from ..models import CommitFact, FileDelta
from .git_source import BranchRef, GitCommandError, RawCommit, RepositorySource
from .identity import IdentityResolver

logger = get_logger(__name__)


@dataclass
class WalkedCommit:
    """One commit as seen on one branch.

    ``fact`` and ``changes`` are only populated for commits not seen before;
    known commits are still yielded so they can be linked to ``branch``.
    """

    branch: str
    sha: str
    fact: Optional[CommitFact] = None
    changes: list[FileDelta] = field(default_factory=list)
    is_new: bool = True


class HistoryWalker:
    """Yield branch-ordered commits, oldest first, skipping unreadable ones."""

    def __init__(
        self,
        source: RepositorySource,
        identity: Optional[IdentityResolver] = None,
        token: Optional[CancellationToken] = None,
    ):
        self.source = source
        self.identity = identity or IdentityResolver()
        self.token = token or CancellationToken()

    async def walk(
        self,
        known_shas: Iterable[str] = (),
        branches: Optional[list[BranchRef]] = None,
    ) -> AsyncIterator[WalkedCommit]:
        seen = set(known_shas)
        if branches is None:
            branches = await asyncio.to_thread(self.source.list_branches)

        for branch in branches:
            try:
                commits = await asyncio.to_thread(self.source.list_commits, branch)
            except GitCommandError as e:
                logger.warning("Cannot list commits of branch %s: %s", branch.name, e)
                continue

            logger.debug("Walking %d commits on %s", len(commits), branch.name)
            for raw in commits:
                self.token.raise_if_cancelled()
                if raw.sha in seen:
                    yield WalkedCommit(branch.name, raw.sha, is_new=False)
                    continue
                walked = await self._read(branch.name, raw)
                if walked is None:
                    continue
                seen.add(raw.sha)
                yield walked

    async def walk_shas(
        self,
        shas: Iterable[str],
        branch: str,
        known_shas: Iterable[str] = (),
        only_paths: Optional[set[str]] = None,
    ) -> AsyncIterator[WalkedCommit]:
        """Walk explicitly named commits (a push), optionally narrowed to some paths."""
        seen = set(known_shas)
        for sha in shas:
            self.token.raise_if_cancelled()
            if sha in seen:
                yield WalkedCommit(branch, sha, is_new=False)
                continue
            raw = await asyncio.to_thread(self.source.get_commit, sha)
            if raw is None:
                logger.warning("Commit %s is not in the local clone, skipping", sha[:8])
                continue
            walked = await self._read(branch, raw)
            if walked is None:
                continue
            if only_paths is not None:
                walked.changes = [c for c in walked.changes if c.path in only_paths]
            seen.add(sha)
            yield walked

    async def _read(self, branch: str, raw: RawCommit) -> Optional[WalkedCommit]:
        try:
            changes = await asyncio.to_thread(self.source.changed_files, raw)
        except GitCommandError as e:
            logger.warning("Skipping unreadable commit %s: %s", raw.sha[:8], e)
            return None

        author_id = await self.identity.resolve(raw.author_name, raw.author_email, raw.sha)
        fact = CommitFact(
            sha=raw.sha,
            author_id=author_id,
            author_name=raw.author_name,
            author_email=raw.author_email,
            message=raw.message,
            committed_at=raw.committed_at,
            parent_count=len(raw.parents),
            parent_sha=raw.first_parent,
        )
        return WalkedCommit(branch, raw.sha, fact, changes, is_new=True)
