"""Full and incremental analysis runs.

A run walks history, turns every new commit into stored facts (commit,
file changes, embeddings, semantic deltas, dependency edges), then derives
ownership shares, replacement events and contributor scores. Per commit,
all network work (blob reads, parsing, embedding) happens first and the
writes land in one transaction, so an interrupted run never leaves a
half-ingested commit behind and a re-run skips it by sha.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..cancellation import CancellationToken
from ..config import AppConfig
from ..exceptions import (
    AnalysisCancelledError,
    AnalysisInProgressError,
    CodeFamilyError,
    DataConsistencyError,
    FatalIngestionError,
    NotFoundError,
    ParseError,
    TransientExternalFailure,
)
from ..graph import DependencyResolver, language_for_path
from ..history import (
    BranchRef,
    GitRepositorySource,
    HistoryWalker,
    IdentityResolver,
    RepositorySource,
    WalkedCommit,
)
from ..logging_config import get_logger
from ..models import ConflictAssessment, FileDelta, Repository, RepositoryStatus, ReviewRequest
from ..persistence import AnalysisStore
from ..replacement import NegativeScoreAggregator, ReplacementDetector
from ..risk import ConflictRiskEngine
from ..semantics import MODULE_CHUNK, ChunkEmbedding, OwnershipAttributor
from ..services import ExternalServices, FunctionChunk, ParseResult
from .events import PushEvent

logger = get_logger(__name__)


@dataclass
class RunSummary:
    repository: str
    commits_walked: int = 0
    commits_new: int = 0
    commits_failed: int = 0
    files_processed: int = 0
    deltas: int = 0
    edges: int = 0
    edges_dropped: int = 0
    edges_reconciled: int = 0
    review_requests: int = 0
    events: int = 0
    contributors: int = 0
    touched_files: set[str] = field(default_factory=set)
    conflict: Optional[ConflictAssessment] = None


@dataclass
class PreparedFile:
    """Everything one file contributes to one commit, gathered before writing."""

    delta: FileDelta
    embedded: list[ChunkEmbedding] = field(default_factory=list)
    targets: list[str] = field(default_factory=list)


class AnalysisRun:
    """One analysis of one repository, full or incremental."""

    def __init__(
        self,
        store: AnalysisStore,
        config: AppConfig,
        services: Optional[ExternalServices] = None,
        token: Optional[CancellationToken] = None,
        detector: Optional[ReplacementDetector] = None,
        aggregator: Optional[NegativeScoreAggregator] = None,
    ):
        self.store = store
        self.config = config
        self.services = services or ExternalServices()
        self.token = token or CancellationToken()
        self.attributor = OwnershipAttributor(store, self.services.embedder, config.max_chunk_chars)
        self.detector = detector or ReplacementDetector(store, config.scoring)
        self.aggregator = aggregator or NegativeScoreAggregator(store, config.scoring)
        self.engine = ConflictRiskEngine(store, config.scoring)

    # ── entry points ──────────────────────────────────────────────

    async def full(
        self,
        owner: str,
        name: str,
        url: Optional[str] = None,
        source: Optional[RepositorySource] = None,
    ) -> RunSummary:
        """Walk all branches and rebuild every derived aggregate."""
        repo = self.store.get_or_create_repository(owner, name)
        summary = RunSummary(repo.full_name)
        self._claim(repo)
        logger.info("Analyzing %s", repo.full_name)
        final = RepositoryStatus.ERROR
        try:
            if source is None:
                source = await self.open_source(repo, url)
            await self._walk_all(repo, source, summary)

            self.token.raise_if_cancelled()
            self.attributor.refresh_repository(repo.id)

            default = await asyncio.to_thread(source.default_branch)
            tip_ref = next((b for b in await asyncio.to_thread(source.list_branches) if b.name == default), None)
            if tip_ref is not None:
                summary.edges_reconciled = await self.reconcile(repo.id, source, tip_ref)

            summary.review_requests = await self.sync_review_requests(repo)
            summary.events = self.detector.rebuild_repository(repo.id, self.token)
            summary.contributors = len(self.aggregator.recalculate(repo.id))

            if tip_ref is not None:
                head = await asyncio.to_thread(source.head_sha, tip_ref)
                if head:
                    self.store.update_last_analyzed_sha(repo.id, head)
            final = RepositoryStatus.READY
        except (AnalysisCancelledError, asyncio.CancelledError):
            logger.warning("Analysis of %s cancelled", repo.full_name)
            final = RepositoryStatus.PENDING
            raise
        except FatalIngestionError as e:
            logger.error("Analysis of %s failed: %s", repo.full_name, e)
            raise
        finally:
            self.store.update_repository_status(repo.id, final.value)

        logger.info(
            "Analysis of %s complete: %d new commits, %d events, %d contributors scored",
            repo.full_name,
            summary.commits_new,
            summary.events,
            summary.contributors,
        )
        return summary

    async def recalculate(self, owner: str, name: str) -> RunSummary:
        """Rebuild ownership, events and scores from stored facts without walking."""
        repo = self.store.get_repository(owner, name)
        if repo is None:
            raise NotFoundError("repository", f"{owner}/{name}")
        summary = RunSummary(repo.full_name)
        self.attributor.refresh_repository(repo.id)
        summary.events = self.detector.rebuild_repository(repo.id, self.token)
        summary.contributors = len(self.aggregator.recalculate(repo.id))
        return summary

    async def push(self, event: PushEvent, source: Optional[RepositorySource] = None) -> RunSummary:
        """Ingest a push's commits (named files only) and assess conflict risk."""
        repo = self.store.get_repository(event.owner, event.name)
        if repo is None:
            raise NotFoundError("repository", f"{event.owner}/{event.name}")
        summary = RunSummary(repo.full_name)
        previous = self._claim(repo)
        try:
            await self._ingest_push(repo, event, source, summary)
        finally:
            self.store.update_repository_status(repo.id, previous)
        return summary

    async def _ingest_push(
        self,
        repo: Repository,
        event: PushEvent,
        source: Optional[RepositorySource],
        summary: RunSummary,
    ) -> None:
        if source is None:
            source = await self.open_source(repo, event.clone_url)
        branch = self.store.get_or_create_branch(repo.id, event.branch)
        resolver = DependencyResolver(self.store.file_paths(repo.id))
        walker = self._walker(repo, source)

        changed = event.changed_files
        touched_ids: set[int] = set()
        # path -> chunk -> vector produced by this push, latest commit wins
        fresh: dict[str, dict[str, list[float]]] = {}
        baseline: Optional[datetime] = None
        shas = [c.sha for c in event.commits] or [event.after]
        async for walked in walker.walk_shas(shas, branch.name, self.store.known_commit_shas(repo.id), changed):
            summary.commits_walked += 1
            fact = walked.fact if walked.is_new else self.store.get_commit(repo.id, walked.sha)
            if fact is not None and (baseline is None or fact.committed_at < baseline):
                baseline = fact.committed_at
            if not walked.is_new:
                self.store.link_commit_to_branch(repo.id, walked.sha, branch.id)
                if fact is not None:
                    self._collect_known_vectors(repo.id, fact.sha, fact.committed_at, changed, fresh)
                continue
            try:
                touched_ids |= await self.ingest_commit(repo.id, source, walked, branch.id, resolver, summary, fresh)
            except (AnalysisCancelledError, FatalIngestionError):
                raise
            except Exception as e:
                self._skip_commit(walked, e, summary)

        self.attributor.refresh(touched_ids)
        summary.events = self.detector.rebuild_files(repo.id, touched_ids)
        summary.contributors = len(self.aggregator.recalculate(repo.id))
        if branch.is_default:
            self.store.update_last_analyzed_sha(repo.id, event.after)

        vectors = {path: list(chunks.values()) for path, chunks in fresh.items()}
        summary.conflict = self.engine.assess(repo.id, changed, vectors, baseline)

    def _collect_known_vectors(
        self,
        repository_id: int,
        sha: str,
        committed_at: datetime,
        paths: set[str],
        fresh: dict[str, dict[str, list[float]]],
    ) -> None:
        """Add the vectors an already ingested commit stored for ``paths``."""
        for path in sorted(paths):
            record = self.store.get_file(repository_id, path)
            if record is None:
                continue
            chunks = self.store.chunk_fingerprint(record.id, at_or_before=committed_at)
            own = {name: e.vector for name, e in chunks.items() if e.commit_sha == sha}
            if own:
                fresh.setdefault(path, {}).update(own)

    def _claim(self, repo: Repository) -> str:
        """Claim the repository for this run. Returns the status to restore."""
        previous = self.store.claim_repository(repo.id, self.config.analysis_lock_timeout_seconds)
        if previous is None:
            raise AnalysisInProgressError(repo.full_name)
        return previous

    def _skip_commit(self, walked: WalkedCommit, error: Exception, summary: RunSummary) -> None:
        summary.commits_failed += 1
        logger.error("Skipping commit %s on %s: %s", walked.sha[:8], walked.branch, error, exc_info=True)

    # ── source ────────────────────────────────────────────────────

    async def open_source(self, repo: Repository, url: Optional[str] = None) -> GitRepositorySource:
        """Clone on first use, fetch afterwards."""
        dest = Path(self.config.clone_dir) / repo.owner / f"{repo.name}.git"
        existed = dest.exists()
        source = await GitRepositorySource.clone(
            url or f"https://github.com/{repo.owner}/{repo.name}.git",
            str(dest),
            timeout_seconds=self.config.git_timeout_seconds,
        )
        if existed:
            await source.fetch()
        return source

    def _walker(self, repo: Repository, source: RepositorySource) -> HistoryWalker:
        identity = IdentityResolver(self.services.platform, repo.owner, repo.name)
        return HistoryWalker(source, identity, self.token)

    # ── walking ───────────────────────────────────────────────────

    async def _walk_all(self, repo: Repository, source: RepositorySource, summary: RunSummary) -> None:
        branches = await asyncio.to_thread(source.list_branches)
        default = await asyncio.to_thread(source.default_branch)
        names = {b.name for b in branches}

        for stored in self.store.list_branches(repo.id):
            if stored.name not in names:
                logger.info("Pruning deleted branch %s", stored.name)
                self.store.delete_branch(stored.id)
        branch_ids = {
            b.name: self.store.get_or_create_branch(repo.id, b.name, is_default=b.name == default).id
            for b in branches
        }

        resolver = DependencyResolver(self.store.file_paths(repo.id))
        walker = self._walker(repo, source)
        async for walked in walker.walk(self.store.known_commit_shas(repo.id), branches):
            summary.commits_walked += 1
            branch_id = branch_ids[walked.branch]
            if not walked.is_new:
                self.store.link_commit_to_branch(repo.id, walked.sha, branch_id)
                continue
            try:
                await self.ingest_commit(repo.id, source, walked, branch_id, resolver, summary)
            except (AnalysisCancelledError, FatalIngestionError):
                raise
            except Exception as e:
                self._skip_commit(walked, e, summary)

    async def ingest_commit(
        self,
        repository_id: int,
        source: RepositorySource,
        walked: WalkedCommit,
        branch_id: int,
        resolver: DependencyResolver,
        summary: RunSummary,
        fresh: Optional[dict[str, dict[str, list[float]]]] = None,
    ) -> set[int]:
        """Store one new commit and everything its files contribute. Returns file ids.

        When ``fresh`` is given, the chunk vectors embedded here are added to
        it per path.
        """
        fact = walked.fact
        assert fact is not None
        resolver.add_known(d.path for d in walked.changes)

        prepared = []
        for delta in walked.changes:
            self.token.raise_if_cancelled()
            prepared.append(await self.prepare_file(source, fact.sha, delta, resolver))

        file_ids: set[int] = set()
        with self.store.transaction():
            self.store.insert_commit(repository_id, fact)
            self.store.link_commit_to_branch(repository_id, fact.sha, branch_id)
            for item in prepared:
                record = self.store.get_or_create_file(repository_id, item.delta.path)
                file_ids.add(record.id)
                self.store.upsert_file_change(record.id, fact.sha, item.delta.additions, item.delta.deletions)
                summary.deltas += self.attributor.record(record.id, fact, item.embedded)
                for target in item.targets:
                    if self._add_edge(repository_id, record.id, target):
                        summary.edges += 1
                    else:
                        summary.edges_dropped += 1

        summary.commits_new += 1
        summary.files_processed += len(prepared)
        summary.touched_files.update(item.delta.path for item in prepared)
        if fresh is not None:
            for item in prepared:
                if item.embedded:
                    fresh.setdefault(item.delta.path, {}).update({c.name: c.vector for c in item.embedded})
        return file_ids

    async def prepare_file(
        self, source: RepositorySource, sha: str, delta: FileDelta, resolver: DependencyResolver
    ) -> PreparedFile:
        """Read, parse and embed one file at one commit.

        Failures here only cost this file its embeddings and edges; the
        file change itself is always recorded.
        """
        prepared = PreparedFile(delta)
        language = language_for_path(delta.path)
        if language is None:
            return prepared

        content = await asyncio.to_thread(source.file_content, sha, delta.path)
        if content is None:
            return prepared

        parsed = await self._parse(content, language, delta.path)
        if parsed is None:
            return prepared

        chunks = parsed.functions or [FunctionChunk(MODULE_CHUNK, content)]
        prepared.embedded = await self.attributor.embed_chunks(delta.path, chunks, self.token)
        prepared.targets = [r.target for r in resolver.resolve(delta.path, parsed.imports, language) if r.target]
        return prepared

    async def _parse(self, content: str, language: str, path: str) -> Optional[ParseResult]:
        if self.services.parser is None:
            return ParseResult()
        try:
            return await self.services.parser.parse(content, language, path)
        except ParseError as e:
            logger.warning("Skipping %s: %s", path, e.reason)
        except CodeFamilyError as e:
            logger.warning("Parser unavailable for %s: %s", path, e)
        return None

    def _add_edge(self, repository_id: int, source_id: int, target_path: str) -> bool:
        target = self.store.get_or_create_file(repository_id, target_path)
        try:
            self.store.upsert_edge(repository_id, source_id, target.id)
        except DataConsistencyError as e:
            logger.debug("Dropping edge to %s: %s", target_path, e.reason)
            return False
        return True

    # ── post-walk passes ──────────────────────────────────────────

    async def reconcile(self, repository_id: int, source: RepositorySource, tip: BranchRef) -> int:
        """Register every file at the branch tip and re-resolve its imports.

        Only edges for new pairs are added. Returns their count.
        """
        sha = await asyncio.to_thread(source.head_sha, tip)
        if sha is None:
            return 0
        paths = await asyncio.to_thread(source.list_files, sha)
        resolver = DependencyResolver(paths)

        missing = sorted(set(paths) - self.store.file_paths(repository_id))
        if missing:
            with self.store.transaction():
                for path in missing:
                    self.store.get_or_create_file(repository_id, path)
            logger.info("Registered %d files present at %s", len(missing), tip.name)

        added = 0
        for path in paths:
            self.token.raise_if_cancelled()
            language = language_for_path(path)
            if language is None:
                continue
            content = await asyncio.to_thread(source.file_content, sha, path)
            if content is None:
                continue
            parsed = await self._parse(content, language, path)
            if parsed is None or not parsed.imports:
                continue
            record = self.store.get_or_create_file(repository_id, path)
            for resolved in resolver.resolve(path, parsed.imports, language):
                if resolved.target is None:
                    continue
                target = self.store.get_or_create_file(repository_id, resolved.target)
                if self.store.has_edge(record.id, target.id):
                    continue
                try:
                    self.store.upsert_edge(repository_id, record.id, target.id)
                except DataConsistencyError as e:
                    logger.debug("Reconciliation dropped %s -> %s: %s", path, resolved.target, e.reason)
                    continue
                added += 1
        logger.info("Reconciliation added %d dependency edges at %s", added, tip.name)
        return added

    async def sync_review_requests(self, repo: Repository) -> int:
        """Cache open review requests and their file sets; close ones no longer open."""
        platform = self.services.platform
        if platform is None:
            return 0
        try:
            remote = await platform.list_review_requests(repo.owner, repo.name, "open")
        except (TransientExternalFailure, NotFoundError) as e:
            logger.warning("Cannot list review requests of %s: %s", repo.full_name, e)
            return 0

        open_numbers = set()
        for item in remote:
            try:
                files = await platform.list_review_request_files(repo.owner, repo.name, item.number)
            except (TransientExternalFailure, NotFoundError) as e:
                logger.warning("Cannot list files of #%d: %s", item.number, e)
                files = None
            self.store.upsert_review_request(
                ReviewRequest(repo.id, item.number, item.title, item.state, item.author, item.head_sha),
                files,
            )
            open_numbers.add(item.number)

        for stale in self.store.open_review_requests(repo.id):
            if stale.number not in open_numbers:
                stale.state = "closed"
                self.store.upsert_review_request(stale)
        return len(open_numbers)


