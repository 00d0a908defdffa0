"""CRUD for every analysis entity plus the durable work-queue primitives.

All methods are synchronous; SQLite calls are local and short. Writes made
inside ``with store.transaction():`` commit together, otherwise each write
commits on its own.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterable, Iterator, Optional

from ..exceptions import DataConsistencyError, NotFoundError
from ..logging_config import get_logger
from ..models import (
    Branch,
    CommitFact,
    ContributorScore,
    DependencyEdge,
    EmbeddingRecord,
    FileChange,
    FileRecord,
    OwnershipShare,
    QueueItem,
    QueueStatus,
    ReplacementEvent,
    Repository,
    ReviewRequest,
)

logger = get_logger(__name__)


def to_db_time(value: datetime) -> str:
    """Fixed-width UTC ISO-8601 so lexical order equals time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisStore:
    """Persistence collaborator over an open SQLite connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self._depth = 0

    # ── transactions ──────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes atomically. Nested use joins the outer transaction."""
        if self._depth == 0:
            self.conn.execute("BEGIN IMMEDIATE")
        self._depth += 1
        try:
            yield
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                self.conn.execute("ROLLBACK")
            raise
        else:
            self._depth -= 1
            if self._depth == 0:
                self.conn.execute("COMMIT")

    def _write(self, sql: str, params: Iterable = ()) -> sqlite3.Cursor:
        with self.transaction():
            return self.conn.execute(sql, tuple(params))

    # ── repositories ──────────────────────────────────────────────

    def get_or_create_repository(self, owner: str, name: str) -> Repository:
        self._write("INSERT OR IGNORE INTO repositories (owner, name) VALUES (?, ?)", (owner, name))
        repo = self.get_repository(owner, name)
        assert repo is not None
        return repo

    def get_repository(self, owner: str, name: str) -> Optional[Repository]:
        row = self.conn.execute(
            "SELECT * FROM repositories WHERE owner = ? AND name = ?", (owner, name)
        ).fetchone()
        return _repository(row) if row else None

    def get_repository_by_id(self, repository_id: int) -> Repository:
        row = self.conn.execute("SELECT * FROM repositories WHERE id = ?", (repository_id,)).fetchone()
        if row is None:
            raise NotFoundError("repository", str(repository_id))
        return _repository(row)

    def update_repository_status(self, repository_id: int, status: str) -> None:
        """Set the status; this also releases an analysis claim."""
        self._write(
            "UPDATE repositories SET status = ?, analysis_started_at = NULL WHERE id = ?",
            (status, repository_id),
        )
        logger.debug("Repository %d status -> %s", repository_id, status)

    def claim_repository(
        self,
        repository_id: int,
        stale_after_seconds: float,
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """Mark a repository ``analyzing`` unless another analysis holds it.

        The check and the update share one ``BEGIN IMMEDIATE`` transaction,
        so separate processes on the same database cannot both win. A claim
        older than ``stale_after_seconds`` is taken over.

        Returns:
            The status before the claim, or None if the repository is busy.
        """
        stamp = now or utcnow()
        with self.transaction():
            row = self.conn.execute(
                "SELECT status, analysis_started_at FROM repositories WHERE id = ?", (repository_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError("repository", str(repository_id))
            previous = row["status"]
            if previous == "analyzing":
                started = row["analysis_started_at"]
                if started is not None and (stamp - from_db_time(started)).total_seconds() <= stale_after_seconds:
                    return None
                logger.warning("Taking over a stale analysis claim on repository %d", repository_id)
                previous = "pending"
            self.conn.execute(
                "UPDATE repositories SET status = 'analyzing', analysis_started_at = ? WHERE id = ?",
                (to_db_time(stamp), repository_id),
            )
        return previous

    def update_last_analyzed_sha(self, repository_id: int, sha: str) -> None:
        self._write("UPDATE repositories SET last_analyzed_sha = ? WHERE id = ?", (sha, repository_id))

    # ── branches ──────────────────────────────────────────────────

    def list_branches(self, repository_id: int) -> list[Branch]:
        rows = self.conn.execute(
            "SELECT * FROM branches WHERE repository_id = ? ORDER BY name", (repository_id,)
        ).fetchall()
        return [Branch(r["id"], r["repository_id"], r["name"], bool(r["is_default"])) for r in rows]

    def get_or_create_branch(self, repository_id: int, name: str, is_default: bool = False) -> Branch:
        self._write(
            "INSERT OR IGNORE INTO branches (repository_id, name, is_default) VALUES (?, ?, ?)",
            (repository_id, name, int(is_default)),
        )
        row = self.conn.execute(
            "SELECT * FROM branches WHERE repository_id = ? AND name = ?", (repository_id, name)
        ).fetchone()
        return Branch(row["id"], row["repository_id"], row["name"], bool(row["is_default"]))

    def delete_branch(self, branch_id: int) -> None:
        self._write("DELETE FROM branches WHERE id = ?", (branch_id,))

    def link_commit_to_branch(self, repository_id: int, sha: str, branch_id: int) -> None:
        self._write(
            "INSERT OR IGNORE INTO commit_branches (repository_id, sha, branch_id) VALUES (?, ?, ?)",
            (repository_id, sha, branch_id),
        )

    def branch_commit_shas(self, branch_id: int) -> set[str]:
        rows = self.conn.execute(
            "SELECT sha FROM commit_branches WHERE branch_id = ?", (branch_id,)
        ).fetchall()
        return {r["sha"] for r in rows}

    # ── commits ───────────────────────────────────────────────────

    def insert_commit(self, repository_id: int, fact: CommitFact) -> bool:
        """Insert a commit fact. Returns False if the sha was already known."""
        cur = self._write(
            """
            INSERT OR IGNORE INTO commits
                (repository_id, sha, author_id, author_name, author_email,
                 message, committed_at, parent_count, parent_sha)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                repository_id,
                fact.sha,
                fact.author_id,
                fact.author_name,
                fact.author_email,
                fact.message,
                to_db_time(fact.committed_at),
                fact.parent_count,
                fact.parent_sha,
            ),
        )
        return cur.rowcount > 0

    def get_commit(self, repository_id: int, sha: str) -> Optional[CommitFact]:
        row = self.conn.execute(
            "SELECT * FROM commits WHERE repository_id = ? AND sha = ?", (repository_id, sha)
        ).fetchone()
        return _commit(row) if row else None

    def known_commit_shas(self, repository_id: int) -> set[str]:
        rows = self.conn.execute(
            "SELECT sha FROM commits WHERE repository_id = ?", (repository_id,)
        ).fetchall()
        return {r["sha"] for r in rows}

    def commit_counts_by_author(self, repository_id: int) -> dict[str, int]:
        rows = self.conn.execute(
            "SELECT author_id, COUNT(*) AS n FROM commits WHERE repository_id = ? GROUP BY author_id",
            (repository_id,),
        ).fetchall()
        return {r["author_id"]: r["n"] for r in rows}

    def author_names(self, repository_id: int) -> dict[str, str]:
        """Most recent display name per contributor id."""
        rows = self.conn.execute(
            """
            SELECT author_id, author_name FROM commits
            WHERE repository_id = ?
            ORDER BY committed_at
            """,
            (repository_id,),
        ).fetchall()
        return {r["author_id"]: r["author_name"] for r in rows}

    # ── files ─────────────────────────────────────────────────────

    def get_or_create_file(self, repository_id: int, path: str) -> FileRecord:
        self._write("INSERT OR IGNORE INTO files (repository_id, path) VALUES (?, ?)", (repository_id, path))
        record = self.get_file(repository_id, path)
        assert record is not None
        return record

    def get_file(self, repository_id: int, path: str) -> Optional[FileRecord]:
        row = self.conn.execute(
            "SELECT * FROM files WHERE repository_id = ? AND path = ?", (repository_id, path)
        ).fetchone()
        return FileRecord(row["id"], row["repository_id"], row["path"]) if row else None

    def list_files(self, repository_id: int) -> list[FileRecord]:
        rows = self.conn.execute(
            "SELECT * FROM files WHERE repository_id = ? ORDER BY path", (repository_id,)
        ).fetchall()
        return [FileRecord(r["id"], r["repository_id"], r["path"]) for r in rows]

    def file_paths(self, repository_id: int) -> set[str]:
        return {f.path for f in self.list_files(repository_id)}

    # ── file changes ──────────────────────────────────────────────

    def upsert_file_change(self, file_id: int, commit_sha: str, additions: int, deletions: int) -> None:
        self._write(
            """
            INSERT INTO file_changes (file_id, commit_sha, additions, deletions)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (file_id, commit_sha)
            DO UPDATE SET additions = excluded.additions, deletions = excluded.deletions
            """,
            (file_id, commit_sha, additions, deletions),
        )

    def file_changes(self, file_id: int) -> list[FileChange]:
        """Changes of one file joined with their commits, oldest first."""
        rows = self.conn.execute(
            """
            SELECT fc.file_id, f.path, fc.commit_sha, fc.additions, fc.deletions,
                   c.author_id, c.author_name, c.message, c.committed_at
            FROM file_changes fc
            JOIN files f ON f.id = fc.file_id
            JOIN commits c ON c.repository_id = f.repository_id AND c.sha = fc.commit_sha
            WHERE fc.file_id = ?
            ORDER BY c.committed_at, c.rowid
            """,
            (file_id,),
        ).fetchall()
        return [
            FileChange(
                file_id=r["file_id"],
                path=r["path"],
                commit_sha=r["commit_sha"],
                additions=r["additions"],
                deletions=r["deletions"],
                author_id=r["author_id"],
                author_name=r["author_name"],
                message=r["message"],
                committed_at=from_db_time(r["committed_at"]),
            )
            for r in rows
        ]

    # ── dependency edges ──────────────────────────────────────────

    def upsert_edge(
        self,
        repository_id: int,
        source_file_id: int,
        target_file_id: int,
        edge_type: str = "import",
        strength: float = 1.0,
    ) -> None:
        """Insert or refresh an edge of one type.

        Raises:
            DataConsistencyError: for self-references and direct two-file cycles.
        """
        if source_file_id == target_file_id:
            raise DataConsistencyError("self-referential edge", str(source_file_id), str(target_file_id))
        if self.has_edge(target_file_id, source_file_id):
            raise DataConsistencyError("edge would close a cycle", str(source_file_id), str(target_file_id))
        self._write(
            """
            INSERT INTO dependency_edges (repository_id, source_file_id, target_file_id, edge_type, strength)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (source_file_id, target_file_id, edge_type)
            DO UPDATE SET strength = excluded.strength
            """,
            (repository_id, source_file_id, target_file_id, edge_type, strength),
        )

    def has_edge(self, source_file_id: int, target_file_id: int) -> bool:
        """True if any edge, of any type, exists for the pair."""
        row = self.conn.execute(
            "SELECT 1 FROM dependency_edges WHERE source_file_id = ? AND target_file_id = ? LIMIT 1",
            (source_file_id, target_file_id),
        ).fetchone()
        return row is not None

    def list_edges(self, repository_id: int) -> list[DependencyEdge]:
        rows = self.conn.execute(
            """
            SELECT s.path AS source, t.path AS target, e.edge_type, e.strength
            FROM dependency_edges e
            JOIN files s ON s.id = e.source_file_id
            JOIN files t ON t.id = e.target_file_id
            WHERE e.repository_id = ?
            ORDER BY s.path, t.path
            """,
            (repository_id,),
        ).fetchall()
        return [DependencyEdge(r["source"], r["target"], r["edge_type"], r["strength"]) for r in rows]

    # ── embeddings ────────────────────────────────────────────────

    def add_embedding(
        self,
        file_id: int,
        commit_sha: str,
        chunk_name: str,
        vector: list[float],
        source_text: str,
        committed_at: datetime,
    ) -> int:
        cur = self._write(
            """
            INSERT INTO embeddings (file_id, commit_sha, chunk_name, vector, source_text, committed_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                file_id,
                commit_sha,
                chunk_name,
                json.dumps(list(vector)),
                source_text,
                to_db_time(committed_at),
                to_db_time(utcnow()),
            ),
        )
        return int(cur.lastrowid)

    def latest_embedding(
        self,
        file_id: int,
        before: Optional[datetime] = None,
        at_or_before: Optional[datetime] = None,
        chunk_name: Optional[str] = None,
    ) -> Optional[EmbeddingRecord]:
        """Latest embedding of a file by commit time, optionally bounded."""
        clauses = ["file_id = ?"]
        params: list = [file_id]
        if before is not None:
            clauses.append("committed_at < ?")
            params.append(to_db_time(before))
        if at_or_before is not None:
            clauses.append("committed_at <= ?")
            params.append(to_db_time(at_or_before))
        if chunk_name is not None:
            clauses.append("chunk_name = ?")
            params.append(chunk_name)
        row = self.conn.execute(
            f"SELECT * FROM embeddings WHERE {' AND '.join(clauses)} "
            "ORDER BY committed_at DESC, id DESC LIMIT 1",
            params,
        ).fetchone()
        return _embedding(row) if row else None

    def chunk_fingerprint(
        self,
        file_id: int,
        before: Optional[datetime] = None,
        at_or_before: Optional[datetime] = None,
    ) -> dict[str, EmbeddingRecord]:
        """Latest embedding of every chunk of a file, optionally as of a time."""
        clauses = ["file_id = ?"]
        params: list = [file_id]
        if before is not None:
            clauses.append("committed_at < ?")
            params.append(to_db_time(before))
        if at_or_before is not None:
            clauses.append("committed_at <= ?")
            params.append(to_db_time(at_or_before))
        rows = self.conn.execute(
            f"SELECT * FROM embeddings WHERE {' AND '.join(clauses)} ORDER BY committed_at, id",
            params,
        ).fetchall()
        # later rows win
        return {r["chunk_name"]: _embedding(r) for r in rows}

    def current_vectors(
        self,
        repository_id: int,
        paths: Iterable[str],
        before: Optional[datetime] = None,
    ) -> dict[str, list[list[float]]]:
        """Chunk vectors per path (latest, or latest before a time), where any exist."""
        result: dict[str, list[list[float]]] = {}
        for path in paths:
            record = self.get_file(repository_id, path)
            if record is None:
                continue
            chunks = self.chunk_fingerprint(record.id, before=before)
            if chunks:
                result[path] = [chunks[name].vector for name in sorted(chunks)]
        return result

    def embedding_count(self, file_id: int) -> int:
        row = self.conn.execute("SELECT COUNT(*) AS n FROM embeddings WHERE file_id = ?", (file_id,)).fetchone()
        return int(row["n"])

    # ── semantic deltas (durable ownership accumulator) ───────────

    def record_delta(self, file_id: int, commit_sha: str, chunk_name: str, author_id: str, delta: float) -> bool:
        """Record one chunk's delta. Returns False if it was already recorded."""
        cur = self._write(
            """
            INSERT OR IGNORE INTO semantic_deltas (file_id, commit_sha, chunk_name, author_id, delta)
            VALUES (?, ?, ?, ?, ?)
            """,
            (file_id, commit_sha, chunk_name, author_id, delta),
        )
        return cur.rowcount > 0

    def author_delta_totals(self, file_id: int) -> dict[str, float]:
        rows = self.conn.execute(
            "SELECT author_id, SUM(delta) AS total FROM semantic_deltas WHERE file_id = ? GROUP BY author_id",
            (file_id,),
        ).fetchall()
        return {r["author_id"]: float(r["total"]) for r in rows}

    # ── ownership ─────────────────────────────────────────────────

    def replace_ownership(self, file_id: int, shares: dict[str, float]) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM ownership_shares WHERE file_id = ?", (file_id,))
            self.conn.executemany(
                "INSERT INTO ownership_shares (file_id, author_id, score) VALUES (?, ?, ?)",
                [(file_id, author, score) for author, score in shares.items()],
            )

    def ownership_for_file(self, file_id: int) -> list[OwnershipShare]:
        rows = self.conn.execute(
            """
            SELECT o.file_id, f.path, o.author_id, o.score
            FROM ownership_shares o JOIN files f ON f.id = o.file_id
            WHERE o.file_id = ?
            ORDER BY o.score DESC, o.author_id
            """,
            (file_id,),
        ).fetchall()
        return [OwnershipShare(r["file_id"], r["path"], r["author_id"], r["score"]) for r in rows]

    def ownership_for_repository(self, repository_id: int) -> list[OwnershipShare]:
        rows = self.conn.execute(
            """
            SELECT o.file_id, f.path, o.author_id, o.score
            FROM ownership_shares o JOIN files f ON f.id = o.file_id
            WHERE f.repository_id = ?
            ORDER BY f.path, o.score DESC, o.author_id
            """,
            (repository_id,),
        ).fetchall()
        return [OwnershipShare(r["file_id"], r["path"], r["author_id"], r["score"]) for r in rows]

    # ── replacement events ────────────────────────────────────────

    def delete_events(self, repository_id: int, file_id: Optional[int] = None) -> None:
        if file_id is None:
            self._write("DELETE FROM replacement_events WHERE repository_id = ?", (repository_id,))
        else:
            self._write(
                "DELETE FROM replacement_events WHERE repository_id = ? AND file_id = ?",
                (repository_id, file_id),
            )

    def insert_events(self, repository_id: int, events: Iterable[ReplacementEvent]) -> int:
        rows = [
            (
                repository_id,
                e.file_id,
                e.original_commit,
                e.replacement_commit,
                e.original_author,
                e.replacement_author,
                e.semantic_dissimilarity,
                e.time_proximity_days,
                e.churn_magnitude,
                e.message_signal,
                e.event_score,
                to_db_time(e.replaced_at),
                to_db_time(e.created_at),
            )
            for e in events
        ]
        with self.transaction():
            self.conn.executemany(
                """
                INSERT INTO replacement_events
                    (repository_id, file_id, original_commit, replacement_commit,
                     original_author, replacement_author, semantic_dissimilarity,
                     time_proximity_days, churn_magnitude, message_signal,
                     event_score, replaced_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        return len(rows)

    def list_events(
        self,
        repository_id: int,
        since: Optional[datetime] = None,
        original_author: Optional[str] = None,
    ) -> list[ReplacementEvent]:
        clauses = ["e.repository_id = ?"]
        params: list = [repository_id]
        if since is not None:
            clauses.append("e.replaced_at >= ?")
            params.append(to_db_time(since))
        if original_author is not None:
            clauses.append("e.original_author = ?")
            params.append(original_author)
        rows = self.conn.execute(
            f"""
            SELECT e.*, f.path FROM replacement_events e JOIN files f ON f.id = e.file_id
            WHERE {' AND '.join(clauses)}
            ORDER BY e.replaced_at, e.id
            """,
            params,
        ).fetchall()
        return [_event(r) for r in rows]

    # ── contributor scores ────────────────────────────────────────

    def replace_contributor_scores(self, repository_id: int, scores: Iterable[ContributorScore]) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM contributor_scores WHERE repository_id = ?", (repository_id,))
            self.conn.executemany(
                """
                INSERT INTO contributor_scores
                    (repository_id, contributor_id, contributor_name, raw_score,
                     normalized_score, total_commits, event_count, last_calculated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        repository_id,
                        s.contributor_id,
                        s.contributor_name,
                        s.raw_score,
                        s.normalized_score,
                        s.total_commits,
                        s.event_count,
                        to_db_time(s.last_calculated_at),
                    )
                    for s in scores
                ],
            )

    def contributor_scores(self, repository_id: int) -> list[ContributorScore]:
        rows = self.conn.execute(
            """
            SELECT * FROM contributor_scores WHERE repository_id = ?
            ORDER BY normalized_score DESC, contributor_id
            """,
            (repository_id,),
        ).fetchall()
        return [
            ContributorScore(
                repository_id=r["repository_id"],
                contributor_id=r["contributor_id"],
                contributor_name=r["contributor_name"],
                raw_score=r["raw_score"],
                normalized_score=r["normalized_score"],
                total_commits=r["total_commits"],
                event_count=r["event_count"],
                last_calculated_at=from_db_time(r["last_calculated_at"]),
            )
            for r in rows
        ]

    # ── review requests ───────────────────────────────────────────

    def upsert_review_request(self, request: ReviewRequest, files: Optional[Iterable[str]] = None) -> None:
        """Store a request's state; ``files`` (when given) replaces its file set."""
        with self.transaction():
            self.conn.execute(
                """
                INSERT INTO review_requests (repository_id, number, title, state, author, head_sha)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (repository_id, number) DO UPDATE SET
                    title = excluded.title,
                    state = excluded.state,
                    author = excluded.author,
                    head_sha = COALESCE(excluded.head_sha, review_requests.head_sha)
                """,
                (
                    request.repository_id,
                    request.number,
                    request.title,
                    request.state,
                    request.author,
                    request.head_sha,
                ),
            )
            if files is not None:
                self.conn.execute(
                    "DELETE FROM review_request_files WHERE repository_id = ? AND number = ?",
                    (request.repository_id, request.number),
                )
                self.conn.executemany(
                    "INSERT OR IGNORE INTO review_request_files (repository_id, number, path) VALUES (?, ?, ?)",
                    [(request.repository_id, request.number, p) for p in files],
                )

    def get_review_request(self, repository_id: int, number: int) -> Optional[ReviewRequest]:
        row = self.conn.execute(
            "SELECT * FROM review_requests WHERE repository_id = ? AND number = ?",
            (repository_id, number),
        ).fetchone()
        return self._review_request(row) if row else None

    def open_review_requests(self, repository_id: int) -> list[ReviewRequest]:
        rows = self.conn.execute(
            "SELECT * FROM review_requests WHERE repository_id = ? AND state = 'open' ORDER BY number",
            (repository_id,),
        ).fetchall()
        return [self._review_request(r) for r in rows]

    def _review_request(self, row: sqlite3.Row) -> ReviewRequest:
        files = self.conn.execute(
            "SELECT path FROM review_request_files WHERE repository_id = ? AND number = ?",
            (row["repository_id"], row["number"]),
        ).fetchall()
        return ReviewRequest(
            repository_id=row["repository_id"],
            number=row["number"],
            title=row["title"],
            state=row["state"],
            author=row["author"],
            head_sha=row["head_sha"],
            files={f["path"] for f in files},
        )

    # ── work queue ────────────────────────────────────────────────

    def enqueue(self, event_type: str, payload: str) -> int:
        now = to_db_time(utcnow())
        cur = self._write(
            """
            INSERT INTO work_queue (event_type, payload, status, available_at, created_at)
            VALUES (?, ?, 'pending', ?, ?)
            """,
            (event_type, payload, now, now),
        )
        return int(cur.lastrowid)

    def claim_next(self, now: Optional[datetime] = None) -> Optional[QueueItem]:
        """Atomically claim the oldest pending item, or return None.

        The claim is a single UPDATE guarded by ``status = 'pending'``, so two
        workers sharing the database can never claim the same item.
        """
        token = uuid.uuid4().hex
        stamp = to_db_time(now or utcnow())
        cur = self._write(
            """
            UPDATE work_queue
            SET status = 'processing', claim_token = ?, claimed_at = ?, attempts = attempts + 1
            WHERE id = (
                SELECT id FROM work_queue
                WHERE status = 'pending' AND available_at <= ?
                ORDER BY id LIMIT 1
            ) AND status = 'pending'
            """,
            (token, stamp, stamp),
        )
        if cur.rowcount == 0:
            return None
        row = self.conn.execute("SELECT * FROM work_queue WHERE claim_token = ?", (token,)).fetchone()
        return _queue_item(row)

    def mark_status(self, item_id: int, status: str, error: Optional[str] = None) -> None:
        self._write(
            "UPDATE work_queue SET status = ?, last_error = ? WHERE id = ?",
            (status, error, item_id),
        )

    def reschedule(self, item_id: int, delay_seconds: float, error: Optional[str] = None) -> None:
        """Return a claimed item to the queue after a delay."""
        available = to_db_time(utcnow() + timedelta(seconds=delay_seconds))
        self._write(
            """
            UPDATE work_queue
            SET status = 'pending', available_at = ?, claim_token = NULL, last_error = ?
            WHERE id = ?
            """,
            (available, error, item_id),
        )

    def get_queue_item(self, item_id: int) -> QueueItem:
        row = self.conn.execute("SELECT * FROM work_queue WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            raise NotFoundError("queue item", str(item_id))
        return _queue_item(row)

    def queue_counts(self) -> dict[str, int]:
        rows = self.conn.execute("SELECT status, COUNT(*) AS n FROM work_queue GROUP BY status").fetchall()
        counts = {s.value: 0 for s in QueueStatus}
        counts.update({r["status"]: r["n"] for r in rows})
        return counts


# ── row mappers ───────────────────────────────────────────────────


def _repository(row: sqlite3.Row) -> Repository:
    return Repository(
        id=row["id"],
        owner=row["owner"],
        name=row["name"],
        status=row["status"],
        last_analyzed_sha=row["last_analyzed_sha"],
    )


def _commit(row: sqlite3.Row) -> CommitFact:
    return CommitFact(
        sha=row["sha"],
        author_id=row["author_id"],
        author_name=row["author_name"],
        author_email=row["author_email"],
        message=row["message"],
        committed_at=from_db_time(row["committed_at"]),
        parent_count=row["parent_count"],
        parent_sha=row["parent_sha"],
    )


def _embedding(row: sqlite3.Row) -> EmbeddingRecord:
    return EmbeddingRecord(
        id=row["id"],
        file_id=row["file_id"],
        commit_sha=row["commit_sha"],
        chunk_name=row["chunk_name"],
        vector=json.loads(row["vector"]),
        source_text=row["source_text"],
        committed_at=from_db_time(row["committed_at"]),
        created_at=from_db_time(row["created_at"]),
    )


def _event(row: sqlite3.Row) -> ReplacementEvent:
    return ReplacementEvent(
        id=row["id"],
        file_id=row["file_id"],
        path=row["path"],
        original_commit=row["original_commit"],
        replacement_commit=row["replacement_commit"],
        original_author=row["original_author"],
        replacement_author=row["replacement_author"],
        semantic_dissimilarity=row["semantic_dissimilarity"],
        time_proximity_days=row["time_proximity_days"],
        churn_magnitude=row["churn_magnitude"],
        message_signal=row["message_signal"],
        event_score=row["event_score"],
        replaced_at=from_db_time(row["replaced_at"]),
        created_at=from_db_time(row["created_at"]),
    )


def _queue_item(row: sqlite3.Row) -> QueueItem:
    return QueueItem(
        id=row["id"],
        event_type=row["event_type"],
        payload=row["payload"],
        status=row["status"],
        attempts=row["attempts"],
        last_error=row["last_error"],
    )
