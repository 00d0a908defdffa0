"""SQLite-backed analysis database (facts, aggregates and the work queue)."""

import sqlite3
from pathlib import Path
from typing import Optional

from ..logging_config import get_logger

logger = get_logger(__name__)

# Current schema version (bump when tables change).
_SCHEMA_VERSION = 2


class AnalysisDB:
    """Manages the SQLite database behind :class:`AnalysisStore`.

    Usage::

        with AnalysisDB(".codefamily/analysis.db") as db:
            store = AnalysisStore(db.conn)

    ``":memory:"`` is accepted for throwaway databases.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        """Return the active connection. Raises if not connected."""
        if self._conn is None:
            raise RuntimeError("AnalysisDB is not connected. Use as context manager or call connect().")
        return self._conn

    # ── lifecycle ─────────────────────────────────────────────────

    def _ensure_dir(self) -> None:
        """Create the parent directory and keep it out of version control."""
        if self.db_path == ":memory:":
            return
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)
        gitignore = db_dir / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text("*\n")

    def connect(self) -> sqlite3.Connection:
        """Open (or create) the database and run migrations."""
        self._ensure_dir()
        # isolation_level=None: transactions are managed explicitly by the store
        conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=30.0)
        if self.db_path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.row_factory = sqlite3.Row
        self._conn = conn
        self._migrate()
        logger.debug("Analysis DB connected at %s", self.db_path)
        return conn

    def close(self) -> None:
        """Close the connection if open."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "AnalysisDB":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ── migration ─────────────────────────────────────────────────

    def _migrate(self) -> None:
        """Idempotently create / upgrade all tables."""
        c = self.conn

        c.executescript(
            """
            BEGIN;

            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS repositories (
                id                INTEGER PRIMARY KEY AUTOINCREMENT,
                owner             TEXT    NOT NULL,
                name              TEXT    NOT NULL,
                status            TEXT    NOT NULL DEFAULT 'pending',
                last_analyzed_sha TEXT,
                analysis_started_at TEXT,
                UNIQUE (owner, name)
            );

            CREATE TABLE IF NOT EXISTS branches (
                id            INTEGER PRIMARY KEY AUTOINCREMENT,
                repository_id INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
                name          TEXT    NOT NULL,
                is_default    INTEGER NOT NULL DEFAULT 0,
                UNIQUE (repository_id, name)
            );

            CREATE TABLE IF NOT EXISTS commits (
                repository_id INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
                sha           TEXT    NOT NULL,
                author_id     TEXT    NOT NULL,
                author_name   TEXT    NOT NULL DEFAULT '',
                author_email  TEXT    NOT NULL DEFAULT '',
                message       TEXT    NOT NULL DEFAULT '',
                committed_at  TEXT    NOT NULL,
                parent_count  INTEGER NOT NULL DEFAULT 1,
                parent_sha    TEXT,
                PRIMARY KEY (repository_id, sha)
            );

            CREATE TABLE IF NOT EXISTS commit_branches (
                repository_id INTEGER NOT NULL,
                sha           TEXT    NOT NULL,
                branch_id     INTEGER NOT NULL REFERENCES branches(id) ON DELETE CASCADE,
                PRIMARY KEY (repository_id, sha, branch_id)
            );

            CREATE TABLE IF NOT EXISTS files (
                id            INTEGER PRIMARY KEY AUTOINCREMENT,
                repository_id INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
                path          TEXT    NOT NULL,
                UNIQUE (repository_id, path)
            );

            CREATE TABLE IF NOT EXISTS file_changes (
                file_id    INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
                commit_sha TEXT    NOT NULL,
                additions  INTEGER NOT NULL DEFAULT 0,
                deletions  INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (file_id, commit_sha)
            );

            CREATE TABLE IF NOT EXISTS dependency_edges (
                repository_id  INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
                source_file_id INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
                target_file_id INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
                edge_type      TEXT    NOT NULL DEFAULT 'import',
                strength       REAL    NOT NULL DEFAULT 1.0,
                PRIMARY KEY (source_file_id, target_file_id, edge_type)
            );

            CREATE TABLE IF NOT EXISTS embeddings (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                file_id      INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
                commit_sha   TEXT    NOT NULL,
                chunk_name   TEXT    NOT NULL,
                vector       TEXT    NOT NULL,
                source_text  TEXT    NOT NULL DEFAULT '',
                committed_at TEXT    NOT NULL,
                created_at   TEXT    NOT NULL
            );

            CREATE TABLE IF NOT EXISTS semantic_deltas (
                file_id    INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
                commit_sha TEXT    NOT NULL,
                chunk_name TEXT    NOT NULL,
                author_id  TEXT    NOT NULL,
                delta      REAL    NOT NULL,
                PRIMARY KEY (file_id, commit_sha, chunk_name)
            );

            CREATE TABLE IF NOT EXISTS ownership_shares (
                file_id   INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
                author_id TEXT    NOT NULL,
                score     REAL    NOT NULL,
                PRIMARY KEY (file_id, author_id)
            );

            CREATE TABLE IF NOT EXISTS replacement_events (
                id                     INTEGER PRIMARY KEY AUTOINCREMENT,
                repository_id          INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
                file_id                INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
                original_commit        TEXT    NOT NULL,
                replacement_commit     TEXT    NOT NULL,
                original_author        TEXT    NOT NULL,
                replacement_author     TEXT    NOT NULL,
                semantic_dissimilarity REAL    NOT NULL,
                time_proximity_days    INTEGER NOT NULL,
                churn_magnitude        INTEGER NOT NULL,
                message_signal         REAL    NOT NULL,
                event_score            REAL    NOT NULL,
                replaced_at            TEXT    NOT NULL,
                created_at             TEXT    NOT NULL
            );

            CREATE TABLE IF NOT EXISTS contributor_scores (
                repository_id      INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
                contributor_id     TEXT    NOT NULL,
                contributor_name   TEXT    NOT NULL DEFAULT '',
                raw_score          REAL    NOT NULL,
                normalized_score   REAL    NOT NULL,
                total_commits      INTEGER NOT NULL,
                event_count        INTEGER NOT NULL,
                last_calculated_at TEXT    NOT NULL,
                PRIMARY KEY (repository_id, contributor_id)
            );

            CREATE TABLE IF NOT EXISTS review_requests (
                repository_id INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
                number        INTEGER NOT NULL,
                title         TEXT    NOT NULL DEFAULT '',
                state         TEXT    NOT NULL DEFAULT 'open',
                author        TEXT    NOT NULL DEFAULT '',
                head_sha      TEXT,
                PRIMARY KEY (repository_id, number)
            );

            CREATE TABLE IF NOT EXISTS review_request_files (
                repository_id INTEGER NOT NULL,
                number        INTEGER NOT NULL,
                path          TEXT    NOT NULL,
                PRIMARY KEY (repository_id, number, path)
            );

            CREATE TABLE IF NOT EXISTS work_queue (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type   TEXT    NOT NULL,
                payload      TEXT    NOT NULL,
                status       TEXT    NOT NULL DEFAULT 'pending',
                attempts     INTEGER NOT NULL DEFAULT 0,
                available_at TEXT    NOT NULL,
                claim_token  TEXT,
                claimed_at   TEXT,
                last_error   TEXT,
                created_at   TEXT    NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_commits_author ON commits(repository_id, author_id);
            CREATE INDEX IF NOT EXISTS idx_file_changes_commit ON file_changes(commit_sha);
            CREATE INDEX IF NOT EXISTS idx_embeddings_file ON embeddings(file_id, committed_at);
            CREATE INDEX IF NOT EXISTS idx_deltas_file ON semantic_deltas(file_id);
            CREATE INDEX IF NOT EXISTS idx_events_repo ON replacement_events(repository_id, replaced_at);
            CREATE INDEX IF NOT EXISTS idx_events_file ON replacement_events(file_id);
            CREATE INDEX IF NOT EXISTS idx_queue_pending ON work_queue(status, available_at, id);

            COMMIT;
            """
        )

        row = c.execute("SELECT version FROM schema_version").fetchone()
        if row is None:
            c.execute("INSERT INTO schema_version (version) VALUES (?)", (_SCHEMA_VERSION,))
        elif row["version"] < _SCHEMA_VERSION:
            self._upgrade(row["version"])

    def _upgrade(self, version: int) -> None:
        c = self.conn
        if version < 2:
            columns = {r["name"] for r in c.execute("PRAGMA table_info(repositories)").fetchall()}
            if "analysis_started_at" not in columns:
                c.execute("ALTER TABLE repositories ADD COLUMN analysis_started_at TEXT")
        c.execute("UPDATE schema_version SET version = ?", (_SCHEMA_VERSION,))
        logger.info("Analysis DB upgraded from schema %d to %d", version, _SCHEMA_VERSION)
