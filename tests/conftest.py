"""Shared fixtures: in-memory store, fixed clock and fakes for every collaborator."""

import hashlib
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from codefamily.config import AppConfig
from codefamily.exceptions import NotFoundError, TransientExternalFailure
from codefamily.history import BranchRef, GitCommandError, RawCommit
from codefamily.models import CommitFact, FileDelta
from codefamily.persistence import AnalysisDB, AnalysisStore
from codefamily.services import ExternalServices, ParseResult, RemoteReviewRequest

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register markers."""
    config.addinivalue_line("markers", "git: test needs a git executable")


# ── fakes ─────────────────────────────────────────────────────────


class FakeSource:
    """In-memory RepositorySource: branches of linear commit lists over file trees."""

    def __init__(self, default: str = "main"):
        self.default = default
        self.branches: dict[str, list[RawCommit]] = {}
        self.changes: dict[str, list[FileDelta]] = {}
        self.trees: dict[str, dict[str, str]] = {}
        self.broken: set[str] = set()

    def commit(
        self,
        sha: str,
        email: str,
        when: datetime,
        message: str,
        files: Optional[dict[str, str]] = None,
        removed: tuple = (),
        branch: str = "main",
        name: Optional[str] = None,
    ) -> RawCommit:
        history = self.branches.setdefault(branch, [])
        parent = history[-1] if history else None
        tree = dict(self.trees[parent.sha]) if parent else {}
        deltas = []
        for path, content in (files or {}).items():
            deletions = len(tree[path].splitlines()) if path in tree else 0
            deltas.append(FileDelta(path, len(content.splitlines()), deletions))
            tree[path] = content
        for path in removed:
            deltas.append(FileDelta(path, 0, len(tree.pop(path).splitlines())))

        raw = RawCommit(
            sha=sha,
            parents=(parent.sha,) if parent else (),
            author_name=name or email.split("@")[0].title(),
            author_email=email,
            committed_at=when,
            message=message,
        )
        history.append(raw)
        self.trees[sha] = tree
        self.changes[sha] = deltas
        return raw

    def fork(self, name: str, from_branch: str = "main") -> None:
        self.branches[name] = list(self.branches[from_branch])

    def list_branches(self):
        return [BranchRef(name, f"refs/heads/{name}") for name in sorted(self.branches)]

    def default_branch(self):
        return self.default if self.default in self.branches else None

    def list_commits(self, branch):
        return list(self.branches[branch.name])

    def get_commit(self, sha):
        for history in self.branches.values():
            for raw in history:
                if raw.sha == sha:
                    return raw
        return None

    def changed_files(self, commit):
        if commit.sha in self.broken:
            raise GitCommandError(["diff-tree", commit.sha], "fatal: bad object")
        return list(self.changes[commit.sha])

    def file_content(self, sha, path):
        return self.trees.get(sha, {}).get(path)

    def list_files(self, sha):
        return sorted(self.trees.get(sha, {}))

    def head_sha(self, branch):
        history = self.branches.get(branch.name)
        return history[-1].sha if history else None


_PY_IMPORT = re.compile(r"^\s*(?:from\s+(\S+)\s+import|import\s+(\S+))", re.MULTILINE)
_JS_IMPORT = re.compile(r"""from\s+['"]([^'"]+)['"]""")


class FakeParser:
    """Regex import extraction; no functions, so whole files become one chunk."""

    def __init__(self):
        self.calls = 0

    async def parse(self, code, language, path=""):
        self.calls += 1
        if language == "python":
            imports = [a or b for a, b in _PY_IMPORT.findall(code)]
        else:
            imports = _JS_IMPORT.findall(code)
        return ParseResult(functions=[], imports=imports)


class FakeEmbedder:
    """Vectors from an explicit table, else derived from a hash of the text."""

    def __init__(self, table: Optional[dict[str, list[float]]] = None, fail_on: tuple = ()):
        self.table = table or {}
        self.fail_on = fail_on
        self.calls: list[str] = []

    async def embed(self, text):
        self.calls.append(text)
        if any(marker in text for marker in self.fail_on):
            raise TransientExternalFailure("embedding", "HTTP 503", status_code=503)
        if text in self.table:
            return list(self.table[text])
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 + 0.01 for b in digest[:8]]


class FakePlatform:
    def __init__(self):
        self.requests: list[RemoteReviewRequest] = []
        self.files: dict[int, list[str]] = {}
        self.statuses: list[dict] = []
        self.authors: dict[str, str] = {}
        self.status_error: Optional[Exception] = None

    async def list_review_requests(self, owner, name, state="open"):
        return [r for r in self.requests if r.state == state]

    async def list_review_request_files(self, owner, name, number):
        if number not in self.files:
            raise NotFoundError("review request", str(number))
        return list(self.files[number])

    async def create_status(self, owner, name, sha, state, description, context):
        if self.status_error is not None:
            raise self.status_error
        self.statuses.append(
            {"repo": f"{owner}/{name}", "sha": sha, "state": state, "description": description, "context": context}
        )

    async def get_commit_author(self, owner, name, sha):
        return self.authors.get(sha)


class FakeNotifier:
    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    async def send_direct_message(self, user, text):
        self.messages.append((user, text))


# ── fixtures ──────────────────────────────────────────────────────


@pytest.fixture
def store():
    """Store over a throwaway in-memory database."""
    db = AnalysisDB(":memory:")
    db.connect()
    yield AnalysisStore(db.conn)
    db.close()


@pytest.fixture
def repo(store):
    return store.get_or_create_repository("acme", "widgets")


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        database_path=str(tmp_path / "analysis.db"),
        clone_dir=str(tmp_path / "repos"),
        poll_interval_seconds=0.01,
        error_backoff_seconds=0.01,
    )


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def services(platform, notifier):
    return ExternalServices(embedder=FakeEmbedder(), parser=FakeParser(), platform=platform, notifier=notifier)


@pytest.fixture
def add_change(store, repo):
    """Store a commit touching one file; returns the file id."""

    def _add(
        sha: str,
        author: str,
        when: datetime,
        path: str = "src/app.py",
        message: str = "update",
        additions: int = 50,
        deletions: int = 0,
        vector: Optional[list[float]] = None,
    ) -> int:
        fact = CommitFact(
            sha=sha,
            author_id=author,
            author_name=author.title(),
            author_email=f"{author}@example.com",
            message=message,
            committed_at=when,
        )
        store.insert_commit(repo.id, fact)
        record = store.get_or_create_file(repo.id, path)
        store.upsert_file_change(record.id, sha, additions, deletions)
        if vector is not None:
            store.add_embedding(record.id, sha, "<module>", vector, "code", when)
        return record.id

    return _add


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


@pytest.fixture
def ago():
    return days_ago
