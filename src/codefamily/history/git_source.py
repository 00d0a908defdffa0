"""Read-only repository data source backed by the ``git`` CLI."""

from __future__ import annotations

import asyncio
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from ..exceptions import AnalysisError, FatalIngestionError
from ..logging_config import get_logger
from ..models import FileDelta

logger = get_logger(__name__)

# Field / record separators for git log output (never appear in subjects)
_FS = "\x1f"
_RS = "\x1e"
_LOG_FORMAT = f"%H{_FS}%P{_FS}%an{_FS}%ae{_FS}%at{_FS}%s{_RS}"


class GitCommandError(AnalysisError):
    """Raised when a git subcommand exits non-zero."""

    def __init__(self, args: list[str], stderr: str):
        super().__init__(f"git {' '.join(args[:2])} failed", details={"stderr": stderr.strip()[:200]})
        self.stderr = stderr


@dataclass(frozen=True)
class BranchRef:
    name: str  # display name, remote prefix stripped
    ref: str  # fully qualified ref to walk


@dataclass(frozen=True)
class RawCommit:
    sha: str
    parents: tuple[str, ...]
    author_name: str
    author_email: str
    committed_at: datetime
    message: str

    @property
    def first_parent(self) -> Optional[str]:
        return self.parents[0] if self.parents else None


class RepositorySource(Protocol):
    """What the history walker needs from a repository."""

    def list_branches(self) -> list[BranchRef]: ...

    def default_branch(self) -> Optional[str]: ...

    def list_commits(self, branch: BranchRef) -> list[RawCommit]: ...

    def get_commit(self, sha: str) -> Optional[RawCommit]: ...

    def changed_files(self, commit: RawCommit) -> list[FileDelta]: ...

    def file_content(self, sha: str, path: str) -> Optional[str]: ...

    def list_files(self, sha: str) -> list[str]: ...

    def head_sha(self, branch: BranchRef) -> Optional[str]: ...


class GitRepositorySource:
    """Parse git plumbing output into structured history."""

    # Blobs larger than this are treated as unreadable
    _MAX_BLOB_BYTES = 5 * 1024 * 1024

    def __init__(self, repo_path: str, timeout_seconds: int = 120):
        self.repo_path = str(Path(repo_path).resolve())
        self.timeout_seconds = timeout_seconds

    # ── lifecycle ─────────────────────────────────────────────────

    def is_repository(self) -> bool:
        try:
            result = subprocess.run(
                ["git", "-C", self.repo_path, "rev-parse", "--git-dir"],
                capture_output=True,
                text=True,
                timeout=5,
            )
            return result.returncode == 0
        except (FileNotFoundError, subprocess.TimeoutExpired):
            return False

    @classmethod
    async def clone(cls, url: str, dest: str, timeout_seconds: int = 600) -> "GitRepositorySource":
        """Bare-clone ``url`` into ``dest`` (or reuse an existing clone)."""
        source = cls(dest, timeout_seconds=timeout_seconds)
        if Path(dest).exists() and source.is_repository():
            logger.debug("Reusing clone at %s", dest)
            return source
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        await _run_async(["git", "clone", "--bare", "--quiet", url, dest], url, timeout_seconds)
        logger.info("Cloned %s", url)
        return source

    async def fetch(self) -> None:
        """Fetch every remote branch into the bare clone's local heads."""
        await _run_async(
            [
                "git",
                "-C",
                self.repo_path,
                "fetch",
                "--prune",
                "--quiet",
                "origin",
                "+refs/heads/*:refs/heads/*",
            ],
            self.repo_path,
            self.timeout_seconds,
        )

    # ── branches ──────────────────────────────────────────────────

    def list_branches(self) -> list[BranchRef]:
        """Local and remote-tracking branches, deduplicated by name, no symbolic refs."""
        out = self._git("for-each-ref", "--format=%(refname)%09%(symref)", "refs/heads", "refs/remotes")
        local: list[BranchRef] = []
        remote: list[BranchRef] = []
        for line in out.splitlines():
            refname, _, symref = line.partition("\t")
            if symref or refname.endswith("/HEAD"):
                continue
            if refname.startswith("refs/heads/"):
                local.append(BranchRef(refname[len("refs/heads/"):], refname))
            elif refname.startswith("refs/remotes/"):
                # refs/remotes/<remote>/<branch...>
                parts = refname.split("/", 3)
                if len(parts) == 4:
                    remote.append(BranchRef(parts[3], refname))

        seen: set[str] = set()
        branches: list[BranchRef] = []
        for branch in local + remote:
            if branch.name in seen:
                continue
            seen.add(branch.name)
            branches.append(branch)
        return branches

    def default_branch(self) -> Optional[str]:
        try:
            out = self._git("symbolic-ref", "--short", "HEAD").strip()
        except GitCommandError:
            out = ""
        names = {b.name for b in self.list_branches()}
        if out in names:
            return out
        for candidate in ("main", "master"):
            if candidate in names:
                return candidate
        return None

    def head_sha(self, branch: BranchRef) -> Optional[str]:
        try:
            return self._git("rev-parse", branch.ref).strip() or None
        except GitCommandError:
            return None

    # ── commits ───────────────────────────────────────────────────

    def list_commits(self, branch: BranchRef) -> list[RawCommit]:
        """Commits reachable from ``branch``, oldest first."""
        return _parse_log(self._git("log", "--reverse", f"--format={_LOG_FORMAT}", branch.ref))

    def get_commit(self, sha: str) -> Optional[RawCommit]:
        try:
            commits = _parse_log(self._git("log", "-1", f"--format={_LOG_FORMAT}", sha))
        except GitCommandError:
            return None
        return commits[0] if commits else None

    def changed_files(self, commit: RawCommit) -> list[FileDelta]:
        """Tree diff against the first parent; root commits add their whole tree."""
        if commit.first_parent:
            out = self._git(
                "diff-tree", "-r", "-z", "--numstat", "--no-renames", commit.first_parent, commit.sha
            )
        else:
            out = self._git("diff-tree", "-r", "-z", "--numstat", "--no-renames", "--root", "--no-commit-id", commit.sha)
        return parse_numstat(out)

    # ── content ───────────────────────────────────────────────────

    def file_content(self, sha: str, path: str) -> Optional[str]:
        try:
            data = self._git_bytes("show", f"{sha}:{path}")
        except GitCommandError:
            return None
        if len(data) > self._MAX_BLOB_BYTES or b"\0" in data[:8192]:
            return None
        return data.decode("utf-8", errors="replace")

    def list_files(self, sha: str) -> list[str]:
        out = self._git("ls-tree", "-r", "-z", "--name-only", sha)
        return [p for p in out.split("\0") if p]

    # ── plumbing ──────────────────────────────────────────────────

    def _git(self, *args: str) -> str:
        return self._git_bytes(*args).decode("utf-8", errors="replace")

    def _git_bytes(self, *args: str) -> bytes:
        cmd = ["git", "-C", self.repo_path, *args]
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=self.timeout_seconds)
        except FileNotFoundError as e:
            raise FatalIngestionError(self.repo_path, "git executable not found") from e
        except subprocess.TimeoutExpired as e:
            raise GitCommandError(list(args), f"timed out after {self.timeout_seconds}s") from e
        if result.returncode != 0:
            raise GitCommandError(list(args), result.stderr.decode("utf-8", errors="replace"))
        return result.stdout


def _parse_log(out: str) -> list[RawCommit]:
    """Parse records produced by ``_LOG_FORMAT``."""
    commits: list[RawCommit] = []
    for record in out.split(_RS):
        record = record.strip("\n")
        if not record:
            continue
        parts = record.split(_FS)
        if len(parts) != 6:
            logger.warning("Skipping malformed log record: %r", record[:80])
            continue
        sha, parents, name, email, ts, subject = parts
        try:
            committed_at = datetime.fromtimestamp(int(ts), tz=timezone.utc)
        except ValueError:
            logger.warning("Skipping commit %s with bad timestamp %r", sha, ts)
            continue
        commits.append(
            RawCommit(
                sha=sha,
                parents=tuple(parents.split()),
                author_name=name,
                author_email=email,
                committed_at=committed_at,
                message=subject,
            )
        )
    return commits


def parse_numstat(out: str) -> list[FileDelta]:
    """Parse ``--numstat -z`` output. Binary files report ``-`` and count as 0/0."""
    deltas: list[FileDelta] = []
    for entry in out.split("\0"):
        entry = entry.strip("\n")
        if not entry:
            continue
        parts = entry.split("\t", 2)
        if len(parts) != 3:
            continue
        added, deleted, path = parts
        deltas.append(
            FileDelta(
                path=path,
                additions=int(added) if added.isdigit() else 0,
                deletions=int(deleted) if deleted.isdigit() else 0,
            )
        )
    return deltas


async def _run_async(cmd: list[str], target: str, timeout_seconds: int) -> None:
    """Run a network-bound git command; any failure is fatal for the run."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
    except FileNotFoundError as e:
        raise FatalIngestionError(target, "git executable not found") from e
    try:
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        proc.kill()
        raise FatalIngestionError(target, f"git timed out after {timeout_seconds}s") from e
    if proc.returncode != 0:
        raise FatalIngestionError(target, stderr.decode("utf-8", errors="replace").strip()[:200])
