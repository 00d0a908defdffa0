"""Commit history extraction: git data source, author identity and branch walking."""

from .git_source import BranchRef, GitCommandError, GitRepositorySource, RawCommit, RepositorySource
from .identity import IdentityResolver
from .walker import HistoryWalker, WalkedCommit

__all__ = [
    "BranchRef",
    "GitCommandError",
    "GitRepositorySource",
    "HistoryWalker",
    "IdentityResolver",
    "RawCommit",
    "RepositorySource",
    "WalkedCommit",
]
