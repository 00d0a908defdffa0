"""Data models shared by ingestion, scoring and the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class RepositoryStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    READY = "ready"
    ERROR = "error"


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Repository:
    id: int
    owner: str
    name: str
    status: str = RepositoryStatus.PENDING.value
    last_analyzed_sha: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class Branch:
    id: int
    repository_id: int
    name: str
    is_default: bool = False


@dataclass(frozen=True)
class CommitFact:
    sha: str
    author_id: str  # stable contributor id (login or lower-cased email)
    author_name: str
    author_email: str
    message: str  # subject line
    committed_at: datetime
    parent_count: int = 1
    parent_sha: Optional[str] = None  # first parent, diff base


@dataclass(frozen=True)
class FileDelta:
    """Line-level change of one path in one commit."""

    path: str
    additions: int
    deletions: int

    @property
    def churn(self) -> int:
        return self.additions + self.deletions


@dataclass
class FileRecord:
    id: int
    repository_id: int
    path: str


@dataclass
class FileChange:
    """A FileDelta bound to stored entities, joined with its commit."""

    file_id: int
    path: str
    commit_sha: str
    additions: int
    deletions: int
    author_id: str
    author_name: str
    message: str
    committed_at: datetime

    @property
    def churn(self) -> int:
        return self.additions + self.deletions


@dataclass(frozen=True)
class DependencyEdge:
    source_path: str
    target_path: str
    edge_type: str = "import"
    strength: float = 1.0


@dataclass
class EmbeddingRecord:
    id: int
    file_id: int
    commit_sha: str
    chunk_name: str
    vector: list[float]
    source_text: str
    committed_at: datetime
    created_at: datetime


@dataclass(frozen=True)
class OwnershipShare:
    file_id: int
    path: str
    author_id: str
    score: float


@dataclass
class ReplacementEvent:
    file_id: int
    path: str
    original_commit: str
    replacement_commit: str
    original_author: str
    replacement_author: str
    semantic_dissimilarity: float
    time_proximity_days: int
    churn_magnitude: int  # raw additions + deletions of the replacement
    message_signal: float
    event_score: float
    replaced_at: datetime
    created_at: datetime
    id: Optional[int] = None


@dataclass
class ContributorScore:
    repository_id: int
    contributor_id: str
    contributor_name: str
    raw_score: float
    normalized_score: float
    total_commits: int
    event_count: int
    last_calculated_at: datetime


@dataclass
class ReviewRequest:
    repository_id: int
    number: int
    title: str = ""
    state: str = "open"
    author: str = ""
    head_sha: Optional[str] = None
    files: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class ConflictingRequest:
    number: int
    title: str
    risk: float
    structural_overlap: float
    semantic_overlap: float
    overlapping_files: list[str]


@dataclass
class ConflictAssessment:
    changed_files: list[str]
    risk_score: float = 0.0
    structural_overlap: float = 0.0
    semantic_overlap: float = 0.0
    requests: list[ConflictingRequest] = field(default_factory=list)  # ranked by risk
    threshold: float = 0.8

    @property
    def conflicting(self) -> list[ConflictingRequest]:
        return [r for r in self.requests if r.risk >= self.threshold]

    @property
    def is_blocking(self) -> bool:
        return self.risk_score >= self.threshold


@dataclass
class QueueItem:
    id: int
    event_type: str
    payload: str
    status: str
    attempts: int = 0
    last_error: Optional[str] = None
