"""Analysis-related exceptions: external services, missing data, consistency.

Handling policy by type:
    TransientExternalFailure -> log, skip the affected unit of work, continue
    NotFoundError            -> abort the current queue item only
    DataConsistencyError     -> drop the offending edge, continue
    FatalIngestionError      -> mark the repository errored, abort the run
    ParseError               -> abort that file's contribution to the step
"""

from typing import Optional

from .base import CodeFamilyError


class AnalysisError(CodeFamilyError):
    """Base class for analysis-related errors."""

    pass


class TransientExternalFailure(AnalysisError):
    """Raised when an external service (embedding, parser, hosting API) is unreachable."""

    def __init__(self, service: str, reason: str, status_code: Optional[int] = None):
        details = {"service": service, "reason": reason}
        if status_code is not None:
            details["status_code"] = str(status_code)
        super().__init__(f"{service} request failed", details=details)
        self.service = service
        self.reason = reason
        self.status_code = status_code


class NotFoundError(AnalysisError):
    """Raised when a commit, file or review request referenced by an event is missing."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}", details={"kind": kind})
        self.kind = kind
        self.identifier = identifier


class DataConsistencyError(AnalysisError):
    """Raised when derived data would be inconsistent (e.g. a self-referential edge)."""

    def __init__(self, reason: str, source: Optional[str] = None, target: Optional[str] = None):
        details = {"reason": reason}
        if source is not None:
            details["source"] = source
        if target is not None:
            details["target"] = target
        super().__init__(f"Inconsistent data: {reason}", details=details)
        self.reason = reason
        self.source = source
        self.target = target


class FatalIngestionError(AnalysisError):
    """Raised when the repository itself cannot be read (clone/fetch failure)."""

    def __init__(self, repository: str, reason: str):
        super().__init__(
            f"Cannot ingest repository: {repository}",
            details={"repository": repository, "reason": reason},
        )
        self.repository = repository
        self.reason = reason


class ParseError(AnalysisError):
    """Raised when source content cannot be parsed."""

    def __init__(self, path: str, language: str, reason: str):
        super().__init__(
            f"Failed to parse {language} file: {path}",
            details={"path": path, "language": language, "reason": reason},
        )
        self.path = path
        self.language = language
        self.reason = reason


class AnalysisInProgressError(AnalysisError):
    """Raised when an analysis is launched for a repository that already has one running."""

    def __init__(self, repository: str):
        super().__init__(f"Analysis already running for {repository}", details={"repository": repository})
        self.repository = repository


class AnalysisCancelledError(AnalysisError):
    """Raised from inside a long-running step once its cancellation token fires."""

    def __init__(self, repository: str):
        super().__init__(f"Analysis cancelled for {repository}", details={"repository": repository})
        self.repository = repository
