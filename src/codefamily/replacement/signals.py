"""Commit-message classifiers used by replacement detection."""

import re

from ..config import DEFAULT_SCORING, ScoringConfig

REFACTOR_PATTERN = re.compile(r"\b(refactor|cleanup|clean up|optimize|style|format|lint)\b", re.IGNORECASE)
REVERT_PATTERN = re.compile(r"\b(revert|rollback|undo)\b", re.IGNORECASE)
FIX_PATTERN = re.compile(r"\b(fix|bug|hotfix|patch|issue|error)\b", re.IGNORECASE)


def is_refactor(message: str) -> bool:
    """Intentional non-destructive change: never counted as a replacement."""
    return bool(REFACTOR_PATTERN.search(message or ""))


def message_signal(message: str, scoring: ScoringConfig = DEFAULT_SCORING) -> float:
    """Severity multiplier: revert beats fix beats everything else."""
    message = message or ""
    if REVERT_PATTERN.search(message):
        return scoring.revert_signal
    if FIX_PATTERN.search(message):
        return scoring.fix_signal
    return 1.0
