"""Detect replacement events between consecutive cross-author revisions.

For each file, changes are examined in commit-time order. A transition from
one author's change to another author's is scored as

    dissimilarity * time_proximity * churn_factor * message_signal * recency_decay

unless it is a refactor, too far apart in time, or too semantically similar.
The result is a heuristic classifier; :class:`ScoringConfig` is its tuning
surface.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from ..cancellation import CancellationToken
from ..config import DEFAULT_SCORING, ScoringConfig
from ..logging_config import get_logger
from ..models import FileChange, ReplacementEvent
from ..persistence import AnalysisStore, utcnow
from ..semantics.vectors import cosine_similarity
from .signals import is_refactor, message_signal

logger = get_logger(__name__)


def whole_days(delta: timedelta) -> int:
    """Completed days in a non-negative interval."""
    return max(0, int(delta.total_seconds() // 86400))


def time_proximity_factor(days_between: int, scoring: ScoringConfig = DEFAULT_SCORING) -> float:
    return math.exp(-days_between / scoring.proximity_scale_days)


def recency_decay(weeks_since: float, scoring: ScoringConfig = DEFAULT_SCORING) -> float:
    """Halves every ``decay_half_life_weeks``."""
    return math.exp(-max(0.0, weeks_since) * math.log(2) / scoring.decay_half_life_weeks)


def churn_factor(churn: int, scoring: ScoringConfig = DEFAULT_SCORING) -> float:
    return min(1.0, churn / scoring.churn_cap)


def event_score(
    dissimilarity: float,
    days_between: int,
    churn: int,
    signal: float,
    weeks_since: float,
    scoring: ScoringConfig = DEFAULT_SCORING,
) -> float:
    return (
        dissimilarity
        * time_proximity_factor(days_between, scoring)
        * churn_factor(churn, scoring)
        * signal
        * recency_decay(weeks_since, scoring)
    )


class ReplacementDetector:
    def __init__(
        self,
        store: AnalysisStore,
        scoring: ScoringConfig = DEFAULT_SCORING,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.scoring = scoring
        self.now = now

    def detect_file(self, file_id: int) -> list[ReplacementEvent]:
        changes = self.store.file_changes(file_id)
        if len(changes) < 2:
            return []

        now = self.now()
        count = len(changes)
        events: list[ReplacementEvent] = []
        for index in range(1, count):
            previous, current = changes[index - 1], changes[index]
            if previous.author_id == current.author_id:
                continue
            if is_refactor(current.message):
                continue

            days_between = whole_days(current.committed_at - previous.committed_at)
            if days_between > self.scoring.max_proximity_days:
                continue

            dissimilarity = self.dissimilarity(file_id, previous, current, index, count)
            if dissimilarity < self.scoring.dissimilarity_floor:
                continue

            signal = message_signal(current.message, self.scoring)
            weeks_since = (now - current.committed_at).total_seconds() / (7 * 86400)
            score = event_score(dissimilarity, days_between, current.churn, signal, weeks_since, self.scoring)
            events.append(
                ReplacementEvent(
                    file_id=file_id,
                    path=current.path,
                    original_commit=previous.commit_sha,
                    replacement_commit=current.commit_sha,
                    original_author=previous.author_id,
                    replacement_author=current.author_id,
                    semantic_dissimilarity=dissimilarity,
                    time_proximity_days=days_between,
                    churn_magnitude=current.churn,
                    message_signal=signal,
                    event_score=score,
                    replaced_at=current.committed_at,
                    created_at=now,
                )
            )
        return events

    def dissimilarity(
        self,
        file_id: int,
        previous: FileChange,
        current: FileChange,
        index: int,
        count: int,
    ) -> float:
        """Largest ``1 - cos`` over the chunks present at both commits.

        Chunks are matched by name, so rewriting one function of a file is
        not masked by an untouched sibling. Falls back to a positional
        estimate in [base, base + span) when either fingerprint is missing or
        nothing was re-embedded between the two commits.
        """
        after = self.store.chunk_fingerprint(file_id, at_or_before=current.committed_at)
        before = self.store.chunk_fingerprint(file_id, at_or_before=previous.committed_at)
        if not after or not before or _ids(after) == _ids(before):
            return self.scoring.fallback_dissimilarity_base + self.scoring.fallback_dissimilarity_span * index / count
        common = sorted(set(after) & set(before))
        if not common:
            # every chunk was renamed or replaced
            return 1.0
        worst = max(1.0 - cosine_similarity(before[name].vector, after[name].vector) for name in common)
        return min(1.0, max(0.0, worst))

    def rebuild_repository(self, repository_id: int, token: Optional[CancellationToken] = None) -> int:
        """Delete and recompute every event of a repository."""
        files = self.store.list_files(repository_id)
        events: list[ReplacementEvent] = []
        for record in files:
            if token is not None:
                token.raise_if_cancelled()
            events.extend(self.detect_file(record.id))
        with self.store.transaction():
            self.store.delete_events(repository_id)
            self.store.insert_events(repository_id, events)
        logger.info("Detected %d replacement events across %d files", len(events), len(files))
        return len(events)

    def rebuild_files(self, repository_id: int, file_ids: Iterable[int]) -> int:
        """Delete and recompute the events of some files only."""
        file_ids = list(file_ids)
        events = {file_id: self.detect_file(file_id) for file_id in file_ids}
        with self.store.transaction():
            for file_id in file_ids:
                self.store.delete_events(repository_id, file_id)
                self.store.insert_events(repository_id, events[file_id])
        total = sum(len(e) for e in events.values())
        logger.debug("Rebuilt %d events for %d files", total, len(file_ids))
        return total


def _ids(fingerprint: dict) -> dict[str, int]:
    return {name: record.id for name, record in fingerprint.items()}
