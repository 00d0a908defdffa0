"""Roll replacement events up into per-contributor instability scores."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..config import DEFAULT_SCORING, ScoringConfig
from ..logging_config import get_logger
from ..models import ContributorScore, ReplacementEvent
from ..persistence import AnalysisStore, utcnow

logger = get_logger(__name__)


class NegativeScoreAggregator:
    """Scores are grouped by the *original* author, the one whose code was replaced.

    ``normalized_score = raw_score / max(1, lifetime_commits / 10)``. The
    divisor always uses lifetime commit counts, so windowed scores stay
    comparable with lifetime ones.
    """

    def __init__(
        self,
        store: AnalysisStore,
        scoring: ScoringConfig = DEFAULT_SCORING,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.scoring = scoring
        self.now = now

    def compute(self, repository_id: int, window_days: Optional[int] = None) -> list[ContributorScore]:
        now = self.now()
        since = now - timedelta(days=window_days) if window_days is not None else None
        events = self.store.list_events(repository_id, since=since)

        by_author: dict[str, list[ReplacementEvent]] = defaultdict(list)
        for event in events:
            by_author[event.original_author].append(event)

        commit_counts = self.store.commit_counts_by_author(repository_id)
        names = self.store.author_names(repository_id)
        unit = self.scoring.commits_per_normalization_unit

        scores = []
        for author, author_events in by_author.items():
            raw = sum(e.event_score for e in author_events)
            total_commits = commit_counts.get(author, 0)
            scores.append(
                ContributorScore(
                    repository_id=repository_id,
                    contributor_id=author,
                    contributor_name=names.get(author, author),
                    raw_score=raw,
                    normalized_score=raw / max(1.0, total_commits / unit),
                    total_commits=total_commits,
                    event_count=len(author_events),
                    last_calculated_at=now,
                )
            )
        scores.sort(key=lambda s: (-s.normalized_score, s.contributor_id))
        return scores

    def recalculate(self, repository_id: int) -> list[ContributorScore]:
        """Delete and rebuild the persisted lifetime scores."""
        scores = self.compute(repository_id)
        self.store.replace_contributor_scores(repository_id, scores)
        logger.info("Scored %d contributors", len(scores))
        return scores

    def scores(self, repository_id: int, window_days: Optional[int] = None) -> list[ContributorScore]:
        """Persisted lifetime scores, or a windowed view computed on read."""
        if window_days is None:
            return self.store.contributor_scores(repository_id)
        return self.compute(repository_id, window_days)
