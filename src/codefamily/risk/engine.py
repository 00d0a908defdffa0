"""Conflict risk of a change set against open review requests."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from ..config import DEFAULT_SCORING, ScoringConfig
from ..logging_config import get_logger
from ..models import ConflictAssessment, ConflictingRequest, ReviewRequest
from ..persistence import AnalysisStore
from ..semantics.vectors import cosine_similarity

logger = get_logger(__name__)


class ConflictRiskEngine:
    """``risk = 0.4 * structural + 0.6 * semantic`` per open request.

    Structural overlap is 1.0 iff the change set and the request share a
    file. Semantic overlap is the highest cosine similarity between any
    changed chunk embedding and any request chunk embedding, clamped to
    [0, 1].
    """

    def __init__(self, store: AnalysisStore, scoring: ScoringConfig = DEFAULT_SCORING):
        self.store = store
        self.scoring = scoring

    def assess(
        self,
        repository_id: int,
        changed_files: Iterable[str],
        fresh_vectors: Optional[dict[str, list[list[float]]]] = None,
        baseline: Optional[datetime] = None,
    ) -> ConflictAssessment:
        """Score every open request against a change set.

        Args:
            repository_id: Repository the requests belong to
            changed_files: Paths touched by the change set
            fresh_vectors: Chunk vectors the change set itself produced, per
                path. When given, these are the change set's only fingerprints.
            baseline: Request files are fingerprinted as they were before this
                time, so a change set is never compared with its own result.
        """
        changed = sorted(set(changed_files))
        assessment = ConflictAssessment(changed_files=changed, threshold=self.scoring.conflict_threshold)

        requests = self.store.open_review_requests(repository_id)
        if not changed or not requests:
            return assessment

        if fresh_vectors is None:
            vectors = self.store.current_vectors(repository_id, changed)
        else:
            vectors = {p: v for p, v in fresh_vectors.items() if p in changed}
        changed_vectors = [v for chunks in vectors.values() for v in chunks]

        ranked = [
            self._score(repository_id, request, changed, changed_vectors, baseline) for request in requests
        ]
        ranked.sort(key=lambda r: (-r.risk, r.number))

        top = ranked[0]
        assessment.risk_score = top.risk
        assessment.structural_overlap = top.structural_overlap
        assessment.semantic_overlap = top.semantic_overlap
        assessment.requests = ranked
        if assessment.conflicting:
            logger.info(
                "Change set of %d files conflicts with %d open requests (max risk %.2f)",
                len(changed),
                len(assessment.conflicting),
                top.risk,
            )
        return assessment

    def _score(
        self,
        repository_id: int,
        request: ReviewRequest,
        changed: list[str],
        changed_vectors: list[list[float]],
        baseline: Optional[datetime] = None,
    ) -> ConflictingRequest:
        overlapping = sorted(set(changed) & request.files)
        structural = 1.0 if overlapping else 0.0

        semantic = 0.0
        if changed_vectors and request.files:
            vectors = self.store.current_vectors(repository_id, sorted(request.files), before=baseline)
            request_vectors = [v for chunks in vectors.values() for v in chunks]
            for mine in changed_vectors:
                for theirs in request_vectors:
                    semantic = max(semantic, cosine_similarity(mine, theirs))
        semantic = min(1.0, max(0.0, semantic))

        risk = self.scoring.structural_weight * structural + self.scoring.semantic_weight * semantic
        return ConflictingRequest(
            number=request.number,
            title=request.title,
            risk=min(1.0, risk),
            structural_overlap=structural,
            semantic_overlap=semantic,
            overlapping_files=overlapping,
        )
