"""Semantic ownership: embedding deltas per author, normalized per file.

Each function chunk a commit touches is embedded. The distance between that
vector and the file's previous one is the semantic delta credited to the
commit's author. Deltas live in the ``semantic_deltas`` table keyed by
(file, commit, chunk), so accumulation survives restarts and replaying a
commit adds nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from ..cancellation import CancellationToken
from ..exceptions import CodeFamilyError
from ..logging_config import get_logger
from ..models import CommitFact
from ..persistence import AnalysisStore
from ..services.protocols import EmbeddingGateway, FunctionChunk
from .vectors import euclidean_distance

logger = get_logger(__name__)

MODULE_CHUNK = "<module>"


@dataclass
class ChunkEmbedding:
    name: str
    text: str
    vector: list[float]


class OwnershipAttributor:
    def __init__(
        self,
        store: AnalysisStore,
        embedder: Optional[EmbeddingGateway] = None,
        max_chunk_chars: int = 8000,
    ):
        self.store = store
        self.embedder = embedder
        self.max_chunk_chars = max_chunk_chars

    async def embed_chunks(
        self,
        path: str,
        chunks: Iterable[FunctionChunk],
        token: Optional[CancellationToken] = None,
    ) -> list[ChunkEmbedding]:
        """Embed each chunk; a chunk whose request fails is left out."""
        if self.embedder is None:
            return []
        embedded: list[ChunkEmbedding] = []
        for chunk in chunks:
            if token is not None:
                token.raise_if_cancelled()
            text = chunk.code[: self.max_chunk_chars]
            if not text.strip():
                continue
            try:
                vector = await self.embedder.embed(text)
            except CodeFamilyError as e:
                logger.warning("Embedding failed for %s:%s, skipping chunk: %s", path, chunk.name, e)
                continue
            embedded.append(ChunkEmbedding(chunk.name, text, vector))
        return embedded

    def record(self, file_id: int, fact: CommitFact, embedded: Iterable[ChunkEmbedding]) -> int:
        """Append embeddings for one commit and record their deltas.

        The previous vector is the latest one for the same chunk at an
        earlier commit, else the latest one for the file at an earlier commit.
        Returns the number of deltas newly recorded.
        """
        recorded = 0
        for chunk in embedded:
            previous = self.store.latest_embedding(
                file_id, before=fact.committed_at, chunk_name=chunk.name
            ) or self.store.latest_embedding(file_id, before=fact.committed_at)

            self.store.add_embedding(file_id, fact.sha, chunk.name, chunk.vector, chunk.text, fact.committed_at)
            if previous is None:
                continue
            try:
                delta = euclidean_distance(previous.vector, chunk.vector)
            except ValueError as e:
                logger.warning("Cannot compare embeddings of %s at %s: %s", chunk.name, fact.sha[:8], e)
                continue
            if self.store.record_delta(file_id, fact.sha, chunk.name, fact.author_id, delta):
                recorded += 1
        return recorded

    def compute_shares(self, file_id: int) -> dict[str, float]:
        """Author -> share of the file's total delta; empty when the total is zero."""
        totals = self.store.author_delta_totals(file_id)
        total = sum(totals.values())
        if total <= 0:
            return {}
        return {author: value / total for author, value in totals.items()}

    def refresh(self, file_ids: Iterable[int]) -> int:
        """Rebuild ownership shares of the given files. Returns files with shares."""
        owned = 0
        for file_id in file_ids:
            shares = self.compute_shares(file_id)
            self.store.replace_ownership(file_id, shares)
            if shares:
                owned += 1
        return owned

    def refresh_repository(self, repository_id: int) -> int:
        files = self.store.list_files(repository_id)
        owned = self.refresh(f.id for f in files)
        logger.info("Ownership computed for %d of %d files", owned, len(files))
        return owned
