"""Embedding-based semantics: vector math and ownership attribution."""

from .attributor import MODULE_CHUNK, ChunkEmbedding, OwnershipAttributor
from .vectors import cosine_similarity, euclidean_distance

__all__ = [
    "MODULE_CHUNK",
    "ChunkEmbedding",
    "OwnershipAttributor",
    "cosine_similarity",
    "euclidean_distance",
]
