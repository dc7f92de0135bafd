"""Embedding storage backends."""

from .base import EmbeddingStore
from .factory import create_embedding_store
from .memory import InMemoryEmbeddingStore

__all__ = [
    "EmbeddingStore",
    "InMemoryEmbeddingStore",
    "create_embedding_store",
]
