"""Factory for creating embedding store instances."""

from __future__ import annotations

from typing import Dict

from ..core.errors import ValidationFailure
from .base import EmbeddingStore
from .memory import InMemoryEmbeddingStore


def create_embedding_store(cfg: Dict) -> EmbeddingStore:
    vector_store_cfg = cfg.get("vector_store", {})
    backend = str(vector_store_cfg.get("backend", "qdrant")).strip().lower()
    dimension = int(vector_store_cfg.get("dimension", 384))

    if backend == "memory":
        return InMemoryEmbeddingStore(dimension=dimension)

    if backend != "qdrant":
        raise ValidationFailure(f"Unknown vector store backend: {backend!r}. Supported: 'qdrant', 'memory'")

    from .qdrant import QdrantEmbeddingStore

    qdrant_cfg = vector_store_cfg.get("qdrant", {})
    return QdrantEmbeddingStore(
        collection_name=vector_store_cfg.get("collection", "code_units"),
        dimension=dimension,
        host=qdrant_cfg.get("host", "localhost"),
        port=int(qdrant_cfg.get("port", 6333)),
    )
