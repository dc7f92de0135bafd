"""Embedding providers for semantic search."""

from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional

import requests

from .errors import EmbeddingFailure, ProviderUnavailable, ValidationFailure

logger = logging.getLogger(__name__)


class EmbeddingProvider:
    """Abstract base class for embedding models.

    ``embed`` raises :class:`ProviderUnavailable` when the model cannot be
    reached at all and :class:`EmbeddingFailure` when it rejects an input.
    """

    dimension: Optional[int] = None

    def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed multiple texts into vectors."""
        raise NotImplementedError

    def embed_one(self, text: str) -> List[float]:
        """Embed a single text into a vector."""
        vectors = self.embed([text])
        if not vectors or not vectors[0]:
            raise EmbeddingFailure("Embedding provider returned no vector")
        return vectors[0]


class SentenceTransformersEmbedder(EmbeddingProvider):
    """Embedder using SentenceTransformers library."""

    def __init__(self, model_name: str) -> None:
        from sentence_transformers import SentenceTransformer  # type: ignore
        logger.info(f"Loading embedding model: {model_name}")
        self.model = SentenceTransformer(model_name)
        self.dimension = self.model.get_sentence_embedding_dimension()

    def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        try:
            arr = self.model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        except Exception as e:
            raise EmbeddingFailure(f"sentence-transformers failed to encode: {e}") from e
        return [row.tolist() for row in arr]


class HttpEmbedder(EmbeddingProvider):
    """Remote embedding endpoint speaking the OpenAI ``/embeddings`` format."""

    def __init__(
        self,
        url: str,
        model: str,
        api_key: Optional[str] = None,
        timeout: int = 30,
        dimension: Optional[int] = None,
    ) -> None:
        self.url = url
        self.model = model
        self.timeout = timeout
        self.dimension = dimension
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        payload = {"model": self.model, "input": texts}
        try:
            response = requests.post(self.url, headers=self.headers, json=payload, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ProviderUnavailable(f"Embedding endpoint {self.url} unreachable: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderUnavailable(
                f"Embedding endpoint answered {response.status_code}: {response.text[:200]}"
            )
        if response.status_code >= 400:
            raise EmbeddingFailure(
                f"Embedding endpoint rejected input ({response.status_code}): {response.text[:200]}"
            )

        try:
            data = response.json()["data"]
            vectors = [item["embedding"] for item in sorted(data, key=lambda d: d.get("index", 0))]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingFailure(f"Unexpected embedding response format: {e}") from e

        if len(vectors) != len(texts):
            raise EmbeddingFailure(f"Asked for {len(texts)} embeddings, got {len(vectors)}")
        return vectors


def make_embedder(cfg: Dict) -> EmbeddingProvider:
    """Create embedder from config.

    Args:
        cfg: Configuration dictionary

    Returns:
        EmbeddingProvider instance

    Raises:
        ValidationFailure: If the backend is unknown
        ProviderUnavailable: If the local model cannot be loaded
    """
    emb_cfg = cfg.get("embedding", {})
    backend = str(emb_cfg.get("backend", "sentence_transformers")).strip().lower()

    if backend == "http":
        http_cfg = emb_cfg.get("http", {})
        url = http_cfg.get("url")
        if not url:
            raise ValidationFailure("embedding.http.url is required for the http backend")
        return HttpEmbedder(
            url=url,
            model=http_cfg.get("model", "text-embedding-3-small"),
            api_key=http_cfg.get("api_key") or os.getenv("EMBEDDING_API_KEY"),
            timeout=int(http_cfg.get("timeout", 30)),
            dimension=cfg.get("vector_store", {}).get("dimension"),
        )

    if backend != "sentence_transformers":
        raise ValidationFailure(f"Invalid embedding.backend: {backend!r}")

    model_name = emb_cfg.get("sentence_transformers_model", "all-MiniLM-L6-v2")
    try:
        return SentenceTransformersEmbedder(model_name)
    except Exception as e:
        raise ProviderUnavailable(
            "Could not load sentence-transformers. "
            "Run: pip install -U sentence-transformers"
        ) from e
