"""Configuration management for codesearch."""

from __future__ import annotations

import copy
import os
from typing import Dict, Optional

from ..core.errors import ValidationFailure


DEFAULT_CONFIG: Dict = {
    "embedding": {
        "backend": "sentence_transformers",
        "sentence_transformers_model": "sentence-transformers/all-MiniLM-L6-v2",
        "http": {
            "url": None,
            "model": "text-embedding-3-small",
            "api_key": None,
            "timeout": 30,
        },
    },
    "vector_store": {
        "backend": "qdrant",
        "collection": "code_units",
        "dimension": 384,
        "qdrant": {
            "host": "localhost",
            "port": 6333,
        },
    },
    "indexing": {
        "batch_size": 10,
        "batch_delay_seconds": 1.0,
        "provider_retries": 3,
        "retry_backoff_seconds": 2.0,
    },
    "normalizer": {"max_chars": 8000},
    "search": {
        "default_limit": 10,
        "max_limit": 50,
        "default_threshold": 0.7,
        "timeout_seconds": 30.0,
    },
    "rate_limits": {
        # Indexing requests accepted per caller
        "analysis": {"points": 5, "duration": 300},
        # Outbound embedding calls, shared by every indexing run
        "embedding": {"points": 100, "duration": 60},
    },
}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationFailure(f"Environment variable {name} must be an integer, got {raw!r}")


def load_config(overrides: Optional[Dict] = None) -> Dict:
    """Load configuration.

    Returns a copy of the default configuration with environment overrides
    applied, then ``overrides`` merged on top.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    emb = config["embedding"]
    emb["backend"] = os.getenv("EMBEDDING_BACKEND", emb["backend"])
    emb["sentence_transformers_model"] = os.getenv("EMBEDDING_MODEL", emb["sentence_transformers_model"])
    emb["http"]["url"] = os.getenv("EMBEDDING_URL", emb["http"]["url"])
    emb["http"]["api_key"] = os.getenv("EMBEDDING_API_KEY", emb["http"]["api_key"])

    vs = config["vector_store"]
    vs["backend"] = os.getenv("VECTOR_STORE_BACKEND", vs["backend"])
    vs["collection"] = os.getenv("QDRANT_COLLECTION", vs["collection"])
    vs["dimension"] = _env_int("EMBEDDING_DIMENSION", vs["dimension"])
    vs["qdrant"]["host"] = os.getenv("QDRANT_HOST", vs["qdrant"]["host"])
    vs["qdrant"]["port"] = _env_int("QDRANT_PORT", vs["qdrant"]["port"])

    limits = config["rate_limits"]
    limits["analysis"]["points"] = _env_int("ANALYSIS_RATE_LIMIT", limits["analysis"]["points"])
    limits["embedding"]["points"] = _env_int("EMBEDDING_RATE_LIMIT", limits["embedding"]["points"])

    if overrides:
        _deep_merge(config, overrides)
    return config


def _deep_merge(base: Dict, extra: Dict) -> None:
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
