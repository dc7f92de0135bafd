"""Core functionality for codesearch."""

from .embeddings import EmbeddingProvider, HttpEmbedder, SentenceTransformersEmbedder, make_embedder
from .errors import (
    CodeSearchError,
    DimensionMismatch,
    EmbeddingFailure,
    InvalidSearchType,
    ProviderUnavailable,
    RateLimited,
    ReferenceNotFound,
    SearchTimeout,
    StoreFailure,
    ValidationFailure,
)
from .models import (
    CodeUnit,
    FileInput,
    IndexingReport,
    MetadataFilter,
    RepositoryStats,
    SearchHit,
    SearchQuery,
    SearchType,
    SymbolInput,
    UnitFailure,
    UnitType,
)
from .normalizer import normalize
from .rate_limit import Governors, RateDecision, RateGovernor, build_governors

__all__ = [
    "CodeUnit",
    "FileInput",
    "IndexingReport",
    "MetadataFilter",
    "RepositoryStats",
    "SearchHit",
    "SearchQuery",
    "SearchType",
    "SymbolInput",
    "UnitFailure",
    "UnitType",
    "EmbeddingProvider",
    "HttpEmbedder",
    "SentenceTransformersEmbedder",
    "make_embedder",
    "normalize",
    "Governors",
    "RateDecision",
    "RateGovernor",
    "build_governors",
    "CodeSearchError",
    "DimensionMismatch",
    "EmbeddingFailure",
    "InvalidSearchType",
    "ProviderUnavailable",
    "RateLimited",
    "ReferenceNotFound",
    "SearchTimeout",
    "StoreFailure",
    "ValidationFailure",
]
