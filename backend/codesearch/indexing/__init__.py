"""Indexing functionality for codesearch."""

from .base import Indexer
from .indexer import BatchIndexer, build_indexer, expand_files

__all__ = [
    "BatchIndexer",
    "Indexer",
    "build_indexer",
    "expand_files",
]
