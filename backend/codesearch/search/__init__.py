"""Search functionality for codesearch."""

from .base import Searcher
from .searcher import SearchRouter, build_metadata_filter, build_router

__all__ = [
    "SearchRouter",
    "Searcher",
    "build_metadata_filter",
    "build_router",
]
