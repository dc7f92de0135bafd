"""Utility functions for codesearch."""

from .languages import get_language_for_file, normalize_language

__all__ = [
    "get_language_for_file",
    "normalize_language",
]
