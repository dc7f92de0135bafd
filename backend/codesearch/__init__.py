"""Embedding index and multi-mode search over repository code units."""

__version__ = "0.1.0"
