"""HTTP boundary for indexing and search."""
