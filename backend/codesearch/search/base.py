"""Searcher Interface."""

from __future__ import annotations

from typing import List, Optional

from ..core.models import SearchHit, SearchQuery


class Searcher:
    """Abstract base class for code search."""

    async def search(self, query: SearchQuery, timeout: Optional[float] = None) -> List[SearchHit]:
        """Search for code units matching ``query``.

        Args:
            query: Typed query; ``query.type`` selects the strategy
            timeout: Seconds before the search is abandoned

        Returns:
            List of hits sorted by relevance, best first
        """
        raise NotImplementedError
