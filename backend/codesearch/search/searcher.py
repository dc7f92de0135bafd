"""Semantic, exact and similarity search over stored code units."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from ..core.embeddings import EmbeddingProvider
from ..core.errors import InvalidSearchType, ReferenceNotFound, SearchTimeout, ValidationFailure
from ..core.models import MetadataFilter, RepositoryStats, SearchHit, SearchQuery, SearchType, UnitType
from ..core.normalizer import MAX_CHARS, normalize
from ..storage.base import EmbeddingStore
from .base import Searcher

logger = logging.getLogger(__name__)

T = TypeVar("T")

COMPLEXITY_RANGES = {
    "low": (1, 5),
    "medium": (6, 10),
    "high": (11, None),
}

# Request field names accepted in raw vector-search filters
FILTER_FIELDS = {
    "repositoryId": "repository_id",
    "filePath": "file_path",
    "functionName": "function_name",
    "className": "class_name",
    "unitType": "unit_type",
    "language": "language",
    "complexity": "complexity",
}


def build_metadata_filter(filters: Optional[Dict[str, Any]]) -> Optional[MetadataFilter]:
    """Map search filters ``{language, fileType, complexity, repository}`` onto stored fields."""
    if not filters:
        return None

    mf = MetadataFilter()
    for key, value in filters.items():
        if value is None or value == "":
            continue
        if key == "language":
            mf.equals["language"] = str(value).strip().lower()
        elif key == "fileType":
            try:
                mf.equals["unit_type"] = UnitType(value).value
            except ValueError:
                raise ValidationFailure(f"fileType must be one of file, function, class; got {value!r}")
        elif key == "repository":
            mf.equals["repository_id"] = value
        elif key == "complexity":
            if value not in COMPLEXITY_RANGES:
                raise ValidationFailure(f"complexity must be low, medium or high; got {value!r}")
            mf.ranges["complexity"] = COMPLEXITY_RANGES[value]
        else:
            raise ValidationFailure(f"Unknown search filter: {key!r}")
    return None if mf.is_empty() else mf


def field_filter(filter: Optional[Dict[str, Any]]) -> Optional[MetadataFilter]:
    """Equality filter on stored fields, as sent to the direct vector search."""
    if not filter:
        return None
    mf = MetadataFilter()
    for key, value in filter.items():
        field = FILTER_FIELDS.get(key)
        if field is None:
            raise ValidationFailure(f"Cannot filter on {key!r}")
        mf.equals[field] = value
    return mf


def _is_number(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


class SearchRouter(Searcher):
    """Dispatches a SearchQuery to the semantic, exact or similarity strategy."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: EmbeddingStore,
        default_limit: int = 10,
        max_limit: int = 50,
        default_threshold: float = 0.7,
        timeout: Optional[float] = 30.0,
        max_chars: int = MAX_CHARS,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.default_threshold = default_threshold
        self.timeout = timeout
        self.max_chars = max_chars

    async def search(self, query: SearchQuery, timeout: Optional[float] = None) -> List[SearchHit]:
        try:
            search_type = SearchType(query.type)
        except ValueError:
            raise InvalidSearchType(f"Invalid search type: {query.type!r}")

        limit = self._limit(query.limit, self.max_limit)
        threshold = self._threshold(query.threshold)

        if search_type == SearchType.SEMANTIC:
            op = self._semantic(query, limit, threshold)
        elif search_type == SearchType.EXACT:
            op = self._exact(query, limit)
        else:
            op = self._similarity(query, limit, threshold)

        hits = await self._with_timeout(op, timeout)
        logger.info(f"{search_type.value} search returned {len(hits)} results")
        return hits

    async def find_similar(
        self,
        repository_id: str,
        file_path: Optional[str] = None,
        function_name: Optional[str] = None,
        class_name: Optional[str] = None,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[SearchHit]:
        query = SearchQuery(
            text="",
            type=SearchType.SIMILARITY.value,
            limit=limit,
            threshold=threshold,
            repository_id=repository_id,
            file_path=file_path,
            function_name=function_name,
            class_name=class_name,
        )
        return await self.search(query, timeout=timeout)

    async def vector_search(
        self,
        embedding: Any,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        filter: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> List[SearchHit]:
        """Nearest neighbours of a caller-supplied vector."""
        if not isinstance(embedding, (list, tuple)) or not embedding or not all(_is_number(x) for x in embedding):
            raise ValidationFailure("Valid embedding array is required", code="INVALID_EMBEDDING")
        if len(embedding) != self.store.dimension:
            raise ValidationFailure(
                f"Embedding has {len(embedding)} dimensions, the index uses {self.store.dimension}",
                code="INVALID_EMBEDDING",
            )
        k = self._limit(limit, 100)
        score_threshold = self._threshold(threshold)
        mf = field_filter(filter)
        return await self._with_timeout(
            asyncio.to_thread(self.store.nearest_neighbors, [float(x) for x in embedding], k, score_threshold, mf),
            timeout,
        )

    async def stats(self, repository_id: str, timeout: Optional[float] = None) -> RepositoryStats:
        if not repository_id:
            raise ValidationFailure("Repository ID is required", code="MISSING_REPOSITORY_ID")
        return await self._with_timeout(asyncio.to_thread(self.store.aggregate_stats, repository_id), timeout)

    async def languages(self, timeout: Optional[float] = None) -> List[str]:
        return await self._with_timeout(asyncio.to_thread(self.store.list_languages), timeout)

    async def _semantic(self, query: SearchQuery, limit: int, threshold: float) -> List[SearchHit]:
        text = normalize(query.text, self.max_chars)
        if not text:
            raise ValidationFailure("Search query is required")
        mf = build_metadata_filter(query.filters)
        vector = await asyncio.to_thread(self.embedder.embed_one, text)
        return await asyncio.to_thread(self.store.nearest_neighbors, vector, limit, threshold, mf)

    async def _exact(self, query: SearchQuery, limit: int) -> List[SearchHit]:
        text = (query.text or "").strip()
        if not text:
            raise ValidationFailure("Search query is required")
        mf = build_metadata_filter(query.filters)
        return await asyncio.to_thread(self.store.text_search, text, limit, mf)

    async def _similarity(self, query: SearchQuery, limit: int, threshold: float) -> List[SearchHit]:
        repository_id = query.repository_id or (query.filters or {}).get("repository")
        if not repository_id:
            raise ValidationFailure("repositoryId is required for similarity search", code="MISSING_SEARCH_CRITERIA")

        key: Dict[str, Any] = {
            "repository_id": repository_id,
            "file_path": query.file_path,
            "function_name": query.function_name,
            "class_name": query.class_name,
        }
        if query.function_name:
            key["unit_type"] = UnitType.FUNCTION.value
        elif query.class_name:
            key["unit_type"] = UnitType.CLASS.value
        elif query.file_path:
            key["unit_type"] = UnitType.FILE.value

        reference = await asyncio.to_thread(self.store.find_one, key)
        if reference is None:
            raise ReferenceNotFound(
                "Reference code not found: "
                + ", ".join(f"{k}={v}" for k, v in key.items() if v is not None)
            )

        mf = build_metadata_filter(query.filters)
        hits = await asyncio.to_thread(
            self.store.nearest_neighbors,
            reference.embedding,
            limit + 1,
            threshold,
            mf,
            [reference.id],
        )
        return [h for h in hits if h.unit.id != reference.id][:limit]

    async def _with_timeout(self, op: Awaitable[T], timeout: Optional[float]) -> T:
        seconds = self.timeout if timeout is None else timeout
        if seconds is None:
            return await op
        try:
            return await asyncio.wait_for(op, timeout=seconds)
        except asyncio.TimeoutError:
            raise SearchTimeout(f"Search did not finish within {seconds}s")

    def _limit(self, limit: Optional[int], upper: int) -> int:
        if limit is None:
            return self.default_limit
        if not isinstance(limit, int) or isinstance(limit, bool) or not 1 <= limit <= upper:
            raise ValidationFailure(f"limit must be an integer in [1, {upper}], got {limit!r}")
        return limit

    def _threshold(self, threshold: Optional[float]) -> float:
        if threshold is None:
            return self.default_threshold
        if not _is_number(threshold) or not 0.0 <= threshold <= 1.0:
            raise ValidationFailure(f"threshold must be in [0, 1], got {threshold!r}")
        return float(threshold)


def build_router(cfg: Dict, embedder: EmbeddingProvider, store: EmbeddingStore) -> SearchRouter:
    """Create a SearchRouter from config."""
    s = cfg.get("search", {})
    return SearchRouter(
        embedder=embedder,
        store=store,
        default_limit=int(s.get("default_limit", 10)),
        max_limit=int(s.get("max_limit", 50)),
        default_threshold=float(s.get("default_threshold", 0.7)),
        timeout=s.get("timeout_seconds", 30.0),
        max_chars=int(cfg.get("normalizer", {}).get("max_chars", MAX_CHARS)),
    )

