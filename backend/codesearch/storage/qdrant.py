"""Qdrant vector database backend."""

from __future__ import annotations

import datetime as _dt
import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    HasIdCondition,
    MatchText,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    Range,
    SearchParams,
    TextIndexParams,
    TextIndexType,
    TokenizerType,
    VectorParams,
)

from ..core.errors import DimensionMismatch, StoreFailure
from ..core.models import CodeUnit, MetadataFilter, RepositoryStats, SearchHit, group_stats
from .base import EmbeddingStore, clamp_score, clean_key, num_candidates

logger = logging.getLogger(__name__)

KEYWORD_FIELDS = ("repository_id", "file_path", "function_name", "class_name", "unit_type", "language")
TEXT_FIELDS = ("content", "file_path", "function_name", "class_name")
SCROLL_PAGE = 256


def build_filter(
    metadata_filter: Optional[MetadataFilter] = None,
    exclude_ids: Optional[Sequence[str]] = None,
    should: Optional[List[Any]] = None,
) -> Optional[Filter]:
    """Translate a MetadataFilter into a Qdrant Filter."""
    must: List[Any] = []
    must_not: List[Any] = []
    if metadata_filter is not None:
        for key, value in metadata_filter.equals.items():
            must.append(FieldCondition(key=key, match=MatchValue(value=value)))
        for key, value in metadata_filter.not_equals.items():
            must_not.append(FieldCondition(key=key, match=MatchValue(value=value)))
        for key, (gte, lte) in metadata_filter.ranges.items():
            must.append(FieldCondition(key=key, range=Range(gte=gte, lte=lte)))
    if exclude_ids:
        must_not.append(HasIdCondition(has_id=list(exclude_ids)))

    if not (must or must_not or should):
        return None
    return Filter(must=must or None, must_not=must_not or None, should=should or None)


class QdrantEmbeddingStore(EmbeddingStore):

    def __init__(
        self,
        collection_name: str,
        dimension: int,
        host: str = "localhost",
        port: int = 6333,
        client: Optional[QdrantClient] = None,
    ):
        self.collection_name = collection_name
        self.dimension = dimension
        self.client = client or QdrantClient(host=host, port=port)
        self._ensure_collection()

    def _get_collection_vector_dim(self) -> Optional[int]:
        if not self.client.collection_exists(collection_name=self.collection_name):
            return None
        collection_info = self.client.get_collection(collection_name=self.collection_name)
        return collection_info.config.params.vectors.size

    def _ensure_collection(self) -> None:
        try:
            existing_dim = self._get_collection_vector_dim()
        except Exception as e:
            raise StoreFailure(f"Cannot reach Qdrant collection '{self.collection_name}': {e}") from e

        if existing_dim is not None:
            if existing_dim != self.dimension:
                raise DimensionMismatch(expected=existing_dim, actual=self.dimension)
            return

        self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=self.dimension, distance=Distance.COSINE),
        )
        for field in KEYWORD_FIELDS:
            self.client.create_payload_index(
                collection_name=self.collection_name,
                field_name=field,
                field_schema=PayloadSchemaType.KEYWORD,
            )
        self.client.create_payload_index(
            collection_name=self.collection_name,
            field_name="complexity",
            field_schema=PayloadSchemaType.INTEGER,
        )
        self.client.create_payload_index(
            collection_name=self.collection_name,
            field_name="content",
            field_schema=TextIndexParams(
                type=TextIndexType.TEXT,
                tokenizer=TokenizerType.WORD,
                lowercase=False,
            ),
        )
        logger.info(f"Created collection '{self.collection_name}' (dimension {self.dimension})")

    @staticmethod
    def _to_unit(point: Any) -> CodeUnit:
        payload = dict(point.payload or {})
        # Cosine collections normalise stored vectors; the payload keeps the raw one
        raw = payload.pop("embedding", None)
        vector = raw if raw is not None else (point.vector or [])
        return CodeUnit.from_payload(payload, id=str(point.id), embedding=vector)

    def insert(self, unit: CodeUnit) -> CodeUnit:
        self.validate(unit)
        stored = CodeUnit.from_payload(unit.to_payload(), embedding=[float(x) for x in unit.embedding])
        stored.id = str(uuid.uuid4())
        stored.created_at = _dt.datetime.now(_dt.timezone.utc)

        payload = stored.to_payload()
        payload["embedding"] = stored.embedding
        try:
            self.client.upsert(
                collection_name=self.collection_name,
                points=[PointStruct(id=stored.id, vector=stored.embedding, payload=payload)],
                wait=True,
            )
        except Exception as e:
            raise StoreFailure(f"Failed to store {stored.label()}: {e}") from e
        logger.debug(f"Stored {stored.label()} ({stored.id})")
        return stored

    def find_one(self, key: Dict[str, Any]) -> Optional[CodeUnit]:
        wanted = clean_key(key)
        try:
            points, _ = self.client.scroll(
                collection_name=self.collection_name,
                scroll_filter=build_filter(MetadataFilter(equals=wanted)),
                limit=1,
                with_payload=True,
                with_vectors=True,
            )
        except Exception as e:
            raise StoreFailure(f"Lookup failed in collection '{self.collection_name}': {e}") from e
        return self._to_unit(points[0]) if points else None

    def nearest_neighbors(
        self,
        query_vector: Sequence[float],
        k: int,
        score_threshold: float,
        metadata_filter: Optional[MetadataFilter] = None,
        exclude_ids: Optional[Sequence[str]] = None,
    ) -> List[SearchHit]:
        try:
            results = self.client.query_points(
                collection_name=self.collection_name,
                query=list(query_vector),
                limit=k,
                query_filter=build_filter(metadata_filter, exclude_ids),
                score_threshold=score_threshold,
                search_params=SearchParams(hnsw_ef=num_candidates(k)),
                with_payload=True,
                with_vectors=True,
            )
        except Exception as e:
            logger.error(f"Error searching in collection '{self.collection_name}': {e}")
            raise StoreFailure(f"Vector search failed: {e}") from e

        hits = []
        for point in results.points:
            score = clamp_score(point.score)
            if score < score_threshold:
                continue
            hits.append(SearchHit(unit=self._to_unit(point), score=score))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:k]

    def text_search(
        self,
        text: str,
        limit: int,
        metadata_filter: Optional[MetadataFilter] = None,
    ) -> List[SearchHit]:
        should = [FieldCondition(key=f, match=MatchText(text=text)) for f in TEXT_FIELDS]
        try:
            points, _ = self.client.scroll(
                collection_name=self.collection_name,
                scroll_filter=build_filter(metadata_filter, should=should),
                limit=limit,
                with_payload=True,
                with_vectors=False,
            )
        except Exception as e:
            raise StoreFailure(f"Text search failed: {e}") from e

        hits = [SearchHit(unit=self._to_unit(p), score=1.0) for p in points]
        hits.sort(key=lambda h: (h.unit.file_path, h.unit.start_line or 0))
        return hits

    def _scroll_payloads(self, scroll_filter: Optional[Filter], fields: List[str]) -> List[Dict[str, Any]]:
        payloads: List[Dict[str, Any]] = []
        offset = None
        while True:
            points, next_offset = self.client.scroll(
                collection_name=self.collection_name,
                scroll_filter=scroll_filter,
                limit=SCROLL_PAGE,
                offset=offset,
                with_payload=fields,
                with_vectors=False,
            )
            payloads.extend(p.payload or {} for p in points)
            if next_offset is None or not points:
                break
            offset = next_offset
        return payloads

    def aggregate_stats(self, repository_id: str) -> RepositoryStats:
        try:
            payloads = self._scroll_payloads(
                build_filter(MetadataFilter(equals={"repository_id": repository_id})),
                ["unit_type", "complexity", "language"],
            )
        except Exception as e:
            raise StoreFailure(f"Failed to aggregate stats for {repository_id}: {e}") from e
        return group_stats(repository_id, payloads)

    def count(self, repository_id: Optional[str] = None) -> int:
        count_filter = None
        if repository_id:
            count_filter = build_filter(MetadataFilter(equals={"repository_id": repository_id}))
        try:
            return self.client.count(
                collection_name=self.collection_name,
                count_filter=count_filter,
                exact=True,
            ).count
        except Exception as e:
            raise StoreFailure(f"Count failed: {e}") from e

    def delete_repository(self, repository_id: str) -> None:
        try:
            self.client.delete(
                collection_name=self.collection_name,
                points_selector=FilterSelector(
                    filter=build_filter(MetadataFilter(equals={"repository_id": repository_id}))
                ),
                wait=True,
            )
        except Exception as e:
            logger.error(f"Error deleting records for {repository_id}: {e}")
            raise StoreFailure(f"Failed to delete units of {repository_id}: {e}") from e
        logger.info(f"Deleted records for repository: {repository_id}")

    def list_languages(self) -> List[str]:
        try:
            payloads = self._scroll_payloads(None, ["language"])
        except Exception as e:
            raise StoreFailure(f"Failed to list languages: {e}") from e
        return sorted({p["language"] for p in payloads if p.get("language")})

    def close(self) -> None:
        self.client.close()
