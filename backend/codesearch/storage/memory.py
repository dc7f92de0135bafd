"""In-process embedding store.

Brute-force cosine search over a list; meant for tests and small local runs.
"""

from __future__ import annotations

import dataclasses
import datetime as _dt
import logging
import math
import threading
import uuid
from typing import Any, Dict, List, Optional, Sequence

from ..core.models import CodeUnit, MetadataFilter, RepositoryStats, SearchHit, group_stats
from .base import EmbeddingStore, clamp_score, clean_key

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return dot / (na * nb)


def _copy(unit: CodeUnit) -> CodeUnit:
    return dataclasses.replace(unit, embedding=list(unit.embedding))


class InMemoryEmbeddingStore(EmbeddingStore):

    def __init__(self, dimension: int) -> None:
        self.dimension = dimension
        self._units: List[CodeUnit] = []
        self._lock = threading.Lock()

    def insert(self, unit: CodeUnit) -> CodeUnit:
        self.validate(unit)
        stored = dataclasses.replace(
            unit,
            embedding=[float(x) for x in unit.embedding],
            id=str(uuid.uuid4()),
            created_at=_dt.datetime.now(_dt.timezone.utc),
        )
        with self._lock:
            self._units.append(stored)
        logger.debug(f"Stored {stored.label()} ({stored.id})")
        return _copy(stored)

    def find_one(self, key: Dict[str, Any]) -> Optional[CodeUnit]:
        wanted = clean_key(key)
        with self._lock:
            for unit in self._units:
                ident = unit.identity()
                if all(ident.get(k) == v for k, v in wanted.items()):
                    return _copy(unit)
        return None

    def nearest_neighbors(
        self,
        query_vector: Sequence[float],
        k: int,
        score_threshold: float,
        metadata_filter: Optional[MetadataFilter] = None,
        exclude_ids: Optional[Sequence[str]] = None,
    ) -> List[SearchHit]:
        excluded = set(exclude_ids or ())
        with self._lock:
            candidates = [
                u for u in self._units
                if u.id not in excluded and (metadata_filter is None or metadata_filter.matches(u.to_payload()))
            ]

        scored = []
        for unit in candidates:
            score = clamp_score(cosine_similarity(query_vector, unit.embedding))
            if score >= score_threshold:
                scored.append(SearchHit(unit=_copy(unit), score=score))
        # sorted() is stable, so ties keep insertion order
        scored = sorted(scored, key=lambda h: h.score, reverse=True)
        return scored[:k]

    def text_search(
        self,
        text: str,
        limit: int,
        metadata_filter: Optional[MetadataFilter] = None,
    ) -> List[SearchHit]:
        hits = []
        with self._lock:
            for unit in self._units:
                if metadata_filter is not None and not metadata_filter.matches(unit.to_payload()):
                    continue
                fields = (unit.content, unit.file_path, unit.function_name, unit.class_name)
                if any(f and text in f for f in fields):
                    hits.append(SearchHit(unit=_copy(unit), score=1.0))
        hits.sort(key=lambda h: (h.unit.file_path, h.unit.start_line or 0))
        return hits[:limit]

    def aggregate_stats(self, repository_id: str) -> RepositoryStats:
        with self._lock:
            payloads = [u.to_payload() for u in self._units if u.repository_id == repository_id]
        return group_stats(repository_id, payloads)

    def count(self, repository_id: Optional[str] = None) -> int:
        with self._lock:
            if repository_id is None:
                return len(self._units)
            return sum(1 for u in self._units if u.repository_id == repository_id)

    def delete_repository(self, repository_id: str) -> None:
        with self._lock:
            before = len(self._units)
            self._units = [u for u in self._units if u.repository_id != repository_id]
            removed = before - len(self._units)
        logger.info(f"Deleted {removed} units for repository: {repository_id}")

    def list_languages(self) -> List[str]:
        with self._lock:
            return sorted({u.language for u in self._units})
