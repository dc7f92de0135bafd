"""Abstract embedding storage interface."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from ..core.errors import DimensionMismatch, ValidationFailure
from ..core.models import KEY_FIELDS, CodeUnit, MetadataFilter, RepositoryStats, SearchHit, UnitType


def num_candidates(k: int) -> int:
    """Candidates the ANN engine considers so threshold filtering does not starve ``k``."""
    return max(k * 10, 100)


class EmbeddingStore(ABC):
    """Abstract base class for code unit storage backends.

    Every store has a fixed embedding ``dimension``; inserts with a different
    vector size raise :class:`DimensionMismatch`.
    """

    dimension: int

    @abstractmethod
    def insert(self, unit: CodeUnit) -> CodeUnit:
        """Persist ``unit`` and return it with ``id`` and ``created_at`` set."""

    @abstractmethod
    def find_one(self, key: Dict[str, Any]) -> Optional[CodeUnit]:
        """Return the first unit whose compound key fields equal ``key``."""

    @abstractmethod
    def nearest_neighbors(
        self,
        query_vector: Sequence[float],
        k: int,
        score_threshold: float,
        metadata_filter: Optional[MetadataFilter] = None,
        exclude_ids: Optional[Sequence[str]] = None,
    ) -> List[SearchHit]:
        """Return at most ``k`` hits scoring at least ``score_threshold``, best first."""

    @abstractmethod
    def text_search(
        self,
        text: str,
        limit: int,
        metadata_filter: Optional[MetadataFilter] = None,
    ) -> List[SearchHit]:
        """Literal match of ``text`` in content, path, function or class name."""

    @abstractmethod
    def aggregate_stats(self, repository_id: str) -> RepositoryStats:
        """Counts per unit type for a repository."""

    @abstractmethod
    def count(self, repository_id: Optional[str] = None) -> int:
        """Count stored units, optionally for one repository."""

    @abstractmethod
    def delete_repository(self, repository_id: str) -> None:
        """Delete every unit of a repository."""

    @abstractmethod
    def list_languages(self) -> List[str]:
        """Distinct languages of stored units."""

    def close(self) -> None:
        """Release resources. Override if needed."""
        pass

    def validate(self, unit: CodeUnit) -> None:
        """Check ``unit`` can be written to this store."""
        for name in ("repository_id", "file_path", "content", "language"):
            value = getattr(unit, name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationFailure(f"{name} is required")

        try:
            unit_type = UnitType(unit.unit_type)
        except ValueError:
            raise ValidationFailure(f"Invalid unit type: {unit.unit_type!r}")

        if unit.function_name and unit.class_name:
            raise ValidationFailure("A unit cannot be both a function and a class")
        if unit_type == UnitType.FUNCTION and not unit.function_name:
            raise ValidationFailure("function units need a function_name")
        if unit_type == UnitType.CLASS and not unit.class_name:
            raise ValidationFailure("class units need a class_name")
        if unit_type == UnitType.FILE and (unit.function_name or unit.class_name):
            raise ValidationFailure("file units carry no function or class name")
        if unit_type != UnitType.FILE and (unit.start_line is None or unit.end_line is None):
            raise ValidationFailure(f"{unit_type.value} units need start_line and end_line")
        if unit.start_line is not None and unit.start_line < 1:
            raise ValidationFailure("start_line is 1-based")
        if unit.start_line is not None and unit.end_line is not None and unit.end_line < unit.start_line:
            raise ValidationFailure("end_line is before start_line")
        if unit.complexity is not None and not 1 <= unit.complexity <= 100:
            raise ValidationFailure(f"complexity must be in [1, 100], got {unit.complexity}")

        if not unit.embedding:
            raise ValidationFailure("embedding must be a non-empty list of numbers")
        if len(unit.embedding) != self.dimension:
            raise DimensionMismatch(expected=self.dimension, actual=len(unit.embedding))
        for x in unit.embedding:
            if isinstance(x, bool) or not isinstance(x, (int, float)) or not math.isfinite(x):
                raise ValidationFailure("embedding must contain only finite numbers")


def clean_key(key: Dict[str, Any]) -> Dict[str, Any]:
    """Drop unset fields from a lookup key and reject unknown ones."""
    out: Dict[str, Any] = {}
    for name, value in key.items():
        if name not in KEY_FIELDS:
            raise ValidationFailure(f"Unknown lookup field: {name!r}")
        if value is None or value == "":
            continue
        out[name] = value.value if isinstance(value, UnitType) else value
    if "repository_id" not in out:
        raise ValidationFailure("repository_id is required for lookups")
    return out


def clamp_score(score: float) -> float:
    return min(1.0, max(0.0, float(score)))
