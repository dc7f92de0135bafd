"""Data models for codesearch."""

from __future__ import annotations

import dataclasses
import datetime as _dt
import enum
from typing import Any, Dict, List, Optional, Tuple


class UnitType(str, enum.Enum):
    FILE = "file"
    FUNCTION = "function"
    CLASS = "class"


KEY_FIELDS = ("repository_id", "file_path", "function_name", "class_name", "unit_type")


@dataclasses.dataclass
class CodeUnit:
    """A file, function or class of a repository together with its embedding."""

    repository_id: str
    file_path: str
    content: str
    language: str
    unit_type: UnitType = UnitType.FILE
    embedding: List[float] = dataclasses.field(default_factory=list)
    function_name: Optional[str] = None
    class_name: Optional[str] = None
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    complexity: Optional[int] = None
    created_at: Optional[_dt.datetime] = None
    id: Optional[str] = None

    def identity(self) -> Dict[str, Any]:
        """Compound lookup key of this unit (None fields dropped)."""
        key = {
            "repository_id": self.repository_id,
            "file_path": self.file_path,
            "function_name": self.function_name,
            "class_name": self.class_name,
            "unit_type": UnitType(self.unit_type).value,
        }
        return {k: v for k, v in key.items() if v is not None}

    def label(self) -> str:
        name = self.function_name or self.class_name
        return f"{self.file_path}::{name}" if name else self.file_path

    def to_payload(self) -> Dict[str, Any]:
        """Flat payload stored next to the vector."""
        payload: Dict[str, Any] = {
            "repository_id": self.repository_id,
            "file_path": self.file_path,
            "content": self.content,
            "language": self.language,
            "unit_type": UnitType(self.unit_type).value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        for name in ("function_name", "class_name", "start_line", "end_line", "complexity"):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], id: Optional[str] = None,
                     embedding: Optional[List[float]] = None) -> "CodeUnit":
        created = payload.get("created_at")
        return cls(
            repository_id=payload["repository_id"],
            file_path=payload["file_path"],
            content=payload.get("content", ""),
            language=payload.get("language", ""),
            unit_type=UnitType(payload.get("unit_type", "file")),
            embedding=list(embedding) if embedding is not None else [],
            function_name=payload.get("function_name"),
            class_name=payload.get("class_name"),
            start_line=payload.get("start_line"),
            end_line=payload.get("end_line"),
            complexity=payload.get("complexity"),
            created_at=_dt.datetime.fromisoformat(created) if created else None,
            id=id,
        )


@dataclasses.dataclass
class SymbolInput:
    """A function or class as delivered by the repository decomposer."""

    name: str
    content: str
    start_line: int
    end_line: int
    complexity: Optional[int] = None


@dataclasses.dataclass
class FileInput:
    path: str
    content: str
    language: str
    complexity: Optional[int] = None
    functions: List[SymbolInput] = dataclasses.field(default_factory=list)
    classes: List[SymbolInput] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class UnitFailure:
    identity: Dict[str, Any]
    kind: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"unit": self.identity, "kind": self.kind, "message": self.message}


@dataclasses.dataclass
class IndexingReport:
    """Outcome of one indexing run, partial failures included."""

    repository_id: str
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    batches: int = 0
    cancelled: bool = False
    failures: List[UnitFailure] = dataclasses.field(default_factory=list)

    def record_failure(self, unit: CodeUnit, kind: str, message: str) -> None:
        self.failed += 1
        self.failures.append(UnitFailure(identity=unit.identity(), kind=kind, message=message))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repositoryId": self.repository_id,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "batches": self.batches,
            "cancelled": self.cancelled,
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclasses.dataclass
class MetadataFilter:
    """Constraints on stored payload fields, applied inside the store query.

    ``ranges`` maps a numeric field to an inclusive ``(gte, lte)`` pair where
    either bound may be None.
    """

    equals: Dict[str, Any] = dataclasses.field(default_factory=dict)
    not_equals: Dict[str, Any] = dataclasses.field(default_factory=dict)
    ranges: Dict[str, Tuple[Optional[float], Optional[float]]] = dataclasses.field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.equals or self.not_equals or self.ranges)

    def matches(self, payload: Dict[str, Any]) -> bool:
        for key, value in self.equals.items():
            if payload.get(key) != value:
                return False
        for key, value in self.not_equals.items():
            if payload.get(key) == value:
                return False
        for key, (gte, lte) in self.ranges.items():
            value = payload.get(key)
            if value is None:
                return False
            if gte is not None and value < gte:
                return False
            if lte is not None and value > lte:
                return False
        return True


class SearchType(str, enum.Enum):
    SEMANTIC = "semantic"
    EXACT = "exact"
    SIMILARITY = "similarity"


@dataclasses.dataclass
class SearchQuery:
    text: str
    type: str = SearchType.SEMANTIC.value
    filters: Dict[str, Any] = dataclasses.field(default_factory=dict)
    limit: Optional[int] = None
    threshold: Optional[float] = None
    # Reference fields, used by similarity queries
    repository_id: Optional[str] = None
    file_path: Optional[str] = None
    function_name: Optional[str] = None
    class_name: Optional[str] = None


@dataclasses.dataclass
class SearchHit:
    unit: CodeUnit
    score: float

    def to_dict(self) -> Dict[str, Any]:
        u = self.unit
        return {
            "id": u.id,
            "repositoryId": u.repository_id,
            "filePath": u.file_path,
            "functionName": u.function_name,
            "className": u.class_name,
            "unitType": UnitType(u.unit_type).value,
            "content": u.content,
            "metadata": {
                "language": u.language,
                "startLine": u.start_line,
                "endLine": u.end_line,
                "complexity": u.complexity,
            },
            "score": self.score,
        }


@dataclasses.dataclass
class StatsBreakdown:
    unit_type: str
    count: int
    avg_complexity: Optional[float]
    languages: List[str]


@dataclasses.dataclass
class RepositoryStats:
    repository_id: str
    total_embeddings: int
    breakdown: List[StatsBreakdown]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repositoryId": self.repository_id,
            "totalEmbeddings": self.total_embeddings,
            "breakdown": [
                {
                    "unitType": b.unit_type,
                    "count": b.count,
                    "avgComplexity": b.avg_complexity,
                    "languages": b.languages,
                }
                for b in self.breakdown
            ],
        }


def group_stats(repository_id: str, payloads: List[Dict[str, Any]]) -> RepositoryStats:
    """Group stored payloads by unit type for reporting."""
    groups: Dict[str, Dict[str, Any]] = {}
    for p in payloads:
        g = groups.setdefault(p.get("unit_type", "file"), {"count": 0, "complexities": [], "languages": []})
        g["count"] += 1
        if p.get("complexity") is not None:
            g["complexities"].append(p["complexity"])
        lang = p.get("language")
        if lang and lang not in g["languages"]:
            g["languages"].append(lang)

    breakdown = []
    for unit_type in sorted(groups):
        g = groups[unit_type]
        cx = g["complexities"]
        breakdown.append(
            StatsBreakdown(
                unit_type=unit_type,
                count=g["count"],
                avg_complexity=(sum(cx) / len(cx)) if cx else None,
                languages=sorted(g["languages"]),
            )
        )
    return RepositoryStats(repository_id=repository_id, total_embeddings=len(payloads), breakdown=breakdown)
