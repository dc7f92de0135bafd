"""
Shared test fixtures.

Providers here return deterministic vectors so similarity scores are known
in advance; nothing downloads a model or talks to a network service.
"""

import hashlib
import math
import threading
import time
from typing import Dict, List, Optional, Sequence

import pytest

from codesearch.core.embeddings import EmbeddingProvider
from codesearch.core.errors import EmbeddingFailure, ProviderUnavailable
from codesearch.core.models import CodeUnit, FileInput, SymbolInput, UnitType
from codesearch.core.rate_limit import RateGovernor
from codesearch.storage.memory import InMemoryEmbeddingStore

DIM = 4


def hashed_vector(text: str, dimension: int = DIM) -> List[float]:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [digest[i] / 255.0 + 0.01 for i in range(dimension)]


def unit_vector_at(score: float) -> List[float]:
    """A 4-d vector whose cosine with [1, 0, 0, 0] is ``score``."""
    return [score, math.sqrt(1.0 - score * score), 0.0, 0.0]


class FakeEmbedder(EmbeddingProvider):
    """Returns fixed vectors for known texts and hashed vectors otherwise."""

    def __init__(
        self,
        dimension: int = DIM,
        vectors: Optional[Dict[str, List[float]]] = None,
        fail_on: Sequence[str] = (),
        delay: float = 0.0,
    ):
        self.dimension = dimension
        self.vectors = vectors or {}
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def embed(self, texts: List[str]) -> List[List[float]]:
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        out = []
        for text in texts:
            if text in self.fail_on:
                raise EmbeddingFailure(f"cannot embed {text!r}")
            out.append(list(self.vectors.get(text) or hashed_vector(text, self.dimension)))
        return out


class UnavailableEmbedder(FakeEmbedder):
    """Unreachable for the first ``outages`` calls (forever when None)."""

    def __init__(self, outages: Optional[int] = None, **kwargs):
        super().__init__(**kwargs)
        self.outages = outages

    def embed(self, texts: List[str]) -> List[List[float]]:
        with self._lock:
            self.calls += 1
            down = self.outages is None or self.calls <= self.outages
        if down:
            raise ProviderUnavailable("connection refused")
        return [hashed_vector(t, self.dimension) for t in texts]


class ManualClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stand-in for asyncio.sleep that only records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_file(path: str, content: str, language: str = "python", functions=(), classes=()) -> FileInput:
    return FileInput(
        path=path,
        content=content,
        language=language,
        functions=[SymbolInput(name=n, content=c, start_line=1, end_line=3) for n, c in functions],
        classes=[SymbolInput(name=n, content=c, start_line=1, end_line=9) for n, c in classes],
    )


def make_unit(repository_id: str, file_path: str, embedding: List[float], **fields) -> CodeUnit:
    fields.setdefault("content", f"code of {file_path}")
    fields.setdefault("language", "python")
    unit_type = fields.pop("unit_type", UnitType.FILE)
    if unit_type != UnitType.FILE:
        fields.setdefault("start_line", 1)
        fields.setdefault("end_line", 5)
    return CodeUnit(
        repository_id=repository_id,
        file_path=file_path,
        unit_type=unit_type,
        embedding=embedding,
        **fields,
    )


@pytest.fixture
def store():
    return InMemoryEmbeddingStore(dimension=DIM)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def governor(clock):
    return RateGovernor(points=10_000, duration=60, name="embedding", clock=clock)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
