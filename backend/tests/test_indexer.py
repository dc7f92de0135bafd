"""Tests for batch indexing."""

import asyncio
import time

import pytest

from codesearch.core.errors import DimensionMismatch, ProviderUnavailable, ValidationFailure
from codesearch.core.models import UnitType
from codesearch.indexing import BatchIndexer, build_indexer, expand_files

from conftest import FakeEmbedder, UnavailableEmbedder, make_file


def numbered_files(n):
    return [make_file(f"pkg/mod{i}.py", f"def f{i}():\n    return {i}\n") for i in range(n)]


def make_indexer(embedder, store, governor, sleep, **kwargs):
    return BatchIndexer(embedder, store, governor, sleep=sleep, **kwargs)


class TestExpandFiles:
    def test_file_then_functions_then_classes(self):
        f = make_file(
            "a.py",
            "import os",
            functions=[("load", "def load(): pass"), ("save", "def save(): pass")],
            classes=[("Repo", "class Repo: pass")],
        )
        units = expand_files("r1", [f])
        assert [u.unit_type for u in units] == [
            UnitType.FILE, UnitType.FUNCTION, UnitType.FUNCTION, UnitType.CLASS,
        ]
        assert [u.function_name for u in units[1:3]] == ["load", "save"]
        assert units[3].class_name == "Repo"
        assert all(u.repository_id == "r1" for u in units)

    def test_language_falls_back_to_extension(self):
        units = expand_files("r1", [make_file("main.go", "package main", language="")])
        assert units[0].language == "go"

    def test_missing_language_rejected(self):
        with pytest.raises(ValidationFailure):
            expand_files("r1", [make_file("README", "text", language="")])


class TestBatchIndexer:
    @pytest.mark.asyncio
    async def test_twelve_units_make_two_batches(self, embedder, store, governor, recording_sleep):
        indexer = make_indexer(embedder, store, governor, recording_sleep, batch_size=10, batch_delay=1.0)
        seen = []
        report = await indexer.index_repository(
            "r1", numbered_files(12), progress=lambda done, total, r: seen.append((done, total)),
        )
        assert report.attempted == 12
        assert report.succeeded == 12
        assert report.batches == 2
        assert recording_sleep.delays == [1.0]
        assert seen == [(1, 2), (2, 2)]
        assert store.count("r1") == 12

    @pytest.mark.asyncio
    async def test_failed_units_do_not_stop_siblings(self, store, governor, recording_sleep):
        embedder = FakeEmbedder(fail_on=["def f3(): return 3", "def f7(): return 7"])
        indexer = make_indexer(embedder, store, governor, recording_sleep)
        report = await indexer.index_repository("r1", numbered_files(10))

        assert report.succeeded == 8
        assert report.failed == 2
        assert {f.identity["file_path"] for f in report.failures} == {"pkg/mod3.py", "pkg/mod7.py"}
        assert all(f.kind == "EmbeddingFailure" for f in report.failures)

        stored = store.find_one({"repository_id": "r1", "file_path": "pkg/mod5.py", "unit_type": "file"})
        assert stored is not None
        assert stored.embedding
        assert store.find_one({"repository_id": "r1", "file_path": "pkg/mod3.py"}) is None

    @pytest.mark.asyncio
    async def test_provider_outage_is_retried(self, store, governor, recording_sleep):
        embedder = UnavailableEmbedder(outages=3)
        indexer = make_indexer(embedder, store, governor, recording_sleep, retry_backoff=2.0)
        report = await indexer.index_repository("r1", numbered_files(3))
        assert report.succeeded == 3
        assert report.failed == 0
        assert recording_sleep.delays == [2.0]

    @pytest.mark.asyncio
    async def test_provider_down_for_whole_batch_is_fatal(self, store, governor, recording_sleep):
        embedder = UnavailableEmbedder()
        indexer = make_indexer(embedder, store, governor, recording_sleep, provider_retries=2, retry_backoff=2.0)
        with pytest.raises(ProviderUnavailable) as excinfo:
            await indexer.index_repository("r1", numbered_files(3))
        assert recording_sleep.delays == [2.0, 4.0]
        report = excinfo.value.report
        assert report.failed == 3
        assert report.succeeded == 0
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_dimension_mismatch_halts_indexing(self, store, governor, recording_sleep):
        embedder = FakeEmbedder(dimension=3)
        indexer = make_indexer(embedder, store, governor, recording_sleep, batch_size=10)
        with pytest.raises(DimensionMismatch) as excinfo:
            await indexer.index_repository("r1", numbered_files(12))
        assert excinfo.value.expected == 4
        assert excinfo.value.actual == 3
        report = excinfo.value.report
        assert report.attempted == 10
        assert report.succeeded == 0
        assert store.count() == 0
        # second batch never started
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_cancel_stops_before_next_batch(self, embedder, store, governor, recording_sleep):
        indexer = make_indexer(embedder, store, governor, recording_sleep, batch_size=5)
        cancel = asyncio.Event()
        report = await indexer.index_repository(
            "r1", numbered_files(12), cancel=cancel, progress=lambda done, total, r: cancel.set(),
        )
        assert report.cancelled
        assert report.batches == 1
        assert report.succeeded == 5
        assert store.count("r1") == 5

    @pytest.mark.asyncio
    async def test_comment_only_units_are_skipped(self, embedder, store, governor, recording_sleep):
        files = [make_file("a.py", "x = 1"), make_file("b.py", "# nothing\n# at all")]
        report = await make_indexer(embedder, store, governor, recording_sleep).index_repository("r1", files)
        assert report.succeeded == 1
        assert report.skipped == 1
        assert report.failed == 0
        assert embedder.calls == 1

    @pytest.mark.asyncio
    async def test_functions_are_stored_with_names(self, embedder, store, governor, recording_sleep):
        f = make_file("a.py", "import json", functions=[("parse", "def parse(s): return json.loads(s)")])
        await make_indexer(embedder, store, governor, recording_sleep).index_repository("r1", [f])
        unit = store.find_one({"repository_id": "r1", "file_path": "a.py", "function_name": "parse"})
        assert unit.unit_type == UnitType.FUNCTION
        assert unit.start_line == 1

    @pytest.mark.asyncio
    async def test_replace_existing(self, embedder, store, governor, recording_sleep):
        indexer = make_indexer(embedder, store, governor, recording_sleep)
        await indexer.index_repository("r1", numbered_files(3))
        await indexer.index_repository("r1", numbered_files(3))
        assert store.count("r1") == 6
        await indexer.index_repository("r1", numbered_files(3), replace_existing=True)
        assert store.count("r1") == 3

    @pytest.mark.asyncio
    async def test_repository_id_required(self, embedder, store, governor, recording_sleep):
        indexer = make_indexer(embedder, store, governor, recording_sleep)
        with pytest.raises(ValidationFailure):
            await indexer.index_repository("", numbered_files(1))
        with pytest.raises(ValidationFailure):
            await indexer.index_repository("r1", numbered_files(1), batch_size=0)

    @pytest.mark.asyncio
    async def test_embedding_governor_is_charged_per_call(self, embedder, store, clock, recording_sleep):
        from codesearch.core.rate_limit import RateGovernor

        governor = RateGovernor(points=100, duration=60, clock=clock)
        await make_indexer(embedder, store, governor, recording_sleep).index_repository("r1", numbered_files(4))
        assert governor.remaining("embedding") == 96


def test_build_indexer_reads_config(embedder, store, governor):
    cfg = {"indexing": {"batch_size": 3, "batch_delay_seconds": 0.5, "provider_retries": 1}}
    indexer = build_indexer(cfg, embedder, store, governor)
    assert indexer.batch_size == 3
    assert indexer.batch_delay == 0.5
    assert indexer.provider_retries == 1


class InFlightEmbedder(FakeEmbedder):
    """Records the peak number of concurrent embed calls."""

    def __init__(self, delay=0.2, **kwargs):
        super().__init__(**kwargs)
        self.hold = delay
        self.in_flight = 0
        self.peak = 0

    def embed(self, texts):
        with self._lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            time.sleep(self.hold)
            return super().embed(texts)
        finally:
            with self._lock:
                self.in_flight -= 1


class MixedDimensionEmbedder(FakeEmbedder):
    """Answers `bad` inputs at once with a short vector, the rest slowly with a good one."""

    def embed(self, texts):
        if texts[0].startswith("bad"):
            return [[1.0, 0.0, 0.0]]
        time.sleep(0.3)
        return super().embed(texts)


class TestBatchConcurrency:
    @pytest.mark.asyncio
    async def test_whole_batch_runs_at_once(self, store, governor, recording_sleep):
        embedder = InFlightEmbedder()
        indexer = make_indexer(embedder, store, governor, recording_sleep, batch_size=10)
        report = await indexer.index_repository("r1", numbered_files(10))
        assert report.succeeded == 10
        assert embedder.peak == 10

    @pytest.mark.asyncio
    async def test_batch_size_caps_parallelism(self, store, governor, recording_sleep):
        embedder = InFlightEmbedder(delay=0.05)
        indexer = make_indexer(embedder, store, governor, recording_sleep, batch_size=3)
        await indexer.index_repository("r1", numbered_files(7))
        assert embedder.peak <= 3

    @pytest.mark.asyncio
    async def test_mismatch_stops_sibling_writes(self, store, governor, recording_sleep):
        files = [make_file("bad.py", "bad = 1"), make_file("good.py", "good = 2")]
        indexer = make_indexer(MixedDimensionEmbedder(), store, governor, recording_sleep)
        with pytest.raises(DimensionMismatch) as excinfo:
            await indexer.index_repository("r1", files)
        assert store.count("r1") == 0
        report = excinfo.value.report
        assert report.succeeded == 0
        assert report.failed == 2
        assert {f.kind for f in report.failures} == {"DimensionMismatch"}
