"""Batch embedding of decomposed repositories."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from ..core.embeddings import EmbeddingProvider
from ..core.errors import CodeSearchError, DimensionMismatch, ProviderUnavailable, ValidationFailure
from ..core.models import CodeUnit, FileInput, IndexingReport, UnitType
from ..core.normalizer import MAX_CHARS, normalize
from ..core.rate_limit import RateGovernor
from ..storage.base import EmbeddingStore
from ..utils.languages import normalize_language
from .base import Indexer, ProgressCallback

logger = logging.getLogger(__name__)

EMBEDDING_KEY = "embedding"

_STORED = "stored"
_SKIPPED = "skipped"


class _WritesHalted(CodeSearchError):
    kind = "DimensionMismatch"


def expand_files(repository_id: str, files: Sequence[Union[FileInput, CodeUnit]]) -> List[CodeUnit]:
    """Flatten files into units: the file itself, then its functions, then its classes."""
    units: List[CodeUnit] = []
    for f in files:
        if isinstance(f, CodeUnit):
            if f.repository_id != repository_id:
                raise ValidationFailure(
                    f"Unit {f.label()} belongs to {f.repository_id!r}, not {repository_id!r}"
                )
            units.append(f)
            continue

        if not f.path:
            raise ValidationFailure("Every file needs a path")
        language = normalize_language(f.language, f.path)
        if not language:
            raise ValidationFailure(f"No language given for {f.path}")

        units.append(
            CodeUnit(
                repository_id=repository_id,
                file_path=f.path,
                content=f.content,
                language=language,
                unit_type=UnitType.FILE,
                complexity=f.complexity,
            )
        )
        for func in f.functions:
            units.append(
                CodeUnit(
                    repository_id=repository_id,
                    file_path=f.path,
                    function_name=func.name,
                    content=func.content,
                    language=language,
                    unit_type=UnitType.FUNCTION,
                    start_line=func.start_line,
                    end_line=func.end_line,
                    complexity=func.complexity,
                )
            )
        for cls in f.classes:
            units.append(
                CodeUnit(
                    repository_id=repository_id,
                    file_path=f.path,
                    class_name=cls.name,
                    content=cls.content,
                    language=language,
                    unit_type=UnitType.CLASS,
                    start_line=cls.start_line,
                    end_line=cls.end_line,
                    complexity=cls.complexity,
                )
            )
    return units


class BatchIndexer(Indexer):
    """Embeds and stores units in sequential, internally concurrent batches.

    Each batch runs all of its units at once and waits for every one of them
    to settle before the next batch starts. Between batches the indexer
    pauses ``batch_delay`` seconds, on top of taking one point from the
    embedding governor for every provider call.

    A unit that fails (bad input, provider error, store error) is recorded in
    the report and its siblings carry on. Only three things end a run early:
    the provider staying unreachable for a whole batch after the retries,
    a dimension mismatch from the store, and cancellation.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: EmbeddingStore,
        governor: RateGovernor,
        batch_size: int = 10,
        batch_delay: float = 1.0,
        provider_retries: int = 3,
        retry_backoff: float = 2.0,
        max_chars: int = MAX_CHARS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValidationFailure(f"batch_size must be >= 1, got {batch_size}")
        self.embedder = embedder
        self.store = store
        self.governor = governor
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.provider_retries = provider_retries
        self.retry_backoff = retry_backoff
        self.max_chars = max_chars
        self._sleep = sleep

    async def index_repository(
        self,
        repository_id: str,
        files: Sequence[Union[FileInput, CodeUnit]],
        batch_size: Optional[int] = None,
        *,
        cancel: Optional[Any] = None,
        replace_existing: bool = False,
        progress: Optional[ProgressCallback] = None,
    ) -> IndexingReport:
        if not isinstance(repository_id, str) or not repository_id.strip():
            raise ValidationFailure("repositoryId is required")
        size = self.batch_size if batch_size is None else batch_size
        if size < 1:
            raise ValidationFailure(f"batch_size must be >= 1, got {size}")

        units = expand_files(repository_id, files)
        batches = [units[i:i + size] for i in range(0, len(units), size)]
        report = IndexingReport(repository_id=repository_id)

        if replace_existing:
            await asyncio.to_thread(self.store.delete_repository, repository_id)

        logger.info(f"Indexing {len(units)} units of {repository_id} in {len(batches)} batches")

        # One worker per unit of a batch, separate from the default pool
        with ThreadPoolExecutor(max_workers=size, thread_name_prefix="codesearch-index") as executor:
            for number, batch in enumerate(batches, start=1):
                if cancel is not None and cancel.is_set():
                    report.cancelled = True
                    logger.info(f"Indexing of {repository_id} cancelled before batch {number}/{len(batches)}")
                    break

                await self._run_batch(batch, report, executor)
                report.batches += 1
                logger.info(
                    f"Batch {number}/{len(batches)} done for {repository_id}: "
                    f"{report.succeeded} stored, {report.failed} failed so far"
                )
                if progress is not None:
                    progress(number, len(batches), report)

                if number < len(batches):
                    await self._sleep(self.batch_delay)

        logger.info(
            f"Indexed {repository_id}: {report.succeeded}/{report.attempted} stored, "
            f"{report.failed} failed, {report.skipped} skipped"
        )
        return report

    async def _run_batch(self, batch: List[CodeUnit], report: IndexingReport, executor: Executor) -> None:
        halt = asyncio.Event()
        mismatch: Optional[DimensionMismatch] = None
        report.attempted += len(batch)

        pending = list(batch)
        reached_provider = 0
        attempt = 0
        while True:
            results = await asyncio.gather(
                *(self._process_unit(unit, halt, executor) for unit in pending),
                return_exceptions=True,
            )

            unavailable: List[Tuple[CodeUnit, ProviderUnavailable]] = []
            for unit, result in zip(pending, results):
                if isinstance(result, ProviderUnavailable):
                    unavailable.append((unit, result))
                    continue
                if attempt == 0 and result != _SKIPPED:
                    reached_provider += 1
                if result == _STORED:
                    report.succeeded += 1
                elif result == _SKIPPED:
                    report.skipped += 1
                    logger.debug(f"Skipped {unit.label()}: empty after normalisation")
                elif isinstance(result, DimensionMismatch):
                    halt.set()
                    mismatch = mismatch or result
                    report.record_failure(unit, result.kind, str(result))
                elif isinstance(result, Exception):
                    kind = getattr(result, "kind", type(result).__name__)
                    report.record_failure(unit, kind, str(result))
                    logger.warning(f"Failed to index {unit.label()}: {kind}: {result}")
                else:
                    # CancelledError and friends
                    raise result

            if attempt == 0:
                reached_provider += len(unavailable)

            if not unavailable:
                break
            if attempt < self.provider_retries and mismatch is None:
                delay = self.retry_backoff * (2 ** attempt)
                logger.warning(
                    f"Embedding provider unavailable for {len(unavailable)} units, "
                    f"retrying in {delay:.1f}s ({attempt + 1}/{self.provider_retries})"
                )
                await self._sleep(delay)
                pending = [unit for unit, _ in unavailable]
                attempt += 1
                continue

            for unit, error in unavailable:
                report.record_failure(unit, error.kind, str(error))
            if len(unavailable) == reached_provider and mismatch is None:
                logger.error(f"Embedding provider unreachable, aborting indexing of {report.repository_id}")
                error = ProviderUnavailable(f"Embedding provider unreachable: {unavailable[0][1]}")
                error.report = report
                raise error
            break

        if mismatch is not None:
            logger.error(f"Dimension mismatch, halting writes for {report.repository_id}: {mismatch}")
            raise DimensionMismatch(expected=mismatch.expected, actual=mismatch.actual, report=report)

    async def _process_unit(self, unit: CodeUnit, halt: asyncio.Event, executor: Executor) -> str:
        text = normalize(unit.content, self.max_chars)
        if not text:
            return _SKIPPED

        loop = asyncio.get_running_loop()
        await self.governor.acquire(EMBEDDING_KEY)
        vector = await loop.run_in_executor(executor, self.embedder.embed_one, text)

        if halt.is_set():
            raise _WritesHalted("Writes halted after a dimension mismatch")
        try:
            if len(vector) != self.store.dimension:
                raise DimensionMismatch(expected=self.store.dimension, actual=len(vector))
            await loop.run_in_executor(executor, self.store.insert, dataclasses.replace(unit, embedding=list(vector)))
        except DimensionMismatch:
            # siblings still in flight must not write
            halt.set()
            raise
        return _STORED


def build_indexer(
    cfg: Dict,
    embedder: EmbeddingProvider,
    store: EmbeddingStore,
    governor: RateGovernor,
) -> BatchIndexer:
    """Create a BatchIndexer from config."""
    idx = cfg.get("indexing", {})
    return BatchIndexer(
        embedder=embedder,
        store=store,
        governor=governor,
        batch_size=int(idx.get("batch_size", 10)),
        batch_delay=float(idx.get("batch_delay_seconds", 1.0)),
        provider_retries=int(idx.get("provider_retries", 3)),
        retry_backoff=float(idx.get("retry_backoff_seconds", 2.0)),
        max_chars=int(cfg.get("normalizer", {}).get("max_chars", MAX_CHARS)),
    )
