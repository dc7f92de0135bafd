"""Indexer Interface."""

from __future__ import annotations

from typing import Any, Callable, Optional, Sequence, Union

from ..core.models import CodeUnit, FileInput, IndexingReport

ProgressCallback = Callable[[int, int, IndexingReport], None]


class Indexer:
    """Abstract base class for repository indexing."""

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
        raise NotImplementedError
