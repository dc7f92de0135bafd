"""Indexing routes with SSE support."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import uuid
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from ...core.errors import CodeSearchError
from ...core.models import FileInput, IndexingReport
from ...core.rate_limit import RateGovernor
from ...indexing import BatchIndexer
from ..schemas import IndexJobResponse, IndexReportResponse, IndexRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/index")

TERMINAL_STATES = ("indexed", "cancelled", "error")


@dataclasses.dataclass
class IndexJob:
    id: str
    repository_id: str
    status: str = "pending"  # pending, indexing, indexed, cancelled, error
    current: int = 0
    total: int = 0
    report: Optional[IndexingReport] = None
    error: Optional[str] = None
    cancel: asyncio.Event = dataclasses.field(default_factory=asyncio.Event)


class JobRegistry:
    """Background indexing jobs of this process, by id.

    Only the newest ``max_finished`` finished jobs are kept; older ones are
    dropped when a new job is created.
    """

    def __init__(self, max_finished: int = 100) -> None:
        self.max_finished = max_finished
        self._jobs: Dict[str, IndexJob] = {}

    def create(self, repository_id: str) -> IndexJob:
        self._prune()
        job = IndexJob(id=str(uuid.uuid4()), repository_id=repository_id)
        self._jobs[job.id] = job
        return job

    def __len__(self) -> int:
        return len(self._jobs)

    def _prune(self) -> None:
        finished = [job_id for job_id, job in self._jobs.items() if job.status in TERMINAL_STATES]
        # dicts keep insertion order, oldest first
        for job_id in finished[:max(0, len(finished) - self.max_finished)]:
            del self._jobs[job_id]

    def get(self, job_id: str) -> IndexJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Indexing job not found")
        return job


def progress_event(job: IndexJob) -> dict:
    report = job.report
    return {
        "event": "progress",
        "data": json.dumps({
            "jobId": job.id,
            "repositoryId": job.repository_id,
            "status": job.status,
            "current": job.current,
            "total": job.total,
            "succeeded": report.succeeded if report else 0,
            "failed": report.failed if report else 0,
            "error": job.error,
        }),
    }


def get_indexer(request: Request) -> BatchIndexer:
    return request.app.state.indexer


def get_jobs(request: Request) -> JobRegistry:
    return request.app.state.jobs


def check_analysis_rate(request: Request) -> None:
    governor: RateGovernor = request.app.state.governors.analysis
    caller = request.client.host if request.client else "unknown"
    governor.consume_or_raise(
        caller,
        message="Analysis rate limit exceeded. Please wait before analyzing another repository.",
        code="ANALYSIS_RATE_LIMIT_EXCEEDED",
    )


def _inputs(request: IndexRequest) -> List[FileInput]:
    return [f.to_input() for f in request.units]


async def run_index_job(job: IndexJob, indexer: BatchIndexer, request: IndexRequest) -> None:
    """Background task running one indexing job."""
    job.status = "indexing"

    def on_progress(done: int, total: int, report: IndexingReport) -> None:
        job.current = done
        job.total = total
        job.report = report

    try:
        report = await indexer.index_repository(
            request.repository_id,
            _inputs(request),
            request.batch_size,
            cancel=job.cancel,
            replace_existing=request.replace_existing,
            progress=on_progress,
        )
        job.report = report
        job.status = "cancelled" if report.cancelled else "indexed"
        logger.info(f"Indexing job {job.id} for {job.repository_id} finished: {job.status}")
    except CodeSearchError as e:
        logger.error(f"Indexing job {job.id} for {job.repository_id} failed: {e.kind}: {e}")
        job.status = "error"
        job.error = str(e)
        if e.report is not None:
            job.report = e.report
    except Exception as e:
        logger.exception(f"Indexing job {job.id} for {job.repository_id} crashed: {e}")
        job.status = "error"
        job.error = str(e)


@router.post("", response_model=IndexReportResponse, dependencies=[Depends(check_analysis_rate)])
async def index_repository(request: IndexRequest, indexer: BatchIndexer = Depends(get_indexer)):
    """Index a decomposed repository and wait for the report."""
    report = await indexer.index_repository(
        request.repository_id,
        _inputs(request),
        request.batch_size,
        replace_existing=request.replace_existing,
    )
    return IndexReportResponse.model_validate(report.to_dict())


@router.post("/jobs", response_model=IndexJobResponse, dependencies=[Depends(check_analysis_rate)])
async def start_index_job(
    request: IndexRequest,
    background_tasks: BackgroundTasks,
    indexer: BatchIndexer = Depends(get_indexer),
    jobs: JobRegistry = Depends(get_jobs),
):
    """Start indexing in the background."""
    job = jobs.create(request.repository_id)
    logger.info(f"Starting background indexing job {job.id} for {request.repository_id}")
    background_tasks.add_task(run_index_job, job, indexer, request)
    return IndexJobResponse(job_id=job.id, repository_id=job.repository_id, status=job.status)


@router.get("/jobs/{job_id}", response_model=IndexJobResponse)
async def get_index_job(job_id: str, jobs: JobRegistry = Depends(get_jobs)):
    job = jobs.get(job_id)
    return IndexJobResponse(job_id=job.id, repository_id=job.repository_id, status=job.status)


@router.get("/jobs/{job_id}/progress")
async def index_progress(job_id: str, jobs: JobRegistry = Depends(get_jobs)):
    """SSE endpoint for real-time indexing progress."""
    job = jobs.get(job_id)

    async def event_generator():
        while True:
            yield progress_event(job)
            if job.status in TERMINAL_STATES:
                break
            await asyncio.sleep(1)

    return EventSourceResponse(event_generator())


@router.post("/jobs/{job_id}/cancel")
async def cancel_index_job(job_id: str, jobs: JobRegistry = Depends(get_jobs)):
    """Cancel a running job; it stops before its next batch."""
    job = jobs.get(job_id)
    if job.status in TERMINAL_STATES:
        raise HTTPException(status_code=400, detail="Indexing job is not running")
    job.cancel.set()
    return {"success": True, "message": "Indexing will stop after the current batch"}
