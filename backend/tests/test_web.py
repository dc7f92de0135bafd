"""HTTP tests for the FastAPI app."""

import json

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from codesearch.config import load_config
from codesearch.core.rate_limit import build_governors
from codesearch.storage import InMemoryEmbeddingStore
from codesearch.web.app import create_app
from codesearch.web.routes.indexing import TERMINAL_STATES, IndexJob, JobRegistry, progress_event, run_index_job
from codesearch.web.schemas import IndexRequest

from conftest import DIM, FakeEmbedder


def index_body(repository_id="r1"):
    return {
        "repositoryId": repository_id,
        "units": [
            {
                "path": "src/parse.py",
                "content": "import json\n\ndef parse(s):\n    return json.loads(s)\n",
                "language": "python",
                "functions": [
                    {"name": "parse", "content": "def parse(s):\n    return json.loads(s)", "startLine": 3, "endLine": 4},
                ],
            },
            {"path": "src/empty.py", "content": "# placeholder", "language": "python"},
        ],
    }


@pytest.fixture
def app():
    cfg = load_config({
        "vector_store": {"backend": "memory", "dimension": DIM},
        "indexing": {"batch_delay_seconds": 0},
        "rate_limits": {"analysis": {"points": 2, "duration": 300}},
    })
    return create_app(
        cfg,
        embedder=FakeEmbedder(),
        store=InMemoryEmbeddingStore(DIM),
        governors=build_governors(cfg),
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


class TestIndexRoutes:
    def test_index_reports_outcome(self, client, app):
        resp = client.post("/api/index", json=index_body())
        assert resp.status_code == 200
        body = resp.json()
        assert body["repositoryId"] == "r1"
        assert body["attempted"] == 3
        assert body["succeeded"] == 2
        assert body["skipped"] == 1
        assert app.state.store.count("r1") == 2

    def test_analysis_rate_limit(self, client):
        assert client.post("/api/index", json=index_body()).status_code == 200
        assert client.post("/api/index", json=index_body()).status_code == 200
        resp = client.post("/api/index", json=index_body())
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "300"
        error = resp.json()["error"]
        assert error["code"] == "ANALYSIS_RATE_LIMIT_EXCEEDED"
        assert error["retryAfter"] == 300

    def test_request_validation(self, client):
        resp = client.post("/api/index", json={"repositoryId": "", "units": []})
        assert resp.status_code == 422

    def test_background_job(self, client):
        resp = client.post("/api/index/jobs", json=index_body())
        assert resp.status_code == 200
        job_id = resp.json()["jobId"]

        # TestClient runs background tasks before returning
        status = client.get(f"/api/index/jobs/{job_id}").json()
        assert status["status"] == "indexed"

        resp = client.post(f"/api/index/jobs/{job_id}/cancel")
        assert resp.status_code == 400

    def test_unknown_job(self, client):
        assert client.get("/api/index/jobs/nope").status_code == 404
        assert client.post("/api/index/jobs/nope/cancel").status_code == 404


def test_progress_event_payload():
    job = IndexJob(id="j1", repository_id="r1", status="indexing", current=1, total=3)
    event = progress_event(job)
    assert event["event"] == "progress"
    data = json.loads(event["data"])
    assert data == {
        "jobId": "j1", "repositoryId": "r1", "status": "indexing",
        "current": 1, "total": 3, "succeeded": 0, "failed": 0, "error": None,
    }


class TestSearchRoutes:
    def test_semantic_search(self, client):
        client.post("/api/index", json=index_body())
        resp = client.post("/api/search/code", json={"query": "parse json", "threshold": 0.0, "limit": 5})
        assert resp.status_code == 200
        body = resp.json()
        assert body["searchType"] == "semantic"
        assert body["totalResults"] == 2
        assert {r["filePath"] for r in body["results"]} == {"src/parse.py"}
        assert "startLine" in body["results"][0]["metadata"]

    def test_exact_search_with_filter(self, client):
        client.post("/api/index", json=index_body())
        resp = client.post("/api/search/code", json={
            "query": "json.loads", "type": "exact", "filters": {"fileType": "function"},
        })
        results = resp.json()["results"]
        assert [r["functionName"] for r in results] == ["parse"]

    def test_invalid_search_type(self, client):
        resp = client.post("/api/search/code", json={"query": "x", "type": "fuzzy"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "INVALID_SEARCH_TYPE"

    def test_missing_reference(self, client):
        resp = client.post("/api/search/similar", json={"repositoryId": "r1", "filePath": "missing.go"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "REFERENCE_NOT_FOUND"

    def test_similar(self, client):
        client.post("/api/index", json=index_body())
        resp = client.post("/api/search/similar", json={
            "repositoryId": "r1", "filePath": "src/parse.py", "functionName": "parse", "threshold": 0.0,
        })
        assert resp.status_code == 200
        results = resp.json()["results"]
        assert [r["unitType"] for r in results] == ["file"]

    def test_vector_search(self, client):
        client.post("/api/index", json=index_body())
        resp = client.post("/api/search/vector", json={"embedding": [1.0, 1.0, 1.0, 1.0], "threshold": 0.0})
        assert resp.status_code == 200
        assert resp.json()["embeddingDimensions"] == DIM

        resp = client.post("/api/search/vector", json={"embedding": [1.0, 2.0]})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_EMBEDDING"

    def test_stats_and_languages(self, client):
        client.post("/api/index", json=index_body())
        stats = client.get("/api/search/stats/r1").json()
        assert stats["totalEmbeddings"] == 2
        assert {b["unitType"] for b in stats["breakdown"]} == {"file", "function"}
        languages = client.get("/api/search/languages").json()
        assert languages == {"languages": ["python"], "total": 1}


class ClosingStore(InMemoryEmbeddingStore):
    closed = False

    def close(self):
        self.closed = True


class BrokenIndexer:
    async def index_repository(self, *args, **kwargs):
        raise RuntimeError("disk on fire")


class TestLifecycle:
    def test_store_closed_on_shutdown(self):
        cfg = load_config({"vector_store": {"backend": "memory", "dimension": DIM}})
        store = ClosingStore(DIM)
        app = create_app(cfg, embedder=FakeEmbedder(), store=store, governors=build_governors(cfg))
        with TestClient(app) as c:
            assert c.get("/api/search/languages").status_code == 200
            assert not store.closed
        assert store.closed

    @pytest.mark.asyncio
    async def test_unexpected_job_error_ends_job(self):
        job = IndexJob(id="j1", repository_id="r1")
        await run_index_job(job, BrokenIndexer(), IndexRequest(repository_id="r1", units=[]))
        assert job.status == "error"
        assert job.error == "disk on fire"
        assert job.status in TERMINAL_STATES


class TestJobRegistry:
    def test_finished_jobs_are_evicted(self):
        registry = JobRegistry(max_finished=2)
        running = registry.create("r0")
        done = [registry.create(f"r{i}") for i in range(1, 4)]
        for job in done:
            job.status = "indexed"

        registry.create("r4")

        assert len(registry) == 4
        with pytest.raises(HTTPException):
            registry.get(done[0].id)
        assert registry.get(done[1].id) is done[1]
        assert registry.get(running.id) is running
