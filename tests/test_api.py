"""Tests for the HTTP surface: render endpoints, job lookup and SSE progress."""

import asyncio
import json
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from clipstack.api.progress import progress_events, state_from_record
from clipstack.exceptions import EncodeError, JobNotFoundError, TransientInfraError
from clipstack.main import app
from clipstack.services.progress_store import MemoryProgressStore

RENDER_BODY = {
    "timeline": {
        "tracks": [
            {"type": "video", "clips": [{"fileId": "vid-1", "in": 0, "out": 10, "start": 0}]},
        ]
    },
    "files": [{"id": "vid-1", "path": "/media/intro.mp4"}],
    "preset": "fast",
    "renditions": ["1080p"],
    "owner_id": "user-1",
}


def _job_record(job_id: str = "job-1", status: str = "completed", **overrides) -> SimpleNamespace:
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    fields = dict(
        id=job_id,
        project_id="proj-1",
        owner_id="user-1",
        status=status,
        preset="fast",
        renditions=["1080p"],
        progress=100 if status == "completed" else 0,
        attempt=1,
        output_location="gs://renders/outputs/user-1/proj-1/1080p/job-1.mp4",
        outputs=None,
        error_code=None,
        error_message=None,
        started_at=now,
        completed_at=now,
        created_at=now,
        updated_at=now,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _parse_sse(text: str) -> list[tuple[str, dict]]:
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


@pytest.fixture
def store():
    return MemoryProgressStore()


@pytest.fixture
def jobs():
    jobs = MagicMock()
    jobs.get = AsyncMock(return_value=None)
    jobs.get_or_raise = AsyncMock(return_value=_job_record())
    jobs.create_queued = AsyncMock(return_value=_job_record(status="queued", progress=0))
    jobs.mark_failed = AsyncMock()
    return jobs


@pytest.fixture
def supervisor():
    supervisor = MagicMock()
    supervisor.run_sync = AsyncMock(return_value=[])
    return supervisor


@pytest.fixture
def client(store, jobs, supervisor):
    app.state.progress_store = store
    app.state.job_repository = jobs
    app.state.supervisor = supervisor
    app.state.render_queue = None
    # Lifespan is not run: no database or queue connections
    yield TestClient(app, raise_server_exceptions=False)
    for name in ("progress_store", "job_repository", "supervisor", "render_queue"):
        delattr(app.state, name)


class TestRenderEndpoints:
    def test_sync_render_returns_job(self, client, supervisor):
        response = client.post("/api/projects/proj-1/render", json=RENDER_BODY)

        assert response.status_code == 201
        assert response.json()["status"] == "completed"
        payload = supervisor.run_sync.await_args.args[0]
        assert payload.project_id == "proj-1"
        assert payload.user_id == "user-1"
        assert payload.preset.value == "fast"

    def test_sync_render_failure_is_structured(self, client, supervisor):
        supervisor.run_sync.side_effect = EncodeError(1, "Conversion failed!")

        response = client.post("/api/projects/proj-1/render", json=RENDER_BODY)

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "ENCODE_FAILED"
        assert error["message"] == "ffmpeg failed (1)"
        assert error["retryable"] is True
        assert error["detail"] == "Conversion failed!"

    def test_invalid_clip_rejected(self, client, supervisor):
        body = {**RENDER_BODY, "timeline": {"tracks": [{"type": "video", "clips": [{"fileId": "a", "in": 5, "out": 1}]}]}}

        response = client.post("/api/projects/proj-1/render", json=body)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        supervisor.run_sync.assert_not_awaited()

    def test_queued_render_without_queue(self, client):
        response = client.post("/api/projects/proj-1/render-jobs", json=RENDER_BODY)

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "QUEUE_NOT_CONFIGURED"

    def test_queued_render(self, client, jobs):
        queue = MagicMock()
        queue.enqueue = AsyncMock(return_value="m-1")
        app.state.render_queue = queue

        response = client.post("/api/projects/proj-1/render-jobs", json=RENDER_BODY)

        assert response.status_code == 202
        assert response.json()["status"] == "queued"
        enqueued = queue.enqueue.await_args.args[0]
        assert jobs.create_queued.await_args.args[0].job_id == enqueued.job_id

    def test_queued_render_enqueue_failure_marks_job_failed(self, client, jobs):
        queue = MagicMock()
        queue.enqueue = AsyncMock(side_effect=TransientInfraError("sqs down"))
        app.state.render_queue = queue

        response = client.post("/api/projects/proj-1/render-jobs", json=RENDER_BODY)

        assert response.status_code == 503
        assert response.json()["error"]["retryable"] is True
        assert jobs.mark_failed.await_args.args[1] == "INFRA_UNAVAILABLE"

    def test_get_job(self, client):
        response = client.get("/api/jobs/job-1")

        assert response.status_code == 200
        assert response.json()["id"] == "job-1"

    def test_get_unknown_job(self, client, jobs):
        jobs.get_or_raise.side_effect = JobNotFoundError("nope")

        response = client.get("/api/jobs/nope")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "JOB_NOT_FOUND"

    def test_unhandled_error_hides_internals(self, client, supervisor):
        supervisor.run_sync.side_effect = RuntimeError("secret stack detail")

        response = client.post("/api/projects/proj-1/render", json=RENDER_BODY)

        assert response.status_code == 500
        assert response.json() == {"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "retryable": False}}

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"


class TestJobEvents:
    """Tests for the SSE progress endpoint."""

    def test_terminal_state_replayed_and_stream_ends(self, client, store):
        asyncio.run(store.set("job:job-1", {"status": "done", "code": 0}, 600))

        response = client.get("/api/jobs/job-1/events")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert _parse_sse(response.text) == [("progress", {"status": "done", "code": 0})]

    def test_expired_state_rebuilt_from_record(self, client, jobs):
        jobs.get.return_value = _job_record(status="failed", error_code="ENCODE_FAILED")

        response = client.get("/api/jobs/job-1/events")

        assert _parse_sse(response.text) == [
            ("progress", {"status": "error", "code": 1, "error": "ENCODE_FAILED"}),
        ]

    def test_unknown_job(self, client):
        response = client.get("/api/jobs/missing/events")

        assert response.status_code == 404


class TestProgressEvents:
    """Tests for the SSE event generator."""

    @pytest.mark.asyncio
    async def test_emits_changes_and_pings_until_terminal(self):
        running = {"status": "running", "time": "00:00:01.00"}
        later = {"status": "running", "time": "00:00:02.00"}
        done = {"status": "done", "code": 0}
        store = MagicMock()
        store.get = AsyncMock(side_effect=[running, later, done])

        events = [
            chunk
            async for chunk in progress_events(
                "job-1", store, 0, AsyncMock(return_value=False), initial=running
            )
        ]

        parsed = _parse_sse("".join(events))
        assert [name for name, _ in parsed] == ["progress", "ping", "progress", "progress"]
        assert parsed[-1][1] == done

    @pytest.mark.asyncio
    async def test_stops_on_disconnect(self):
        store = MagicMock()
        store.get = AsyncMock(return_value=None)

        events = [
            chunk
            async for chunk in progress_events("job-1", store, 0, AsyncMock(return_value=True))
        ]

        assert events == []

    @pytest.mark.asyncio
    async def test_store_outage_sends_ping(self):
        store = MagicMock()
        store.get = AsyncMock(side_effect=[TransientInfraError("down"), {"status": "done", "code": 0}])

        events = [
            chunk
            async for chunk in progress_events("job-1", store, 0, AsyncMock(return_value=False))
        ]

        assert [name for name, _ in _parse_sse("".join(events))] == ["ping", "progress"]

    def test_state_from_record(self):
        assert state_from_record(_job_record(status="completed")) == {"status": "done", "code": 0}
        assert state_from_record(_job_record(status="processing")) is None
