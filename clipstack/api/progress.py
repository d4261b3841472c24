"""Server-Sent Events for render progress.

The stream replays the last stored state on (re)connect, then polls the
progress store. It ends once a terminal state has been sent or the client
goes away.
"""

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from clipstack.api.deps import AppSettings, Jobs, Store
from clipstack.exceptions import JobNotFoundError, TransientInfraError
from clipstack.models.render_job import RenderJob
from clipstack.services.progress_store import ProgressStore, job_key

router = APIRouter()
logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"done", "error"})


@dataclass
class ProgressEvent:
    event_type: str  # "progress" or "ping"
    data: dict[str, Any]

    def to_sse(self) -> str:
        """Format event for SSE transmission."""
        return f"event: {self.event_type}\ndata: {json.dumps(self.data)}\n\n"


def is_terminal(state: dict[str, Any] | None) -> bool:
    return bool(state) and state.get("status") in TERMINAL_STATUSES


def state_from_record(job: RenderJob) -> dict[str, Any] | None:
    """Terminal state rebuilt from the job record once the stored state expired."""
    if job.status == "completed":
        return {"status": "done", "code": 0}
    if job.status == "failed":
        return {"status": "error", "code": 1, "error": job.error_code}
    return None


async def progress_events(
    job_id: str,
    store: ProgressStore,
    interval: float,
    is_disconnected: Callable[[], Awaitable[bool]],
    initial: dict[str, Any] | None = None,
) -> AsyncGenerator[str, None]:
    last = initial
    if last is not None:
        yield ProgressEvent("progress", last).to_sse()
        if is_terminal(last):
            return

    while True:
        await asyncio.sleep(interval)
        if await is_disconnected():
            logger.debug(f"[SSE] Client for job {job_id} disconnected")
            return
        try:
            state = await store.get(job_key(job_id))
        except TransientInfraError as e:
            logger.warning(f"[SSE] Progress read failed for {job_id}: {e}")
            state = None

        if state is not None and state != last:
            last = state
            yield ProgressEvent("progress", state).to_sse()
            if is_terminal(state):
                return
        else:
            yield ProgressEvent("ping", {"t": int(time.time() * 1000)}).to_sse()


@router.get("/jobs/{job_id}/events")
async def stream_job_events(
    job_id: str,
    request: Request,
    store: Store,
    jobs: Jobs,
    settings: AppSettings,
) -> StreamingResponse:
    initial = await store.get(job_key(job_id))
    if initial is None:
        job = await jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        initial = state_from_record(job)

    return StreamingResponse(
        progress_events(
            job_id,
            store,
            settings.progress_poll_interval_seconds,
            request.is_disconnected,
            initial=initial,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
