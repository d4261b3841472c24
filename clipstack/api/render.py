"""Render API endpoints.

Two ways to render a project:
- POST /projects/{id}/render: synchronous, returns when the encode is stored
- POST /projects/{id}/render-jobs: queued, returns immediately (202)
"""

import logging
import time
from uuid import uuid4

from fastapi import APIRouter, status

from clipstack.api.deps import Jobs, RenderQueue, Supervisor
from clipstack.exceptions import ClipstackError
from clipstack.schemas.render import RenderJobPayload, RenderJobResponse, RenderRequest

router = APIRouter()
logger = logging.getLogger(__name__)


def _build_payload(project_id: str, render_request: RenderRequest) -> RenderJobPayload:
    return RenderJobPayload(
        job_id=str(uuid4()),
        project_id=project_id,
        user_id=render_request.owner_id,
        files=render_request.files,
        timeline=render_request.timeline,
        preset=render_request.preset,
        renditions=render_request.renditions,
        created_at=int(time.time() * 1000),
    )


@router.post(
    "/projects/{project_id}/render",
    response_model=RenderJobResponse,
    status_code=status.HTTP_201_CREATED,
)
async def render_project(
    project_id: str,
    render_request: RenderRequest,
    supervisor: Supervisor,
    jobs: Jobs,
) -> RenderJobResponse:
    """Render a project within the request.

    Failures propagate as structured errors (the job record is marked failed).
    """
    payload = _build_payload(project_id, render_request)
    logger.info(f"[RENDER] Synchronous render {payload.job_id} for project {project_id}")
    await supervisor.run_sync(payload)
    job = await jobs.get_or_raise(payload.job_id)
    return RenderJobResponse.model_validate(job)


@router.post(
    "/projects/{project_id}/render-jobs",
    response_model=RenderJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def enqueue_render(
    project_id: str,
    render_request: RenderRequest,
    queue: RenderQueue,
    jobs: Jobs,
) -> RenderJobResponse:
    """Create a queued job and hand it to the render workers."""
    payload = _build_payload(project_id, render_request)
    job = await jobs.create_queued(payload)
    try:
        await queue.enqueue(payload)
    except ClipstackError as e:
        await jobs.mark_failed(payload.job_id, e.code, e.message)
        raise
    return RenderJobResponse.model_validate(job)


@router.get("/jobs/{job_id}", response_model=RenderJobResponse)
async def get_render_job(job_id: str, jobs: Jobs) -> RenderJobResponse:
    job = await jobs.get_or_raise(job_id)
    return RenderJobResponse.model_validate(job)
