from typing import Annotated

from fastapi import Depends, Request

from clipstack.config import Settings, get_settings
from clipstack.exceptions import QueueNotConfiguredError
from clipstack.services.job_repository import RenderJobRepository
from clipstack.services.progress_store import ProgressStore
from clipstack.services.render_queue import SQSRenderQueue
from clipstack.services.render_supervisor import RenderSupervisor


def get_progress_store(request: Request) -> ProgressStore:
    return request.app.state.progress_store


def get_job_repository(request: Request) -> RenderJobRepository:
    return request.app.state.job_repository


def get_supervisor(request: Request) -> RenderSupervisor:
    return request.app.state.supervisor


def get_render_queue(request: Request) -> SQSRenderQueue:
    queue = getattr(request.app.state, "render_queue", None)
    if queue is None:
        raise QueueNotConfiguredError()
    return queue


AppSettings = Annotated[Settings, Depends(get_settings)]
Store = Annotated[ProgressStore, Depends(get_progress_store)]
Jobs = Annotated[RenderJobRepository, Depends(get_job_repository)]
Supervisor = Annotated[RenderSupervisor, Depends(get_supervisor)]
RenderQueue = Annotated[SQSRenderQueue, Depends(get_render_queue)]
