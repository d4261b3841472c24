"""Persistence of render job records.

Each method opens its own session and commits, so a failure recorded after a
crashed render never depends on the render's own transaction.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clipstack.exceptions import JobNotFoundError
from clipstack.models.render_job import RenderJob
from clipstack.schemas.render import RenderJobPayload, RenditionOutput

logger = logging.getLogger(__name__)

# Diagnostics are the tail of the encoder's stderr
MAX_DIAGNOSTICS_CHARS = 8000


class RenderJobRepository:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None):
        if session_maker is None:
            from clipstack.models.database import async_session_maker

            session_maker = async_session_maker
        self._session_maker = session_maker

    async def get(self, job_id: str) -> RenderJob | None:
        async with self._session_maker() as session:
            return await session.get(RenderJob, job_id)

    async def get_or_raise(self, job_id: str) -> RenderJob:
        job = await self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def create_queued(self, payload: RenderJobPayload) -> RenderJob:
        async with self._session_maker() as session:
            job = RenderJob(
                id=payload.job_id,
                project_id=payload.project_id,
                owner_id=payload.user_id or None,
                status="queued",
                preset=payload.preset.value,
                renditions=[r.value for r in payload.renditions],
                progress=0,
                attempt=0,
            )
            session.add(job)
            await session.commit()
            await session.refresh(job)
            return job

    async def mark_processing(
        self,
        payload: RenderJobPayload,
        attempt: int = 1,
        worker_id: str | None = None,
    ) -> RenderJob:
        """Record that an attempt started. Creates the record if it is missing."""
        async with self._session_maker() as session:
            job = await session.get(RenderJob, payload.job_id)
            if job is None:
                job = RenderJob(
                    id=payload.job_id,
                    project_id=payload.project_id,
                    owner_id=payload.user_id or None,
                    preset=payload.preset.value,
                    renditions=[r.value for r in payload.renditions],
                )
                session.add(job)
            job.status = "processing"
            job.progress = 0
            job.attempt = attempt
            job.worker_id = worker_id
            job.started_at = datetime.now(timezone.utc)
            job.completed_at = None
            job.error_code = None
            job.error_message = None
            job.diagnostics = None
            await session.commit()
            await session.refresh(job)
            return job

    async def mark_completed(self, job_id: str, outputs: list[RenditionOutput]) -> RenderJob:
        async with self._session_maker() as session:
            job = await session.get(RenderJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            job.status = "completed"
            job.progress = 100
            job.outputs = [o.model_dump(mode="json") for o in outputs]
            job.output_location = outputs[0].location if outputs else None
            job.completed_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(job)
            return job

    async def mark_failed(
        self,
        job_id: str,
        error_code: str,
        error_message: str,
        diagnostics: str | None = None,
    ) -> RenderJob | None:
        async with self._session_maker() as session:
            job = await session.get(RenderJob, job_id)
            if job is None:
                logger.warning(f"[JOBS] Cannot mark unknown job {job_id} as failed")
                return None
            job.status = "failed"
            job.error_code = error_code
            job.error_message = error_message
            if diagnostics:
                job.diagnostics = diagnostics[-MAX_DIAGNOSTICS_CHARS:]
            job.completed_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(job)
            return job

