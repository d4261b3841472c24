"""Render job supervision.

Drives one job through compile -> encode -> upload for each requested
rendition, publishes progress while the encoder runs, and records the outcome
on the job record. Two entry modes share the same core:

- run_sync: HTTP request waits for the result (failures re-raised)
- process_message: queue delivery (failures leave the message for redelivery)
"""

import asyncio
import logging
import os
import shutil
import tempfile

from clipstack.config import Settings, get_settings
from clipstack.exceptions import ClipstackError, EncodeError, TransientInfraError
from clipstack.render.compiler import compile_command
from clipstack.render.executor import FFmpegExecutor
from clipstack.render.progress import ProgressReporter
from clipstack.schemas.render import RenderJobPayload, Rendition, RenditionOutput
from clipstack.services.job_repository import RenderJobRepository
from clipstack.services.progress_store import ProgressStore, lease_key
from clipstack.services.render_queue import QueueMessage, SQSRenderQueue
from clipstack.services.storage_service import StorageService

logger = logging.getLogger(__name__)

OUTPUT_CONTENT_TYPE = "video/mp4"


class RenderSupervisor:
    def __init__(
        self,
        store: ProgressStore,
        repository: RenderJobRepository,
        storage: StorageService,
        executor: FFmpegExecutor | None = None,
        settings: Settings | None = None,
        worker_id: str | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.repository = repository
        self.storage = storage
        self.executor = executor or FFmpegExecutor(self.settings.ffmpeg_path)
        self.worker_id = worker_id or self.settings.worker_id or f"worker-{os.getpid()}"

    def output_key(self, payload: RenderJobPayload, rendition: Rendition) -> str:
        owner = payload.user_id or "anonymous"
        return (
            f"{self.settings.outputs_prefix}{owner}/{payload.project_id}/"
            f"{rendition.value}/{payload.job_id}.mp4"
        )

    async def render(
        self,
        payload: RenderJobPayload,
        cancel_event: asyncio.Event | None = None,
    ) -> list[RenditionOutput]:
        """Encode and upload every rendition of a job.

        The terminal progress state is published once, after the last encode
        (or at the first failure). Nothing is uploaded for a failed encode.
        """
        options = payload.options
        reporter = ProgressReporter(
            payload.job_id,
            self.store,
            running_ttl=self.settings.progress_running_ttl_seconds,
            terminal_ttl=self.settings.progress_terminal_ttl_seconds,
        )
        work_dir = tempfile.mkdtemp(prefix=f"clipstack_render_{payload.job_id}_")
        outputs: list[RenditionOutput] = []

        try:
            for rendition in options.renditions:
                await reporter.start_pass(rendition.value)
                command = compile_command(payload.timeline, payload.files, options.for_rendition(rendition))
                output_path = os.path.join(work_dir, f"{rendition.value}.mp4")

                result = await self.executor.run(
                    command.args,
                    output_path,
                    on_stderr=reporter.feed,
                    cancel_event=cancel_event,
                )
                await reporter.flush()
                result.raise_for_status()

                key = self.output_key(payload, rendition)
                location = await self.storage.upload(output_path, key, OUTPUT_CONTENT_TYPE)
                outputs.append(
                    RenditionOutput(
                        rendition=rendition,
                        key=key,
                        location=location,
                        size=os.path.getsize(output_path),
                    )
                )
                logger.info(f"[RENDER] Job {payload.job_id} rendition {rendition.value} stored at {location}")

            await reporter.finish(0)
            return outputs
        except EncodeError as e:
            await reporter.finish(e.exit_code, error_code=e.code)
            raise
        except ClipstackError as e:
            await reporter.finish(1, error_code=e.code)
            raise
        except Exception:
            await reporter.finish(1, error_code="INTERNAL_ERROR")
            raise
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    async def run_sync(self, payload: RenderJobPayload) -> list[RenditionOutput]:
        """Render within the caller's request; failures are recorded and re-raised."""
        await self.repository.mark_processing(payload, attempt=1, worker_id=self.worker_id)
        try:
            outputs = await self.render(payload)
        except Exception as e:
            await self._record_failure(payload.job_id, e)
            raise
        await self.repository.mark_completed(payload.job_id, outputs)
        return outputs

    async def process_message(
        self,
        message: QueueMessage,
        queue: SQSRenderQueue,
        cancel_event: asyncio.Event | None = None,
    ) -> bool:
        """Handle one queue delivery.

        Returns True when the message was acknowledged (deleted). Any failure
        leaves it in the queue so it is redelivered after the visibility
        timeout, and eventually dead-lettered.
        """
        payload = message.job
        job_id = payload.job_id
        lease = lease_key(job_id)

        if not await self.store.acquire(
            lease,
            {"workerId": self.worker_id, "attempt": message.delivery_count},
            self.settings.lease_ttl_seconds,
        ):
            logger.warning(f"[RENDER] Job {job_id} is being rendered elsewhere, skipping delivery")
            return False

        heartbeat = asyncio.create_task(self._heartbeat(message, queue), name=f"lease-{job_id}")
        try:
            existing = await self.repository.get(job_id)
            if existing is not None and existing.status == "completed":
                logger.info(f"[RENDER] Job {job_id} already completed, acknowledging duplicate delivery")
                await queue.delete(message.receipt_handle)
                return True

            logger.info(f"[RENDER] Starting job {job_id} (attempt {message.delivery_count})")
            await self.repository.mark_processing(payload, attempt=message.delivery_count, worker_id=self.worker_id)

            try:
                outputs = await self.render(payload, cancel_event=cancel_event)
            except Exception as e:
                logger.error(f"[RENDER] Job {job_id} failed: {e}")
                await self._record_failure(job_id, e)
                return False

            await self.repository.mark_completed(job_id, outputs)
            await queue.delete(message.receipt_handle)
            logger.info(f"[RENDER] Job {job_id} completed with {len(outputs)} rendition(s)")
            return True
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
            try:
                await self.store.release(lease)
            except TransientInfraError as e:
                # The lease expires on its own
                logger.warning(f"[RENDER] Failed to release lease for {job_id}: {e}")

    async def _heartbeat(self, message: QueueMessage, queue: SQSRenderQueue) -> None:
        """Renew the lease and the message visibility until cancelled.

        A worker that dies stops renewing, so the lease lapses within
        ``lease_ttl_seconds`` and the redelivered message can be picked up.
        """
        job_id = message.job.job_id
        while True:
            await asyncio.sleep(self.settings.lease_heartbeat_seconds)
            try:
                if not await self.store.extend(lease_key(job_id), self.settings.lease_ttl_seconds):
                    logger.warning(f"[RENDER] Lease for job {job_id} lapsed during render")
                await queue.extend_visibility(message.receipt_handle, self.settings.sqs_visibility_timeout_seconds)
            except TransientInfraError as e:
                logger.warning(f"[RENDER] Heartbeat for job {job_id} failed: {e}")

    async def _record_failure(self, job_id: str, error: Exception) -> None:
        if isinstance(error, ClipstackError):
            code, message, diagnostics = error.code, error.message, error.detail
        else:
            code, message, diagnostics = "INTERNAL_ERROR", str(error) or type(error).__name__, None
        try:
            await self.repository.mark_failed(job_id, code, message, diagnostics)
        except Exception as e:
            logger.error(f"[RENDER] Failed to record failure for job {job_id}: {e}")
