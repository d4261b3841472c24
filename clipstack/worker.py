"""Queue-polling render worker.

Runs at most ``max_concurrent_jobs`` renders at a time. Messages are only
deleted by the supervisor after a successful render, so anything in flight
when the worker dies (or is cancelled at shutdown) is redelivered.
"""

import asyncio
import logging
import signal

from clipstack.config import Settings, get_settings
from clipstack.exceptions import TransientInfraError
from clipstack.services.render_queue import MAX_BATCH_SIZE, QueueMessage, SQSRenderQueue
from clipstack.services.render_supervisor import RenderSupervisor

logger = logging.getLogger(__name__)


class RenderWorker:
    def __init__(
        self,
        queue: SQSRenderQueue,
        supervisor: RenderSupervisor,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.queue = queue
        self.supervisor = supervisor
        self.capacity = max(1, self.settings.max_concurrent_jobs)
        self._active: set[asyncio.Task] = set()
        self._stopping = asyncio.Event()

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def request_shutdown(self) -> None:
        if not self._stopping.is_set():
            logger.info(f"[WORKER] Shutdown requested, {self.active_count} job(s) in flight")
            self._stopping.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown)

    async def run(self) -> None:
        logger.info(f"[WORKER] Started (capacity={self.capacity}, worker_id={self.supervisor.worker_id})")
        while not self.stopping:
            await self.poll_once()
        await self.drain()
        logger.info("[WORKER] Stopped")

    async def poll_once(self) -> None:
        """One iteration of the polling loop."""
        free = self.capacity - self.active_count
        if free <= 0:
            await self._wait_for_slot()
            return

        try:
            depth = await self.queue.depth()
            logger.info(
                f"[WORKER] Queue depth: {depth.waiting} waiting, {depth.in_progress} in progress, "
                f"{self.active_count}/{self.capacity} active"
            )
            messages = await self.queue.receive(
                min(free, MAX_BATCH_SIZE),
                self.settings.sqs_wait_time_seconds,
            )
        except Exception as e:
            logger.error(f"[WORKER] Queue poll failed: {e}. Retrying in {self.settings.error_backoff_seconds}s")
            await self._sleep(self.settings.error_backoff_seconds)
            return

        for message in messages:
            if self.stopping:
                # Not started; it becomes visible again after the timeout
                logger.info(f"[WORKER] Leaving job {message.job.job_id} for another worker")
                continue
            self._start(message)

    async def drain(self) -> None:
        """Wait for in-flight jobs, cancelling whatever outlives the timeout."""
        if not self._active:
            return
        timeout = self.settings.shutdown_timeout_seconds
        logger.info(f"[WORKER] Waiting up to {timeout}s for {self.active_count} job(s)")
        _, pending = await asyncio.wait(set(self._active), timeout=timeout)
        if pending:
            logger.warning(f"[WORKER] Cancelling {len(pending)} job(s) still running after {timeout}s")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    def _start(self, message: QueueMessage) -> None:
        task = asyncio.create_task(self._process(message), name=f"render-{message.job.job_id}")
        self._active.add(task)
        task.add_done_callback(self._active.discard)

    async def _process(self, message: QueueMessage) -> None:
        try:
            await self.supervisor.process_message(message, self.queue)
        except asyncio.CancelledError:
            logger.warning(f"[WORKER] Job {message.job.job_id} cancelled; message left for redelivery")
            raise
        except TransientInfraError as e:
            # Message stays in the queue; hold the slot so the loop backs off
            backoff = self.settings.error_backoff_seconds
            logger.error(f"[WORKER] Job {message.job.job_id} hit an infrastructure error: {e}. Backing off {backoff}s")
            await self._sleep(backoff)
        except Exception:
            logger.exception(f"[WORKER] Job {message.job.job_id} crashed")

    async def _wait_for_slot(self) -> None:
        await asyncio.wait(
            set(self._active),
            timeout=self.settings.poll_interval_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )

    async def _sleep(self, seconds: float) -> None:
        """Sleep that ends early on shutdown."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
