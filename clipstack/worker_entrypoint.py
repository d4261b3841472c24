"""Worker entrypoint for container deployment.

Runs a health check server next to the render worker. The worker itself only
starts when ENABLE_RENDER_WORKER is set, so the same image can be deployed
with polling switched off.
"""

import asyncio
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

from clipstack.config import get_settings

logger = logging.getLogger(__name__)


class HealthHandler(BaseHTTPRequestHandler):
    """Simple health check handler."""

    def do_GET(self):
        if self.path == "/health" or self.path == "/":
            self.send_response(200)
            self.send_header("Content-type", "text/plain")
            self.end_headers()
            self.wfile.write(b"OK")
        else:
            self.send_response(404)
            self.end_headers()

    def log_message(self, format, *args):
        # Suppress access logs
        pass


def run_health_server(port: int) -> None:
    server = HTTPServer(("0.0.0.0", port), HealthHandler)
    logger.info(f"[WORKER] Health server running on port {port}")
    server.serve_forever()


async def run_render_worker() -> None:
    from clipstack.models.database import engine, init_db
    from clipstack.services.job_repository import RenderJobRepository
    from clipstack.services.progress_store import create_progress_store
    from clipstack.services.render_queue import SQSRenderQueue
    from clipstack.services.render_supervisor import RenderSupervisor
    from clipstack.services.storage_service import get_storage_service
    from clipstack.worker import RenderWorker

    settings = get_settings()
    await init_db()
    store = create_progress_store(settings)
    try:
        supervisor = RenderSupervisor(
            store=store,
            repository=RenderJobRepository(),
            storage=get_storage_service(),
            settings=settings,
        )
        worker = RenderWorker(SQSRenderQueue(), supervisor, settings)
        worker.install_signal_handlers()
        await worker.run()
    finally:
        await store.close()
        await engine.dispose()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    settings = get_settings()

    # Start health server in background thread
    health_thread = threading.Thread(target=run_health_server, args=(settings.health_port,), daemon=True)
    health_thread.start()

    if not settings.enable_render_worker:
        logger.info("[WORKER] ENABLE_RENDER_WORKER is not set; serving health checks only")
        health_thread.join()
        return

    asyncio.run(run_render_worker())


if __name__ == "__main__":
    main()
