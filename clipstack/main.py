import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from clipstack.api import progress, render
from clipstack.config import get_settings
from clipstack.constants.error_codes import get_error_spec
from clipstack.exceptions import ClipstackError, QueueNotConfiguredError
from clipstack.models.database import engine, init_db
from clipstack.schemas.envelope import ErrorInfo, ErrorResponse
from clipstack.services.job_repository import RenderJobRepository
from clipstack.services.progress_store import create_progress_store
from clipstack.services.render_queue import SQSRenderQueue
from clipstack.services.render_supervisor import RenderSupervisor
from clipstack.services.storage_service import get_storage_service

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    store = create_progress_store(settings)
    repository = RenderJobRepository()
    app.state.progress_store = store
    app.state.job_repository = repository
    app.state.supervisor = RenderSupervisor(
        store=store,
        repository=repository,
        storage=get_storage_service(),
        settings=settings,
    )
    try:
        app.state.render_queue = SQSRenderQueue()
    except QueueNotConfiguredError:
        logger.info("[QUEUE] SQS_RENDER_QUEUE_URL not set, queued rendering disabled")
        app.state.render_queue = None
    yield
    # Shutdown
    await store.close()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


def _error_response(status_code: int, error: ErrorInfo) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(ErrorResponse(error=error).model_dump(exclude_none=True)),
    )


@app.exception_handler(ClipstackError)
async def clipstack_exception_handler(request: Request, exc: ClipstackError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[API] {exc.code}: {exc.message}")
    return _error_response(exc.status_code, exc.to_error_info())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    spec = get_error_spec("VALIDATION_ERROR")

    # Build a human-readable message from validation errors
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
    else:
        message = "Request validation failed"

    error = ErrorInfo(
        code="VALIDATION_ERROR",
        message=message,
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(422, error)


# Global exception handler to ensure errors return proper JSON
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    spec = get_error_spec("INTERNAL_ERROR")
    error = ErrorInfo(
        code="INTERNAL_ERROR",
        message="Internal server error",
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(500, error)


# Routers
app.include_router(render.router, prefix="/api", tags=["render"])
app.include_router(progress.router, prefix="/api", tags=["progress"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {
        "status": "healthy",
        "version": settings.app_version,
        "git_hash": settings.git_hash,
        "environment": settings.environment,
    }
