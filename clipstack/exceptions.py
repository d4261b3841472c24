"""Custom exceptions for the clipstack render core.

Every exception carries a machine-readable code (see
``clipstack.constants.error_codes``) so the HTTP layer and the job records
can report failures without exposing stack traces.
"""

from clipstack.constants.error_codes import get_error_spec
from clipstack.schemas.envelope import ErrorInfo


class ClipstackError(Exception):
    """Base exception for all clipstack errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        detail: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.detail = detail
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API responses and job records."""
        spec = get_error_spec(self.code)
        return ErrorInfo(
            code=self.code,
            message=self.message,
            retryable=spec.get("retryable", False),
            suggested_fix=spec.get("suggested_fix"),
            detail=self.detail,
        )


# =============================================================================
# Compile errors (422)
# =============================================================================


class CompileError(ClipstackError):
    """Timeline cannot be compiled (clip references an unresolved file)."""

    code = "COMPILE_FAILED"
    status_code = 422
    message = "Timeline could not be compiled"

    def __init__(self, file_id: str | None = None):
        message = f"Clip references unresolved file: {file_id}" if file_id else self.message
        self.file_id = file_id
        super().__init__(message)


# =============================================================================
# Render attempt failures (500)
# =============================================================================


class RenderError(ClipstackError):
    """Base class for errors that end a render attempt."""


class SpawnError(RenderError):
    """Encoder binary could not be launched."""

    code = "SPAWN_FAILED"
    message = "Encoder could not be started"

    def __init__(self, binary: str, reason: str | None = None):
        self.binary = binary
        message = f"Encoder could not be started: {binary}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class EncodeError(RenderError):
    """Encoder exited with a nonzero status."""

    code = "ENCODE_FAILED"
    message = "Encoder failed"

    def __init__(self, exit_code: int, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"ffmpeg failed ({exit_code})", detail=stderr or None)


class UploadError(RenderError):
    """Durable storage write failed after a successful encode."""

    code = "UPLOAD_FAILED"
    message = "Upload of rendered output failed"

    def __init__(self, key: str, reason: str | None = None):
        self.key = key
        message = f"Upload failed for {key}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RenderCancelledError(RenderError):
    """Render was cancelled before the encoder finished."""

    code = "RENDER_CANCELLED"
    message = "Render cancelled"


# =============================================================================
# Infrastructure errors (503)
# =============================================================================


class TransientInfraError(ClipstackError):
    """Queue or shared store unreachable."""

    code = "INFRA_UNAVAILABLE"
    status_code = 503
    message = "A backing service is temporarily unavailable"


class QueueNotConfiguredError(ClipstackError):
    """Queued rendering requested without a configured queue."""

    code = "QUEUE_NOT_CONFIGURED"
    status_code = 503
    message = "Render queue not configured"


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class JobNotFoundError(ClipstackError):
    """Render job not found."""

    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Render job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Render job not found: {job_id}" if job_id else self.message
        super().__init__(message)
