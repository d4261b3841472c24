"""Error codes dictionary for the render API and worker.

Single source of truth for error codes and their retryability. Used by the
exception handlers to build machine-readable error responses and by the
supervisor when recording failed jobs.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Input errors (not retryable, fix the timeline)
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": "Check the timeline, files and render options in the request",
    },
    "COMPILE_FAILED": {
        "retryable": False,
        "suggested_fix": "Every clip fileId must reference a resolved file",
    },
    "JOB_NOT_FOUND": {
        "retryable": False,
    },
    # ==========================================================================
    # Render attempt failures
    # ==========================================================================
    "SPAWN_FAILED": {
        "retryable": False,
        "suggested_fix": "Ensure the ffmpeg binary is installed and executable (FFMPEG_PATH)",
    },
    "ENCODE_FAILED": {
        "retryable": True,
        "suggested_fix": "Inspect the encoder diagnostics; source files may be unreadable",
    },
    "UPLOAD_FAILED": {
        "retryable": True,
    },
    "RENDER_CANCELLED": {
        "retryable": True,
    },
    # ==========================================================================
    # Infrastructure
    # ==========================================================================
    "INFRA_UNAVAILABLE": {
        "retryable": True,
        "suggested_fix": "Retry after a short delay",
    },
    "QUEUE_NOT_CONFIGURED": {
        "retryable": False,
        "suggested_fix": "Set SQS_RENDER_QUEUE_URL or use the synchronous render endpoint",
    },
    "INTERNAL_ERROR": {
        "retryable": False,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested fix
    """
    return ERROR_CODES.get(code, {"retryable": False})

