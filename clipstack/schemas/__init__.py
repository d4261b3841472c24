from clipstack.schemas.envelope import ErrorInfo, ErrorResponse
from clipstack.schemas.render import (
    Preset,
    RenderJobPayload,
    RenderJobResponse,
    RenderOptions,
    RenderRequest,
    Rendition,
    RenditionOutput,
)
from clipstack.schemas.timeline import Clip, ResolvedFile, Timeline, Track

__all__ = [
    "Clip",
    "ErrorInfo",
    "ErrorResponse",
    "Preset",
    "RenderJobPayload",
    "RenderJobResponse",
    "RenderOptions",
    "RenderRequest",
    "Rendition",
    "RenditionOutput",
    "ResolvedFile",
    "Timeline",
    "Track",
]
