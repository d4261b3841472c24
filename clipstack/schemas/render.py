from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from clipstack.schemas.timeline import ResolvedFile, Timeline


class Preset(str, Enum):
    """Encoder speed/quality tradeoff."""

    FAST = "fast"
    QUALITY = "quality"
    BALANCED = "balanced"


class Rendition(str, Enum):
    """Requested output resolution."""

    P1080 = "1080p"
    P720 = "720p"
    P480 = "480p"

    @property
    def height(self) -> int:
        return int(self.value[:-1])


def normalise_preset(value: Any) -> Any:
    """Map unknown preset names (e.g. the legacy "crispstream") to balanced."""
    if isinstance(value, Preset):
        return value
    if isinstance(value, str) and value in {p.value for p in Preset}:
        return value
    return Preset.BALANCED


def dedupe_renditions(value: list[Rendition]) -> list[Rendition]:
    """Drop repeated renditions, keeping first-seen order."""
    return list(dict.fromkeys(value))


class RenderOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    preset: Preset = Preset.BALANCED
    renditions: list[Rendition] = Field(default_factory=lambda: [Rendition.P1080], min_length=1)

    @field_validator("preset", mode="before")
    @classmethod
    def _normalise_preset(cls, value: Any) -> Any:
        return normalise_preset(value)

    @field_validator("renditions")
    @classmethod
    def _dedupe_renditions(cls, value: list[Rendition]) -> list[Rendition]:
        return dedupe_renditions(value)

    def for_rendition(self, rendition: Rendition) -> "RenderOptions":
        """Options narrowed to a single rendition (one encode per rendition)."""
        return self.model_copy(update={"renditions": [rendition]})


class RenderJobPayload(BaseModel):
    """Body of a render queue message; also the input of a synchronous render."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: str
    project_id: str
    user_id: str = ""
    username: str = ""
    files: list[ResolvedFile] = Field(default_factory=list)
    timeline: Timeline = Field(default_factory=Timeline)
    preset: Preset = Preset.BALANCED
    renditions: list[Rendition] = Field(default_factory=lambda: [Rendition.P1080], min_length=1)
    created_at: int | None = None  # epoch ms

    @field_validator("preset", mode="before")
    @classmethod
    def _normalise_preset(cls, value: Any) -> Any:
        return normalise_preset(value)

    @field_validator("renditions")
    @classmethod
    def _dedupe_renditions(cls, value: list[Rendition]) -> list[Rendition]:
        return dedupe_renditions(value)

    @property
    def options(self) -> RenderOptions:
        return RenderOptions(preset=self.preset, renditions=self.renditions)


class RenderRequest(BaseModel):
    """HTTP body for synchronous and queued render requests."""

    timeline: Timeline
    files: list[ResolvedFile] = Field(default_factory=list)
    preset: str | None = None
    renditions: list[Rendition] = Field(default_factory=lambda: [Rendition.P1080], min_length=1)
    owner_id: str = ""


class RenditionOutput(BaseModel):
    rendition: Rendition
    key: str
    location: str
    size: int


class RenderJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    owner_id: str | None
    status: str
    preset: str
    renditions: list[str]
    progress: int
    attempt: int
    output_location: str | None
    outputs: list[dict[str, Any]] | None
    error_code: str | None
    error_message: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime
