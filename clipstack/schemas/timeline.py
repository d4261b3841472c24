from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

TrackKind = Literal["video", "audio"]


class Clip(BaseModel):
    """A trimmed, positioned reference to a source file (seconds)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    file_id: str = Field(alias="fileId")
    in_point: float = Field(default=0.0, alias="in", ge=0)
    out_point: float = Field(alias="out")
    start: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def _check_trim(self) -> "Clip":
        if self.out_point <= self.in_point:
            raise ValueError(f"clip out ({self.out_point}) must be greater than in ({self.in_point})")
        return self

    @property
    def duration(self) -> float:
        return self.out_point - self.in_point

    @property
    def end(self) -> float:
        """End of the clip's active window on the master timeline."""
        return self.start + self.duration


class Track(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: TrackKind = Field(alias="type")
    clips: list[Clip] = Field(default_factory=list)


class Timeline(BaseModel):
    """Tracks in z-order: later video tracks overlay earlier ones."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    width: int = 1920
    height: int = 1080
    fps: float = Field(default=30, gt=0)
    tracks: list[Track] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_track_list(cls, data: Any) -> Any:
        # Queue payloads carry the track list directly
        if isinstance(data, list):
            return {"tracks": data}
        return data


class ResolvedFile(BaseModel):
    """A source file resolved to a local path or a time-limited URL."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    path: str
    mimetype: str | None = None
    name: str | None = None
