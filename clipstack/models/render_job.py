from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from clipstack.models.base import Base, TimestampMixin


class RenderJob(Base, TimestampMixin):
    __tablename__ = "render_jobs"

    # Job ids are issued by the caller (queue payload jobId)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    owner_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Status: queued, processing, completed, failed
    status: Mapped[str] = mapped_column(String(50), default="queued", index=True)
    preset: Mapped[str] = mapped_column(String(20), default="balanced")
    renditions: Mapped[list[str]] = mapped_column(JSON, default=list)
    progress: Mapped[int] = mapped_column(Integer, default=0)

    # Queue delivery tracking
    attempt: Mapped[int] = mapped_column(Integer, default=0)
    worker_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Output
    output_location: Mapped[str | None] = mapped_column(Text, nullable=True)
    outputs: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    # Timing
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Error handling
    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    diagnostics: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<RenderJob {self.id} ({self.status})>"
