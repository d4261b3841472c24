"""
Pytest fixtures for clipstack tests.

CI/CD Note:
Tests that run the real encoder are marked with @requires_ffmpeg and are
skipped when ffmpeg is not on PATH.
"""

import shutil
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from clipstack.config import Settings
from clipstack.models.base import Base
from clipstack.models.database import create_session_maker
from clipstack.schemas.render import RenderJobPayload
from clipstack.schemas.timeline import ResolvedFile, Timeline
from clipstack.services.job_repository import RenderJobRepository
from clipstack.services.progress_store import MemoryProgressStore


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as running the real ffmpeg binary (skipped when missing)"
    )


requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None,
    reason="ffmpeg not available on PATH"
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_output_dir: Path) -> Settings:
    return Settings(
        local_storage_path=str(temp_output_dir / "storage"),
        redis_url="",
        sqs_render_queue_url="",
        max_concurrent_jobs=1,
        poll_interval_seconds=0.01,
        error_backoff_seconds=0.01,
        shutdown_timeout_seconds=0.5,
        progress_poll_interval_seconds=0.01,
        worker_id="worker-test",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> MemoryProgressStore:
    return MemoryProgressStore(clock=clock)


@pytest_asyncio.fixture
async def session_maker():
    """In-memory SQLite database with the render_jobs table."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def repository(session_maker) -> RenderJobRepository:
    return RenderJobRepository(session_maker)


@pytest.fixture
def files() -> list[ResolvedFile]:
    return [
        ResolvedFile(id="vid-1", path="/media/intro.mp4", mimetype="video/mp4", name="intro.mp4"),
        ResolvedFile(id="vid-2", path="/media/broll.mp4", mimetype="video/mp4", name="broll.mp4"),
        ResolvedFile(id="aud-1", path="/media/music.mp3", mimetype="audio/mpeg", name="music.mp3"),
        ResolvedFile(id="aud-2", path="/media/voice.wav", mimetype="audio/wav", name="voice.wav"),
    ]


@pytest.fixture
def video_audio_timeline() -> Timeline:
    """The same file as a 10s video clip and a 10s audio clip, both at 0s."""
    return Timeline.model_validate(
        {
            "tracks": [
                {"type": "video", "clips": [{"fileId": "vid-1", "in": 0, "out": 10, "start": 0}]},
                {"type": "audio", "clips": [{"fileId": "vid-1", "in": 0, "out": 10, "start": 0}]},
            ]
        }
    )


@pytest.fixture
def overlapping_timeline() -> Timeline:
    """Lower track window [2,7], higher track window [0,5]."""
    return Timeline.model_validate(
        {
            "tracks": [
                {"type": "video", "clips": [{"fileId": "vid-1", "in": 0, "out": 5, "start": 2}]},
                {"type": "video", "clips": [{"fileId": "vid-2", "in": 0, "out": 5, "start": 0}]},
            ]
        }
    )


@pytest.fixture
def payload(video_audio_timeline: Timeline, files: list[ResolvedFile]) -> RenderJobPayload:
    return RenderJobPayload(
        job_id="job-1",
        project_id="proj-1",
        user_id="user-1",
        username="editor",
        files=files,
        timeline=video_audio_timeline,
        preset="fast",
        renditions=["1080p"],
    )
