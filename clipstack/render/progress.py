"""Encoder progress reporting.

FFmpeg writes ``... time=00:00:04.12 ...`` status lines to stderr, separated by
``\\r`` rather than ``\\n`` and split arbitrarily across reads. The reporter
reassembles segments, extracts the latest timestamp and publishes it under
``job:<id>`` in the shared progress store, where the SSE endpoint picks it up.
"""

import logging
import re
import time
from collections.abc import Callable
from typing import Any

from clipstack.config import get_settings
from clipstack.exceptions import TransientInfraError
from clipstack.services.progress_store import ProgressStore, job_key

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"time=\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
SEGMENT_SPLIT = re.compile(r"[\r\n]")


def parse_progress_time(segment: str) -> float | None:
    """Seconds from the last ``time=`` marker in ``segment`` (``time=N/A`` is ignored)."""
    matches = TIME_PATTERN.findall(segment)
    if not matches:
        return None
    hours, minutes, seconds = matches[-1]
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def format_progress_time(seconds: float) -> str:
    """HH:MM:SS.ff, the shape FFmpeg prints."""
    centis = int(round(seconds * 100))
    hours, rest = divmod(centis, 360000)
    minutes, rest = divmod(rest, 6000)
    secs, frac = divmod(rest, 100)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{frac:02d}"


class ProgressReporter:
    """Turns a job's stderr stream into published progress states.

    Published times never decrease, including across renditions: each pass
    after the first is offset by the last published time. Once ``finish`` has
    run the reporter is closed and further input is ignored.
    """

    def __init__(
        self,
        job_id: str,
        store: ProgressStore,
        running_ttl: int | None = None,
        terminal_ttl: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = get_settings()
        self.job_id = job_id
        self.store = store
        self.running_ttl = running_ttl or settings.progress_running_ttl_seconds
        self.terminal_ttl = terminal_ttl or settings.progress_terminal_ttl_seconds
        self._clock = clock
        self._key = job_key(job_id)
        self._buffer = ""
        self._offset = 0.0
        self._last_seconds: float | None = None
        self._rendition: str | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_seconds(self) -> float | None:
        return self._last_seconds

    async def feed(self, chunk: str) -> None:
        """Consume one stderr chunk; complete segments are scanned immediately."""
        if self._closed or not chunk:
            return
        self._buffer += chunk
        segments = SEGMENT_SPLIT.split(self._buffer)
        # The last piece may be a partial segment
        self._buffer = segments.pop()
        for segment in segments:
            await self._scan(segment)

    async def flush(self) -> None:
        """Scan whatever partial segment is left (end of a stream)."""
        if self._closed or not self._buffer:
            return
        segment, self._buffer = self._buffer, ""
        await self._scan(segment)

    async def start_pass(self, rendition: str) -> None:
        """Begin the next encode of a multi-rendition job."""
        await self.flush()
        self._buffer = ""
        self._offset = self._last_seconds or 0.0
        self._rendition = rendition

    async def finish(self, exit_code: int, error_code: str | None = None) -> None:
        """Publish the terminal state. Later calls (and feeds) are ignored."""
        if self._closed:
            return
        await self.flush()
        self._closed = True
        value: dict[str, Any] = {
            "status": "done" if exit_code == 0 else "error",
            "code": exit_code,
            "updatedAt": self._now_ms(),
        }
        if error_code:
            value["error"] = error_code
        if self._last_seconds is not None:
            value["time"] = format_progress_time(self._last_seconds)
        await self._write(value, self.terminal_ttl)
        logger.info(f"[PROGRESS] Job {self.job_id} finished: {value['status']} (code {exit_code})")

    async def _scan(self, segment: str) -> None:
        seconds = parse_progress_time(segment)
        if seconds is None:
            return
        absolute = self._offset + seconds
        if self._last_seconds is not None and absolute < self._last_seconds:
            return
        self._last_seconds = absolute
        value: dict[str, Any] = {
            "status": "running",
            "time": format_progress_time(absolute),
            "seconds": round(absolute, 2),
            "updatedAt": self._now_ms(),
        }
        if self._rendition:
            value["rendition"] = self._rendition
        await self._write(value, self.running_ttl)

    async def _write(self, value: dict[str, Any], ttl: int) -> None:
        try:
            await self.store.set(self._key, value, ttl)
        except TransientInfraError as e:
            # Progress is advisory; the encode carries on
            logger.warning(f"[PROGRESS] Failed to publish progress for {self.job_id}: {e}")

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)
