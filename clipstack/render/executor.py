"""Supervised FFmpeg execution.

Runs the encoder as a child process with stdin closed and stdout discarded
(or streamed to a sink in preview mode), reading stderr incrementally so
progress markers can be reported while the encode runs.

A nonzero exit is reported, not raised: the caller decides what a failure
means. Only a failure to start the process raises (SpawnError).
"""

import asyncio
import codecs
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from clipstack.config import get_settings
from clipstack.exceptions import EncodeError, RenderCancelledError, SpawnError

logger = logging.getLogger(__name__)

STDERR_CHUNK_SIZE = 4096

ChunkCallback = Callable[[str], Awaitable[Any] | Any]
BytesSink = Callable[[bytes], Awaitable[Any] | Any]


@dataclass(frozen=True)
class ExecutionResult:
    exit_code: int
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def raise_for_status(self) -> "ExecutionResult":
        """Raise EncodeError carrying the captured stderr on nonzero exit."""
        if self.exit_code != 0:
            raise EncodeError(self.exit_code, self.stderr)
        return self


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class FFmpegExecutor:
    """Spawns FFmpeg and captures its diagnostic stream."""

    def __init__(self, ffmpeg_path: str | None = None):
        self.ffmpeg_path = ffmpeg_path or get_settings().ffmpeg_path

    def build_argv(self, args: Sequence[str], output_path: str) -> list[str]:
        return [self.ffmpeg_path, "-hide_banner", *args, "-y", output_path]

    async def run(
        self,
        args: Sequence[str],
        output_path: str,
        *,
        on_stderr: ChunkCallback | None = None,
        on_stdout: BytesSink | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Run one encode to completion.

        Args:
            args: Compiled FFmpeg arguments (without binary/output)
            output_path: Output file, appended as the last argument
            on_stderr: Called with each decoded stderr chunk, in order
            on_stdout: Receives raw stdout bytes (streaming/preview mode)
            cancel_event: Setting it kills the encoder

        Returns:
            ExecutionResult with exit code and the full captured stderr

        Raises:
            SpawnError: The encoder could not be launched
            RenderCancelledError: ``cancel_event`` was set before exit
        """
        argv = self.build_argv(args, output_path)
        logger.info(f"[FFMPEG] Starting: {' '.join(argv)[:500]}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE if on_stdout else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise SpawnError(argv[0], e.strerror or str(e)) from e
        except OSError as e:
            raise SpawnError(argv[0], str(e)) from e

        chunks: list[str] = []
        readers = [asyncio.create_task(self._drain_stderr(proc, chunks, on_stderr))]
        if on_stdout:
            readers.append(asyncio.create_task(self._drain_stdout(proc, on_stdout)))
        streams_done = asyncio.ensure_future(asyncio.gather(*readers))

        cancel_waiter = asyncio.create_task(cancel_event.wait()) if cancel_event else None
        try:
            waiters = {streams_done} | ({cancel_waiter} if cancel_waiter else set())
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            if cancel_waiter in done and not streams_done.done():
                logger.warning(f"[FFMPEG] Cancel requested, killing pid={proc.pid}")
                raise RenderCancelledError(detail="".join(chunks) or None)
            await streams_done
            exit_code = await proc.wait()
        except BaseException:
            # Never leave the encoder running
            await self._kill(proc)
            streams_done.cancel()
            raise
        finally:
            if cancel_waiter:
                cancel_waiter.cancel()

        stderr = "".join(chunks)
        if exit_code == 0:
            logger.info(f"[FFMPEG] Completed successfully: {output_path}")
        else:
            logger.error(f"[FFMPEG] Exited with code {exit_code}: {stderr[-2000:]}")
        return ExecutionResult(exit_code=exit_code, stderr=stderr)

    async def _drain_stderr(
        self,
        proc: asyncio.subprocess.Process,
        chunks: list[str],
        on_chunk: ChunkCallback | None,
    ) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await proc.stderr.read(STDERR_CHUNK_SIZE)
            text = decoder.decode(data, final=not data)
            if text:
                chunks.append(text)
                if on_chunk:
                    await _maybe_await(on_chunk(text))
            if not data:
                break

    async def _drain_stdout(self, proc: asyncio.subprocess.Process, sink: BytesSink) -> None:
        while True:
            data = await proc.stdout.read(65536)
            if not data:
                break
            await _maybe_await(sink(data))

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()
