"""Line sources for the event stream: a file, piped stdin or `go test -json`."""

import asyncio
import logging
import os
import stat
import sys
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

from gotest_timeline.config import Settings
from gotest_timeline.errors import InputSourceError, SubprocessError

log = logging.getLogger(__name__)

LINE_LIMIT = 16 * 1024 * 1024


async def read_lines(
    reader: asyncio.StreamReader, shutdown: asyncio.Event
) -> AsyncIterator[bytes]:
    """Yield lines from ``reader`` until EOF or until ``shutdown`` is set.

    A read blocked on a quiet pipe is abandoned as soon as ``shutdown`` is
    set, which ends the stream as if EOF had been reached.
    """
    stop = asyncio.create_task(shutdown.wait(), name="shutdown")
    try:
        while not shutdown.is_set():
            read = asyncio.create_task(reader.readline(), name="readline")
            await asyncio.wait({read, stop}, return_when=asyncio.FIRST_COMPLETED)

            if not read.done():
                read.cancel()
                break

            try:
                line = read.result()
            except ValueError:
                log.debug("Skipping line longer than %d bytes", LINE_LIMIT)
                continue

            if not line:
                break
            yield line
    finally:
        stop.cancel()


def stdin_is_pipe(stdin: BinaryIO | None = None) -> bool:
    """True unless stdin is a terminal (or missing)."""
    stream = stdin if stdin is not None else sys.stdin.buffer
    try:
        mode = os.fstat(stream.fileno()).st_mode
    except (OSError, ValueError):
        return False
    return not stat.S_ISCHR(mode)


@dataclass(kw_only=True)
class LineSource(ABC):
    """Async iterable of raw input lines with a process exit code."""

    shutdown: asyncio.Event

    @property
    def exit_code(self) -> int:
        """Exit code of the producer, 0 when there is no subprocess."""
        return 0

    @abstractmethod
    def lines(self) -> AsyncIterator[bytes]:
        """Iterate over the raw lines of the stream."""

    async def close(self) -> None:
        """Release the underlying resources."""


@dataclass(kw_only=True)
class FileSource(LineSource):
    """Lines of a regular file, read sequentially."""

    stream: BinaryIO
    owned: bool = True

    @classmethod
    def open(cls, path: Path, shutdown: asyncio.Event) -> "FileSource":
        """Open ``path`` for reading.

        Raises:
            InputSourceError: If the file cannot be opened

        """
        try:
            stream = path.open("rb")
        except OSError as exc:
            raise InputSourceError(f"Error opening file {path}: {exc}") from exc
        return cls(stream=stream, shutdown=shutdown)

    async def lines(self) -> AsyncIterator[bytes]:
        """Yield lines until EOF, stopping early on shutdown."""
        for line in self.stream:
            if self.shutdown.is_set():
                break
            yield line
            # let signal handlers run between lines
            await asyncio.sleep(0)

    async def close(self) -> None:
        """Close the file if this source opened it."""
        if self.owned:
            self.stream.close()


@dataclass(kw_only=True)
class PipeSource(LineSource):
    """Lines read from a pipe, typically stdin."""

    stream: BinaryIO
    _transport: asyncio.BaseTransport | None = field(default=None, init=False)

    async def lines(self) -> AsyncIterator[bytes]:
        """Yield lines from the pipe until EOF or shutdown."""
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(limit=LINE_LIMIT)
        self._transport, _ = await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), self.stream
        )

        async for line in read_lines(reader, self.shutdown):
            yield line

    async def close(self) -> None:
        """Detach from the pipe."""
        if self._transport is not None:
            self._transport.close()


@dataclass(kw_only=True)
class GoTestSource(LineSource):
    """Stdout of a `go test -json` subprocess."""

    args: Sequence[str] = ()
    program: Sequence[str] = ("go", "test", "-json")
    _process: asyncio.subprocess.Process | None = field(default=None, init=False)

    @property
    def command(self) -> Sequence[str]:
        """Full command line of the subprocess."""
        return [*self.program, *self.args]

    @property
    def exit_code(self) -> int:
        """Exit code of `go test`, 0 while running or after a shutdown kill."""
        if self._process is None or self._process.returncode is None:
            return 0
        if self._process.returncode < 0 and self.shutdown.is_set():
            return 0
        return self._process.returncode

    async def lines(self) -> AsyncIterator[bytes]:
        """Start the subprocess and yield its stdout lines.

        Raises:
            SubprocessError: If the subprocess cannot be started or is killed
                by a signal other than our own shutdown

        """
        log.info("Running go test: %s", " ".join(self.command))

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=None,
                stdout=asyncio.subprocess.PIPE,
                stderr=None,
                limit=LINE_LIMIT,
            )
        except OSError as exc:
            raise SubprocessError(f"Error running go test: {exc}") from exc

        stdout = self._process.stdout
        if stdout is None:
            raise SubprocessError("go test was started without a stdout pipe")

        async for line in read_lines(stdout, self.shutdown):
            yield line

        if self.shutdown.is_set():
            self._kill()

        returncode = await self._process.wait()
        if returncode < 0 and not self.shutdown.is_set():
            raise SubprocessError(f"go test was killed by signal {-returncode}")
        if returncode > 0:
            log.info("go test exited with code %d", returncode)

    def _kill(self) -> None:
        if self._process is not None and self._process.returncode is None:
            log.debug("Killing go test (pid %d)", self._process.pid)
            self._process.kill()

    async def close(self) -> None:
        """Kill the subprocess if it is still running and reap it."""
        if self._process is None:
            return
        self._kill()
        await self._process.wait()


def select_source(
    settings: Settings,
    shutdown: asyncio.Event,
    *,
    stdin: BinaryIO | None = None,
) -> LineSource:
    """Pick the input: ``--from-file``, then piped stdin, then `go test -json`.

    Raises:
        InputSourceError: If a file is requested while stdin is also piped,
            or the file cannot be opened

    """
    stdin = stdin if stdin is not None else sys.stdin.buffer
    is_pipe = stdin_is_pipe(stdin)

    if settings.from_file is not None:
        if is_pipe:
            raise InputSourceError("Can't read from file and stdin at the same time")
        log.debug("Reading events from %s", settings.from_file)
        return FileSource.open(settings.from_file, shutdown)

    if is_pipe:
        if stat.S_ISREG(os.fstat(stdin.fileno()).st_mode):
            log.debug("Reading events from redirected stdin")
            return FileSource(stream=stdin, owned=False, shutdown=shutdown)
        log.debug("Reading events from piped stdin")
        return PipeSource(stream=stdin, shutdown=shutdown)

    return GoTestSource(args=settings.go_test_args, shutdown=shutdown)
