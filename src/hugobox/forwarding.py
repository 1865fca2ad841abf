"""I/O forwarding between the attached instance and this process.

Each attached handle gets two fire-and-forget copy tasks: engine output to
our stdout, and (interactive only) our stdin to engine input. They end
when their source or destination closes and are never cancelled
explicitly; a retired handle's tasks are simply abandoned.

Reading our own stdin is blocking, so a single daemon thread
(:class:`InputPump`) reads it for the whole process and hands chunks to
whichever copy task is live. A chunk picked up by a task whose
destination has already closed is pushed back for the next handle.
"""

from __future__ import annotations

import asyncio
import os
import sys
import threading
from collections import deque
from typing import BinaryIO

from hugobox.logger import logger

_CHUNK_SIZE = 8192


class InputPump:
    """Reads a file descriptor on a daemon thread and serves chunks to asyncio."""

    def __init__(self, fd: int | None = None, chunk_size: int = _CHUNK_SIZE) -> None:
        self._fd = fd
        self._chunk_size = chunk_size
        self._chunks: deque[bytes] = deque()
        self._ready = asyncio.Event()
        self._eof = False
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the reader thread (idempotent). Must be called from the event loop."""
        if self._thread is not None:
            return
        loop = asyncio.get_running_loop()
        fd = self._fd if self._fd is not None else sys.stdin.fileno()
        self._thread = threading.Thread(
            target=self._reader, args=(loop, fd), name="stdin-pump", daemon=True
        )
        self._thread.start()

    def _reader(self, loop: asyncio.AbstractEventLoop, fd: int) -> None:
        while True:
            try:
                chunk = os.read(fd, self._chunk_size)
            except OSError:
                chunk = b""
            try:
                loop.call_soon_threadsafe(self.feed, chunk)
            except RuntimeError:
                return  # loop closed, process is exiting
            if not chunk:
                return

    def feed(self, chunk: bytes) -> None:
        """Append a chunk; an empty chunk marks end of input."""
        if chunk:
            self._chunks.append(chunk)
        else:
            self._eof = True
        self._ready.set()

    def unread(self, chunk: bytes) -> None:
        """Put a chunk back at the front so the next reader gets it first."""
        self._chunks.appendleft(chunk)
        self._ready.set()

    async def read(self) -> bytes:
        """Next chunk, or ``b""`` once input is exhausted."""
        while not self._chunks:
            if self._eof:
                return b""
            self._ready.clear()
            await self._ready.wait()
        return self._chunks.popleft()


_pump: InputPump | None = None


def get_input_pump() -> InputPump:
    """Process-wide stdin pump, started on first use."""
    global _pump
    if _pump is None:
        _pump = InputPump()
    _pump.start()
    return _pump


async def copy_output(source: asyncio.StreamReader, sink: BinaryIO, *, container: str) -> None:
    """Copy engine output to *sink* until the stream closes."""
    total = 0
    while True:
        chunk = await source.read(_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        try:
            sink.write(chunk)
            sink.flush()
        except (BrokenPipeError, ValueError):
            # Our own stdout went away; nothing left to forward to.
            break
    logger.debug("Output stream closed", container=container, bytes=total)


async def copy_input(source: InputPump, sink: asyncio.StreamWriter, *, container: str) -> None:
    """Copy process input to engine input until either side closes."""
    while True:
        chunk = await source.read()
        if not chunk:
            sink.close()
            break
        if sink.is_closing():
            source.unread(chunk)
            break
        try:
            sink.write(chunk)
            await sink.drain()
        except (BrokenPipeError, ConnectionResetError):
            source.unread(chunk)
            break
    logger.debug("Input stream closed", container=container)
