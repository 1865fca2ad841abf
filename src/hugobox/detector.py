"""Recursive filesystem change detector.

Uses watchdog (inotify on Linux, FSEvents on macOS) with a single
recursive watch on the root; the backend registers every subdirectory,
including ones created after startup. Raw events are classified on the
watchdog thread and only reload-worthy ones are handed to the event loop
through ``loop.call_soon_threadsafe``. No debouncing happens here.

A "modified" event whose file content digest did not change (``touch``,
``chmod``) is metadata noise and is dropped when fingerprinting is on.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from hugobox.logger import logger
from hugobox.types import ChangeEvent, ChangeKind


class WatchSetupFailure(OSError):
    """A directory could not be registered for watching."""

    def __init__(self, path: str | Path, reason: object) -> None:
        super().__init__(f"cannot watch {path}: {reason}")
        self.path = Path(path)


@dataclass
class WatchState:
    """Root plus every directory known to be under watch. Only ever grows."""

    root: Path
    directories: set[Path] = field(default_factory=set)

    def add(self, path: Path) -> bool:
        if path in self.directories:
            return False
        self.directories.add(path)
        return True


def _as_str(path: str | bytes) -> str:
    return os.fsdecode(path)


def classify(event: FileSystemEvent) -> tuple[ChangeKind, str]:
    """Map a watchdog event to a change kind and the path it concerns."""
    event_type = event.event_type
    if event_type == EVENT_TYPE_MOVED:
        # What matters is the content appearing at the destination.
        return ChangeKind.CREATE, _as_str(event.dest_path)
    src = _as_str(event.src_path)
    if event_type == EVENT_TYPE_CREATED:
        return ChangeKind.CREATE, src
    if event_type == EVENT_TYPE_DELETED:
        return ChangeKind.REMOVE, src
    if event_type == EVENT_TYPE_MODIFIED and not event.is_directory:
        return ChangeKind.WRITE, src
    # Directory mtime bumps, opened/closed notifications
    return ChangeKind.OTHER, src


def file_digest(path: str | Path) -> bytes | None:
    """BLAKE2b digest of a file's content, or None if it can't be read."""
    h = hashlib.blake2b(digest_size=16)
    try:
        with open(path, "rb") as f:
            while chunk := f.read(65536):
                h.update(chunk)
    except OSError:
        return None
    return h.digest()


class ContentFingerprints:
    """Last-seen content digest per file. Touched from the watchdog thread."""

    def __init__(self) -> None:
        self._digests: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._digests)

    def record(self, path: str) -> None:
        digest = file_digest(path)
        if digest is None:
            return
        with self._lock:
            self._digests[path] = digest

    def changed(self, path: str) -> bool:
        """Record the current digest; True unless it matches the previous one."""
        digest = file_digest(path)
        if digest is None:
            return True
        with self._lock:
            previous = self._digests.get(path)
            self._digests[path] = digest
        return previous != digest

    def forget(self, path: str) -> None:
        prefix = path.rstrip(os.sep) + os.sep
        with self._lock:
            for key in [k for k in self._digests if k == path or k.startswith(prefix)]:
                del self._digests[key]


class _ChangeEventHandler(FileSystemEventHandler):
    """Watchdog handler that hands every raw event to the detector."""

    def __init__(self, detector: ChangeDetector) -> None:
        super().__init__()
        self._detector = detector

    def on_any_event(self, event: FileSystemEvent) -> None:
        try:
            self._detector.handle_raw_event(event)
        except Exception as exc:
            self._detector.report_error(exc)


class ChangeDetector:
    """Produces reload-worthy ChangeEvents on ``events``; problems on ``errors``.

    ``events`` yields ``None`` once the detector is closed.
    """

    def __init__(
        self,
        root: Path,
        *,
        loop: asyncio.AbstractEventLoop,
        fingerprint_content: bool = True,
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        self.state = WatchState(root=root)
        self.events: asyncio.Queue[ChangeEvent | None] = asyncio.Queue()
        self.errors: asyncio.Queue[Exception] = asyncio.Queue()
        self._loop = loop
        self._fingerprints = ContentFingerprints() if fingerprint_content else None
        self._observer = observer_factory()
        self._handler = _ChangeEventHandler(self)
        self._started = False
        self._closed = False

    # --- Setup ---

    async def start(self) -> None:
        """Walk the tree, then start watching. Raises WatchSetupFailure for the root only.

        The walk reads every file for its digest, so it runs in a worker thread.
        """
        root = self.state.root
        if not root.is_dir():
            raise WatchSetupFailure(root, "not a directory")
        await asyncio.to_thread(self.register_tree, root)
        try:
            self._observer.schedule(self._handler, str(root), recursive=True)
        except OSError as exc:
            raise WatchSetupFailure(root, exc) from exc
        self._observer.daemon = True
        self._observer.start()
        self._started = True
        logger.info(
            "Watching for file changes",
            path=str(root),
            directories=len(self.state.directories),
        )

    def register_tree(self, top: Path) -> int:
        """Record *top* and every directory below it. Returns the number newly added.

        Unreadable subdirectories are reported on the error channel and skipped.
        """

        def onerror(exc: OSError) -> None:
            self.report_error(WatchSetupFailure(exc.filename or top, exc.strerror or exc))

        added = 0
        for dirpath, _dirnames, filenames in os.walk(top, onerror=onerror):
            if self.state.add(Path(dirpath)):
                added += 1
            if self._fingerprints is not None:
                for name in filenames:
                    self._fingerprints.record(os.path.join(dirpath, name))
        return added

    # --- Event path (watchdog thread) ---

    def handle_raw_event(self, event: FileSystemEvent) -> None:
        kind, path = classify(event)

        if event.event_type == EVENT_TYPE_MOVED and self._fingerprints is not None:
            self._fingerprints.forget(_as_str(event.src_path))

        if kind is ChangeKind.WRITE and self._fingerprints is not None:
            if not self._fingerprints.changed(path):
                kind = ChangeKind.OTHER
        elif kind is ChangeKind.CREATE:
            if event.is_directory:
                added = self.register_tree(Path(path))
                if added:
                    logger.debug("Registered new directories", path=path, count=added)
            elif self._fingerprints is not None:
                self._fingerprints.record(path)
        elif kind is ChangeKind.REMOVE and self._fingerprints is not None:
            self._fingerprints.forget(path)

        if not kind.reload_worthy:
            logger.debug("Ignoring filesystem event", event=event.event_type, path=path)
            return

        logger.info("File change detected", path=path, kind=kind.value)
        self._deliver(self.events, ChangeEvent(Path(path), kind, datetime.now(UTC)))

    def report_error(self, exc: Exception) -> None:
        self._deliver(self.errors, exc)

    def _deliver(self, queue: asyncio.Queue[Any], item: Any) -> None:
        try:
            self._loop.call_soon_threadsafe(queue.put_nowait, item)
        except RuntimeError:
            pass  # loop already closed, process is exiting

    # --- Teardown ---

    def close(self) -> None:
        """Stop watching and signal the end of the event stream. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._started:
            self._observer.stop()
            self._observer.join(timeout=5)
        self._deliver(self.events, None)
