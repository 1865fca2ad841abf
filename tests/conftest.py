"""Shared test fixtures for hugobox."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from hugobox.engine import EngineError
from hugobox.types import RunSpec

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures, importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset({"watch_root", "site_config_path"})


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Accepts both model fields (docker_image, reload, etc.) and cached
    property overrides (watch_root, site_config_path).

    Usage::

        s = make_settings(watch_root=tmp_path)
        s = make_settings(reload=ReloadConfig(debounce_seconds=0.05))
    """
    from hugobox.config import EngineConfig, LoggingConfig, ReloadConfig, Settings, SiteConfig

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "docker_image": "fortinet-hugo:latest",
        "host_port": 1313,
        "container_port": 1313,
        "watch_dir": None,
        "engine": EngineConfig(),
        "site": SiteConfig(),
        "reload": ReloadConfig(),
        "logging": LoggingConfig(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    if "watch_root" in cached and "site_config_path" not in cached:
        cached["site_config_path"] = cached["watch_root"] / s.site.config_file
    for key, value in cached.items():
        s.__dict__[key] = value

    return s


def make_spec(**overrides) -> RunSpec:
    from hugobox.types import BindMount

    fields = {
        "image": "fortinet-hugo:latest",
        "command": ("server", "--bind", "0.0.0.0"),
        "interactive": False,
        "mounts": (BindMount("/site", "/home/UserRepo"),),
        "host_port": 1313,
        "container_port": 1313,
    }
    fields.update(overrides)
    return RunSpec(**fields)


class FakeWriter:
    """Stand-in for the StreamWriter on an attach process's stdin."""

    def __init__(self) -> None:
        self.data = b""
        self.closed = False
        self.broken = False

    def write(self, chunk: bytes) -> None:
        if self.broken:
            raise BrokenPipeError
        self.data += chunk

    async def drain(self) -> None:
        if self.broken:
            raise ConnectionResetError

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True


class FakeProcess:
    """Simulates the ``docker attach`` subprocess."""

    def __init__(self, ref: str = "", *, stdin: bool = False, returncode: int = 0) -> None:
        self.ref = ref
        self.stdout = asyncio.StreamReader()
        self.stdin = FakeWriter() if stdin else None
        self._returncode = returncode
        self._exited = asyncio.Event()

    def finish(self, output: bytes = b"") -> None:
        if self._exited.is_set():
            return
        if output:
            self.stdout.feed_data(output)
        self.stdout.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self._returncode

    @property
    def returncode(self) -> int | None:
        return self._returncode if self._exited.is_set() else None


class FakeEngine:
    """In-memory engine recording every call.

    ``fail(op, exc)`` queues an error for the next call of *op*;
    ``block(op)`` makes *op* wait on the returned event before proceeding.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.created: list[tuple[RunSpec, str]] = []
        self.existing: set[str] = set()
        self.running: set[str] = set()
        self.processes: list[FakeProcess] = []
        self.exit_code = 0
        self.exited: dict[str, int] = {}
        # Keep one-shot instances running until finish_instance() is called.
        self.hold_attached = False
        self._failures: dict[str, list[Exception]] = {}
        self._gates: dict[str, asyncio.Event] = {}
        self.entered: dict[str, asyncio.Event] = {}

    def fail(self, op: str, exc: Exception | None = None) -> None:
        self._failures.setdefault(op, []).append(exc or EngineError(f"{op} failed"))

    def block(self, op: str) -> asyncio.Event:
        gate = asyncio.Event()
        self._gates[op] = gate
        self.entered[op] = asyncio.Event()
        return gate

    async def _enter(self, op: str, *args: str) -> None:
        self.calls.append((op, *args))
        if op in self.entered:
            self.entered[op].set()
        gate = self._gates.get(op)
        if gate is not None:
            await gate.wait()
        failures = self._failures.get(op)
        if failures:
            raise failures.pop(0)

    def _close_streams(self, ref: str) -> None:
        for proc in self.processes:
            if proc.ref == ref:
                proc.finish()

    @property
    def live(self) -> set[str]:
        """Instances that exist and are running."""
        return self.existing & self.running

    async def create(self, spec: RunSpec, name: str) -> str:
        await self._enter("create", name)
        self.created.append((spec, name))
        self.existing.add(name)
        return name

    async def start(self, ref: str) -> None:
        await self._enter("start", ref)
        self.running.add(ref)

    async def start_attached(self, ref: str, *, stdin: bool) -> FakeProcess:
        await self._enter("start_attached", ref)
        proc = FakeProcess(ref, stdin=stdin, returncode=self.exit_code)
        self.processes.append(proc)
        # The engine starts the instance only after the attach is in place.
        loop = asyncio.get_running_loop()
        loop.call_soon(self.running.add, ref)
        if not self.hold_attached:
            loop.call_soon(self.finish_instance, ref)
        return proc

    def finish_instance(self, ref: str) -> None:
        """The instance exits with ``exit_code``."""
        self.running.discard(ref)
        self.exited[ref] = self.exit_code
        self._close_streams(ref)

    async def attach(self, ref: str, *, stdin: bool) -> FakeProcess:
        await self._enter("attach", ref)
        if ref not in self.running:
            raise EngineError(f"container {ref} is not running")
        proc = FakeProcess(ref, stdin=stdin)
        self.processes.append(proc)
        return proc

    async def stop(self, ref: str, *, timeout: int = 10) -> None:
        await self._enter("stop", ref)
        if ref not in self.existing:
            raise EngineError(f"No such container: {ref}")
        self.running.discard(ref)
        self._close_streams(ref)

    async def remove(self, ref: str, *, force: bool = True) -> None:
        await self._enter("remove", ref)
        if ref not in self.existing:
            raise EngineError(f"No such container: {ref}")
        self.existing.discard(ref)
        self.running.discard(ref)
        self._close_streams(ref)

    async def wait(self, ref: str) -> int:
        await self._enter("wait", ref)
        # Like `docker wait`: returns at once for an instance that is not
        # running, including one that was created but not started yet.
        while ref in self.running:
            await asyncio.sleep(0.005)
        return self.exited.get(ref, 0)


class FakeRuntime:
    """ContainerRuntime stand-in; ``error`` makes ensure_running raise it."""

    cli = "docker"
    name = "docker"

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    def is_available(self) -> bool:
        return True

    def ensure_running(self) -> None:
        if self.error is not None:
            raise self.error


class FakeObserver:
    """Records watchdog Observer calls without touching the filesystem."""

    def __init__(self, schedule_error: Exception | None = None) -> None:
        self.scheduled: list[tuple[object, str, bool]] = []
        self.started = False
        self.stopped = False
        self.daemon = False
        self._schedule_error = schedule_error

    def schedule(self, handler, path: str, recursive: bool = False):
        if self._schedule_error is not None:
            raise self._schedule_error
        self.scheduled.append((handler, path, recursive))

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout: float | None = None) -> None:
        pass


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    """Poll *predicate* on the event loop until it holds or *timeout* elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Ensure each test starts with a clean Settings singleton and environment."""
    for var in ("DOCKER_IMAGE", "HOST_PORT", "CONTAINER_PORT", "WATCH_DIR"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("hugobox.config._settings", None)


@pytest.fixture
def site_dir(tmp_path: Path) -> Path:
    """A small site tree: config, content/posts, layouts."""
    root = tmp_path / "site"
    (root / "content" / "posts").mkdir(parents=True)
    (root / "layouts").mkdir()
    (root / "hugo.toml").write_text('title = "test"\n')
    (root / "content" / "posts" / "first.md").write_text("# first\n")
    return root
