"""Docker CLI engine: the create/start/attach/stop/remove/wait contract.

All public methods are async so they don't block the event loop.
One-shot commands run in a thread via ``asyncio.to_thread``; ``attach``
spawns a long-lived ``docker attach`` subprocess whose pipes are the
instance's I/O streams.
"""

from __future__ import annotations

import asyncio
import subprocess

from hugobox.logger import logger
from hugobox.types import RunSpec


class EngineError(RuntimeError):
    """A container engine call failed."""


def build_create_args(spec: RunSpec, name: str) -> list[str]:
    """Build CLI args for ``docker create`` from a RunSpec."""
    args = ["create", "--name", name]
    if spec.interactive:
        args.append("--interactive")
    if spec.tty:
        args.append("--tty")
    if spec.entrypoint is not None:
        args.extend(["--entrypoint", spec.entrypoint])
    args.extend(["--expose", spec.port_spec])
    args.extend(["--publish", f"{spec.host_ip}:{spec.host_port}:{spec.port_spec}"])
    for m in spec.mounts:
        mount = f"type=bind,source={m.source},target={m.target}"
        if m.readonly:
            mount += ",readonly"
        args.extend(["--mount", mount])
    args.append(spec.image)
    args.extend(spec.command)
    return args


class DockerEngine:
    """Thin async wrapper over a docker-compatible CLI."""

    def __init__(self, cli: str = "docker") -> None:
        self.cli = cli

    def _run_sync(
        self,
        *args: str,
        timeout: float | None = 30,
    ) -> subprocess.CompletedProcess[str]:
        """Run a CLI command (blocking, internal only). Raises EngineError on failure."""
        try:
            return subprocess.run(
                [self.cli, *args],
                capture_output=True,
                text=True,
                timeout=timeout,
                check=True,
            )
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip()
            raise EngineError(f"{self.cli} {args[0]} failed: {detail}") from exc
        except subprocess.TimeoutExpired as exc:
            raise EngineError(f"{self.cli} {args[0]} timed out after {timeout}s") from exc
        except OSError as exc:
            raise EngineError(f"{self.cli} {args[0]} could not run: {exc}") from exc

    async def run(self, *args: str, timeout: float | None = 30) -> subprocess.CompletedProcess[str]:
        """Run a CLI command without blocking the event loop."""
        return await asyncio.to_thread(self._run_sync, *args, timeout=timeout)

    # --- Lifecycle ---

    async def create(self, spec: RunSpec, name: str) -> str:
        result = await self.run(*build_create_args(spec, name), timeout=120)
        container_id = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else name
        logger.debug("Container created", container=name, id=container_id[:12])
        return container_id

    async def start(self, ref: str) -> None:
        await self.run("start", ref)

    async def is_running(self, ref: str) -> bool:
        try:
            result = await self.run("inspect", "-f", "{{.State.Running}}", ref)
        except EngineError:
            return False
        return result.stdout.strip() == "true"

    async def attach(self, ref: str, *, stdin: bool) -> asyncio.subprocess.Process:
        """Open the instance's output (and optionally input) as subprocess pipes.

        stderr is merged into stdout so a single copy task forwards both.
        ``--sig-proxy=false`` keeps our own SIGINT from reaching the container.
        """
        if not await self.is_running(ref):
            raise EngineError(f"container {ref} is not running")
        args = ["attach", "--sig-proxy=false"]
        if not stdin:
            args.append("--no-stdin")
        args.append(ref)
        try:
            return await asyncio.create_subprocess_exec(
                self.cli,
                *args,
                stdin=asyncio.subprocess.PIPE if stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise EngineError(f"{self.cli} attach could not run: {exc}") from exc

    async def start_attached(self, ref: str, *, stdin: bool) -> asyncio.subprocess.Process:
        """Attach, then start, so nothing the instance prints is missed.

        The subprocess exits with the instance's exit status, or non-zero
        with an error message if the start itself fails.
        """
        args = ["start", "--attach"]
        if stdin:
            args.append("--interactive")
        args.append(ref)
        try:
            return await asyncio.create_subprocess_exec(
                self.cli,
                *args,
                stdin=asyncio.subprocess.PIPE if stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise EngineError(f"{self.cli} start could not run: {exc}") from exc

    async def stop(self, ref: str, *, timeout: int = 10) -> None:
        # The CLI itself waits up to `timeout` before killing; leave headroom.
        await self.run("stop", "-t", str(timeout), ref, timeout=timeout + 30)

    async def remove(self, ref: str, *, force: bool = True) -> None:
        args = ["rm", "-f", ref] if force else ["rm", ref]
        await self.run(*args)

    async def wait(self, ref: str) -> int:
        """Block until the instance stops; return its exit status."""
        result = await self.run("wait", ref, timeout=None)
        try:
            return int(result.stdout.strip().splitlines()[-1])
        except (ValueError, IndexError) as exc:
            raise EngineError(f"unexpected output from {self.cli} wait: {result.stdout!r}") from exc
