"""Container supervisor: owns the single current container handle.

The handle is the only mutable state shared between the restart
coordinator and the termination handler. Both go through
:meth:`ContainerSupervisor.restart` / :meth:`ContainerSupervisor.shutdown`,
which serialize on one ``asyncio.Lock``. ``shutdown`` raises the closed
flag before taking the lock; a restart in flight checks the flag between
engine calls and abandons the cycle, so shutdown waits for at most one
engine call and always leaves no instance running.
"""

from __future__ import annotations

import asyncio
import itertools
import os
import sys
from pathlib import Path
from typing import BinaryIO

from hugobox.engine import DockerEngine, EngineError
from hugobox.forwarding import InputPump, copy_input, copy_output, get_input_pump
from hugobox.logger import logger
from hugobox.types import ContainerHandle, RunSpec
from hugobox.utils import create_background_task


class StartFailure(RuntimeError):
    """The engine could not create or start an instance."""


class AttachFailure(RuntimeError):
    """The engine could not attach to a started instance."""


class ContainerSupervisor:
    def __init__(
        self,
        engine: DockerEngine,
        spec: RunSpec,
        *,
        stop_timeout: int = 10,
        name_prefix: str = "hugobox",
        output: BinaryIO | None = None,
        input_pump: InputPump | None = None,
    ) -> None:
        self._engine = engine
        self.spec = spec
        self._stop_timeout = stop_timeout
        self._name_prefix = name_prefix
        self._output = output
        self._input_pump = input_pump
        self._seq = itertools.count(1)
        self._lock = asyncio.Lock()
        self._current: ContainerHandle | None = None
        self._closed = False

    @property
    def current(self) -> ContainerHandle | None:
        return self._current

    @property
    def closed(self) -> bool:
        return self._closed

    def _next_name(self) -> str:
        return f"{self._name_prefix}-{os.getpid()}-{next(self._seq)}"

    # ------------------------------------------------------------------
    # Primitive operations
    # ------------------------------------------------------------------

    async def start(self, spec: RunSpec | None = None, *, attached: bool = False) -> ContainerHandle:
        """Create and start an instance. Raises StartFailure.

        With ``attached`` the engine attaches before starting (one-shot
        runs, where a short-lived instance could otherwise exit before an
        attach lands) and the I/O copy tasks are spawned here.

        The ``_current`` slot is written as soon as the name is chosen, so a
        shutdown waiting on the lock can remove a half-created instance by
        name. Only call this while holding the lock, or when nothing else
        owns the slot (one-shot runs).
        """
        spec = spec or self.spec
        for mount in spec.mounts:
            if not Path(mount.source).exists():
                logger.warning(
                    "Bind source not found. The container may exit if it requires it.",
                    path=mount.source,
                    target=mount.target,
                )

        handle = ContainerHandle(name=self._next_name())
        self._current = handle
        try:
            handle.container_id = await self._engine.create(spec, handle.name)
        except EngineError as exc:
            raise StartFailure(f"container create error: {exc}") from exc
        if self._closed:
            # Shutdown is waiting on the lock and will remove it by name.
            return handle
        try:
            if attached:
                proc = await self._engine.start_attached(handle.ref, stdin=spec.interactive)
                self._forward(handle, proc, spec.interactive)
            else:
                await self._engine.start(handle.ref)
        except EngineError as exc:
            raise StartFailure(f"container start error: {exc}") from exc
        logger.info("Started container", container=handle.name, id=handle.ref[:12])
        return handle

    async def attach(self, handle: ContainerHandle, interactive: bool) -> None:
        """Attach output (and input when interactive). Raises AttachFailure.

        Spawns the copy tasks and returns immediately; they run until their
        streams close.
        """
        try:
            proc = await self._engine.attach(handle.ref, stdin=interactive)
        except EngineError as exc:
            raise AttachFailure(f"container attach error: {exc}") from exc
        self._forward(handle, proc, interactive)

    def _forward(
        self,
        handle: ContainerHandle,
        proc: asyncio.subprocess.Process,
        interactive: bool,
    ) -> None:
        handle.attach_process = proc
        handle.attached = True
        output = self._output or sys.stdout.buffer
        if proc.stdout is not None:
            create_background_task(
                copy_output(proc.stdout, output, container=handle.name),
                name=f"output-{handle.name}",
            )
        if interactive and proc.stdin is not None:
            pump = self._input_pump or get_input_pump()
            create_background_task(
                copy_input(pump, proc.stdin, container=handle.name),
                name=f"input-{handle.name}",
            )

    async def stop(self, handle: ContainerHandle) -> None:
        """Stop with a grace period, then force-remove. Never raises.

        Idempotent: on an already-removed handle the engine errors are
        logged and nothing else happens.
        """
        logger.info("Stopping container", container=handle.name)
        try:
            await self._engine.stop(handle.ref, timeout=self._stop_timeout)
        except EngineError as exc:
            logger.error("Error stopping container", container=handle.name, err=str(exc))
        try:
            await self._engine.remove(handle.ref, force=True)
        except EngineError as exc:
            logger.error("Error removing container", container=handle.name, err=str(exc))
        handle.retired = True
        handle.attached = False

    # ------------------------------------------------------------------
    # Lifecycle transitions (serialized)
    # ------------------------------------------------------------------

    async def _start_and_attach(self, *, attach_first: bool = False) -> ContainerHandle:
        if attach_first:
            return await self.start(attached=True)
        handle = await self.start()
        if self._closed:
            return handle
        try:
            await self.attach(handle, self.spec.interactive)
        except AttachFailure as exc:
            # Keep the instance running unattached; only its output is lost.
            logger.error("Error attaching to container", container=handle.name, err=str(exc))
        return handle

    async def launch(self, *, attach_first: bool = False) -> ContainerHandle:
        """Initial start + attach. StartFailure propagates (fatal at startup)."""
        async with self._lock:
            if self._closed:
                raise StartFailure("supervisor is shut down")
            try:
                return await self._start_and_attach(attach_first=attach_first)
            except StartFailure:
                await self._discard_current()
                raise

    async def restart(self) -> ContainerHandle | None:
        """Retire the current instance and launch a replacement from the same RunSpec.

        Returns the new handle, or None if the start failed (reported) or
        shutdown preempted the cycle.
        """
        async with self._lock:
            if self._closed:
                return None
            old = self._current
            if old is not None:
                await self.stop(old)
                self._current = None
            if self._closed:
                return None
            try:
                return await self._start_and_attach()
            except StartFailure as exc:
                logger.error("Error restarting container", err=str(exc))
                await self._discard_current()
                return None

    async def shutdown(self) -> None:
        """Final teardown: no instance is left running afterwards."""
        self._closed = True
        async with self._lock:
            handle = self._current
            self._current = None
            if handle is not None and not handle.retired:
                await self.stop(handle)

    async def _discard_current(self) -> None:
        """Remove whatever a failed start left behind, so the slot ends empty."""
        handle = self._current
        self._current = None
        if handle is None:
            return
        try:
            await self._engine.remove(handle.ref, force=True)
        except EngineError as exc:
            logger.debug("Cleanup after failed start", container=handle.name, err=str(exc))
