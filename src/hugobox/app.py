"""Orchestrator: wires engine, supervisor, detector, coordinator and signals.

``run_server`` is the live-preview loop: start the site container, attach
to it, then restart it whenever the watched tree changes until a
termination signal arrives. ``run_once`` starts a single instance,
streams its output and returns its exit status; it never touches the
restart machinery.

Both return the process exit status: 0 on clean termination, 1 on a
fatal startup error (engine unreachable, first start failed, watch root
unusable), or the instance's own status for one-shot runs.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

from watchdog.observers import Observer

from hugobox.config import Settings
from hugobox.coordinator import RestartCoordinator
from hugobox.detector import ChangeDetector, WatchSetupFailure
from hugobox.engine import DockerEngine, EngineError
from hugobox.logger import logger
from hugobox.paths import host_path
from hugobox.runtime import ContainerRuntime, EngineUnavailable
from hugobox.supervisor import ContainerSupervisor, StartFailure
from hugobox.termination import TerminationHandler
from hugobox.types import BindMount, RunSpec

# Grace on top of the stop timeout before the termination watchdog force-exits.
_WATCHDOG_SLACK = 5.0


def build_run_spec(
    settings: Settings,
    command: Sequence[str],
    *,
    interactive: bool,
    entrypoint: str | None = None,
) -> RunSpec:
    """Resolve configuration into the immutable RunSpec every start reuses."""
    mounts = (
        BindMount(host_path(str(settings.watch_root)), settings.site.workdir_target),
        BindMount(host_path(str(settings.site_config_path)), settings.site.config_target),
    )
    return RunSpec(
        image=settings.docker_image,
        command=tuple(command),
        interactive=interactive,
        mounts=mounts,
        host_port=settings.host_port,
        container_port=settings.container_port,
        host_ip=settings.engine.host_ip,
        tty=settings.site.tty,
        entrypoint=entrypoint,
    )


async def check_engine(runtime: ContainerRuntime) -> bool:
    try:
        await asyncio.to_thread(runtime.ensure_running)
    except EngineUnavailable as exc:
        logger.error("Container engine unavailable", err=str(exc))
        return False
    return True


def _make_supervisor(settings: Settings, engine: DockerEngine, spec: RunSpec) -> ContainerSupervisor:
    return ContainerSupervisor(
        engine,
        spec,
        stop_timeout=settings.reload.stop_timeout,
        name_prefix=settings.engine.name_prefix,
    )


async def run_server(
    settings: Settings,
    *,
    runtime: ContainerRuntime | None = None,
    engine: DockerEngine | None = None,
    supervisor: ContainerSupervisor | None = None,
    observer_factory: Callable[[], Any] = Observer,
    handle_signals: bool = True,
) -> int:
    runtime = runtime or ContainerRuntime(settings.engine.cli)
    if not await check_engine(runtime):
        return 1

    engine = engine or DockerEngine(runtime.cli)
    if supervisor is None:
        spec = build_run_spec(settings, settings.site.server_args, interactive=True)
        supervisor = _make_supervisor(settings, engine, spec)

    cancel = asyncio.Event()
    termination = TerminationHandler(
        supervisor,
        cancel,
        watchdog_seconds=settings.reload.stop_timeout + _WATCHDOG_SLACK,
    )
    if handle_signals:
        termination.install()
    try:
        try:
            await supervisor.launch()
        except StartFailure as exc:
            if termination.triggered:
                await termination.finished.wait()
                return 0
            logger.error("Error starting container", err=str(exc))
            return 1

        if termination.triggered:
            await termination.finished.wait()
            return 0

        detector = ChangeDetector(
            settings.watch_root,
            loop=asyncio.get_running_loop(),
            fingerprint_content=settings.reload.fingerprint_content,
            observer_factory=observer_factory,
        )
        try:
            await detector.start()
        except WatchSetupFailure as exc:
            logger.error("Error creating file watcher", err=str(exc))
            await supervisor.shutdown()
            return 1

        coordinator = RestartCoordinator(
            detector.events,
            detector.errors,
            supervisor.restart,
            window=settings.reload.debounce_seconds,
        )
        try:
            await coordinator.run(cancel)
        finally:
            detector.close()

        if termination.triggered:
            await termination.finished.wait()
        else:
            # Watcher stream closed on its own; don't leave the site running.
            await supervisor.shutdown()
        return 0
    finally:
        if handle_signals:
            termination.uninstall()


async def run_once(
    settings: Settings,
    command: Sequence[str],
    *,
    interactive: bool = False,
    entrypoint: str | None = None,
    runtime: ContainerRuntime | None = None,
    engine: DockerEngine | None = None,
    handle_signals: bool = True,
) -> int:
    """Run one instance to completion and return its exit status."""
    runtime = runtime or ContainerRuntime(settings.engine.cli)
    if not await check_engine(runtime):
        return 1

    engine = engine or DockerEngine(runtime.cli)
    spec = build_run_spec(settings, command, interactive=interactive, entrypoint=entrypoint)
    supervisor = _make_supervisor(settings, engine, spec)

    cancel = asyncio.Event()
    termination = TerminationHandler(
        supervisor,
        cancel,
        watchdog_seconds=settings.reload.stop_timeout + _WATCHDOG_SLACK,
    )
    if handle_signals:
        termination.install()
    try:
        try:
            handle = await supervisor.launch(attach_first=True)
        except StartFailure as exc:
            if termination.triggered:
                await termination.finished.wait()
                return 0
            logger.error("Error starting container", err=str(exc))
            return 1

        # `docker start --attach` exits with the instance's status (or non-zero
        # if the start itself failed). `docker wait` is only a fallback: it
        # returns at once for an instance that has not started yet.
        proc = handle.attach_process
        if proc is not None:
            code = await proc.wait()
        else:
            try:
                code = await engine.wait(handle.ref)
            except EngineError as exc:
                logger.error("Error waiting for container", container=handle.name, err=str(exc))
                code = 1

        if termination.triggered:
            await termination.finished.wait()
            return 0

        await supervisor.shutdown()
        logger.info("Container exited", container=handle.name, code=code)
        return code
    finally:
        if handle_signals:
            termination.uninstall()
