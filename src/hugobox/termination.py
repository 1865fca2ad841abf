"""Termination handling: SIGINT/SIGTERM always win over restarts.

The first signal cancels the coordinator loop and tears the current
container down through the supervisor; the caller then exits 0. A second
signal, or a teardown that hangs past the watchdog, force-exits with 1.
"""

from __future__ import annotations

import asyncio
import os
import signal
import threading
from collections.abc import Callable

from hugobox.logger import logger
from hugobox.supervisor import ContainerSupervisor
from hugobox.utils import create_background_task

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class TerminationHandler:
    def __init__(
        self,
        supervisor: ContainerSupervisor,
        cancel: asyncio.Event,
        *,
        watchdog_seconds: float = 15.0,
        force_exit: Callable[[int], object] = os._exit,
    ) -> None:
        self._supervisor = supervisor
        self._cancel = cancel
        self._watchdog_seconds = watchdog_seconds
        self._force_exit = force_exit
        self._triggered = False
        self.finished = asyncio.Event()

    @property
    def triggered(self) -> bool:
        return self._triggered

    def install(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in _SIGNALS:
            loop.add_signal_handler(
                sig,
                lambda s=sig: create_background_task(self.terminate(s.name), name="terminate"),
            )

    def uninstall(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in _SIGNALS:
            loop.remove_signal_handler(sig)

    async def terminate(self, reason: str) -> None:
        """Stop and remove the current container. Second call force-exits."""
        if self._triggered:
            logger.info("Force shutdown")
            self._force_exit(1)
            return
        self._triggered = True
        logger.info("Received shutdown signal. Stopping container.", signal=reason)

        # Hard-exit watchdog: if teardown hangs, don't leave the terminal stuck.
        watchdog = threading.Timer(self._watchdog_seconds, lambda: self._force_exit(1))
        watchdog.daemon = True
        watchdog.start()

        self._cancel.set()
        try:
            await self._supervisor.shutdown()
        finally:
            watchdog.cancel()
            self.finished.set()
