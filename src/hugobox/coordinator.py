"""Restart coordinator: debounce file changes into container restarts.

The debounce state is an explicit tagged variant:

    Idle               --change-->  Pending(now + window)
    Pending(_)         --change-->  Pending(now + window)   (deadline reset)
    Pending(deadline)  --deadline-> Idle, one restart requested

The run loop waits on whichever comes first of {next change event, next
watcher error, cancellation} with a timeout only while Pending, so Idle
blocks without polling.

Restarts run on a separate worker task so the loop keeps draining events
while one is in flight; those events re-arm the timer and lead to exactly
one more restart after the current one finishes. Requests coalesce: the
worker never runs two cycles for one deadline, and never two at once.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from hugobox.logger import logger
from hugobox.types import ChangeEvent


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Pending:
    deadline: float


DebounceState = Idle | Pending

IDLE = Idle()


def on_change(state: DebounceState, now: float, window: float) -> DebounceState:
    """Any reload-worthy change (re)arms the deadline ``window`` from now."""
    return Pending(now + window)


def on_tick(state: DebounceState, now: float) -> tuple[DebounceState, bool]:
    """Advance time. Returns the new state and whether a restart is due."""
    if isinstance(state, Pending) and now >= state.deadline:
        return IDLE, True
    return state, False


def advance(
    state: DebounceState, now: float, window: float, changed: bool
) -> tuple[DebounceState, bool]:
    """One loop wake-up: an expired deadline fires before a new change re-arms it."""
    state, fired = on_tick(state, now)
    if changed:
        state = on_change(state, now, window)
    return state, fired


def wait_timeout(state: DebounceState, now: float) -> float | None:
    """How long the loop may block. None means wait indefinitely."""
    if isinstance(state, Pending):
        return max(0.0, state.deadline - now)
    return None


RestartFn = Callable[[], Awaitable[Any]]


class RestartCoordinator:
    def __init__(
        self,
        events: asyncio.Queue[ChangeEvent | None],
        errors: asyncio.Queue[Exception],
        restart: RestartFn,
        *,
        window: float = 2.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._events = events
        self._errors = errors
        self._restart = restart
        self._window = window
        self._clock = clock
        self.state: DebounceState = IDLE
        self.restarts_requested = 0
        self.restarts_completed = 0
        self._restart_due = asyncio.Event()
        self._worker_idle = asyncio.Event()
        self._worker_idle.set()
        self._worker: asyncio.Task[None] | None = None

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    @property
    def restart_in_flight(self) -> bool:
        return not self._worker_idle.is_set()

    async def run(self, cancel: asyncio.Event) -> None:
        """Consume events until *cancel* is set or the event stream closes."""
        self._worker = asyncio.create_task(self._restart_worker(), name="restart-worker")
        next_event: asyncio.Task[ChangeEvent | None] | None = None
        next_error: asyncio.Task[Exception] | None = None
        cancelled = asyncio.create_task(cancel.wait(), name="cancel-wait")
        try:
            while True:
                if next_event is None:
                    next_event = asyncio.create_task(self._events.get())
                if next_error is None:
                    next_error = asyncio.create_task(self._errors.get())

                done, _ = await asyncio.wait(
                    {next_event, next_error, cancelled},
                    timeout=wait_timeout(self.state, self._now()),
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if cancelled in done:
                    logger.debug("Restart coordinator cancelled")
                    return

                if next_error in done:
                    exc = next_error.result()
                    next_error = None
                    logger.error("Watcher error", err=str(exc))

                changed = False
                if next_event in done:
                    event = next_event.result()
                    next_event = None
                    if event is None:
                        logger.debug("Watcher event stream closed")
                        return
                    changed = True

                self.state, fired = advance(self.state, self._now(), self._window, changed)
                if fired:
                    self._request_restart()
        finally:
            for task in (next_event, next_error, cancelled):
                if task is not None:
                    task.cancel()
            await self._stop_worker()

    def _request_restart(self) -> None:
        self.restarts_requested += 1
        logger.info("Restarting container due to file changes")
        self._restart_due.set()

    async def _restart_worker(self) -> None:
        while True:
            await self._restart_due.wait()
            self._restart_due.clear()
            self._worker_idle.clear()
            try:
                await self._restart()
            except Exception:
                logger.exception("Restart cycle failed")
            finally:
                self.restarts_completed += 1
                self._worker_idle.set()

    async def _stop_worker(self) -> None:
        """Drop queued requests, let an in-flight cycle finish, then stop the worker.

        An in-flight cycle is never cancelled mid engine call; the supervisor
        cuts it short between calls once it has been shut down.
        """
        worker = self._worker
        if worker is None:
            return
        self._restart_due.clear()
        await self._worker_idle.wait()
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker
        self._worker = None
