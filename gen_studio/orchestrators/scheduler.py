"""Timer adapter for the in-process poll loop.

The ``PollDriver`` never sleeps; it asks a ``Scheduler`` to run a
coroutine callback after a delay and keeps the returned
``ScheduledCall`` so it can cancel the pending timer.  Production uses
``AsyncioScheduler``; tests substitute a manual scheduler and fire
timers explicitly.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger("gen_studio.orchestrators.scheduler")


class ScheduledCall(Protocol):
    """Handle to a pending timer."""

    def cancel(self) -> None:
        """Cancel the timer. A no-op once the callback has started."""


class Scheduler(Protocol):
    """Runs a coroutine callback after a delay."""

    def call_later(
        self,
        delay_s: float,
        callback: Callable[[], Awaitable[None]],
    ) -> ScheduledCall: ...


class _AsyncioCall:
    __slots__ = ("_handle", "task")

    def __init__(self) -> None:
        self._handle: asyncio.TimerHandle | None = None
        self.task: asyncio.Task[None] | None = None

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()


class AsyncioScheduler:
    """``Scheduler`` backed by the running asyncio event loop.

    Fired callbacks run as tasks; the scheduler keeps a strong reference
    to each task until it finishes.  Cancelling a call only cancels its
    pending timer; a callback already running is left to complete.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[None]] = set()

    def call_later(
        self,
        delay_s: float,
        callback: Callable[[], Awaitable[None]],
    ) -> ScheduledCall:
        loop = self._loop or asyncio.get_running_loop()
        call = _AsyncioCall()

        def _fire() -> None:
            task = loop.create_task(_run(callback))
            call.task = task
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        call._handle = loop.call_later(max(0.0, delay_s), _fire)  # noqa: SLF001
        return call

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)


async def _run(callback: Callable[[], Awaitable[None]]) -> None:
    try:
        await callback()
    except Exception:
        logger.exception("Scheduled callback failed")
        raise
