"""Poll Driver — track one long-running generation to a terminal state.

Given an ``OperationHandle``, the driver repeatedly invokes the status
checker with backoff spacing until the backend reports done, the
attempt ceiling is reached, the status check fails, or the driver is
stopped.  Exactly one terminal callback is delivered per started loop,
and none for a stopped loop.

Single-flight:
    The driver owns at most one active loop.  ``start()`` stops the
    previous loop (cancelling its pending timer) before scheduling the
    new one.  Every poll re-checks loop identity after each suspension
    point, so a timer or in-flight response that belongs to a replaced
    or stopped loop is discarded instead of touching the new loop's
    attempt counter.

Suspension points are the scheduled delay and the awaited status check;
everything between them runs without interleaving.
"""

from __future__ import annotations

import inspect
import logging
import random
from typing import TYPE_CHECKING

from gen_studio.core.constants import MAX_POLL_ATTEMPTS
from gen_studio.models.outcome import TerminalOutcome
from gen_studio.orchestrators.state_machine import (
    PollAttemptState,
    PollDecision,
    begin_polling,
    decide_after_status,
    decide_after_transport_error,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from gen_studio.models.generation import GenerationRequest, OperationHandle, StatusResult
    from gen_studio.orchestrators.scheduler import ScheduledCall, Scheduler

    StatusChecker = Callable[[str, GenerationRequest], Awaitable[StatusResult]]
    TerminalCallback = Callable[[TerminalOutcome], Awaitable[None] | None]

logger = logging.getLogger("gen_studio.orchestrators.poll_driver")


class _PollLoop:
    """Mutable state of one started loop. Owned by the driver only."""

    __slots__ = ("attempts", "handle", "polls", "timer")

    def __init__(self, handle: OperationHandle, attempts: PollAttemptState) -> None:
        self.handle = handle
        self.attempts = attempts
        self.polls = 0
        self.timer: ScheduledCall | None = None


class PollDriver:
    """Single-flight backoff poll loop over a status checker.

    Args:
        status_checker: ``async (job_token, request) -> StatusResult``.
            Any exception it raises ends the loop with a transport error.
        scheduler: Timer adapter used for the backoff delays.
        on_terminal: Called once with the ``TerminalOutcome`` when a
            loop ends on its own (not when stopped).  May be async.
        rand: Uniform ``[0, 1)`` source for backoff jitter.
        max_attempts: Not-done responses tolerated before timing out.
    """

    def __init__(
        self,
        status_checker: StatusChecker,
        *,
        scheduler: Scheduler,
        on_terminal: TerminalCallback,
        rand: Callable[[], float] = random.random,
        max_attempts: int = MAX_POLL_ATTEMPTS,
    ) -> None:
        self._status_checker = status_checker
        self._scheduler = scheduler
        self._on_terminal = on_terminal
        self._rand = rand
        self._max_attempts = max_attempts
        self._loop: _PollLoop | None = None

    # ------------------------------------------------------------------
    # Read-only display state
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._loop is not None

    @property
    def attempt_count(self) -> int:
        return self._loop.attempts.attempt_count if self._loop else 0

    @property
    def handle(self) -> OperationHandle | None:
        return self._loop.handle if self._loop else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, handle: OperationHandle) -> None:
        """Stop any existing loop and start polling *handle*."""
        self.stop()

        decision = begin_polling(rand=self._rand)
        loop = _PollLoop(handle, decision.attempts)
        self._loop = loop

        logger.info(
            "poll loop started | job=%s | model=%s | first_delay_ms=%.0f",
            handle.job_token,
            handle.request.model,
            decision.delay_ms,
        )
        self._schedule(loop, decision)

    def stop(self) -> None:
        """Stop the active loop, if any. Safe to call at any time."""
        loop = self._loop
        if loop is None:
            return
        self._loop = None
        if loop.timer is not None:
            loop.timer.cancel()
            loop.timer = None
        logger.info(
            "poll loop stopped | job=%s | attempts=%d",
            loop.handle.job_token,
            loop.attempts.attempt_count,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _schedule(self, loop: _PollLoop, decision: PollDecision) -> None:
        delay_ms = decision.delay_ms or 0.0

        async def _fire() -> None:
            await self._poll(loop)

        loop.timer = self._scheduler.call_later(delay_ms / 1000.0, _fire)

    async def _poll(self, loop: _PollLoop) -> None:
        if self._loop is not loop:
            logger.debug("stale poll timer discarded | job=%s", loop.handle.job_token)
            return

        loop.timer = None
        loop.polls += 1
        job_token = loop.handle.job_token

        try:
            status = await self._status_checker(job_token, loop.handle.request)
        except Exception as exc:
            if self._loop is not loop:
                logger.debug("stale poll failure discarded | job=%s", job_token)
                return
            logger.warning(
                "poll failed | job=%s | poll=%d | error=%s",
                job_token,
                loop.polls,
                exc,
            )
            decision = decide_after_transport_error(loop.attempts, exc)
        else:
            if self._loop is not loop:
                logger.debug("stale poll result discarded | job=%s", job_token)
                return
            decision = decide_after_status(
                loop.attempts,
                status,
                rand=self._rand,
                max_attempts=self._max_attempts,
            )
            logger.info(
                "poll result | job=%s | poll=%d | done=%s | state=%s | attempts=%d",
                job_token,
                loop.polls,
                status.done,
                decision.state.value,
                decision.attempts.attempt_count,
            )

        loop.attempts = decision.attempts
        if not decision.is_terminal:
            self._schedule(loop, decision)
            return

        self._loop = None
        outcome = TerminalOutcome.for_handle(
            loop.handle,
            decision.state,
            artifacts=decision.artifacts,
            usage=decision.usage,
            error_kind=decision.error_kind,
            error=decision.error,
            attempts=decision.attempts.attempt_count,
        )
        logger.info(
            "poll loop finished | job=%s | state=%s | polls=%d",
            job_token,
            outcome.state.value,
            loop.polls,
        )
        result = self._on_terminal(outcome)
        if inspect.isawaitable(result):
            await result
