"""Generation session — the orchestrator facade for one user view.

Owns one ``GenerationViewState``, one ``PollDriver``, and one
``OutcomeReconciler``; no module-level state.  A submission flows:

    form -> build_generation_request -> view.begin -> stop prior loop
         -> submit_generation
         -> image: synchronous success -> reconcile
         -> video: OperationHandle -> PollDriver -> terminal -> reconcile

A newer submission supersedes an older one at every suspension point:
the prior poll loop is stopped before the new request is sent, and a
submission whose backend call returns after it was superseded (or
cancelled) is discarded.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from typing import TYPE_CHECKING, Any

from gen_studio.activities.build_request import build_generation_request
from gen_studio.activities.check_status import check_status
from gen_studio.activities.submit_generation import SubmissionError, submit_generation
from gen_studio.core.constants import MODEL_LABELS
from gen_studio.core.error_messages import ErrorKind
from gen_studio.core.exceptions import ValidationError
from gen_studio.models.generation import OperationHandle, SyncResult
from gen_studio.models.outcome import GenerationState, TerminalOutcome
from gen_studio.orchestrators.poll_driver import PollDriver
from gen_studio.orchestrators.reconciler import GenerationViewState, OutcomeReconciler
from gen_studio.orchestrators.scheduler import AsyncioScheduler
from gen_studio.orchestrators.state_machine import PollEvent, transition
from gen_studio.utils.helpers import utc_now

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from datetime import datetime

    from gen_studio.activities.record_history import HistoryRecorder
    from gen_studio.models.generation import GenerationRequest, StatusResult
    from gen_studio.orchestrators.scheduler import Scheduler
    from gen_studio.providers.base import GenerationBackend

logger = logging.getLogger("gen_studio.orchestrators.session")


class GenerationSession:
    """Submit generations and track them to a reconciled outcome.

    Args:
        backend: Generation backend adapter.
        recorder: History recorder (``None`` disables history).
        scheduler: Timer adapter for the poll loop.
        model_labels: Model id to display label, for error rewriting.
        rand: Uniform ``[0, 1)`` source for backoff jitter.
        clock: UTC wall clock.
        monotonic: Monotonic clock in seconds.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        *,
        recorder: HistoryRecorder | None = None,
        scheduler: Scheduler | None = None,
        model_labels: Mapping[str, str] | None = None,
        rand: Callable[[], float] = random.random,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._model_labels = MODEL_LABELS if model_labels is None else model_labels
        self._clock = clock
        self._monotonic = monotonic

        self.view = GenerationViewState()
        self._reconciler = OutcomeReconciler(
            self.view,
            recorder=recorder,
            model_labels=self._model_labels,
        )
        self._driver = PollDriver(
            self._check_status,
            scheduler=scheduler or AsyncioScheduler(),
            on_terminal=self._finish,
            rand=rand,
        )

        self._state = GenerationState.PENDING
        self._submission: object | None = None
        self._handle: OperationHandle | None = None
        self._done: asyncio.Future[TerminalOutcome | None] | None = None
        self._last_outcome: TerminalOutcome | None = None

    # ------------------------------------------------------------------
    # Read-only display state
    # ------------------------------------------------------------------

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def attempt_count(self) -> int:
        return self._driver.attempt_count

    @property
    def handle(self) -> OperationHandle | None:
        return self._handle

    @property
    def last_outcome(self) -> TerminalOutcome | None:
        return self._last_outcome

    def elapsed_ms(self) -> float:
        """Elapsed time of the in-flight long-running generation."""
        if self._handle is None or self._state is not GenerationState.POLLING:
            return 0.0
        return self._handle.elapsed_ms(self._monotonic())

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def submit(self, form: Mapping[str, Any]) -> GenerationRequest | None:
        """Submit a generation from posted form state.

        Returns the built request, or ``None`` when the form was invalid
        (the error is on ``view.error_message``).
        """
        self._supersede()

        try:
            request = build_generation_request(form)
        except ValidationError as exc:
            self.view.is_loading = False
            self.view.surface_error(exc.message)
            self._state = GenerationState.DONE_ERROR
            logger.info("submission rejected by validation | error=%s", exc.message)
            return None

        token = object()
        self._submission = token
        self._done = asyncio.get_running_loop().create_future()
        self.view.begin(request.sample_count)
        self._state = GenerationState.PENDING

        started_at = self._clock()
        started_monotonic = self._monotonic()

        try:
            result = await submit_generation(
                self._backend,
                request,
                model_labels=self._model_labels,
            )
        except SubmissionError as exc:
            if self._submission is not token:
                logger.info("superseded submission failure discarded | model=%s", request.model)
                return request
            await self._finish(
                TerminalOutcome(
                    operation_id=f"submit_{uuid.uuid4().hex}",
                    request=request,
                    started_at=started_at,
                    started_monotonic=started_monotonic,
                    state=transition(self._state, PollEvent.SUBMISSION_FAILED),
                    error_kind=ErrorKind.SUBMISSION,
                    error=exc.raw_message,
                )
            )
            return request

        if self._submission is not token:
            logger.info("superseded submission result discarded | model=%s", request.model)
            return request

        if isinstance(result, SyncResult):
            await self._finish(
                TerminalOutcome(
                    operation_id=f"sync_{uuid.uuid4().hex}",
                    request=request,
                    started_at=started_at,
                    started_monotonic=started_monotonic,
                    state=transition(self._state, PollEvent.SUBMITTED_SYNC),
                    artifacts=result.artifacts,
                    usage=result.usage,
                )
            )
            return request

        self._handle = OperationHandle(
            job_token=result.job_token,
            request=request,
            started_at=started_at,
            started_monotonic=started_monotonic,
        )
        self._state = transition(self._state, PollEvent.SUBMITTED_ASYNC)
        self._driver.start(self._handle)
        return request

    def cancel(self) -> None:
        """Stop tracking the current generation. Records no history."""
        if self._state.is_terminal:
            return
        self._driver.stop()
        self._submission = None
        self._state = transition(self._state, PollEvent.CANCEL)
        self.view.is_loading = False
        self._resolve(None)
        logger.info(
            "generation cancelled | job=%s",
            self._handle.job_token if self._handle else "",
        )

    async def wait(self) -> TerminalOutcome | None:
        """Wait for the current generation's terminal outcome.

        Returns ``None`` if it was cancelled or superseded.
        """
        if self._done is None:
            return self._last_outcome
        return await self._done

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _supersede(self) -> None:
        self._driver.stop()
        self._submission = None
        self._resolve(None)

    def _resolve(self, outcome: TerminalOutcome | None) -> None:
        _settle(self._done, outcome)

    async def _check_status(self, job_token: str, request: GenerationRequest) -> StatusResult:
        return await check_status(self._backend, job_token, request)

    async def _finish(self, outcome: TerminalOutcome) -> None:
        # Bound to this operation: a newer submit may replace _done while
        # the outcome is being recorded.
        done = self._done
        self._state = outcome.state
        self._last_outcome = outcome
        await self._reconciler.reconcile(outcome)
        _settle(done, outcome)


def _settle(
    future: asyncio.Future[TerminalOutcome | None] | None,
    outcome: TerminalOutcome | None,
) -> None:
    if future is not None and not future.done():
        future.set_result(outcome)
