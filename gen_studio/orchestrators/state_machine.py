"""Generation lifecycle state machine.

Pure transitions and poll decisions shared by the in-process
``PollDriver`` and the Durable Functions orchestrator.  Nothing here
touches a clock, a scheduler, or a backend; the adapters feed in status
results and act on the returned ``PollDecision``.

Lifecycle::

    PENDING  --SUBMITTED_SYNC-->     DONE_SUCCESS
    PENDING  --SUBMITTED_ASYNC-->    POLLING
    PENDING  --SUBMISSION_FAILED-->  DONE_ERROR
    POLLING  --STILL_RUNNING-->      POLLING       (attempt < MAX)
    POLLING  --ATTEMPTS_EXHAUSTED--> DONE_TIMEOUT  (attempt == MAX)
    POLLING  --SUCCEEDED-->          DONE_SUCCESS
    POLLING  --BACKEND_FAILED-->     DONE_ERROR
    POLLING  --TRANSPORT_FAILED-->   DONE_ERROR
    PENDING | POLLING --CANCEL-->    CANCELLED

A transport failure while polling is terminal: there is no retry of a
failed status check, only of a not-done one.
"""

from __future__ import annotations

import enum
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gen_studio.core.constants import INITIAL_POLL_INTERVAL_MS, MAX_POLL_ATTEMPTS
from gen_studio.core.error_messages import ErrorKind
from gen_studio.core.exceptions import ContractError
from gen_studio.models.generation import Artifact, StatusResult, UsageMetrics
from gen_studio.models.outcome import GenerationState
from gen_studio.orchestrators.backoff import next_delay

if TYPE_CHECKING:
    from collections.abc import Callable


class PollEvent(enum.Enum):
    """Inputs that move a generation between states."""

    SUBMITTED_SYNC = "submitted_sync"
    SUBMITTED_ASYNC = "submitted_async"
    SUBMISSION_FAILED = "submission_failed"
    STILL_RUNNING = "still_running"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"
    SUCCEEDED = "succeeded"
    BACKEND_FAILED = "backend_failed"
    TRANSPORT_FAILED = "transport_failed"
    CANCEL = "cancel"


_S = GenerationState
_E = PollEvent

_TRANSITIONS: dict[tuple[GenerationState, PollEvent], GenerationState] = {
    (_S.PENDING, _E.SUBMITTED_SYNC): _S.DONE_SUCCESS,
    (_S.PENDING, _E.SUBMITTED_ASYNC): _S.POLLING,
    (_S.PENDING, _E.SUBMISSION_FAILED): _S.DONE_ERROR,
    (_S.PENDING, _E.CANCEL): _S.CANCELLED,
    (_S.POLLING, _E.STILL_RUNNING): _S.POLLING,
    (_S.POLLING, _E.ATTEMPTS_EXHAUSTED): _S.DONE_TIMEOUT,
    (_S.POLLING, _E.SUCCEEDED): _S.DONE_SUCCESS,
    (_S.POLLING, _E.BACKEND_FAILED): _S.DONE_ERROR,
    (_S.POLLING, _E.TRANSPORT_FAILED): _S.DONE_ERROR,
    (_S.POLLING, _E.CANCEL): _S.CANCELLED,
}


class InvalidTransitionError(ContractError):
    """Raised when an event is applied to a state that does not accept it."""

    default_stage = "state_machine"
    default_code = "INVALID_TRANSITION"

    def __init__(self, state: GenerationState, event: PollEvent) -> None:
        self.state = state
        self.event = event
        super().__init__(f"Event {event.value!r} is not valid in state {state.value!r}")


def transition(state: GenerationState, event: PollEvent) -> GenerationState:
    """Return the state reached by applying *event* to *state*.

    Raises:
        InvalidTransitionError: If the pair is not in the transition table.
    """
    target = _TRANSITIONS.get((state, event))
    if target is None:
        raise InvalidTransitionError(state, event)
    return target


# ---------------------------------------------------------------------------
# Poll decisions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PollAttemptState:
    """Attempt counter and backoff interval of one poll loop.

    Attributes:
        attempt_count: Not-done responses seen so far.
        current_interval_ms: Interval the next backoff step starts from.
    """

    attempt_count: int = 0
    current_interval_ms: float = INITIAL_POLL_INTERVAL_MS


@dataclass(frozen=True, slots=True)
class PollDecision:
    """What a poll loop should do next.

    ``delay_ms`` is set only when ``state`` is ``POLLING``.  Terminal
    error decisions carry the ``error_kind`` and the raw error text; the
    user-facing message is derived later by the reconciler.
    """

    state: GenerationState
    attempts: PollAttemptState
    delay_ms: float | None = None
    artifacts: tuple[Artifact, ...] = ()
    usage: UsageMetrics = field(default_factory=UsageMetrics)
    error_kind: ErrorKind | None = None
    error: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


def begin_polling(
    *,
    rand: Callable[[], float] = random.random,
) -> PollDecision:
    """Decision for a freshly submitted long-running job.

    Resets the attempt counter and schedules the first status check
    after one backoff step from the initial interval.
    """
    state = transition(GenerationState.PENDING, PollEvent.SUBMITTED_ASYNC)
    step = next_delay(INITIAL_POLL_INTERVAL_MS, rand=rand)
    return PollDecision(
        state=state,
        attempts=PollAttemptState(0, step.next_interval_ms),
        delay_ms=step.delay_ms,
    )


def decide_after_status(
    attempts: PollAttemptState,
    status: StatusResult,
    *,
    rand: Callable[[], float] = random.random,
    max_attempts: int = MAX_POLL_ATTEMPTS,
) -> PollDecision:
    """Decide the next step after a status check returned *status*."""
    if status.done:
        if status.error:
            return PollDecision(
                state=transition(GenerationState.POLLING, PollEvent.BACKEND_FAILED),
                attempts=attempts,
                usage=status.usage,
                error_kind=ErrorKind.BACKEND,
                error=status.error,
            )
        if not status.artifacts:
            return PollDecision(
                state=transition(GenerationState.POLLING, PollEvent.BACKEND_FAILED),
                attempts=attempts,
                usage=status.usage,
                error_kind=ErrorKind.EMPTY_RESULT,
            )
        return PollDecision(
            state=transition(GenerationState.POLLING, PollEvent.SUCCEEDED),
            attempts=attempts,
            artifacts=status.artifacts,
            usage=status.usage,
        )

    counted = PollAttemptState(attempts.attempt_count + 1, attempts.current_interval_ms)
    if counted.attempt_count >= max_attempts:
        return PollDecision(
            state=transition(GenerationState.POLLING, PollEvent.ATTEMPTS_EXHAUSTED),
            attempts=counted,
            error_kind=ErrorKind.TIMEOUT,
        )

    step = next_delay(counted.current_interval_ms, rand=rand)
    return PollDecision(
        state=transition(GenerationState.POLLING, PollEvent.STILL_RUNNING),
        attempts=PollAttemptState(counted.attempt_count, step.next_interval_ms),
        delay_ms=step.delay_ms,
    )


def decide_after_transport_error(
    attempts: PollAttemptState,
    error: BaseException | str,
) -> PollDecision:
    """Decide the next step after the status check itself failed."""
    return PollDecision(
        state=transition(GenerationState.POLLING, PollEvent.TRANSPORT_FAILED),
        attempts=attempts,
        error_kind=ErrorKind.TRANSPORT,
        error=str(error),
    )
