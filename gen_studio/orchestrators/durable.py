"""Durable Functions orchestrator for long-running (video) generations.

Receives a ``GenerationOrchestrationInput`` from the HTTP starter (the
backend has already accepted the job) and drives the same pure poll
decisions as the in-process ``PollDriver``:

1. Wait one backoff delay (``context.create_timer``, zero compute cost)
2. ``check_status`` activity
3. Decide: keep polling / succeed / fail / time out
4. On success, ``record_history`` activity exactly once

Replay safety:
    Backoff jitter comes from ``random.Random(instance_id)`` so every
    replay computes the same delays, and durations use
    ``context.current_utc_datetime``.  Log statements are guarded by
    ``context.is_replaying``.

Cancellation is orchestration termination (HTTP DELETE on the status
endpoint); a terminated instance never reaches ``record_history``.
"""

from __future__ import annotations

import logging
import random
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from gen_studio.core.constants import MAX_POLL_ATTEMPTS, MODEL_LABELS
from gen_studio.core.error_messages import to_user_message
from gen_studio.core.ingress import deserialize_activity_input
from gen_studio.models.generation import GenerationRequest, StatusResult
from gen_studio.models.outcome import GenerationState, TerminalOutcome
from gen_studio.models.payloads import (
    GenerationOrchestrationInput,
    GenerationOutcomeDict,
    validate_payload,
)
from gen_studio.orchestrators.state_machine import (
    begin_polling,
    decide_after_status,
    decide_after_transport_error,
)
from gen_studio.utils.helpers import parse_timestamp

if TYPE_CHECKING:
    from collections.abc import Generator

    import azure.durable_functions as df

logger = logging.getLogger("gen_studio.orchestrators.durable")


def generation_orchestrator(
    context: df.DurableOrchestrationContext,
) -> Generator[Any, Any, GenerationOutcomeDict]:
    """Generation orchestrator entry point.

    Input (via ``context.get_input``):
        A ``GenerationOrchestrationInput`` dict.

    Returns:
        A ``GenerationOutcomeDict`` describing the terminal outcome.
    """
    payload = deserialize_activity_input(context.get_input())
    validate_payload(payload, GenerationOrchestrationInput, activity="generation_orchestrator")
    return (yield from poll_generation(context, payload))


def poll_generation(
    context: df.DurableOrchestrationContext,
    payload: dict[str, Any],
    *,
    max_attempts: int = MAX_POLL_ATTEMPTS,
) -> Generator[Any, Any, GenerationOutcomeDict]:
    """Poll a submitted job to a terminal state and record success.

    Args:
        context: Durable orchestration context.
        payload: Validated ``GenerationOrchestrationInput``.
        max_attempts: Not-done responses tolerated before timing out.

    Yields:
        Durable timers and activity calls.
    """
    instance_id = context.instance_id
    job_token = str(payload["job_token"])
    request_dict: dict[str, Any] = payload["request"]
    started_at = parse_timestamp(str(payload["started_at"]))
    rng = random.Random(instance_id)  # noqa: S311

    decision = begin_polling(rand=rng.random)
    context.set_custom_status({"state": decision.state.value, "attempts": 0})
    polls = 0

    while not decision.is_terminal:
        fire_at = context.current_utc_datetime + timedelta(milliseconds=decision.delay_ms or 0.0)
        yield context.create_timer(fire_at)

        polls += 1
        try:
            raw_status = yield context.call_activity(
                "check_status",
                {"job_token": job_token, "request": request_dict},
            )
        except Exception as exc:
            decision = decide_after_transport_error(decision.attempts, exc)
            if not context.is_replaying:
                logger.warning(
                    "Status check failed | instance=%s | job=%s | poll=%d | error=%s",
                    instance_id,
                    job_token,
                    polls,
                    exc,
                )
            break

        status = StatusResult.from_dict(raw_status if isinstance(raw_status, dict) else {})
        decision = decide_after_status(
            decision.attempts,
            status,
            rand=rng.random,
            max_attempts=max_attempts,
        )

        if not context.is_replaying:
            logger.info(
                "Poll result | instance=%s | job=%s | poll=%d | done=%s | state=%s | attempts=%d",
                instance_id,
                job_token,
                polls,
                status.done,
                decision.state.value,
                decision.attempts.attempt_count,
            )
        if not decision.is_terminal:
            context.set_custom_status(
                {"state": decision.state.value, "attempts": decision.attempts.attempt_count}
            )

    ended_at = context.current_utc_datetime
    elapsed_ms = max(0.0, (ended_at - started_at).total_seconds() * 1000.0)

    outcome = TerminalOutcome(
        operation_id=job_token,
        request=GenerationRequest.from_dict(request_dict),
        started_at=started_at,
        started_monotonic=0.0,
        state=decision.state,
        artifacts=decision.artifacts,
        usage=decision.usage,
        error_kind=decision.error_kind,
        error=decision.error,
        attempts=decision.attempts.attempt_count,
    )

    result: GenerationOutcomeDict = {
        "operation_id": job_token,
        "state": outcome.state.value,
        "artifacts": [a.to_dict() for a in outcome.artifacts],
        "error": "",
        "attempts": outcome.attempts,
        "elapsed_ms": elapsed_ms,
    }

    if outcome.state is GenerationState.DONE_SUCCESS:
        try:
            record = yield context.call_activity(
                "record_history",
                {
                    "outcome": outcome.to_dict(),
                    "ended_at": ended_at.isoformat(),
                    "execution_time_ms": elapsed_ms,
                },
            )
        except Exception as exc:
            if not context.is_replaying:
                logger.error(
                    "History recording failed | instance=%s | job=%s | error=%s",
                    instance_id,
                    job_token,
                    exc,
                )
        else:
            if isinstance(record, dict) and record.get("record_id"):
                result["record_id"] = str(record["record_id"])
    elif outcome.error_kind is not None:
        result["error"] = to_user_message(
            outcome.error_kind,
            outcome.error,
            attempts=outcome.attempts,
            model_labels=MODEL_LABELS,
        )

    if not context.is_replaying:
        logger.info(
            "Generation finished | instance=%s | job=%s | state=%s | polls=%d | elapsed_ms=%.0f",
            instance_id,
            job_token,
            outcome.state.value,
            polls,
            elapsed_ms,
        )
    return result
