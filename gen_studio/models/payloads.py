"""Typed payload schemas for Durable Functions activity contracts.

Every activity in the generation orchestration receives and returns a
JSON-serialisable dict.  These ``TypedDict`` definitions make the
contracts explicit so that pyright catches key mismatches at analysis
time and ``validate_payload`` catches them at runtime.

Usage::

    from gen_studio.models.payloads import CheckStatusInput, validate_payload

    def check_status_activity(raw: dict) -> ...:
        validate_payload(raw, CheckStatusInput, activity="check_status")
"""

from __future__ import annotations

from typing import Any, NotRequired, TypedDict

from gen_studio.core.exceptions import ContractError

# ---------------------------------------------------------------------------
# Orchestration input
# ---------------------------------------------------------------------------


class GenerationOrchestrationInput(TypedDict):
    """HTTP starter → ``generation_orchestrator``.

    ``request`` is ``GenerationRequest.to_dict()``; ``started_at`` is
    the ISO 8601 wall clock time the backend accepted the job.
    """

    job_token: str
    request: dict[str, Any]
    started_at: str
    correlation_id: NotRequired[str]


# ---------------------------------------------------------------------------
# Status check
# ---------------------------------------------------------------------------


class CheckStatusInput(TypedDict):
    """Orchestrator → ``check_status`` activity."""

    job_token: str
    request: dict[str, Any]


class CheckStatusOutput(TypedDict):
    """``check_status`` activity → Orchestrator (``StatusResult.to_dict()``)."""

    done: bool
    artifacts: list[dict[str, Any]]
    error: str | None
    usage: dict[str, Any]


# ---------------------------------------------------------------------------
# History recording
# ---------------------------------------------------------------------------


class RecordHistoryInput(TypedDict):
    """Orchestrator → ``record_history`` activity.

    ``outcome`` is ``TerminalOutcome.to_dict()``.  ``execution_time_ms``
    is measured on the orchestration clock, which is replay-safe.
    """

    outcome: dict[str, Any]
    ended_at: str
    execution_time_ms: float


class RecordHistoryOutput(TypedDict):
    """``record_history`` activity → Orchestrator."""

    record_id: str
    success: bool
    duplicate: bool
    error: NotRequired[str]


# ---------------------------------------------------------------------------
# Orchestration output
# ---------------------------------------------------------------------------


class GenerationOutcomeDict(TypedDict):
    """``generation_orchestrator`` → custom status / HTTP status query."""

    operation_id: str
    state: str
    artifacts: list[dict[str, Any]]
    error: str
    attempts: int
    elapsed_ms: float
    record_id: NotRequired[str]


# ---------------------------------------------------------------------------
# Required-key registry
# ---------------------------------------------------------------------------

_REQUIRED_KEYS: dict[type, frozenset[str]] = {
    GenerationOrchestrationInput: frozenset({"job_token", "request", "started_at"}),
    CheckStatusInput: frozenset({"job_token", "request"}),
    RecordHistoryInput: frozenset({"outcome", "ended_at", "execution_time_ms"}),
}


# ---------------------------------------------------------------------------
# Runtime validation
# ---------------------------------------------------------------------------


def validate_payload(
    raw: dict[str, Any],
    schema: type,
    *,
    activity: str,
) -> None:
    """Validate that *raw* contains the required keys for *schema*.

    Raises:
        ContractError: If required keys are missing from the payload.
    """
    required = _REQUIRED_KEYS.get(schema)
    if required is None:
        return

    missing = required - raw.keys()
    if missing:
        msg = f"{activity}: missing required payload key(s): {', '.join(sorted(missing))}"
        raise ContractError(msg, stage=activity, code="PAYLOAD_MISSING_KEYS")
