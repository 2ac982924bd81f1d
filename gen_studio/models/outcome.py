"""Terminal outcome of one generation.

``TerminalOutcome`` is the single value handed from whichever path ends
a generation (synchronous image result, poll loop terminal state,
submission failure) to the ``OutcomeReconciler`` and, on success, to
the ``HistoryRecorder``.  Carrying the request snapshot and both start
clocks lets duration and cost be derived the same way on every path.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from gen_studio.core.error_messages import ErrorKind
from gen_studio.models.generation import (
    Artifact,
    GenerationRequest,
    OperationHandle,
    UsageMetrics,
)
from gen_studio.utils.helpers import parse_timestamp

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime


class GenerationState(enum.Enum):
    """Lifecycle state of one generation."""

    PENDING = "pending"
    POLLING = "polling"
    DONE_SUCCESS = "done_success"
    DONE_ERROR = "done_error"
    DONE_TIMEOUT = "done_timeout"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (GenerationState.PENDING, GenerationState.POLLING)


@dataclass(frozen=True, slots=True)
class TerminalOutcome:
    """How a generation ended.

    Attributes:
        operation_id: Backend job token (video) or a per-submission id (image).
        request: Snapshot of the submitted request.
        started_at: UTC wall clock start.
        started_monotonic: Monotonic clock start, in seconds.
        state: One of the terminal ``GenerationState`` values.
        artifacts: Generated outputs (success only).
        usage: Usage figures reported by the backend.
        error_kind: Origin of the error (error and timeout only).
        error: Raw error text, before user-facing rewriting.
        attempts: Not-done status responses seen by the poll loop.
    """

    operation_id: str
    request: GenerationRequest
    started_at: datetime
    started_monotonic: float
    state: GenerationState
    artifacts: tuple[Artifact, ...] = ()
    usage: UsageMetrics = field(default_factory=UsageMetrics)
    error_kind: ErrorKind | None = None
    error: str = ""
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state is GenerationState.DONE_SUCCESS

    @classmethod
    def for_handle(
        cls,
        handle: OperationHandle,
        state: GenerationState,
        **kwargs: Any,
    ) -> TerminalOutcome:
        return cls(
            operation_id=handle.job_token,
            request=handle.request,
            started_at=handle.started_at,
            started_monotonic=handle.started_monotonic,
            state=state,
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "request": self.request.to_dict(),
            "started_at": self.started_at.isoformat(),
            "state": self.state.value,
            "artifacts": [a.to_dict() for a in self.artifacts],
            "usage": self.usage.to_dict(),
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TerminalOutcome:
        """Rebuild an outcome from ``to_dict`` output.

        The monotonic start is process-local and is not transported;
        callers on the far side of a serialisation boundary supply the
        measured duration explicitly.
        """
        kind = data.get("error_kind")
        return cls(
            operation_id=str(data.get("operation_id", "")),
            request=GenerationRequest.from_dict(data.get("request") or {}),
            started_at=parse_timestamp(str(data.get("started_at", ""))),
            started_monotonic=0.0,
            state=GenerationState(str(data.get("state", ""))),
            artifacts=tuple(Artifact.from_dict(a) for a in data.get("artifacts") or []),
            usage=UsageMetrics.from_dict(data.get("usage")),
            error_kind=ErrorKind(kind) if kind else None,
            error=str(data.get("error") or ""),
            attempts=int(data.get("attempts", 0)),
        )
