"""Outcome Reconciler — apply a terminal outcome to the view exactly once.

Whichever path ends a generation (synchronous image result, poll loop
terminal state, submission failure) hands its ``TerminalOutcome`` here.
``reconcile`` then, in order:

1. clears the loading state;
2. on success, stores the artifacts on the view;
3. on success, records history once through the ``HistoryRecorder``;
4. on error or timeout, surfaces one user-facing message through the
   view's single error channel.

Reconciliation is idempotent per ``operation_id``: a second call for an
operation already reconciled is a logged no-op, so a duplicated terminal
delivery can neither double-record history nor flip the view.
History failures are logged and never reverse a visible success.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gen_studio.core.constants import MODEL_LABELS
from gen_studio.core.error_messages import ErrorKind, to_user_message
from gen_studio.models.outcome import GenerationState, TerminalOutcome

if TYPE_CHECKING:
    from collections.abc import Mapping

    from gen_studio.activities.record_history import HistoryRecorder, RecordResult
    from gen_studio.models.generation import Artifact

logger = logging.getLogger("gen_studio.orchestrators.reconciler")


@dataclass(slots=True)
class GenerationViewState:
    """What the user sees for the current generation.

    ``error_message`` is the single error channel: every user-facing
    failure is written there and nowhere else.
    """

    is_loading: bool = False
    error_message: str = ""
    artifacts: list[Artifact] = field(default_factory=list)
    expected_count: int = 0

    def begin(self, expected_count: int) -> None:
        self.is_loading = True
        self.error_message = ""
        self.artifacts = []
        self.expected_count = expected_count

    def surface_error(self, message: str) -> None:
        self.error_message = message


class OutcomeReconciler:
    """Apply terminal outcomes to a ``GenerationViewState``.

    Args:
        view: View state updated by each reconciliation.
        recorder: History recorder; ``None`` disables recording.
        model_labels: Model id to display label, for error rewriting.
    """

    def __init__(
        self,
        view: GenerationViewState,
        *,
        recorder: HistoryRecorder | None = None,
        model_labels: Mapping[str, str] | None = None,
    ) -> None:
        self._view = view
        self._recorder = recorder
        self._model_labels = MODEL_LABELS if model_labels is None else model_labels
        self._reconciled: set[str] = set()

    @property
    def view(self) -> GenerationViewState:
        return self._view

    def is_reconciled(self, operation_id: str) -> bool:
        return operation_id in self._reconciled

    async def reconcile(self, outcome: TerminalOutcome) -> RecordResult | None:
        """Apply *outcome* once. Returns the history result on success."""
        if outcome.operation_id in self._reconciled:
            logger.info(
                "outcome already reconciled | operation=%s | state=%s",
                outcome.operation_id,
                outcome.state.value,
            )
            return None
        self._reconciled.add(outcome.operation_id)

        self._view.is_loading = False

        if outcome.state is GenerationState.DONE_SUCCESS:
            self._view.artifacts = list(outcome.artifacts)
            logger.info(
                "generation succeeded | operation=%s | artifacts=%d",
                outcome.operation_id,
                len(outcome.artifacts),
            )
            return await self._record(outcome)

        if outcome.state is GenerationState.CANCELLED:
            logger.info("generation cancelled | operation=%s", outcome.operation_id)
            return None

        message = to_user_message(
            outcome.error_kind or ErrorKind.BACKEND,
            outcome.error,
            attempts=outcome.attempts,
            model_labels=self._model_labels,
        )
        self._view.surface_error(message)
        logger.warning(
            "generation failed | operation=%s | state=%s | kind=%s | error=%s",
            outcome.operation_id,
            outcome.state.value,
            outcome.error_kind.value if outcome.error_kind else "",
            outcome.error,
        )
        return None

    async def _record(self, outcome: TerminalOutcome) -> RecordResult | None:
        if self._recorder is None:
            return None
        try:
            return await self._recorder.record(outcome)
        except Exception:
            logger.exception("history recording raised | operation=%s", outcome.operation_id)
            return None
