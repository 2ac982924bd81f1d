"""User-facing error text for generation failures.

Backend and transport errors are rewritten into a single human-readable
string before they reach the view's error channel:

- every ``"Error: "`` prefix is stripped (nested re-raises stack them);
- a Vertex AI *publisher model not found* error becomes an actionable
  access message naming the model's display label;
- poll failures, timeouts, and empty results get fixed templates.

All functions are pure so the same mapping is shared by the in-process
session and the durable orchestrator.
"""

from __future__ import annotations

import enum
import re
from typing import TYPE_CHECKING

from gen_studio.core.constants import MAX_POLL_ATTEMPTS, MODEL_LABELS

if TYPE_CHECKING:
    from collections.abc import Mapping

_ERROR_PREFIX = "Error: "

_MODEL_NOT_FOUND_RE = re.compile(
    r"Publisher Model `projects/[^/]+/locations/[^/]+/publishers/google/models/([^`]+)` not found\."
)

EMPTY_RESULT_MESSAGE = "Video generation finished, but no results were returned."


class ErrorKind(enum.Enum):
    """Origin of a terminal generation error.

    Values:
        SUBMISSION:   The backend rejected the generation request.
        BACKEND:      A long-running operation finished with an error.
        TRANSPORT:    The status check itself failed (network, 5xx, parse).
        TIMEOUT:      The poll attempt ceiling was reached.
        EMPTY_RESULT: The operation finished without artifacts or error.
    """

    SUBMISSION = "submission"
    BACKEND = "backend"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    EMPTY_RESULT = "empty_result"


def strip_error_prefix(message: str) -> str:
    """Remove every ``"Error: "`` occurrence from *message*."""
    return message.replace(_ERROR_PREFIX, "")


def rewrite_model_not_found(
    message: str,
    model_labels: Mapping[str, str] | None = None,
) -> str:
    """Rewrite a *publisher model not found* error into an access message.

    Messages that do not match are returned unchanged. Unknown model ids
    fall back to the raw id as the label.
    """
    match = _MODEL_NOT_FOUND_RE.search(message)
    if match is None:
        return message

    labels = MODEL_LABELS if model_labels is None else model_labels
    model_id = match.group(1)
    label = labels.get(model_id, model_id)
    return (
        f"You don't have access to the model '{label}', please select another one "
        f"in the top dropdown menu for now, and reach out to your IT Admin to "
        f"request access to '{label}'."
    )


def to_user_message(
    kind: ErrorKind,
    raw: str = "",
    *,
    attempts: int = MAX_POLL_ATTEMPTS,
    model_labels: Mapping[str, str] | None = None,
) -> str:
    """Map a terminal error to the message shown to the user.

    Args:
        kind: Where the error originated.
        raw: Raw error text from the backend or the raised exception.
        attempts: Attempt ceiling quoted by the timeout message.
        model_labels: Model id to display label table.
    """
    if kind is ErrorKind.TIMEOUT:
        return f"Video generation timed out after {attempts} attempts."
    if kind is ErrorKind.EMPTY_RESULT:
        return EMPTY_RESULT_MESSAGE
    if kind is ErrorKind.TRANSPORT:
        return f"Error checking video status: {strip_error_prefix(raw)}"
    return rewrite_model_not_found(strip_error_prefix(raw), model_labels)
