"""Submit generation activity — hand a request to the generation backend.

Wraps backend failures into ``SubmissionError`` whose message is already
the user-facing text (``"Error: "`` prefixes stripped, model-not-found
rewritten); the raw backend text stays available as ``raw_message``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gen_studio.core.error_messages import ErrorKind, to_user_message
from gen_studio.core.exceptions import ContractError, PermanentError
from gen_studio.models.generation import GenerationType, SubmittedJob, SyncResult
from gen_studio.providers.base import ProviderError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from gen_studio.models.generation import GenerationRequest
    from gen_studio.providers.base import GenerationBackend

logger = logging.getLogger("gen_studio.activities.submit_generation")


class SubmissionError(PermanentError):
    """Raised when the backend rejects a generation request.

    Attributes:
        message: User-facing error text.
        raw_message: Backend error text before rewriting.
    """

    default_stage = "submit_generation"
    default_code = "SUBMISSION_FAILED"

    def __init__(self, message: str, *, raw_message: str = "", retryable: bool = False) -> None:
        self.raw_message = raw_message or message
        super().__init__(message, retryable=retryable)


async def submit_generation(
    backend: GenerationBackend,
    request: GenerationRequest,
    *,
    model_labels: Mapping[str, str] | None = None,
) -> SyncResult | SubmittedJob:
    """Submit *request* and check the result matches its generation type.

    Returns:
        ``SyncResult`` for images, ``SubmittedJob`` for videos.

    Raises:
        SubmissionError: If the backend rejects the request.
        ContractError: If the backend returns the wrong result shape.
    """
    logger.info(
        "submit_generation started | backend=%s | type=%s | model=%s",
        backend.name,
        request.generation_type.value,
        request.model,
    )

    try:
        result = await backend.submit_generation(request)
    except ProviderError as exc:
        logger.warning(
            "submit_generation rejected | backend=%s | model=%s | error=%s",
            backend.name,
            request.model,
            exc.message,
        )
        raise SubmissionError(
            to_user_message(ErrorKind.SUBMISSION, exc.message, model_labels=model_labels),
            raw_message=exc.message,
            retryable=exc.retryable,
        ) from exc

    expected = SubmittedJob if request.generation_type is GenerationType.VIDEO else SyncResult
    if not isinstance(result, expected):
        msg = (
            f"submit_generation: backend {backend.name!r} returned {type(result).__name__} "
            f"for a {request.generation_type.value} request"
        )
        raise ContractError(msg, stage="submit_generation", code="UNEXPECTED_RESULT")

    if isinstance(result, SubmittedJob):
        logger.info("submit_generation accepted | job=%s", result.job_token)
    else:
        logger.info("submit_generation completed | artifacts=%d", len(result.artifacts))
    return result
