"""Check status activity — one status check of a long-running generation.

Called by the poll loops (in-process ``PollDriver`` and the durable
orchestrator).  Queries the backend for the job's current status and
returns a ``StatusResult`` the loop uses to decide whether to keep
polling, succeed, or fail.

A failed status check is raised as ``StatusCheckError``; the poll loops
treat it as terminal.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from gen_studio.core.exceptions import StudioError
from gen_studio.models.generation import GenerationRequest
from gen_studio.models.payloads import CheckStatusInput, CheckStatusOutput, validate_payload
from gen_studio.providers.base import ProviderError

if TYPE_CHECKING:
    from gen_studio.models.generation import StatusResult
    from gen_studio.providers.base import GenerationBackend

logger = logging.getLogger("gen_studio.activities.check_status")


class StatusCheckError(StudioError):
    """Raised when a status check fails.

    Attributes:
        message: Backend error text.
        job_token: The job being checked.
        retryable: Whether the failure looked transient.
    """

    default_stage = "check_status"
    default_code = "STATUS_CHECK_FAILED"

    def __init__(self, message: str, *, job_token: str = "", retryable: bool = False) -> None:
        self.job_token = job_token
        super().__init__(message, retryable=retryable)


async def check_status(
    backend: GenerationBackend,
    job_token: str,
    request: GenerationRequest,
) -> StatusResult:
    """Check *job_token* once.

    Raises:
        StatusCheckError: If the job token is empty or the check fails.
    """
    if not job_token:
        msg = "check_status: job_token is missing"
        raise StatusCheckError(msg)

    logger.info("check_status started | job=%s | backend=%s", job_token, backend.name)

    try:
        status = await backend.check_status(job_token, request)
    except ProviderError as exc:
        raise StatusCheckError(exc.message, job_token=job_token, retryable=exc.retryable) from exc

    logger.info(
        "check_status completed | job=%s | done=%s | artifacts=%d | error=%s",
        job_token,
        status.done,
        len(status.artifacts),
        bool(status.error),
    )
    return status


async def check_status_activity(
    payload: dict[str, Any],
    *,
    backend: GenerationBackend,
) -> CheckStatusOutput:
    """Durable activity: run ``check_status`` for a ``CheckStatusInput`` dict.

    Raises:
        ContractError: If required keys are missing.
        StatusCheckError: If the check fails.
    """
    validate_payload(payload, CheckStatusInput, activity="check_status")
    request = GenerationRequest.from_dict(payload["request"])
    status = await check_status(backend, str(payload["job_token"]), request)
    return status.to_dict()  # type: ignore[return-value]
