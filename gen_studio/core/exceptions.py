"""Studio exception taxonomy.

Every error raised by the orchestrators, activities, backends, and
storage adapters derives from ``StudioError``.  Each carries the stage
and machine-readable code where it originated plus a ``retryable``
flag, so callers decide retry, user messaging, and HTTP status from the
exception alone.

Categories are class level:

====================  ===========  =========  ===========
class                 category     retryable  HTTP status
====================  ===========  =========  ===========
``ValidationError``   validation   no         400
``ContractError``     contract     no         400
``TransientError``    transient    yes        503
``PermanentError``    permanent    no         502
====================  ===========  =========  ===========

A bare ``StudioError`` (or a direct subclass such as ``ProviderError``)
reports ``transient`` or ``permanent`` from its ``retryable`` flag.
"""

from __future__ import annotations


class StudioError(Exception):
    """Base exception for all studio-domain errors.

    Attributes:
        message: Human-readable error description.
        stage: Where the error occurred (``"check_status"``, ``"ingress"``).
        code: Machine-readable error code (``"SUBMISSION_FAILED"``).
        retryable: Whether retrying the same call may succeed.
        correlation_id: Orchestration instance or request identifier.
    """

    default_stage: str = ""
    default_code: str = ""
    default_retryable: bool = False
    #: Fixed category for the category base classes; ``None`` derives it.
    category_name: str | None = None
    http_status: int = 500

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool | None = None,
        correlation_id: str = "",
    ) -> None:
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        self.retryable = self.default_retryable if retryable is None else retryable
        self.correlation_id = correlation_id
        super().__init__(message)

    @property
    def category(self) -> str:
        if self.category_name:
            return self.category_name
        return "transient" if self.retryable else "permanent"

    def to_error_dict(self) -> dict[str, object]:
        """Structured payload with stable keys for custom status and logs."""
        return {
            "category": self.category,
            "code": self.code,
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
            "correlation_id": self.correlation_id,
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(StudioError):
    """Rejected input: a form field, query parameter, or model invariant."""

    category_name = "validation"
    http_status = 400


class ContractError(StudioError):
    """Malformed payload passed between stages or over HTTP."""

    category_name = "contract"
    http_status = 400


class TransientError(StudioError):
    """Temporary failure that may succeed on retry."""

    category_name = "transient"
    default_retryable = True
    http_status = 503


class PermanentError(StudioError):
    """The backend refused or failed the work; retrying will not help."""

    category_name = "permanent"
    http_status = 502
