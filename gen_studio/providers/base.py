"""GenerationBackend abstract base class.

Defines the contract that every generation backend adapter must
implement.  The orchestrators interact exclusively with this interface.

Lifecycle:
    1. ``submit_generation(request)`` — images return a ``SyncResult``
       immediately; videos return a ``SubmittedJob`` job token.
    2. ``check_status(job_token, request)`` — one status check of a
       long-running job; returns a ``StatusResult``.
    3. ``aclose()`` — release HTTP resources.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

from gen_studio.core.exceptions import StudioError

if TYPE_CHECKING:
    from gen_studio.models.generation import (
        BackendConfig,
        GenerationRequest,
        StatusResult,
        SubmittedJob,
        SyncResult,
    )


class GenerationBackend(abc.ABC):
    """Abstract base class for generation backend adapters.

    Example usage::

        backend = get_backend("vertex_ai", config)
        result = await backend.submit_generation(request)
        if isinstance(result, SubmittedJob):
            status = await backend.check_status(result.job_token, request)
    """

    def __init__(self, config: BackendConfig) -> None:
        self._config = config

    @property
    def name(self) -> str:
        """Return the backend name from configuration."""
        return self._config.name

    @property
    def config(self) -> BackendConfig:
        """Return the backend configuration (read-only)."""
        return self._config

    # ------------------------------------------------------------------
    # Abstract methods: every adapter must implement these
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def submit_generation(self, request: GenerationRequest) -> SyncResult | SubmittedJob:
        """Submit *request* to the backend.

        Returns:
            ``SyncResult`` for synchronous (image) generations,
            ``SubmittedJob`` for long-running (video) generations.

        Raises:
            ProviderError: If the backend rejects the request.
        """

    @abc.abstractmethod
    async def check_status(self, job_token: str, request: GenerationRequest) -> StatusResult:
        """Check a long-running generation once.

        Raises:
            ProviderError: If the status check itself fails.
        """

    async def aclose(self) -> None:  # noqa: B027
        """Release resources held by the adapter."""


# ---------------------------------------------------------------------------
# Provider exceptions
# ---------------------------------------------------------------------------


class ProviderError(StudioError):
    """Base exception for backend adapter errors.

    Attributes:
        provider: Name of the backend that raised the error.
        message: Backend error text (already unwrapped from the response).
        retryable: Whether the caller may retry the operation.
    """

    default_stage = "provider"
    default_code = "PROVIDER_ERROR"

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        retryable: bool = False,
    ) -> None:
        self.provider = provider
        super().__init__(
            message,
            retryable=retryable,
            code=self.default_code,
            stage=self.default_stage,
        )

    def __str__(self) -> str:
        return f"[{self.provider}] {self.message}"


class ProviderAuthError(ProviderError):
    """Authentication or authorisation failure with the backend API."""

    default_code = "PROVIDER_AUTH_FAILED"

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(provider, message, retryable=False)


class ProviderSubmitError(ProviderError):
    """Error while submitting a generation."""

    default_code = "PROVIDER_SUBMIT_FAILED"


class ProviderStatusError(ProviderError):
    """Error while checking a long-running generation."""

    default_code = "PROVIDER_STATUS_FAILED"
