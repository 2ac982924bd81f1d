"""Studio configuration loaded from environment variables.

All configuration values have sensible defaults for local development.
Azure Functions app settings (or ``local.settings.json`` for local dev)
are the source of truth.

Fail-fast validation:
    ``from_env()`` raises ``ConfigValidationError`` if any numeric
    value is out of its valid range or an enumerated value is unknown.
    This catches bad configuration at startup instead of mid-generation.

The polling cadence is deliberately absent: it lives in
``gen_studio.core.constants`` and is not configurable.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from gen_studio.core.constants import (
    COST_CURRENCY,
    DEFAULT_HISTORY_CONTAINER,
    DEFAULT_HISTORY_DIR,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_OUTPUT_CONTAINER,
)
from gen_studio.core.exceptions import StudioError

HISTORY_BACKENDS = frozenset({"local", "blob"})


class ConfigValidationError(StudioError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        message: Human-readable description of the valid range.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        self.message = message
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class StudioConfig:
    """Immutable studio configuration.

    Loaded once per function invocation and threaded through the
    backend, history recorder, and storage adapters.

    Attributes:
        generation_backend: Active generation backend (registry key).
        gcp_project_id: Google Cloud project hosting the Vertex AI models.
        gcp_location: Vertex AI region.
        vertex_access_token: OAuth bearer token for Vertex AI. Never logged.
        output_container: Blob container for generated artifacts.
        history_backend: ``"local"`` (filesystem) or ``"blob"``.
        history_dir: Root directory for the local history backend.
        history_container: Blob container for the blob history backend.
        history_limit: Number of most recent records returned by a load.
        signed_url_ttl_minutes: Lifetime of signed artifact display URLs.
        cost_currency: Currency code attached to cost estimates.
        http_timeout_s: Timeout for backend HTTP calls, in seconds.
    """

    generation_backend: str = "vertex_ai"
    gcp_project_id: str = ""
    gcp_location: str = "us-central1"
    vertex_access_token: str = ""
    output_container: str = DEFAULT_OUTPUT_CONTAINER
    history_backend: str = "local"
    history_dir: str = DEFAULT_HISTORY_DIR
    history_container: str = DEFAULT_HISTORY_CONTAINER
    history_limit: int = DEFAULT_HISTORY_LIMIT
    signed_url_ttl_minutes: int = 60
    cost_currency: str = COST_CURRENCY
    http_timeout_s: float = 60.0

    def __repr__(self) -> str:
        token = "***" if self.vertex_access_token else ""
        return (
            f"StudioConfig(generation_backend={self.generation_backend!r}, "
            f"gcp_project_id={self.gcp_project_id!r}, gcp_location={self.gcp_location!r}, "
            f"vertex_access_token={token!r}, output_container={self.output_container!r}, "
            f"history_backend={self.history_backend!r}, history_limit={self.history_limit})"
        )

    @classmethod
    def from_env(cls) -> StudioConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ConfigValidationError: If a numeric value is out of range
                or a required string value is empty.
            ValueError: If a numeric environment variable cannot be
                parsed (e.g. ``HISTORY_LIMIT=abc``).
        """
        config = cls(
            generation_backend=os.getenv("GENERATION_BACKEND", "vertex_ai"),
            gcp_project_id=os.getenv("GCP_PROJECT_ID", ""),
            gcp_location=os.getenv("GCP_LOCATION", "us-central1"),
            vertex_access_token=os.getenv("VERTEX_ACCESS_TOKEN", ""),
            output_container=os.getenv("OUTPUT_CONTAINER", DEFAULT_OUTPUT_CONTAINER),
            history_backend=os.getenv("HISTORY_BACKEND", "local"),
            history_dir=os.getenv("HISTORY_DIR", DEFAULT_HISTORY_DIR),
            history_container=os.getenv("HISTORY_CONTAINER", DEFAULT_HISTORY_CONTAINER),
            history_limit=int(os.getenv("HISTORY_LIMIT", str(DEFAULT_HISTORY_LIMIT))),
            signed_url_ttl_minutes=int(os.getenv("SIGNED_URL_TTL_MINUTES", "60")),
            cost_currency=os.getenv("COST_CURRENCY", COST_CURRENCY),
            http_timeout_s=float(os.getenv("HTTP_TIMEOUT_SECONDS", "60")),
        )
        _validate(config)
        return config


def _validate(config: StudioConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    if not config.generation_backend:
        raise ConfigValidationError(
            "GENERATION_BACKEND",
            config.generation_backend,
            "must not be empty",
        )

    if config.history_backend not in HISTORY_BACKENDS:
        raise ConfigValidationError(
            "HISTORY_BACKEND",
            config.history_backend,
            f"must be one of {', '.join(sorted(HISTORY_BACKENDS))}",
        )

    if config.history_limit <= 0:
        raise ConfigValidationError(
            "HISTORY_LIMIT",
            config.history_limit,
            "must be > 0 (records)",
        )

    if config.signed_url_ttl_minutes <= 0:
        raise ConfigValidationError(
            "SIGNED_URL_TTL_MINUTES",
            config.signed_url_ttl_minutes,
            "must be > 0 (minutes)",
        )

    if config.http_timeout_s <= 0:
        raise ConfigValidationError(
            "HTTP_TIMEOUT_SECONDS",
            config.http_timeout_s,
            "must be > 0 (seconds)",
        )

    if not config.output_container:
        raise ConfigValidationError(
            "OUTPUT_CONTAINER",
            config.output_container,
            "must not be empty",
        )

    if config.history_backend == "blob" and not config.history_container:
        raise ConfigValidationError(
            "HISTORY_CONTAINER",
            config.history_container,
            "must not be empty when HISTORY_BACKEND=blob",
        )

    if not config.cost_currency:
        raise ConfigValidationError(
            "COST_CURRENCY",
            config.cost_currency,
            "must not be empty",
        )
