"""Typed models for the generation backend boundary.

Defines the data structures exchanged between the orchestrators and the
generation backend adapters:

- ``GenerationRequest``: Immutable snapshot of a submitted request
- ``ReferenceImage``: Input image attached to a request (edit, video frames)
- ``Artifact``: One generated output (image or video) in storage
- ``UsageMetrics``: Token / timing / cost figures reported by the backend
- ``SyncResult``: Immediate result of a synchronous (image) generation
- ``SubmittedJob``: Opaque job token of a long-running (video) generation
- ``StatusResult``: One status check of a long-running generation
- ``OperationHandle``: Tracking record for an in-flight long-running job

Design notes:
- All models are frozen dataclasses; request parameters are copied into
  a read-only mapping so the snapshot cannot drift after submission.
- ``to_dict`` / ``from_dict`` produce plain JSON-compatible dicts for
  Durable Functions activity payloads.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from gen_studio.core.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ModelValidationError(ValueError, ValidationError):
    """Raised when a domain model is constructed with invalid field values.

    Attributes:
        model: Name of the model class that failed validation.
        field_name: The field that violated the invariant.
        value: The invalid value.
    """

    default_stage = "model_validation"
    default_code = "MODEL_VALIDATION_FAILED"

    def __init__(self, model: str, field_name: str, value: object, message: str) -> None:
        self.model = model
        self.field_name = field_name
        self.value = value
        formatted = f"{model}.{field_name}={value!r}: {message}"
        ValidationError.__init__(self, formatted)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class GenerationType(enum.Enum):
    """Kind of media being generated.

    Values:
        IMAGE: Synchronous generation; artifacts return with the submit call.
        VIDEO: Long-running generation; artifacts arrive via status polling.
    """

    IMAGE = "image"
    VIDEO = "video"


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


REFERENCE_PURPOSES = frozenset({"edit", "first", "last"})


@dataclass(frozen=True, slots=True)
class ReferenceImage:
    """An input image sent with the prompt.

    Attributes:
        purpose: ``"edit"`` (image to edit), ``"first"`` or ``"last"``
            (video first and last frame).
        data: Base64-encoded bytes, without a ``data:`` URL prefix.
        mime_type: Image MIME type.
    """

    purpose: str
    data: str
    mime_type: str = "image/png"

    def __post_init__(self) -> None:
        if self.purpose not in REFERENCE_PURPOSES:
            raise ModelValidationError(
                "ReferenceImage", "purpose", self.purpose, "must be edit, first or last"
            )
        _check_non_empty("ReferenceImage", "data", self.data)

    def to_inline(self) -> dict[str, str]:
        """Vertex AI inline image: ``{bytesBase64Encoded, mimeType}``."""
        return {"bytesBase64Encoded": self.data, "mimeType": self.mime_type}

    def to_dict(self) -> dict[str, Any]:
        return {"purpose": self.purpose, "data": self.data, "mime_type": self.mime_type}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReferenceImage:
        return cls(
            purpose=str(data.get("purpose", "")),
            data=str(data.get("data", "")),
            mime_type=str(data.get("mime_type") or "image/png"),
        )


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """Immutable snapshot of a generation request.

    Attributes:
        generation_type: Image or video.
        model: Backend model id (e.g. ``"veo-3.1-generate-preview"``).
        prompt: Fully composed prompt sent to the backend.
        user_query: The prompt exactly as the user typed it.
        negative_prompt: Content to avoid (empty when unset).
        sample_count: Number of outputs requested (1-4).
        parameters: Generation parameters (aspect ratio, resolution, ...).
        reference_images: Input images (image to edit, video frames).
    """

    generation_type: GenerationType
    model: str
    prompt: str
    user_query: str = ""
    negative_prompt: str = ""
    sample_count: int = 1
    parameters: Mapping[str, Any] = field(default_factory=dict)
    reference_images: tuple[ReferenceImage, ...] = ()

    def __post_init__(self) -> None:
        _check_non_empty("GenerationRequest", "model", self.model)
        _check_non_empty("GenerationRequest", "prompt", self.prompt)
        _check_range("GenerationRequest", "sample_count", self.sample_count, 1, 4)
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))
        object.__setattr__(self, "reference_images", tuple(self.reference_images))

    @property
    def is_long_running(self) -> bool:
        return self.generation_type is GenerationType.VIDEO

    def reference(self, purpose: str) -> ReferenceImage | None:
        return next((r for r in self.reference_images if r.purpose == purpose), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generation_type": self.generation_type.value,
            "model": self.model,
            "prompt": self.prompt,
            "user_query": self.user_query,
            "negative_prompt": self.negative_prompt,
            "sample_count": self.sample_count,
            "parameters": dict(self.parameters),
            "reference_images": [r.to_dict() for r in self.reference_images],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GenerationRequest:
        try:
            generation_type = GenerationType(str(data.get("generation_type", "")))
        except ValueError as exc:
            raise ModelValidationError(
                "GenerationRequest",
                "generation_type",
                data.get("generation_type"),
                "must be 'image' or 'video'",
            ) from exc
        return cls(
            generation_type=generation_type,
            model=str(data.get("model", "")),
            prompt=str(data.get("prompt", "")),
            user_query=str(data.get("user_query", "")),
            negative_prompt=str(data.get("negative_prompt", "")),
            sample_count=int(data.get("sample_count", 1)),
            parameters=dict(data.get("parameters") or {}),
            reference_images=tuple(
                ReferenceImage.from_dict(r) for r in data.get("reference_images") or ()
            ),
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Artifact:
    """A generated output stored in blob storage.

    Attributes:
        artifact_ref: Storage reference ``"<container>/<path>"``.
        format: File format / extension (``"png"``, ``"mp4"``).
        width: Pixel width (``None`` when unknown).
        height: Pixel height (``None`` when unknown).
        duration_s: Video duration in seconds (``None`` for images).
        model_version: Model that produced the artifact, when reported.
    """

    artifact_ref: str
    format: str
    width: int | None = None
    height: int | None = None
    duration_s: float | None = None
    model_version: str = ""

    def __post_init__(self) -> None:
        _check_non_empty("Artifact", "artifact_ref", self.artifact_ref)

    def to_dict(self) -> dict[str, Any]:
        return {
            "artifact_ref": self.artifact_ref,
            "format": self.format,
            "width": self.width,
            "height": self.height,
            "duration_s": self.duration_s,
            "model_version": self.model_version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Artifact:
        return cls(
            artifact_ref=str(data.get("artifact_ref", "")),
            format=str(data.get("format", "")),
            width=_opt_int(data.get("width")),
            height=_opt_int(data.get("height")),
            duration_s=_opt_float(data.get("duration_s")),
            model_version=str(data.get("model_version", "")),
        )


@dataclass(frozen=True, slots=True)
class UsageMetrics:
    """Usage figures reported by the backend. Every field is optional."""

    tokens_used: int | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    execution_time_ms: float | None = None
    estimated_cost: float | None = None

    @property
    def has_tokens(self) -> bool:
        """True when at least one token count was reported."""
        return any(
            v is not None
            for v in (self.tokens_used, self.input_tokens, self.output_tokens, self.total_tokens)
        )

    @property
    def billable_tokens(self) -> int:
        """Best available total token count (0 when none was reported)."""
        if self.total_tokens is not None:
            return self.total_tokens
        if self.tokens_used is not None:
            return self.tokens_used
        return (self.input_tokens or 0) + (self.output_tokens or 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokens_used": self.tokens_used,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "execution_time_ms": self.execution_time_ms,
            "estimated_cost": self.estimated_cost,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> UsageMetrics:
        data = data or {}
        return cls(
            tokens_used=_opt_int(data.get("tokens_used")),
            input_tokens=_opt_int(data.get("input_tokens")),
            output_tokens=_opt_int(data.get("output_tokens")),
            total_tokens=_opt_int(data.get("total_tokens")),
            execution_time_ms=_opt_float(data.get("execution_time_ms")),
            estimated_cost=_opt_float(data.get("estimated_cost")),
        )


@dataclass(frozen=True, slots=True)
class SyncResult:
    """Result of a synchronous (image) generation."""

    artifacts: tuple[Artifact, ...]
    usage: UsageMetrics = field(default_factory=UsageMetrics)


@dataclass(frozen=True, slots=True)
class SubmittedJob:
    """Acknowledgement of a long-running (video) generation.

    Attributes:
        job_token: Opaque backend operation name used for status checks.
        prompt: Prompt as rewritten by the backend, when it rewrites.
    """

    job_token: str
    prompt: str = ""

    def __post_init__(self) -> None:
        _check_non_empty("SubmittedJob", "job_token", self.job_token)


@dataclass(frozen=True, slots=True)
class StatusResult:
    """One status check of a long-running generation.

    ``done=False`` means the job is still running. A done result carries
    either artifacts, an error message, or (anomalously) neither.
    """

    done: bool
    artifacts: tuple[Artifact, ...] = ()
    error: str | None = None
    usage: UsageMetrics = field(default_factory=UsageMetrics)

    @classmethod
    def pending(cls) -> StatusResult:
        return cls(done=False)

    @classmethod
    def succeeded(
        cls,
        artifacts: tuple[Artifact, ...] | list[Artifact],
        usage: UsageMetrics | None = None,
    ) -> StatusResult:
        return cls(done=True, artifacts=tuple(artifacts), usage=usage or UsageMetrics())

    @classmethod
    def failed(cls, error: str) -> StatusResult:
        return cls(done=True, error=error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "done": self.done,
            "artifacts": [a.to_dict() for a in self.artifacts],
            "error": self.error,
            "usage": self.usage.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StatusResult:
        error = data.get("error")
        return cls(
            done=bool(data.get("done", False)),
            artifacts=tuple(Artifact.from_dict(a) for a in data.get("artifacts") or []),
            error=str(error) if error else None,
            usage=UsageMetrics.from_dict(data.get("usage")),
        )


# ---------------------------------------------------------------------------
# Operation handle
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OperationHandle:
    """Tracking record for one in-flight long-running generation.

    Created when a long-running submission succeeds; discarded when the
    poll loop reaches a terminal state or is stopped.

    Attributes:
        job_token: Opaque backend operation name.
        request: Snapshot of the submitted request.
        started_at: UTC wall clock start, for display and records.
        started_monotonic: ``time.monotonic()`` at start, for durations.
    """

    job_token: str
    request: GenerationRequest
    started_at: datetime
    started_monotonic: float

    def __post_init__(self) -> None:
        _check_non_empty("OperationHandle", "job_token", self.job_token)

    def elapsed_ms(self, now_monotonic: float) -> float:
        """Elapsed milliseconds since submission on the monotonic clock."""
        return max(0.0, (now_monotonic - self.started_monotonic) * 1000.0)


# ---------------------------------------------------------------------------
# Backend configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BackendConfig:
    """Configuration for a specific generation backend.

    Attributes:
        name: Backend identifier (must match the backend registry key).
        project_id: Cloud project hosting the models.
        location: Region of the model endpoints.
        access_token: Bearer token for the backend API. Never logged.
        api_base_url: Endpoint override (empty for the regional default).
        output_container: Blob container receiving inline artifact bytes.
        timeout_s: HTTP timeout in seconds.
    """

    name: str
    project_id: str = ""
    location: str = "us-central1"
    access_token: str = field(default="", repr=False)
    api_base_url: str = ""
    output_container: str = ""
    timeout_s: float = 60.0

    def __post_init__(self) -> None:
        _check_non_empty("BackendConfig", "name", self.name)


# ---------------------------------------------------------------------------
# Validation helpers (module-private)
# ---------------------------------------------------------------------------


def _check_range(model: str, field_name: str, value: float, lo: float, hi: float) -> None:
    """Raise `ModelValidationError` if *value* falls outside [lo, hi]."""
    if value < lo or value > hi:
        raise ModelValidationError(model, field_name, value, f"must be between {lo} and {hi}")


def _check_non_empty(model: str, field_name: str, value: str) -> None:
    """Raise `ModelValidationError` if *value* is empty or whitespace."""
    if not value or not value.strip():
        raise ModelValidationError(model, field_name, value, "must not be empty")


def _opt_int(value: object) -> int | None:
    return None if value is None else int(value)  # type: ignore[call-overload]


def _opt_float(value: object) -> float | None:
    return None if value is None else float(value)  # type: ignore[arg-type]
