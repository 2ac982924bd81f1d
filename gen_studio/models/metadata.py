"""Pydantic generation metadata record.

Defines the JSON document persisted once per successful generation.
This is the "flight recorder" for each generation: what was requested,
what was produced, how long it took, and what it cost.

The persisted shape uses camelCase keys and omits absent optional
fields::

    {id, timestamp, type, model, prompt, negativePrompt?, operationId?,
     parameters, outputs: [{artifactRef, format, width?, height?, duration?}],
     performance: {tokensUsed?, inputTokens?, outputTokens?, totalTokens?,
                   executionTimeMs?, startTime, endTime},
     cost?: {estimatedCost, currency}}

Readers stay lenient: every performance/cost sub-field is optional and
legacy outputs carrying ``gcsUri`` instead of ``artifactRef`` still load.

Engineering standards:
- Idempotent and deterministic: the same operation yields the same id
- Append-only: records are never mutated after persistence
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator


def filter_parameters(parameters: dict[str, Any] | None) -> dict[str, Any]:
    """Drop empty-string and ``None`` values; keep ``0`` and ``False``."""
    if not parameters:
        return {}
    return {k: v for k, v in parameters.items() if v is not None and v != ""}


class OutputEntry(BaseModel):
    """One generated artifact in a metadata record.

    Attributes:
        artifact_ref: Storage reference ``"<container>/<path>"``.
        format: File format (``"png"``, ``"mp4"``).
        width: Pixel width, when known.
        height: Pixel height, when known.
        duration: Video duration in seconds, when known.
    """

    artifact_ref: str = Field(
        validation_alias=AliasChoices("artifactRef", "gcsUri", "artifact_ref"),
        serialization_alias="artifactRef",
    )
    format: str = ""
    width: int | None = None
    height: int | None = None
    duration: float | None = None

    model_config = {"populate_by_name": True}


class PerformanceMetrics(BaseModel):
    """Timing and token usage for one generation.

    Token fields are only present when the backend reported them.
    """

    tokens_used: int | None = Field(default=None, alias="tokensUsed")
    input_tokens: int | None = Field(default=None, alias="inputTokens")
    output_tokens: int | None = Field(default=None, alias="outputTokens")
    total_tokens: int | None = Field(default=None, alias="totalTokens")
    execution_time_ms: float | None = Field(default=None, alias="executionTimeMs")
    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str | None = Field(default=None, alias="endTime")

    model_config = {"populate_by_name": True}


class CostEstimate(BaseModel):
    """Estimated cost of one generation."""

    estimated_cost: float | None = Field(default=None, alias="estimatedCost")
    currency: str | None = None

    model_config = {"populate_by_name": True}


class GenerationMetadataRecord(BaseModel):
    """Top-level history record for one successful generation.

    Attributes:
        id: Unique, deterministic per operation
            (``"{type}_{start_epoch_ms}_{suffix}"``).
        timestamp: Completion time (ISO 8601, UTC).
        type: ``"image"`` or ``"video"``.
        model: Model that produced the outputs.
        prompt: Prompt sent to the backend.
        negative_prompt: Negative prompt, when one was given.
        operation_id: Backend operation name (long-running only).
        parameters: Generation parameters, empty values filtered out.
        outputs: Generated artifacts.
        performance: Timing and token usage.
        cost: Cost estimate, only when token counts were available.
    """

    id: str
    timestamp: str
    type: Literal["image", "video"]
    model: str
    prompt: str
    negative_prompt: str | None = Field(default=None, alias="negativePrompt")
    operation_id: str | None = Field(default=None, alias="operationId")
    parameters: dict[str, Any] = Field(default_factory=dict)
    outputs: list[OutputEntry] = Field(default_factory=list)
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    cost: CostEstimate | None = None

    model_config = {"populate_by_name": True}

    @field_validator("parameters", mode="before")
    @classmethod
    def _filter_parameters(cls, value: object) -> dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            msg = f"parameters must be an object, got {type(value).__name__}"
            raise ValueError(msg)
        return filter_parameters(value)

    def to_json(self, *, indent: int = 2) -> str:
        """Serialise to a JSON string with camelCase keys."""
        return self.model_dump_json(indent=indent, by_alias=True, exclude_none=True)

    def to_dict(self) -> dict[str, object]:
        """Serialise to a plain dict (for Durable Functions transport)."""
        return self.model_dump(by_alias=True, exclude_none=True)  # type: ignore[return-value]
