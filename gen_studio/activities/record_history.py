"""Record history activity — persist one successful generation.

Builds a ``GenerationMetadataRecord`` from a ``TerminalOutcome`` and
persists it through the configured ``HistoryStore``, then mirrors a
small sidecar JSON next to every artifact in blob storage.

Record semantics:
- ``id`` is ``"{type}_{start_epoch_ms}_{sha1(operation_id)[:7]}"``, so a
  retried recording of the same operation collides with the first write
  and is reported as a duplicate instead of creating a second record.
- ``parameters`` carries the request parameters plus ``userQuery`` and
  ``sampleCount``; empty strings and ``None`` are dropped.
- Token fields and ``cost`` appear only when the backend reported token
  counts.  Cost is the backend's figure when present, otherwise
  ``total_tokens / 1000 * COST_PER_1K_TOKENS``.
- ``executionTimeMs`` is the backend-reported value when present,
  otherwise the duration measured by the caller.

Persistence failures are logged and reported in the result; they never
raise into the caller, whose generation already succeeded.  Sidecar
mirroring is best-effort: failures are logged only.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from gen_studio.core.constants import COST_CURRENCY, COST_PER_1K_TOKENS
from gen_studio.core.exceptions import ContractError
from gen_studio.models.metadata import (
    CostEstimate,
    GenerationMetadataRecord,
    OutputEntry,
    PerformanceMetrics,
)
from gen_studio.models.outcome import GenerationState, TerminalOutcome
from gen_studio.models.payloads import RecordHistoryInput, RecordHistoryOutput, validate_payload
from gen_studio.utils.blob_paths import build_sidecar_path, parse_storage_ref
from gen_studio.utils.helpers import parse_timestamp, to_epoch_ms, utc_now

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from gen_studio.storage.blob_store import ArtifactBlobStore
    from gen_studio.storage.history_store import HistoryStore, PersistResult

logger = logging.getLogger("gen_studio.activities.record_history")


# ---------------------------------------------------------------------------
# Record construction
# ---------------------------------------------------------------------------


def build_record_id(generation_type: str, started_at: datetime, operation_id: str) -> str:
    """Deterministic record id for one operation."""
    suffix = hashlib.sha1(operation_id.encode("utf-8")).hexdigest()[:7]  # noqa: S324
    return f"{generation_type}_{to_epoch_ms(started_at)}_{suffix}"


def estimate_cost(total_tokens: int, reported: float | None = None) -> float:
    """Backend-reported cost, or the per-1K-token fallback estimate."""
    if reported is not None:
        return reported
    return round(total_tokens / 1000 * COST_PER_1K_TOKENS, 6)


def build_metadata_record(
    outcome: TerminalOutcome,
    *,
    ended_at: datetime,
    execution_time_ms: float,
    currency: str = COST_CURRENCY,
) -> GenerationMetadataRecord:
    """Build the history record for a successful outcome.

    Args:
        outcome: A ``DONE_SUCCESS`` terminal outcome.
        ended_at: Completion wall clock time (UTC).
        execution_time_ms: Duration measured by the caller; superseded
            by a backend-reported execution time.
        currency: Currency code for the cost estimate.

    Raises:
        ContractError: If *outcome* is not a success.
    """
    if not outcome.succeeded:
        msg = f"Cannot record history for outcome in state {outcome.state.value!r}"
        raise ContractError(msg, stage="record_history", code="OUTCOME_NOT_SUCCESS")

    request = outcome.request
    usage = outcome.usage
    generation_type = request.generation_type.value

    parameters: dict[str, Any] = {
        **request.parameters,
        "userQuery": request.user_query,
        "sampleCount": request.sample_count,
    }

    model = next((a.model_version for a in outcome.artifacts if a.model_version), request.model)

    performance = PerformanceMetrics(
        execution_time_ms=(
            usage.execution_time_ms if usage.execution_time_ms is not None else execution_time_ms
        ),
        start_time=outcome.started_at.isoformat(),
        end_time=ended_at.isoformat(),
    )
    cost = None
    if usage.has_tokens:
        performance = performance.model_copy(
            update={
                "tokens_used": usage.tokens_used
                if usage.tokens_used is not None
                else usage.billable_tokens,
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
                "total_tokens": usage.total_tokens,
            }
        )
        cost = CostEstimate(
            estimated_cost=estimate_cost(usage.billable_tokens, usage.estimated_cost),
            currency=currency,
        )

    return GenerationMetadataRecord(
        id=build_record_id(generation_type, outcome.started_at, outcome.operation_id),
        timestamp=ended_at.isoformat(),
        type=generation_type,  # type: ignore[arg-type]
        model=model,
        prompt=request.prompt,
        negative_prompt=request.negative_prompt or None,
        operation_id=outcome.operation_id if request.is_long_running else None,
        parameters=parameters,
        outputs=[
            OutputEntry(
                artifact_ref=a.artifact_ref,
                format=a.format,
                width=a.width,
                height=a.height,
                duration=a.duration_s,
            )
            for a in outcome.artifacts
        ],
        performance=performance,
        cost=cost,
    )


def build_sidecar(record: GenerationMetadataRecord) -> dict[str, Any]:
    """Reduced record mirrored next to each artifact."""
    params = record.parameters
    sidecar: dict[str, Any] = {
        "id": record.id,
        "model": record.model,
        "prompt": record.prompt,
        "aspectRatio": params.get("aspectRatio"),
        "resolution": params.get("resolution"),
        "duration": params.get("duration"),
        "timestamp": record.timestamp,
        "performance": record.performance.model_dump(by_alias=True, exclude_none=True),
    }
    return {k: v for k, v in sidecar.items() if v is not None}


# ---------------------------------------------------------------------------
# Recorder
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RecordResult:
    """Outcome of one recording."""

    record_id: str
    success: bool
    duplicate: bool = False
    error: str = ""

    def to_dict(self) -> RecordHistoryOutput:
        out: RecordHistoryOutput = {
            "record_id": self.record_id,
            "success": self.success,
            "duplicate": self.duplicate,
        }
        if self.error:
            out["error"] = self.error
        return out


class HistoryRecorder:
    """Persist successful generations exactly once.

    Args:
        store: History backend.
        blob_store: Artifact store used for sidecar mirroring (optional).
        currency: Currency code attached to cost estimates.
        clock: UTC wall clock.
        monotonic: Monotonic clock in seconds, for measured durations.
    """

    def __init__(
        self,
        store: HistoryStore,
        *,
        blob_store: ArtifactBlobStore | None = None,
        currency: str = COST_CURRENCY,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._blob_store = blob_store
        self._currency = currency
        self._clock = clock
        self._monotonic = monotonic
        self._pending: set[asyncio.Task[None]] = set()

    async def record(self, outcome: TerminalOutcome) -> RecordResult:
        """Persist *outcome* from the in-process session.

        Duration is measured on the monotonic clock from the outcome's
        start.  The store write runs in a worker thread; sidecar
        mirroring is scheduled in the background (see ``drain``).
        """
        record = build_metadata_record(
            outcome,
            ended_at=self._clock(),
            execution_time_ms=(self._monotonic() - outcome.started_monotonic) * 1000.0,
            currency=self._currency,
        )
        persisted = await asyncio.to_thread(self._store.persist, record)
        result = self._log_result(record, persisted)

        if self._blob_store is not None and persisted.success and not persisted.duplicate:
            task = asyncio.get_running_loop().create_task(self._mirror_sidecars_async(record))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return result

    def record_now(
        self,
        outcome: TerminalOutcome,
        *,
        ended_at: datetime,
        execution_time_ms: float,
    ) -> RecordResult:
        """Persist *outcome* synchronously with caller-measured timing.

        Used by the durable ``record_history`` activity, where the
        duration comes from the orchestration clock.
        """
        record = build_metadata_record(
            outcome,
            ended_at=ended_at,
            execution_time_ms=execution_time_ms,
            currency=self._currency,
        )
        persisted = self._store.persist(record)
        result = self._log_result(record, persisted)

        if self._blob_store is not None and persisted.success and not persisted.duplicate:
            for output in record.outputs:
                self._mirror_sidecar(record, output.artifact_ref)
        return result

    async def drain(self) -> None:
        """Wait for background sidecar uploads to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _log_result(
        self, record: GenerationMetadataRecord, persisted: PersistResult
    ) -> RecordResult:
        if persisted.duplicate:
            logger.info("history already recorded | id=%s", record.id)
        elif persisted.success:
            logger.info(
                "history recorded | id=%s | type=%s | model=%s | outputs=%d",
                record.id,
                record.type,
                record.model,
                len(record.outputs),
            )
        else:
            logger.error("history recording failed | id=%s | error=%s", record.id, persisted.error)
        return RecordResult(
            record_id=record.id,
            success=persisted.success,
            duplicate=persisted.duplicate,
            error=persisted.error,
        )

    async def _mirror_sidecars_async(self, record: GenerationMetadataRecord) -> None:
        for output in record.outputs:
            await asyncio.to_thread(self._mirror_sidecar, record, output.artifact_ref)

    def _mirror_sidecar(self, record: GenerationMetadataRecord, artifact_ref: str) -> None:
        if self._blob_store is None:
            return
        try:
            container, path = parse_storage_ref(artifact_ref)
            self._blob_store.upload_metadata_sidecar(
                build_sidecar(record),
                container,
                build_sidecar_path(path),
            )
        except Exception as exc:
            logger.warning(
                "sidecar mirror failed | id=%s | artifact=%s | error=%s",
                record.id,
                artifact_ref,
                exc,
            )


# ---------------------------------------------------------------------------
# Durable activity entry point
# ---------------------------------------------------------------------------


def record_history(
    payload: dict[str, Any],
    *,
    recorder: HistoryRecorder | None = None,
) -> RecordHistoryOutput:
    """Durable activity: persist the outcome carried by *payload*.

    Args:
        payload: ``RecordHistoryInput`` dict.
        recorder: Recorder to use; built from ``StudioConfig.from_env()``
            when omitted.

    Raises:
        ContractError: If required keys are missing or the outcome is
            not a success.
    """
    validate_payload(payload, RecordHistoryInput, activity="record_history")

    outcome = TerminalOutcome.from_dict(payload["outcome"])
    if outcome.state is not GenerationState.DONE_SUCCESS:
        msg = f"record_history: outcome state is {outcome.state.value!r}, expected done_success"
        raise ContractError(msg, stage="record_history", code="OUTCOME_NOT_SUCCESS")

    logger.info(
        "record_history started | operation=%s | type=%s",
        outcome.operation_id,
        outcome.request.generation_type.value,
    )

    if recorder is None:
        recorder = build_history_recorder()

    result = recorder.record_now(
        outcome,
        ended_at=parse_timestamp(str(payload["ended_at"])),
        execution_time_ms=float(payload["execution_time_ms"]),
    )
    return result.to_dict()


def build_history_recorder() -> HistoryRecorder:
    """Recorder wired from environment configuration."""
    from gen_studio.core.config import StudioConfig
    from gen_studio.core.ingress import get_blob_service_client
    from gen_studio.storage.blob_store import ArtifactBlobStore
    from gen_studio.storage.history_store import get_history_store

    config = StudioConfig.from_env()
    service_client = get_blob_service_client()
    return HistoryRecorder(
        get_history_store(config, service_client=service_client),
        blob_store=ArtifactBlobStore(
            service_client,
            signed_url_ttl_minutes=config.signed_url_ttl_minutes,
        ),
        currency=config.cost_currency,
    )
