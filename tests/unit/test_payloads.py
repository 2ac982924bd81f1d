"""Tests for activity payload contracts and runtime key validation."""

from __future__ import annotations

import pytest

from gen_studio.core.exceptions import ContractError
from gen_studio.models.payloads import (
    CheckStatusInput,
    CheckStatusOutput,
    GenerationOrchestrationInput,
    RecordHistoryInput,
    validate_payload,
)


class TestValidatePayload:
    def test_complete_orchestration_input(self) -> None:
        validate_payload(
            {"job_token": "op", "request": {}, "started_at": "2026-03-01T12:00:00+00:00"},
            GenerationOrchestrationInput,
            activity="generation_orchestrator",
        )

    def test_extra_keys_allowed(self) -> None:
        validate_payload(
            {"job_token": "op", "request": {}, "trace": "x"},
            CheckStatusInput,
            activity="check_status",
        )

    @pytest.mark.parametrize(
        ("schema", "payload", "missing"),
        [
            (GenerationOrchestrationInput, {"job_token": "op"}, "request, started_at"),
            (CheckStatusInput, {"request": {}}, "job_token"),
            (RecordHistoryInput, {"outcome": {}}, "ended_at, execution_time_ms"),
        ],
    )
    def test_missing_keys(self, schema: type, payload: dict, missing: str) -> None:
        with pytest.raises(ContractError) as exc_info:
            validate_payload(payload, schema, activity="stage_x")
        assert exc_info.value.code == "PAYLOAD_MISSING_KEYS"
        assert exc_info.value.stage == "stage_x"
        assert missing in exc_info.value.message

    def test_schema_without_registry_entry_is_unchecked(self) -> None:
        validate_payload({}, CheckStatusOutput, activity="check_status")
