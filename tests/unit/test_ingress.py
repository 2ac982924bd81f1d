"""Tests for the ingress boundary helpers.

Validates:
- ``deserialize_activity_input`` handles JSON strings, dicts, and bad types
- ``parse_json_body`` decodes HTTP bodies and rejects malformed input
- ``get_blob_service_client`` fails fast when env var is missing
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from gen_studio.core.exceptions import ContractError
from gen_studio.core.ingress import (
    _client_for,
    deserialize_activity_input,
    get_blob_service_client,
    parse_json_body,
)

# ---------------------------------------------------------------------------
# deserialize_activity_input
# ---------------------------------------------------------------------------


class TestDeserializeActivityInput:
    """Normalise raw Durable Functions input to a dict."""

    def test_json_string_parsed(self) -> None:
        raw = json.dumps({"job_token": "operations/op-1", "request": {}})
        result = deserialize_activity_input(raw)
        assert result == {"job_token": "operations/op-1", "request": {}}

    def test_dict_passthrough(self) -> None:
        payload = {"job_token": "operations/op-1"}
        result = deserialize_activity_input(payload)
        assert result is payload

    def test_invalid_json_raises_contract_error(self) -> None:
        with pytest.raises(ContractError) as exc_info:
            deserialize_activity_input("{nope")
        assert exc_info.value.code == "INVALID_JSON"

    def test_json_array_rejected(self) -> None:
        with pytest.raises(ContractError) as exc_info:
            deserialize_activity_input("[1, 2]")
        assert exc_info.value.code == "INVALID_INPUT_TYPE"

    def test_unexpected_type_rejected(self) -> None:
        with pytest.raises(ContractError) as exc_info:
            deserialize_activity_input(42)
        assert exc_info.value.code == "INVALID_INPUT_TYPE"
        assert exc_info.value.stage == "ingress"


# ---------------------------------------------------------------------------
# parse_json_body
# ---------------------------------------------------------------------------


class TestParseJsonBody:
    def test_object_body(self) -> None:
        assert parse_json_body(b'{"prompt": "a cat"}') == {"prompt": "a cat"}

    @pytest.mark.parametrize(
        ("body", "code"),
        [
            (b"", "EMPTY_BODY"),
            (b"not json", "INVALID_JSON"),
            (b"\xff\xfe", "INVALID_JSON"),
            (b'"a string"', "INVALID_INPUT_TYPE"),
        ],
    )
    def test_bad_bodies(self, body: bytes, code: str) -> None:
        with pytest.raises(ContractError) as exc_info:
            parse_json_body(body)
        assert exc_info.value.code == code
        assert exc_info.value.retryable is False


# ---------------------------------------------------------------------------
# get_blob_service_client
# ---------------------------------------------------------------------------


class TestGetBlobServiceClient:
    def setup_method(self) -> None:
        _client_for.cache_clear()

    def test_missing_connection_string(self) -> None:
        with patch.dict("os.environ", {}, clear=True), pytest.raises(ContractError) as exc_info:
            get_blob_service_client()
        assert exc_info.value.code == "MISSING_CONNECTION_STRING"

    def test_builds_client_from_connection_string(self) -> None:
        env = {"AzureWebJobsStorage": "UseDevelopmentStorage=true"}
        with (
            patch.dict("os.environ", env, clear=True),
            patch("azure.storage.blob.BlobServiceClient.from_connection_string") as factory,
        ):
            client = get_blob_service_client()
        factory.assert_called_once_with("UseDevelopmentStorage=true")
        assert client is factory.return_value

    def test_client_reused_for_same_connection_string(self) -> None:
        env = {"AzureWebJobsStorage": "UseDevelopmentStorage=true"}
        with (
            patch.dict("os.environ", env, clear=True),
            patch("azure.storage.blob.BlobServiceClient.from_connection_string") as factory,
        ):
            first = get_blob_service_client()
            second = get_blob_service_client()
        assert first is second
        factory.assert_called_once()
