"""Transport helpers for the Azure Functions entry points.

``function_app.py`` only binds triggers and hands off; decoding and
client construction live here:

- ``parse_json_body``: HTTP request body to dict.
- ``deserialize_activity_input``: Durable activity input, which is a
  JSON string on first execution and may already be a dict on replay.
- ``get_blob_service_client``: storage client for ``AzureWebJobsStorage``,
  built once per connection string.

Malformed input raises ``ContractError`` (HTTP 400) with stage
``"ingress"``.
"""

from __future__ import annotations

import functools
import json
import logging
import os
from typing import TYPE_CHECKING, Any

from gen_studio.core.exceptions import ContractError

if TYPE_CHECKING:
    from azure.storage.blob import BlobServiceClient

logger = logging.getLogger("gen_studio.core.ingress")

STORAGE_CONNECTION_ENV = "AzureWebJobsStorage"


def _contract_error(message: str, code: str) -> ContractError:
    return ContractError(message, stage="ingress", code=code)


def _decode_object(raw: str | bytes, *, what: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise _contract_error(f"{what} is not valid JSON: {exc}", "INVALID_JSON") from exc
    if not isinstance(parsed, dict):
        msg = f"{what} must be a JSON object, got {type(parsed).__name__}"
        raise _contract_error(msg, "INVALID_INPUT_TYPE")
    return parsed


def parse_json_body(body: bytes) -> dict[str, Any]:
    """Decode an HTTP request body into a dict.

    Raises:
        ContractError: ``EMPTY_BODY``, ``INVALID_JSON`` or
            ``INVALID_INPUT_TYPE``.
    """
    if not body:
        raise _contract_error("Request body is empty", "EMPTY_BODY")
    parsed = _decode_object(body, what="Request body")
    logger.debug("request body parsed | keys=%s", ",".join(sorted(parsed)))
    return parsed


def deserialize_activity_input(raw: object) -> dict[str, Any]:
    """Normalise a Durable activity input to a dict (idempotent on replay).

    Raises:
        ContractError: If *raw* is not a dict or a JSON object string.
    """
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        return _decode_object(raw, what="Activity input")
    raise _contract_error(
        f"Unexpected activity input type: {type(raw).__name__}", "INVALID_INPUT_TYPE"
    )


def get_blob_service_client() -> BlobServiceClient:
    """Storage client for the ``AzureWebJobsStorage`` connection string.

    Raises:
        ContractError: ``MISSING_CONNECTION_STRING`` when unset.
    """
    connection_string = os.environ.get(STORAGE_CONNECTION_ENV, "")
    if not connection_string:
        msg = f"{STORAGE_CONNECTION_ENV} environment variable is not set"
        raise _contract_error(msg, "MISSING_CONNECTION_STRING")
    return _client_for(connection_string)


@functools.lru_cache(maxsize=4)
def _client_for(connection_string: str) -> BlobServiceClient:
    from azure.storage.blob import BlobServiceClient

    logger.info("blob service client created")
    return BlobServiceClient.from_connection_string(connection_string)
