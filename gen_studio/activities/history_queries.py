"""History query activities — list, delete, clear, and sign artifact URLs.

Backs the history endpoints of ``function_app.py``.  Query parameters
arrive as strings and are validated here; invalid values raise
``ValidationError`` (HTTP 400).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from gen_studio.core.constants import DEFAULT_HISTORY_LIMIT
from gen_studio.core.exceptions import ValidationError
from gen_studio.models.generation import GenerationType

if TYPE_CHECKING:
    from collections.abc import Mapping

    from gen_studio.storage.blob_store import ArtifactBlobStore
    from gen_studio.storage.history_store import HistoryStore

logger = logging.getLogger("gen_studio.activities.history_queries")


def parse_history_query(
    params: Mapping[str, str],
    *,
    max_limit: int = DEFAULT_HISTORY_LIMIT,
) -> tuple[int, str | None]:
    """Return ``(limit, generation_type)`` from query string parameters.

    ``limit`` defaults to and is capped at *max_limit*.

    Raises:
        ValidationError: If ``limit`` is not a positive integer or
            ``type`` is not ``image`` / ``video``.
    """
    raw_limit = params.get("limit", "")
    if raw_limit:
        try:
            limit = int(raw_limit)
        except ValueError:
            msg = f"limit must be an integer, got {raw_limit!r}"
            raise ValidationError(msg, stage="history_queries", code="INVALID_QUERY") from None
        if limit <= 0:
            msg = f"limit must be > 0, got {limit}"
            raise ValidationError(msg, stage="history_queries", code="INVALID_QUERY")
        limit = min(limit, max_limit)
    else:
        limit = max_limit

    raw_type = params.get("type", "").strip().lower()
    if raw_type and raw_type not in {t.value for t in GenerationType}:
        msg = f"type must be 'image' or 'video', got {raw_type!r}"
        raise ValidationError(msg, stage="history_queries", code="INVALID_QUERY")
    return limit, raw_type or None


def list_history(
    store: HistoryStore,
    *,
    limit: int = DEFAULT_HISTORY_LIMIT,
    generation_type: str | None = None,
) -> list[dict[str, Any]]:
    """Most recent history records as camelCase dicts, newest first."""
    records = store.load(limit, generation_type)
    logger.info(
        "history listed | limit=%d | type=%s | returned=%d",
        limit,
        generation_type or "all",
        len(records),
    )
    return [r.to_dict() for r in records]


def delete_history_record(store: HistoryStore, record_id: str) -> bool:
    """Delete one record. Returns ``False`` if it did not exist."""
    deleted = store.delete(record_id)
    logger.info("history delete | id=%s | deleted=%s", record_id, deleted)
    return deleted


def clear_history(store: HistoryStore) -> int:
    """Delete every record. Returns the number deleted."""
    count = store.clear()
    logger.info("history clear | deleted=%d", count)
    return count


def resolve_artifact_url(blob_store: ArtifactBlobStore, storage_ref: str) -> str:
    """Signed display URL for an artifact reference.

    Raises:
        ValidationError: If *storage_ref* is empty.
    """
    if not storage_ref.strip():
        msg = "ref query parameter is required"
        raise ValidationError(msg, stage="history_queries", code="INVALID_QUERY")
    return blob_store.get_signed_artifact_url(storage_ref.strip())
