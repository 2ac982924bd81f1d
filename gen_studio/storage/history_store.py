"""Append-only history of successful generations.

Each ``GenerationMetadataRecord`` is stored as ``<id>/metadata.json``,
either on the local filesystem (``LocalHistoryStore``, default root
``~/.imgstudio/history``) or in a blob container
(``BlobHistoryStore``).

Contract shared by both backends:

- ``persist`` never overwrites: a second write of the same id is
  reported as a duplicate, which makes retried recordings of the same
  operation idempotent.  It reports failures in its result instead of
  raising.
- ``load`` returns the most recent records first (by last-modified
  time), limited to ``limit`` entries, optionally filtered by type.
  Unreadable records are skipped and logged.
- ``delete`` / ``clear`` are the only ways a record disappears.
"""

from __future__ import annotations

import abc
import json
import logging
import os
import re
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from gen_studio.core.constants import DEFAULT_HISTORY_LIMIT, HISTORY_RECORD_FILENAME
from gen_studio.core.exceptions import ValidationError
from gen_studio.models.metadata import GenerationMetadataRecord

if TYPE_CHECKING:
    from azure.storage.blob import BlobServiceClient

    from gen_studio.core.config import StudioConfig

logger = logging.getLogger("gen_studio.storage.history_store")

_RECORD_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-]*$")


class HistoryStoreError(ValidationError):
    """Raised for invalid history operations (e.g. a malformed record id)."""

    default_stage = "history_store"
    default_code = "HISTORY_STORE_INVALID"


@dataclass(frozen=True, slots=True)
class PersistResult:
    """Outcome of one ``persist`` call.

    Attributes:
        success: Record is stored (now or by an earlier write).
        record_id: Id of the record that was persisted.
        location: Path or blob name of the stored record.
        error: Failure description when ``success`` is false.
        duplicate: A record with this id already existed.
    """

    success: bool
    record_id: str
    location: str = ""
    error: str = ""
    duplicate: bool = False


def validate_record_id(record_id: str) -> str:
    """Return *record_id* if it is safe to use as a path segment.

    Raises:
        HistoryStoreError: If the id is empty or contains path characters.
    """
    if not _RECORD_ID_RE.match(record_id or ""):
        msg = f"Invalid history record id: {record_id!r}"
        raise HistoryStoreError(msg)
    return record_id


class HistoryStore(abc.ABC):
    """Abstract base class for history backends."""

    @abc.abstractmethod
    def persist(self, record: GenerationMetadataRecord) -> PersistResult:
        """Store *record* unless a record with the same id exists."""

    @abc.abstractmethod
    def load(
        self,
        limit: int = DEFAULT_HISTORY_LIMIT,
        generation_type: str | None = None,
    ) -> list[GenerationMetadataRecord]:
        """Return up to *limit* records, most recent first."""

    @abc.abstractmethod
    def delete(self, record_id: str) -> bool:
        """Delete one record. Returns ``False`` if it did not exist."""

    @abc.abstractmethod
    def clear(self) -> int:
        """Delete every record. Returns the number deleted."""


# ---------------------------------------------------------------------------
# Local filesystem backend
# ---------------------------------------------------------------------------


class LocalHistoryStore(HistoryStore):
    """History kept under ``<root>/<id>/metadata.json``."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def persist(self, record: GenerationMetadataRecord) -> PersistResult:
        record_dir = self._root / validate_record_id(record.id)
        path = record_dir / HISTORY_RECORD_FILENAME
        payload = record.to_json()
        try:
            record_dir.mkdir(parents=True, exist_ok=True)
            _write_exclusive(path, payload)
        except FileExistsError:
            logger.info("history record exists | id=%s | path=%s", record.id, path)
            return PersistResult(True, record.id, location=str(path), duplicate=True)
        except OSError as exc:
            logger.error(
                "history persist failed | id=%s | path=%s | error=%s", record.id, path, exc
            )
            return PersistResult(False, record.id, location=str(path), error=str(exc))

        logger.info("history record persisted | id=%s | path=%s", record.id, path)
        return PersistResult(True, record.id, location=str(path))

    def load(
        self,
        limit: int = DEFAULT_HISTORY_LIMIT,
        generation_type: str | None = None,
    ) -> list[GenerationMetadataRecord]:
        if not self._root.is_dir():
            return []

        candidates = [
            p / HISTORY_RECORD_FILENAME
            for p in self._root.iterdir()
            if p.is_dir() and (p / HISTORY_RECORD_FILENAME).is_file()
        ]
        candidates.sort(key=lambda p: p.stat().st_mtime, reverse=True)

        records: list[GenerationMetadataRecord] = []
        for path in candidates:
            if len(records) >= limit:
                break
            record = _parse_record(path.read_bytes(), source=str(path))
            if record is None:
                continue
            if generation_type and record.type != generation_type:
                continue
            records.append(record)

        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records

    def delete(self, record_id: str) -> bool:
        record_dir = self._root / validate_record_id(record_id)
        if not record_dir.is_dir():
            return False
        shutil.rmtree(record_dir)
        logger.info("history record deleted | id=%s", record_id)
        return True

    def clear(self) -> int:
        if not self._root.is_dir():
            return 0
        count = 0
        for entry in self._root.iterdir():
            if entry.is_dir() and (entry / HISTORY_RECORD_FILENAME).is_file():
                shutil.rmtree(entry)
                count += 1
        logger.info("history cleared | root=%s | deleted=%d", self._root, count)
        return count


def _write_exclusive(path: Path, payload: str) -> None:
    """Write *payload* to a temporary file, then hard-link it to *path*.

    *path* only ever appears complete, so a failed write leaves nothing
    behind for a retry to mistake for a duplicate.

    Raises:
        FileExistsError: If *path* already exists.
    """
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        with tmp.open("w", encoding="utf-8") as fh:
            fh.write(payload)
        os.link(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Blob backend
# ---------------------------------------------------------------------------


class BlobHistoryStore(HistoryStore):
    """History kept as ``<id>/metadata.json`` blobs in one container."""

    def __init__(self, service_client: BlobServiceClient, container: str) -> None:
        self._service = service_client
        self._container = container

    def persist(self, record: GenerationMetadataRecord) -> PersistResult:
        from azure.core.exceptions import AzureError, ResourceExistsError
        from azure.storage.blob import ContentSettings

        blob_name = f"{validate_record_id(record.id)}/{HISTORY_RECORD_FILENAME}"
        blob_client = self._service.get_blob_client(container=self._container, blob=blob_name)
        try:
            blob_client.upload_blob(
                record.to_json().encode("utf-8"),
                overwrite=False,
                content_settings=ContentSettings(content_type="application/json"),
            )
        except ResourceExistsError:
            logger.info("history record exists | id=%s | blob=%s", record.id, blob_name)
            return PersistResult(True, record.id, location=blob_name, duplicate=True)
        except AzureError as exc:
            logger.error(
                "history persist failed | id=%s | container=%s | error=%s",
                record.id,
                self._container,
                exc,
            )
            return PersistResult(False, record.id, location=blob_name, error=str(exc))

        logger.info(
            "history record persisted | id=%s | container=%s | blob=%s",
            record.id,
            self._container,
            blob_name,
        )
        return PersistResult(True, record.id, location=blob_name)

    def load(
        self,
        limit: int = DEFAULT_HISTORY_LIMIT,
        generation_type: str | None = None,
    ) -> list[GenerationMetadataRecord]:
        container_client = self._service.get_container_client(self._container)
        suffix = f"/{HISTORY_RECORD_FILENAME}"
        blobs = [b for b in container_client.list_blobs() if b.name.endswith(suffix)]
        blobs.sort(key=lambda b: b.last_modified, reverse=True)

        records: list[GenerationMetadataRecord] = []
        for blob in blobs:
            if len(records) >= limit:
                break
            data = container_client.download_blob(blob.name).readall()
            record = _parse_record(data, source=blob.name)
            if record is None:
                continue
            if generation_type and record.type != generation_type:
                continue
            records.append(record)

        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records

    def delete(self, record_id: str) -> bool:
        from azure.core.exceptions import ResourceNotFoundError

        blob_name = f"{validate_record_id(record_id)}/{HISTORY_RECORD_FILENAME}"
        container_client = self._service.get_container_client(self._container)
        try:
            container_client.delete_blob(blob_name)
        except ResourceNotFoundError:
            return False
        logger.info("history record deleted | id=%s | container=%s", record_id, self._container)
        return True

    def clear(self) -> int:
        container_client = self._service.get_container_client(self._container)
        names = [
            b.name
            for b in container_client.list_blobs()
            if b.name.endswith(f"/{HISTORY_RECORD_FILENAME}")
        ]
        for name in names:
            container_client.delete_blob(name)
        logger.info("history cleared | container=%s | deleted=%d", self._container, len(names))
        return len(names)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def get_history_store(
    config: StudioConfig,
    *,
    service_client: BlobServiceClient | None = None,
) -> HistoryStore:
    """Build the history backend selected by ``config.history_backend``."""
    if config.history_backend == "blob":
        if service_client is None:
            from gen_studio.core.ingress import get_blob_service_client

            service_client = get_blob_service_client()
        return BlobHistoryStore(service_client, config.history_container)
    return LocalHistoryStore(config.history_dir)


def _parse_record(data: bytes, *, source: str) -> GenerationMetadataRecord | None:
    try:
        return GenerationMetadataRecord.model_validate(json.loads(data))
    except (json.JSONDecodeError, UnicodeDecodeError, PydanticValidationError) as exc:
        logger.warning("skipping unreadable history record | source=%s | error=%s", source, exc)
        return None
