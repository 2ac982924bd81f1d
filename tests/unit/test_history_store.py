"""Tests for the history stores (local filesystem and blob)."""

from __future__ import annotations

import errno
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError, ServiceRequestError

from gen_studio.core.config import StudioConfig
from gen_studio.models.metadata import GenerationMetadataRecord, OutputEntry
from gen_studio.storage.history_store import (
    BlobHistoryStore,
    HistoryStoreError,
    LocalHistoryStore,
    get_history_store,
    validate_record_id,
)

BASE = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


def _make_record(
    record_id: str = "video_1772366400000_ab12cd3",
    *,
    minutes: int = 0,
    generation_type: str = "video",
) -> GenerationMetadataRecord:
    return GenerationMetadataRecord(
        id=record_id,
        timestamp=(BASE + timedelta(minutes=minutes)).isoformat(),
        type=generation_type,  # type: ignore[arg-type]
        model="veo-3.1-generate-preview" if generation_type == "video" else "imagen-4.0",
        prompt="A red fox running through snow",
        outputs=[OutputEntry(artifact_ref="generated-media/videos/a/sample_0.mp4")],
    )


def _persist_at(store: LocalHistoryStore, record: GenerationMetadataRecord, mtime: float) -> None:
    result = store.persist(record)
    assert result.success
    os.utime(result.location, (mtime, mtime))


# ===================================================================
# Record ids
# ===================================================================


class TestValidateRecordId:
    def test_accepts_generated_ids(self) -> None:
        assert validate_record_id("image_1772366400000_ab12cd3") == "image_1772366400000_ab12cd3"

    @pytest.mark.parametrize("record_id", ["", "../etc", "a/b", "-lead", "x y"])
    def test_rejects_unsafe_ids(self, record_id: str) -> None:
        with pytest.raises(HistoryStoreError) as exc_info:
            validate_record_id(record_id)
        assert exc_info.value.code == "HISTORY_STORE_INVALID"


# ===================================================================
# Local backend
# ===================================================================


class TestLocalHistoryStore:
    def test_persist_writes_metadata_json(self, tmp_path: Path) -> None:
        store = LocalHistoryStore(tmp_path)
        result = store.persist(_make_record())

        path = tmp_path / "video_1772366400000_ab12cd3" / "metadata.json"
        assert result.success
        assert not result.duplicate
        assert result.location == str(path)
        assert path.is_file()

    def test_persist_never_overwrites(self, tmp_path: Path) -> None:
        store = LocalHistoryStore(tmp_path)
        store.persist(_make_record())
        second = store.persist(
            _make_record().model_copy(update={"prompt": "something else"})
        )

        assert second.success
        assert second.duplicate
        assert store.load()[0].prompt == "A red fox running through snow"

    def test_persist_failure_reported(self, tmp_path: Path) -> None:
        blocker = tmp_path / "root"
        blocker.write_text("not a directory")
        result = LocalHistoryStore(blocker).persist(_make_record())

        assert not result.success
        assert result.error

    def test_failed_write_leaves_no_record_behind(self, tmp_path: Path) -> None:
        store = LocalHistoryStore(tmp_path)
        real_open = Path.open

        def _disk_full(path: Path, *args: object, **kwargs: object) -> object:
            fh = real_open(path, *args, **kwargs)  # type: ignore[arg-type]
            fh.write('{"id": ')
            fh.close()
            raise OSError(errno.ENOSPC, "No space left on device")

        with patch.object(Path, "open", autospec=True, side_effect=_disk_full):
            first = store.persist(_make_record())

        assert not first.success
        assert "No space left" in first.error
        assert list((tmp_path / "video_1772366400000_ab12cd3").iterdir()) == []

        retry = store.persist(_make_record())

        assert retry.success
        assert not retry.duplicate
        assert [r.id for r in store.load()] == ["video_1772366400000_ab12cd3"]

    def test_load_missing_root(self, tmp_path: Path) -> None:
        assert LocalHistoryStore(tmp_path / "nope").load() == []

    def test_load_most_recent_first_with_limit(self, tmp_path: Path) -> None:
        store = LocalHistoryStore(tmp_path)
        for i in range(4):
            _persist_at(store, _make_record(f"video_{i}", minutes=i), 1_000_000 + i)

        records = store.load(limit=2)

        assert [r.id for r in records] == ["video_3", "video_2"]

    def test_load_filters_by_type_before_limit(self, tmp_path: Path) -> None:
        store = LocalHistoryStore(tmp_path)
        _persist_at(store, _make_record("image_a", minutes=0, generation_type="image"), 1_000_000)
        _persist_at(store, _make_record("video_b", minutes=1), 1_000_001)
        _persist_at(store, _make_record("video_c", minutes=2), 1_000_002)

        records = store.load(limit=1, generation_type="image")

        assert [r.id for r in records] == ["image_a"]

    def test_unreadable_record_skipped(self, tmp_path: Path) -> None:
        store = LocalHistoryStore(tmp_path)
        store.persist(_make_record("video_ok"))
        broken = tmp_path / "video_broken"
        broken.mkdir()
        (broken / "metadata.json").write_text("{not json")

        assert [r.id for r in store.load()] == ["video_ok"]

    def test_delete(self, tmp_path: Path) -> None:
        store = LocalHistoryStore(tmp_path)
        store.persist(_make_record("video_x"))

        assert store.delete("video_x") is True
        assert store.delete("video_x") is False
        assert store.load() == []

    def test_delete_rejects_traversal(self, tmp_path: Path) -> None:
        with pytest.raises(HistoryStoreError):
            LocalHistoryStore(tmp_path).delete("../outside")

    def test_clear(self, tmp_path: Path) -> None:
        store = LocalHistoryStore(tmp_path)
        store.persist(_make_record("video_a"))
        store.persist(_make_record("video_b"))

        assert store.clear() == 2
        assert store.load() == []
        assert LocalHistoryStore(tmp_path / "nope").clear() == 0

    def test_clear_keeps_directories_that_are_not_records(self, tmp_path: Path) -> None:
        store = LocalHistoryStore(tmp_path)
        store.persist(_make_record("video_a"))
        (tmp_path / "thumbnails").mkdir()
        (tmp_path / "thumbnails" / "a.png").write_bytes(b"png")

        assert store.clear() == 1
        assert (tmp_path / "thumbnails" / "a.png").is_file()
        assert not (tmp_path / "video_a").exists()


# ===================================================================
# Blob backend
# ===================================================================


def _blob_item(name: str, minutes: int) -> SimpleNamespace:
    return SimpleNamespace(name=name, last_modified=BASE + timedelta(minutes=minutes))


class TestBlobHistoryStore:
    def test_persist_uploads_without_overwrite(self) -> None:
        service = MagicMock()
        result = BlobHistoryStore(service, "generation-history").persist(_make_record())

        service.get_blob_client.assert_called_once_with(
            container="generation-history", blob="video_1772366400000_ab12cd3/metadata.json"
        )
        upload = service.get_blob_client.return_value.upload_blob
        assert upload.call_args.kwargs["overwrite"] is False
        assert result.success
        assert result.location == "video_1772366400000_ab12cd3/metadata.json"

    def test_existing_blob_is_duplicate(self) -> None:
        service = MagicMock()
        service.get_blob_client.return_value.upload_blob.side_effect = ResourceExistsError("exists")

        result = BlobHistoryStore(service, "hist").persist(_make_record())

        assert result.success
        assert result.duplicate

    def test_azure_error_reported(self) -> None:
        service = MagicMock()
        service.get_blob_client.return_value.upload_blob.side_effect = ServiceRequestError("down")

        result = BlobHistoryStore(service, "hist").persist(_make_record())

        assert not result.success
        assert "down" in result.error

    def test_load_sorted_and_limited(self) -> None:
        records = {
            f"video_{i}/metadata.json": _make_record(f"video_{i}", minutes=i) for i in range(3)
        }
        service = MagicMock()
        container = service.get_container_client.return_value
        container.list_blobs.return_value = [
            _blob_item(name, minutes=i) for i, name in enumerate(records)
        ] + [_blob_item("video_0/sample_0.mp4", minutes=9)]
        container.download_blob.side_effect = lambda name: SimpleNamespace(
            readall=lambda: records[name].to_json().encode("utf-8")
        )

        loaded = BlobHistoryStore(service, "hist").load(limit=2)

        assert [r.id for r in loaded] == ["video_2", "video_1"]

    def test_delete_missing_returns_false(self) -> None:
        service = MagicMock()
        container = service.get_container_client.return_value
        container.delete_blob.side_effect = ResourceNotFoundError("gone")

        assert BlobHistoryStore(service, "hist").delete("video_x") is False

    def test_clear_deletes_only_records(self) -> None:
        service = MagicMock()
        container = service.get_container_client.return_value
        container.list_blobs.return_value = [
            _blob_item("video_a/metadata.json", 0),
            _blob_item("stray.txt", 1),
        ]

        assert BlobHistoryStore(service, "hist").clear() == 1
        container.delete_blob.assert_called_once_with("video_a/metadata.json")


class TestGetHistoryStore:
    def test_local_default(self, tmp_path: Path) -> None:
        store = get_history_store(StudioConfig(history_dir=str(tmp_path)))
        assert isinstance(store, LocalHistoryStore)
        assert store.root == tmp_path

    def test_blob_backend(self) -> None:
        config = StudioConfig(history_backend="blob", history_container="hist")
        store = get_history_store(config, service_client=MagicMock())
        assert isinstance(store, BlobHistoryStore)
