"""Tests for the artifact blob store."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import HttpResponseError, ServiceRequestError

from gen_studio.core.exceptions import ContractError
from gen_studio.storage.blob_store import ArtifactBlobStore, BlobStoreError


def _service(*, account_key: str | None = "key==") -> MagicMock:
    service = MagicMock()
    service.account_name = "studioacct"
    service.credential = SimpleNamespace(account_key=account_key) if account_key else object()
    service.get_blob_client.return_value.url = (
        "https://studioacct.blob.core.windows.net/generated-media/videos/a/sample_0.mp4"
    )
    return service


class TestUploadArtifact:
    def test_returns_storage_ref(self) -> None:
        service = _service()
        store = ArtifactBlobStore(service)

        ref = store.upload_artifact(
            b"\x00\x01", "generated-media", "videos/a/sample_0.mp4", content_type="video/mp4"
        )

        assert ref == "generated-media/videos/a/sample_0.mp4"
        service.get_blob_client.assert_called_once_with(
            container="generated-media", blob="videos/a/sample_0.mp4"
        )
        upload = service.get_blob_client.return_value.upload_blob
        assert upload.call_args.args[0] == b"\x00\x01"
        assert upload.call_args.kwargs["overwrite"] is True

    def test_transient_failure_is_retryable(self) -> None:
        service = _service()
        service.get_blob_client.return_value.upload_blob.side_effect = ServiceRequestError("dns")

        with pytest.raises(BlobStoreError) as exc_info:
            ArtifactBlobStore(service).upload_artifact(b"x", "c", "p.png")
        assert exc_info.value.retryable is True

    def test_http_failure_is_not_retryable(self) -> None:
        service = _service()
        service.get_blob_client.return_value.upload_blob.side_effect = HttpResponseError("403")

        with pytest.raises(BlobStoreError) as exc_info:
            ArtifactBlobStore(service).upload_artifact(b"x", "c", "p.png")
        assert exc_info.value.retryable is False


class TestUploadMetadataSidecar:
    def test_json_payload_overwrites(self) -> None:
        service = _service()
        ArtifactBlobStore(service).upload_metadata_sidecar(
            {"id": "video_1"}, "generated-media", "videos/a/sample_0.json"
        )

        upload = service.get_blob_client.return_value.upload_blob
        assert json.loads(upload.call_args.args[0]) == {"id": "video_1"}
        assert upload.call_args.kwargs["overwrite"] is True

    def test_failure_raises(self) -> None:
        service = _service()
        service.get_blob_client.return_value.upload_blob.side_effect = RuntimeError("boom")

        with pytest.raises(BlobStoreError, match="sidecar"):
            ArtifactBlobStore(service).upload_metadata_sidecar({}, "c", "p.json")


class TestSignedArtifactUrl:
    def test_account_key_signing(self) -> None:
        service = _service()
        store = ArtifactBlobStore(service, signed_url_ttl_minutes=15)

        with patch("azure.storage.blob.generate_blob_sas", return_value="sv=1&sig=abc") as sas:
            url = store.get_signed_artifact_url("generated-media/videos/a/sample_0.mp4")

        assert url == (
            "https://studioacct.blob.core.windows.net/generated-media/videos/a/sample_0.mp4"
            "?sv=1&sig=abc"
        )
        kwargs = sas.call_args.kwargs
        assert kwargs["account_name"] == "studioacct"
        assert kwargs["container_name"] == "generated-media"
        assert kwargs["blob_name"] == "videos/a/sample_0.mp4"
        assert kwargs["account_key"] == "key=="
        service.get_user_delegation_key.assert_not_called()

    def test_user_delegation_signing(self) -> None:
        service = _service(account_key=None)

        with patch("azure.storage.blob.generate_blob_sas", return_value="sig=xyz") as sas:
            url = ArtifactBlobStore(service).get_signed_artifact_url("gs://generated-media/a.png")

        assert url.endswith("?sig=xyz")
        service.get_user_delegation_key.assert_called_once()
        assert sas.call_args.kwargs["user_delegation_key"] is (
            service.get_user_delegation_key.return_value
        )

    def test_signing_failure(self) -> None:
        service = _service()
        with (
            patch("azure.storage.blob.generate_blob_sas", side_effect=ValueError("bad key")),
            pytest.raises(BlobStoreError),
        ):
            ArtifactBlobStore(service).get_signed_artifact_url("generated-media/a.png")

    def test_malformed_ref(self) -> None:
        with pytest.raises(ContractError):
            ArtifactBlobStore(_service()).get_signed_artifact_url("no-path")
