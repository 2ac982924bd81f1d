"""Artifact blob store — generated media, sidecars, and signed URLs.

Wraps an ``azure.storage.blob.BlobServiceClient``:

- ``upload_artifact``         — store generated bytes, return ``"<container>/<path>"``.
- ``upload_metadata_sidecar`` — mirror a record summary next to an artifact
  (``overwrite=True``: the sidecar is derived data and may be rewritten).
- ``get_signed_artifact_url`` — read-only SAS URL for display, resolved
  lazily per request.  Uses the account key when the client has one,
  otherwise a user delegation key (managed identity).

Every storage failure is raised as ``BlobStoreError`` with the
``retryable`` flag set for transient Azure errors.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from gen_studio.core.exceptions import StudioError
from gen_studio.utils.blob_paths import build_storage_ref, parse_storage_ref

if TYPE_CHECKING:
    from azure.storage.blob import BlobServiceClient

logger = logging.getLogger("gen_studio.storage.blob_store")


class BlobStoreError(StudioError):
    """Raised when a blob upload or URL signing fails."""

    default_stage = "blob_store"
    default_code = "BLOB_STORE_FAILED"


class ArtifactBlobStore:
    """Generated-media operations over one ``BlobServiceClient``."""

    def __init__(
        self,
        service_client: BlobServiceClient,
        *,
        signed_url_ttl_minutes: int = 60,
    ) -> None:
        self._service = service_client
        self._ttl = timedelta(minutes=signed_url_ttl_minutes)

    def upload_artifact(
        self,
        data: bytes,
        container: str,
        path: str,
        *,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Upload generated bytes and return their storage reference.

        Raises:
            BlobStoreError: If the upload fails.
        """
        from azure.storage.blob import ContentSettings

        try:
            blob_client = self._service.get_blob_client(container=container, blob=path)
            blob_client.upload_blob(
                data,
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type),
            )
        except Exception as exc:
            msg = f"Failed to upload artifact to {container}/{path}: {exc}"
            raise BlobStoreError(msg, retryable=_is_transient(exc)) from exc

        logger.info(
            "artifact uploaded | container=%s | path=%s | size_bytes=%d",
            container,
            path,
            len(data),
        )
        return build_storage_ref(container, path)

    def upload_metadata_sidecar(
        self,
        payload: dict[str, Any],
        container: str,
        path: str,
    ) -> None:
        """Upload a JSON sidecar next to an artifact.

        Raises:
            BlobStoreError: If the upload fails.
        """
        from azure.storage.blob import ContentSettings

        try:
            blob_client = self._service.get_blob_client(container=container, blob=path)
            blob_client.upload_blob(
                json.dumps(payload, indent=2).encode("utf-8"),
                overwrite=True,
                content_settings=ContentSettings(content_type="application/json"),
            )
        except Exception as exc:
            msg = f"Failed to upload metadata sidecar to {container}/{path}: {exc}"
            raise BlobStoreError(msg, retryable=_is_transient(exc)) from exc

        logger.debug("metadata sidecar uploaded | container=%s | path=%s", container, path)

    def get_signed_artifact_url(self, storage_ref: str) -> str:
        """Return a read-only SAS URL for *storage_ref*.

        Raises:
            ContractError: If *storage_ref* is malformed.
            BlobStoreError: If signing fails.
        """
        from azure.storage.blob import BlobSasPermissions, generate_blob_sas

        container, path = parse_storage_ref(storage_ref)
        now = datetime.now(UTC)
        expiry = now + self._ttl
        account_name = self._service.account_name
        account_key = getattr(self._service.credential, "account_key", None)

        try:
            if account_key:
                sas = generate_blob_sas(
                    account_name=account_name,
                    container_name=container,
                    blob_name=path,
                    account_key=account_key,
                    permission=BlobSasPermissions(read=True),
                    expiry=expiry,
                )
            else:
                delegation_key = self._service.get_user_delegation_key(
                    key_start_time=now - timedelta(minutes=5),
                    key_expiry_time=expiry,
                )
                sas = generate_blob_sas(
                    account_name=account_name,
                    container_name=container,
                    blob_name=path,
                    user_delegation_key=delegation_key,
                    permission=BlobSasPermissions(read=True),
                    expiry=expiry,
                )
        except Exception as exc:
            msg = f"Failed to sign URL for {storage_ref}: {exc}"
            raise BlobStoreError(msg, retryable=_is_transient(exc)) from exc

        url = self._service.get_blob_client(container=container, blob=path).url
        logger.debug("signed artifact url | ref=%s | expires=%s", storage_ref, expiry.isoformat())
        return f"{url}?{sas}"


def _is_transient(exc: Exception) -> bool:
    from azure.core.exceptions import ServiceRequestError, ServiceResponseError

    return isinstance(exc, ServiceRequestError | ServiceResponseError)
