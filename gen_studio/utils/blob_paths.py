"""Deterministic blob path generation for generated media.

Generates artifact and sidecar paths:

    {images|videos}/{YYYY}/{MM}/{DD}/{folder-id}/sample_{n}.{ext}
    {images|videos}/{YYYY}/{MM}/{DD}/{folder-id}/sample_{n}.json

A storage reference is ``"<container>/<blob path>"``; the container is
the first segment.  Path components are sanitised to lowercase slug
form: only ``a-z``, ``0-9``, and ``-`` are allowed.

Engineering standards:
- Idempotent: same input always produces the same path.
- Missing names fall back to ``"unknown"``.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from posixpath import splitext

from gen_studio.core.exceptions import ContractError

IMAGE_PREFIX = "images"
VIDEO_PREFIX = "videos"
SIDECAR_EXTENSION = ".json"

# Regex for sanitising path segments (allow only lowercase alphanumeric + hyphen)
_SLUG_RE = re.compile(r"[^a-z0-9-]+")


def sanitise_slug(value: str) -> str:
    """Convert a string to a URL/path-safe slug.

    - Lowercase
    - Spaces and underscores → hyphens
    - Strips all characters except ``a-z``, ``0-9``, ``-``
    - Collapses consecutive hyphens
    - Falls back to ``"unknown"`` if the result is empty
    """
    slug = value.lower().strip().replace(" ", "-").replace("_", "-")
    slug = _SLUG_RE.sub("", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug if slug else "unknown"


def build_artifact_path(
    generation_type: str,
    folder_id: str,
    index: int,
    extension: str,
    *,
    timestamp: datetime | None = None,
) -> str:
    """Build the blob path for one generated artifact.

    Args:
        generation_type: ``"image"`` or ``"video"``.
        folder_id: Per-generation folder (e.g. the backend operation id).
        index: Zero-based sample index.
        extension: File extension without the dot (``"png"``, ``"mp4"``).
        timestamp: Generation timestamp. Defaults to current UTC time.
    """
    ts = timestamp or datetime.now(UTC)
    prefix = VIDEO_PREFIX if generation_type == "video" else IMAGE_PREFIX
    ext = sanitise_slug(extension.lstrip("."))
    return (
        f"{prefix}/{ts.year:04d}/{ts.month:02d}/{ts.day:02d}/"
        f"{sanitise_slug(folder_id)}/sample_{index}.{ext}"
    )


def build_sidecar_path(artifact_path: str) -> str:
    """Replace the artifact's extension with ``.json``."""
    root, _ = splitext(artifact_path)
    return f"{root}{SIDECAR_EXTENSION}"


def parse_storage_ref(ref: str) -> tuple[str, str]:
    """Split ``"<container>/<path>"`` into ``(container, path)``.

    ``gs://`` style references are accepted with their bucket as the
    container.

    Raises:
        ContractError: If the reference has no container or no path.
    """
    cleaned = ref.removeprefix("gs://").strip("/")
    container, _, path = cleaned.partition("/")
    if not container or not path:
        msg = f"Invalid storage reference: {ref!r} (expected '<container>/<path>')"
        raise ContractError(msg, stage="blob_paths", code="INVALID_STORAGE_REF")
    return container, path


def build_storage_ref(container: str, path: str) -> str:
    return f"{container}/{path.lstrip('/')}"
