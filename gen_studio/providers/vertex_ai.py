"""Vertex AI generation backend.

Talks to the Vertex AI REST API with ``httpx``:

- Imagen image models — ``:predict`` (synchronous).
- Gemini image models — ``:generateContent`` with ``IMAGE`` response
  modality (synchronous, one call per sample, reports token usage).
  An image to edit travels as an inline part next to the instruction.
- Veo video models — ``:predictLongRunning`` returns an operation name;
  ``:fetchPredictOperation`` checks it.
  First and last frames go on the instance as ``image`` / ``lastFrame``.

Inline base64 outputs are uploaded to the output blob container through
the ``ArtifactBlobStore`` and referenced as ``"<container>/<path>"``;
outputs already written to cloud storage keep their ``gs://`` URI.

HTTP error bodies are unwrapped to the backend's ``error.message`` so
downstream error rewriting (e.g. *publisher model not found*) sees the
original text.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import uuid
from typing import TYPE_CHECKING, Any

import httpx

from gen_studio.core.constants import DEFAULT_OUTPUT_CONTAINER
from gen_studio.models.generation import (
    Artifact,
    GenerationRequest,
    GenerationType,
    StatusResult,
    SubmittedJob,
    SyncResult,
    UsageMetrics,
)
from gen_studio.providers.base import (
    GenerationBackend,
    ProviderAuthError,
    ProviderError,
    ProviderStatusError,
    ProviderSubmitError,
)
from gen_studio.storage.blob_store import BlobStoreError
from gen_studio.utils.blob_paths import build_artifact_path, sanitise_slug
from gen_studio.utils.helpers import utc_now

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from gen_studio.models.generation import BackendConfig
    from gen_studio.storage.blob_store import ArtifactBlobStore

logger = logging.getLogger("gen_studio.providers.vertex_ai")

GEMINI_MAX_SAMPLES = 2
_GEMINI_USAGE_KEYS = ("promptTokenCount", "candidatesTokenCount", "totalTokenCount")

_MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "video/mp4": "mp4",
}

# Output pixel dimensions per aspect ratio.
_IMAGE_DIMENSIONS: dict[str, tuple[int, int]] = {
    "1:1": (1024, 1024),
    "16:9": (1408, 768),
    "9:16": (768, 1408),
    "4:3": (1280, 896),
    "3:4": (896, 1280),
}
_VIDEO_DIMENSIONS: dict[tuple[str, str], tuple[int, int]] = {
    ("720p", "16:9"): (1280, 720),
    ("720p", "9:16"): (720, 1280),
    ("1080p", "16:9"): (1920, 1080),
    ("1080p", "9:16"): (1080, 1920),
}


class VertexAIBackend(GenerationBackend):
    """Imagen, Gemini image, and Veo generation over Vertex AI.

    Args:
        config: Backend configuration (project, location, token).
        artifact_store: Blob store for inline outputs.
        client: Shared ``httpx.AsyncClient``; one is created lazily
            (and closed by ``aclose``) when omitted.
        clock: UTC wall clock used for artifact paths.
    """

    def __init__(
        self,
        config: BackendConfig,
        *,
        artifact_store: ArtifactBlobStore | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(config)
        self._artifact_store = artifact_store
        self._client = client
        self._owns_client = client is None
        self._clock = clock

    # ------------------------------------------------------------------
    # GenerationBackend
    # ------------------------------------------------------------------

    async def submit_generation(self, request: GenerationRequest) -> SyncResult | SubmittedJob:
        logger.info(
            "vertex submit | type=%s | model=%s | samples=%d",
            request.generation_type.value,
            request.model,
            request.sample_count,
        )
        if request.generation_type is GenerationType.VIDEO:
            return await self._submit_video(request)
        if "gemini" in request.model:
            return await self._generate_gemini_image(request)
        return await self._generate_imagen(request)

    async def check_status(self, job_token: str, request: GenerationRequest) -> StatusResult:
        data = await self._post(
            self._model_url(request.model, "fetchPredictOperation"),
            {"operationName": job_token},
            error_cls=ProviderStatusError,
        )
        if not data.get("done"):
            return StatusResult.pending()

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else None
            return StatusResult.failed(str(message or error))

        response = data.get("response") or {}
        videos = response.get("videos") or response.get("generatedSamples") or []
        if not videos:
            reasons = response.get("raiMediaFilteredReasons") or []
            if reasons:
                return StatusResult.failed("; ".join(str(r) for r in reasons))
            return StatusResult.succeeded(())

        folder = sanitise_slug(job_token.rsplit("/", 1)[-1])
        artifacts = []
        for index, video in enumerate(videos):
            artifacts.append(
                await self._store_output(
                    video,
                    request,
                    folder,
                    index,
                    default_mime="video/mp4",
                    error_cls=ProviderStatusError,
                )
            )
        return StatusResult.succeeded(artifacts)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def _generate_imagen(self, request: GenerationRequest) -> SyncResult:
        parameters: dict[str, Any] = {
            "sampleCount": request.sample_count,
            "aspectRatio": request.parameters.get("aspectRatio", "1:1"),
        }
        if request.negative_prompt:
            parameters["negativePrompt"] = request.negative_prompt

        data = await self._post(
            self._model_url(request.model, "predict"),
            {"instances": [{"prompt": request.prompt}], "parameters": parameters},
            error_cls=ProviderSubmitError,
        )
        predictions = data.get("predictions") or []
        if not predictions:
            msg = "No image was generated, the prompt may have been blocked by safety filters."
            raise ProviderSubmitError(self.name, msg)

        folder = uuid.uuid4().hex
        artifacts = [
            await self._store_output(
                prediction,
                request,
                folder,
                index,
                default_mime="image/png",
                error_cls=ProviderSubmitError,
            )
            for index, prediction in enumerate(predictions)
        ]
        return SyncResult(artifacts=tuple(artifacts))

    async def _generate_gemini_image(self, request: GenerationRequest) -> SyncResult:
        parts: list[dict[str, Any]] = [{"text": request.prompt}]
        edit_image = request.reference("edit")
        if edit_image is not None:
            edit_part = {"mimeType": edit_image.mime_type, "data": edit_image.data}
            parts.append({"inlineData": edit_part})
            samples = 1
        else:
            samples = min(request.sample_count, GEMINI_MAX_SAMPLES)
        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": request.parameters.get("aspectRatio", "1:1")},
            },
        }

        folder = uuid.uuid4().hex
        artifacts: list[Artifact] = []
        usage_totals: dict[str, int | None] = dict.fromkeys(_GEMINI_USAGE_KEYS)
        for _ in range(samples):
            data = await self._post(
                self._model_url(request.model, "generateContent"),
                body,
                error_cls=ProviderSubmitError,
            )
            _add_usage(usage_totals, data.get("usageMetadata"))

            candidates = data.get("candidates") or []
            returned = (candidates[0].get("content") or {}).get("parts", []) if candidates else []
            for part in returned:
                inline = part.get("inlineData")
                if not inline:
                    continue
                artifacts.append(
                    await self._store_output(
                        {
                            "bytesBase64Encoded": inline.get("data", ""),
                            "mimeType": inline.get("mimeType", "image/png"),
                        },
                        request,
                        folder,
                        len(artifacts),
                        default_mime="image/png",
                        error_cls=ProviderSubmitError,
                    )
                )

        if not artifacts:
            msg = "Gemini did not return any image for this prompt."
            raise ProviderSubmitError(self.name, msg)

        return SyncResult(
            artifacts=tuple(artifacts),
            usage=UsageMetrics(
                tokens_used=usage_totals["totalTokenCount"],
                input_tokens=usage_totals["promptTokenCount"],
                output_tokens=usage_totals["candidatesTokenCount"],
                total_tokens=usage_totals["totalTokenCount"],
            ),
        )

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    async def _submit_video(self, request: GenerationRequest) -> SubmittedJob:
        params = request.parameters
        parameters: dict[str, Any] = {
            "sampleCount": request.sample_count,
            "aspectRatio": params.get("aspectRatio", "16:9"),
            "resolution": params.get("resolution", "720p"),
            "durationSeconds": _duration_seconds(params.get("duration")) or 8,
            "generateAudio": bool(params.get("isVideoWithAudio", False)),
        }
        if request.negative_prompt:
            parameters["negativePrompt"] = request.negative_prompt

        data = await self._post(
            self._model_url(request.model, "predictLongRunning"),
            {"instances": [_video_instance(request)], "parameters": parameters},
            error_cls=ProviderSubmitError,
        )
        name = str(data.get("name", ""))
        if not name:
            msg = "Video generation did not return an operation name."
            raise ProviderSubmitError(self.name, msg)

        logger.info("vertex video submitted | model=%s | operation=%s", request.model, name)
        return SubmittedJob(job_token=name, prompt=request.prompt)

    # ------------------------------------------------------------------
    # HTTP and storage helpers
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        if self._config.api_base_url:
            return self._config.api_base_url.rstrip("/")
        return f"https://{self._config.location}-aiplatform.googleapis.com/v1"

    def _model_url(self, model: str, method: str) -> str:
        return (
            f"{self.base_url}/projects/{self._config.project_id}"
            f"/locations/{self._config.location}/publishers/google/models/{model}:{method}"
        )

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.timeout_s)
        return self._client

    async def _post(
        self,
        url: str,
        body: dict[str, Any],
        *,
        error_cls: type[ProviderError],
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self._config.access_token:
            headers["Authorization"] = f"Bearer {self._config.access_token}"

        try:
            response = await self._http().post(url, json=body, headers=headers)
        except httpx.TransportError as exc:
            msg = f"Request to Vertex AI failed: {exc}"
            raise error_cls(self.name, msg, retryable=True) from exc

        if response.status_code in (401, 403):
            raise ProviderAuthError(self.name, _error_message(response))
        if response.is_error:
            retryable = response.status_code == 429 or response.status_code >= 500
            raise error_cls(self.name, _error_message(response), retryable=retryable)

        try:
            data = response.json()
        except ValueError as exc:
            msg = f"Vertex AI returned a non-JSON response (HTTP {response.status_code})"
            raise error_cls(self.name, msg) from exc
        if not isinstance(data, dict):
            msg = f"Vertex AI returned unexpected JSON of type {type(data).__name__}"
            raise error_cls(self.name, msg)
        return data

    async def _store_output(
        self,
        output: dict[str, Any],
        request: GenerationRequest,
        folder: str,
        index: int,
        *,
        default_mime: str,
        error_cls: type[ProviderError],
    ) -> Artifact:
        """Turn one backend output into an ``Artifact``, uploading inline bytes."""
        nested = output.get("video") if isinstance(output.get("video"), dict) else {}
        mime = str(output.get("mimeType") or nested.get("mimeType") or default_mime)
        extension = _MIME_EXTENSIONS.get(mime, mime.rsplit("/", 1)[-1])
        uri = output.get("gcsUri") or nested.get("uri") or nested.get("gcsUri")
        encoded = output.get("bytesBase64Encoded") or nested.get("bytesBase64Encoded")

        if uri:
            ref = str(uri)
        elif encoded:
            try:
                data = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError) as exc:
                msg = f"Output {index} is not valid base64: {exc}"
                raise error_cls(self.name, msg) from exc
            ref = await self._upload(data, request, folder, index, mime, extension, error_cls)
        else:
            msg = f"Output {index} has neither a storage URI nor inline bytes"
            raise error_cls(self.name, msg)

        width, height = _dimensions(request)
        duration = (
            _duration_seconds(request.parameters.get("duration"))
            if request.generation_type is GenerationType.VIDEO
            else None
        )
        return Artifact(
            artifact_ref=ref,
            format=extension,
            width=width,
            height=height,
            duration_s=float(duration) if duration else None,
            model_version=request.model,
        )

    async def _upload(
        self,
        data: bytes,
        request: GenerationRequest,
        folder: str,
        index: int,
        mime: str,
        extension: str,
        error_cls: type[ProviderError],
    ) -> str:
        if self._artifact_store is None:
            msg = "Backend returned inline bytes but no artifact store is configured"
            raise error_cls(self.name, msg)

        container = self._config.output_container or DEFAULT_OUTPUT_CONTAINER
        path = build_artifact_path(
            request.generation_type.value,
            folder,
            index,
            extension,
            timestamp=self._clock(),
        )
        try:
            return await asyncio.to_thread(
                self._artifact_store.upload_artifact,
                data,
                container,
                path,
                content_type=mime,
            )
        except BlobStoreError as exc:
            raise error_cls(self.name, exc.message, retryable=exc.retryable) from exc


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def _error_message(response: httpx.Response) -> str:
    """Extract ``error.message`` from a Vertex AI error body."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    text = response.text.strip()
    return text or f"HTTP {response.status_code}"


def _add_usage(totals: dict[str, int | None], usage: object) -> None:
    """Sum the token counts one response reports; unreported counts stay ``None``."""
    if not isinstance(usage, dict):
        return
    for key in totals:
        value = usage.get(key)
        if value is None:
            continue
        totals[key] = (totals[key] or 0) + int(value)


def _video_instance(request: GenerationRequest) -> dict[str, Any]:
    """Veo instance: prompt plus optional first frame, last frame, camera preset."""
    instance: dict[str, Any] = {"prompt": request.prompt}
    first = request.reference("first")
    if first is not None:
        instance["image"] = first.to_inline()
    last = request.reference("last")
    if last is not None:
        instance["lastFrame"] = last.to_inline()
    camera_preset = request.parameters.get("cameraPreset")
    if camera_preset:
        instance["cameraControl"] = camera_preset
    return instance


def _duration_seconds(value: object) -> int | None:
    """Parse ``8``, ``"8"``, or ``"8s"`` into whole seconds."""
    if value is None or value == "":
        return None
    try:
        return int(str(value).removesuffix("s"))
    except ValueError:
        return None


def _dimensions(request: GenerationRequest) -> tuple[int | None, int | None]:
    aspect_ratio = str(request.parameters.get("aspectRatio", ""))
    if request.generation_type is GenerationType.VIDEO:
        resolution = str(request.parameters.get("resolution", "720p"))
        return _VIDEO_DIMENSIONS.get((resolution, aspect_ratio), (None, None))
    return _IMAGE_DIMENSIONS.get(aspect_ratio, (None, None))
