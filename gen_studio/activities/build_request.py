"""Build request activity — turn posted form state into a ``GenerationRequest``.

Validates the form and composes the prompt actually sent to the backend:

1. ``"A {secondary_style} {style} of {prompt}"`` when both styles are set;
2. descriptor fields (light, perspective, colours, ...) appended as
   ``"{value} {field name}, "``;
3. use-case quality modifiers;
4. for Gemini image models only, which take no negative prompt
   parameter: a fixed quality suffix and ``". Avoid: {negative}"``.

An ``inputImage`` on an image form turns the request into a Gemini
edit: the prompt becomes an edit instruction and the image travels as
a ``ReferenceImage``.  Video forms may carry a first frame
(``interpolImageFirst``) and a last frame (``interpolImageLast``).

Validation failures raise ``RequestValidationError`` and are surfaced as
submission errors; no polling starts for an invalid request.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from gen_studio.core.exceptions import ValidationError
from gen_studio.models.generation import GenerationRequest, GenerationType, ReferenceImage

logger = logging.getLogger("gen_studio.activities.build_request")

IMAGE_ASPECT_RATIOS = frozenset({"1:1", "16:9", "9:16", "4:3", "3:4"})
VIDEO_ASPECT_RATIOS = frozenset({"16:9", "9:16"})
VIDEO_RESOLUTIONS = frozenset({"720p", "1080p"})
VIDEO_DURATION_RANGE_S = (4, 8)
MAX_SAMPLE_COUNT = 4

FULL_PROMPT_FIELDS = ("light", "light_coming_from", "shot_from", "perspective", "image_colors")

USE_CASE_MODIFIERS = {
    "Food, insects, plants (still life)": ", High detail, precise focusing, controlled lighting",
    "Sports, wildlife (motion)": ", Fast shutter speed, movement tracking",
    "Astronomical, landscape (wide-angle)": (
        ", Long exposure times, sharp focus, long exposure, smooth water or clouds"
    ),
}

QUALITY_SUFFIX = ". High resolution, high quality, detailed, sharp focus, crisp details"
EDIT_SUFFIX = ". Maintain high resolution, sharp focus, and crisp details in the edited result."


class RequestValidationError(ValidationError):
    """Raised when posted form state cannot form a valid request."""

    default_stage = "build_request"
    default_code = "REQUEST_INVALID"


def compose_prompt(form: Mapping[str, Any], *, inline_negative: bool = False) -> str:
    """Compose the backend prompt from the form's prompt and style fields."""
    prompt = str(form.get("prompt", "")).strip()

    style = _text(form.get("style"))
    secondary_style = _text(form.get("secondary_style"))
    if style and secondary_style:
        prompt = f"A {secondary_style} {style} of {prompt}"

    descriptors = ""
    for name in FULL_PROMPT_FIELDS:
        value = _text(form.get(name))
        if value:
            descriptors += f" {value} {name.replace('_', ' ')}, "
    if descriptors:
        prompt = f"{prompt}, {descriptors}"

    prompt += USE_CASE_MODIFIERS.get(_text(form.get("use_case")), "")

    if inline_negative:
        prompt = f"{prompt}{QUALITY_SUFFIX}"
        negative = _text(form.get("negativePrompt"))
        if negative:
            prompt = f"{prompt}. Avoid: {negative}"
    return prompt


def build_generation_request(form: Mapping[str, Any]) -> GenerationRequest:
    """Validate *form* and build the immutable request snapshot.

    Raises:
        RequestValidationError: If any field is missing or out of range.
    """
    generation_type = _generation_type(form.get("generationType"))
    model = _text(form.get("modelVersion"))
    if not model:
        raise RequestValidationError("Please select a model.")

    user_query = _text(form.get("prompt"))
    if not user_query:
        raise RequestValidationError("Prompt must not be empty.")

    sample_count = _sample_count(form.get("sampleCount", 1))
    is_video_model = model.startswith("veo")
    if generation_type is GenerationType.VIDEO and not is_video_model:
        raise RequestValidationError(f"Model {model!r} cannot generate videos.")
    if generation_type is GenerationType.IMAGE and is_video_model:
        raise RequestValidationError(f"Model {model!r} cannot generate images.")

    if generation_type is GenerationType.VIDEO:
        parameters = _video_parameters(form)
        references = _video_frames(form)
        prompt = compose_prompt(form)
    else:
        parameters = _image_parameters(form)
        edit_image = _reference_image(form.get("inputImage"), "edit")
        if edit_image is None:
            references = ()
            prompt = compose_prompt(form, inline_negative="gemini" in model)
        elif "gemini" not in model:
            raise RequestValidationError("Image editing is only available with Gemini models.")
        else:
            references = (edit_image,)
            prompt = compose_edit_prompt(form)

    request = GenerationRequest(
        generation_type=generation_type,
        model=model,
        prompt=prompt,
        user_query=user_query,
        negative_prompt=_text(form.get("negativePrompt")),
        sample_count=sample_count,
        parameters=parameters,
        reference_images=references,
    )
    logger.info(
        "generation request built | type=%s | model=%s | samples=%d | references=%s",
        generation_type.value,
        model,
        sample_count,
        ",".join(r.purpose for r in references) or "-",
    )
    return request


def compose_edit_prompt(form: Mapping[str, Any]) -> str:
    """Instruction for a Gemini image edit, with the negative prompt inlined."""
    prompt = f"Edit this image: {_text(form.get('prompt'))}{EDIT_SUFFIX}"
    negative = _text(form.get("negativePrompt"))
    if negative:
        prompt = f"{prompt} Avoid: {negative}"
    return prompt


# ---------------------------------------------------------------------------
# Field helpers (module-private)
# ---------------------------------------------------------------------------


def _text(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def _generation_type(value: object) -> GenerationType:
    try:
        return GenerationType(_text(value).lower())
    except ValueError:
        msg = f"Unknown generation type: {value!r} (expected 'image' or 'video')"
        raise RequestValidationError(msg) from None


def _sample_count(value: object) -> int:
    try:
        count = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        msg = f"Sample count must be a number, got {value!r}"
        raise RequestValidationError(msg) from None
    if not 1 <= count <= MAX_SAMPLE_COUNT:
        msg = f"Sample count must be between 1 and {MAX_SAMPLE_COUNT}, got {count}"
        raise RequestValidationError(msg)
    return count


def _image_parameters(form: Mapping[str, Any]) -> dict[str, Any]:
    aspect_ratio = _text(form.get("aspectRatio")) or "1:1"
    if aspect_ratio not in IMAGE_ASPECT_RATIOS:
        msg = f"Unsupported aspect ratio for images: {aspect_ratio!r}"
        raise RequestValidationError(msg)
    return {
        "aspectRatio": aspect_ratio,
        "style": _text(form.get("style")),
        "secondary_style": _text(form.get("secondary_style")),
    }


def _video_parameters(form: Mapping[str, Any]) -> dict[str, Any]:
    aspect_ratio = _text(form.get("aspectRatio")) or "16:9"
    if aspect_ratio not in VIDEO_ASPECT_RATIOS:
        msg = f"Unsupported aspect ratio for videos: {aspect_ratio!r}"
        raise RequestValidationError(msg)

    resolution = _text(form.get("resolution")) or "720p"
    if resolution not in VIDEO_RESOLUTIONS:
        msg = f"Unsupported video resolution: {resolution!r}"
        raise RequestValidationError(msg)

    raw_duration = form.get("durationSeconds", VIDEO_DURATION_RANGE_S[1])
    try:
        duration = int(str(raw_duration).removesuffix("s"))
    except ValueError:
        msg = f"Video duration must be a number of seconds, got {raw_duration!r}"
        raise RequestValidationError(msg) from None
    lo, hi = VIDEO_DURATION_RANGE_S
    if not lo <= duration <= hi:
        msg = f"Video duration must be between {lo} and {hi} seconds, got {duration}"
        raise RequestValidationError(msg)

    return {
        "aspectRatio": aspect_ratio,
        "resolution": resolution,
        "duration": f"{duration}s",
        "isVideoWithAudio": bool(form.get("isVideoWithAudio", False)),
        "cameraPreset": _text(form.get("cameraPreset")),
        "style": _text(form.get("style")),
        "secondary_style": _text(form.get("secondary_style")),
    }


def _video_frames(form: Mapping[str, Any]) -> tuple[ReferenceImage, ...]:
    first = _reference_image(form.get("interpolImageFirst"), "first")
    last = _reference_image(form.get("interpolImageLast"), "last")
    if last is not None and _text(form.get("cameraPreset")):
        raise RequestValidationError(
            "You can't have both a last frame and a camera preset selected. "
            "Please leverage only one of the two feature at once."
        )
    if last is not None and first is None:
        raise RequestValidationError("A last frame needs a first frame.")
    return tuple(r for r in (first, last) if r is not None)


def _reference_image(value: object, purpose: str) -> ReferenceImage | None:
    """Parse an uploaded image; an empty upload is ``None``.

    Accepts a base64 string, a data URL, or
    ``{"base64Image": ..., "format": "png"}``.
    """
    if isinstance(value, Mapping):
        data = _text(value.get("base64Image"))
        mime_type = _mime_type(_text(value.get("format")))
    else:
        data = _text(value)
        mime_type = "image/png"
    if data.startswith("data:"):
        header, _, data = data.partition(",")
        mime_type = header.removeprefix("data:").split(";", 1)[0] or mime_type
    if not data:
        return None
    return ReferenceImage(purpose=purpose, data=data, mime_type=mime_type)


def _mime_type(image_format: str) -> str:
    if not image_format:
        return "image/png"
    if "/" in image_format:
        return image_format.lower()
    subtype = image_format.lower()
    return f"image/{'jpeg' if subtype == 'jpg' else subtype}"
