"""Shared pytest fixtures for the Generation Studio test suite."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import pytest

from gen_studio.models.generation import (
    Artifact,
    GenerationRequest,
    GenerationType,
    OperationHandle,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

START_TIME = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Manual scheduler
# ---------------------------------------------------------------------------


@dataclass
class ManualCall:
    """One timer registered with ``ManualScheduler``."""

    delay_s: float
    callback: Callable[[], Awaitable[None]]
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler that only fires timers when a test asks it to."""

    def __init__(self) -> None:
        self.calls: list[ManualCall] = []

    def call_later(self, delay_s: float, callback: Callable[[], Awaitable[None]]) -> ManualCall:
        call = ManualCall(delay_s, callback)
        self.calls.append(call)
        return call

    @property
    def pending(self) -> list[ManualCall]:
        return [c for c in self.calls if not c.cancelled and not c.fired]

    async def fire_next(self) -> ManualCall:
        """Fire the oldest pending timer and await its callback."""
        call = self.pending[0]
        call.fired = True
        await call.callback()
        return call

    async def fire(self, call: ManualCall) -> None:
        """Fire *call* even if it was cancelled (a timer that lost the race)."""
        call.fired = True
        await call.callback()


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


# ---------------------------------------------------------------------------
# Domain object factories
# ---------------------------------------------------------------------------


def make_video_request(**overrides: Any) -> GenerationRequest:
    fields: dict[str, Any] = {
        "generation_type": GenerationType.VIDEO,
        "model": "veo-3.1-generate-preview",
        "prompt": "A red fox running through snow",
        "user_query": "A red fox running through snow",
        "sample_count": 1,
        "parameters": {"aspectRatio": "16:9", "resolution": "720p", "duration": "8s"},
    }
    fields.update(overrides)
    return GenerationRequest(**fields)


def make_image_request(**overrides: Any) -> GenerationRequest:
    fields: dict[str, Any] = {
        "generation_type": GenerationType.IMAGE,
        "model": "imagen-4.0-generate-001",
        "prompt": "A lighthouse at dusk",
        "user_query": "A lighthouse at dusk",
        "sample_count": 2,
        "parameters": {"aspectRatio": "1:1", "style": "", "secondary_style": ""},
    }
    fields.update(overrides)
    return GenerationRequest(**fields)


def make_handle(job_token: str = "operations/op-1", **overrides: Any) -> OperationHandle:
    return OperationHandle(
        job_token=job_token,
        request=overrides.pop("request", None) or make_video_request(),
        started_at=overrides.pop("started_at", START_TIME),
        started_monotonic=overrides.pop("started_monotonic", 100.0),
    )


def make_artifact(ref: str = "generated-media/videos/2026/03/01/op-1/sample_0.mp4") -> Artifact:
    return Artifact(
        artifact_ref=ref,
        format="mp4",
        width=1280,
        height=720,
        duration_s=8.0,
        model_version="veo-3.1-generate-preview",
    )


@pytest.fixture()
def video_request() -> GenerationRequest:
    return make_video_request()


@pytest.fixture()
def image_request() -> GenerationRequest:
    return make_image_request()


@pytest.fixture()
def handle() -> OperationHandle:
    return make_handle()
