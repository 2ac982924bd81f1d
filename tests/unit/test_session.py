"""Tests for GenerationSession, the per-view orchestrator facade.

Uses an in-memory backend and ``ManualScheduler`` so submissions, polls,
and cancellations interleave deterministically.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest

from gen_studio.activities.record_history import RecordResult
from gen_studio.models.generation import (
    BackendConfig,
    GenerationRequest,
    StatusResult,
    SubmittedJob,
    SyncResult,
)
from gen_studio.models.outcome import GenerationState
from gen_studio.orchestrators.session import GenerationSession
from gen_studio.providers.base import (
    GenerationBackend,
    ProviderStatusError,
    ProviderSubmitError,
)
from tests.conftest import ManualScheduler, make_artifact

VIDEO_FORM: dict[str, Any] = {
    "generationType": "video",
    "modelVersion": "veo-3.1-generate-preview",
    "prompt": "A red fox running through snow",
    "sampleCount": 1,
}

IMAGE_FORM: dict[str, Any] = {
    "generationType": "image",
    "modelVersion": "imagen-4.0-generate-001",
    "prompt": "A lighthouse at dusk",
    "sampleCount": 2,
}


class FakeBackend(GenerationBackend):
    """Scripted in-memory backend."""

    def __init__(self) -> None:
        super().__init__(BackendConfig(name="fake"))
        self.submit_result: SyncResult | SubmittedJob | Exception = SubmittedJob("operations/op-1")
        self.statuses: list[StatusResult | Exception] = []
        self.submit_gate: asyncio.Event | None = None
        self.submitted: list[GenerationRequest] = []
        self.checked: list[str] = []

    async def submit_generation(self, request: GenerationRequest) -> SyncResult | SubmittedJob:
        self.submitted.append(request)
        result = self.submit_result
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        if isinstance(result, Exception):
            raise result
        return result

    async def check_status(self, job_token: str, request: GenerationRequest) -> StatusResult:
        self.checked.append(job_token)
        result = self.statuses.pop(0) if self.statuses else StatusResult.pending()
        if isinstance(result, Exception):
            raise result
        return result


def _make_recorder() -> AsyncMock:
    recorder = AsyncMock()
    recorder.record.return_value = RecordResult(record_id="rec", success=True)
    return recorder


def _make_session(
    backend: FakeBackend,
    scheduler: ManualScheduler,
    recorder: AsyncMock | None = None,
    monotonic: Any = None,
) -> GenerationSession:
    kwargs: dict[str, Any] = {}
    if monotonic is not None:
        kwargs["monotonic"] = monotonic
    return GenerationSession(
        backend,
        recorder=recorder,
        scheduler=scheduler,
        rand=lambda: 0.5,
        **kwargs,
    )


# ===================================================================
# Image (synchronous) path
# ===================================================================


class TestSessionImage:
    @pytest.mark.asyncio()
    async def test_image_success_reconciles_immediately(self, scheduler: ManualScheduler) -> None:
        backend = FakeBackend()
        backend.submit_result = SyncResult(artifacts=(make_artifact("media/a.png"),))
        recorder = _make_recorder()
        session = _make_session(backend, scheduler, recorder)

        request = await session.submit(IMAGE_FORM)
        outcome = await session.wait()

        assert request is not None
        assert session.state is GenerationState.DONE_SUCCESS
        assert outcome is not None
        assert outcome.operation_id.startswith("sync_")
        assert session.view.artifacts == [make_artifact("media/a.png")]
        assert session.view.is_loading is False
        assert scheduler.calls == []
        recorder.record.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_submission_failure_surfaces_message(self, scheduler: ManualScheduler) -> None:
        backend = FakeBackend()
        backend.submit_result = ProviderSubmitError("fake", "Error: Error: prompt blocked")
        recorder = _make_recorder()
        session = _make_session(backend, scheduler, recorder)

        await session.submit(IMAGE_FORM)

        assert session.state is GenerationState.DONE_ERROR
        assert session.view.error_message == "prompt blocked"
        assert session.view.is_loading is False
        assert scheduler.calls == []
        recorder.record.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_invalid_form_never_reaches_backend(self, scheduler: ManualScheduler) -> None:
        backend = FakeBackend()
        session = _make_session(backend, scheduler)

        result = await session.submit({**IMAGE_FORM, "modelVersion": ""})

        assert result is None
        assert backend.submitted == []
        assert session.view.error_message == "Please select a model."
        assert session.state is GenerationState.DONE_ERROR


# ===================================================================
# Video (long-running) path
# ===================================================================


class TestSessionVideo:
    @pytest.mark.asyncio()
    async def test_video_polls_to_success(self, scheduler: ManualScheduler) -> None:
        backend = FakeBackend()
        backend.statuses = [StatusResult.pending(), StatusResult.succeeded([make_artifact()])]
        recorder = _make_recorder()
        session = _make_session(backend, scheduler, recorder)

        await session.submit(VIDEO_FORM)
        assert session.state is GenerationState.POLLING
        assert session.view.is_loading is True
        assert session.handle is not None
        assert session.handle.job_token == "operations/op-1"

        await scheduler.fire_next()
        assert session.attempt_count == 1
        await scheduler.fire_next()

        outcome = await session.wait()
        assert outcome is not None
        assert outcome.state is GenerationState.DONE_SUCCESS
        assert session.state is GenerationState.DONE_SUCCESS
        assert session.view.artifacts == [make_artifact()]
        recorder.record.assert_awaited_once_with(outcome)

    @pytest.mark.asyncio()
    async def test_three_pending_checks_then_success(self, scheduler: ManualScheduler) -> None:
        artifact = make_artifact()
        backend = FakeBackend()
        backend.statuses = [StatusResult.pending()] * 3 + [StatusResult.succeeded([artifact])]
        recorder = _make_recorder()
        session = _make_session(backend, scheduler, recorder)

        await session.submit(VIDEO_FORM)
        while scheduler.pending:
            await scheduler.fire_next()

        outcome = await session.wait()
        assert backend.checked == ["operations/op-1"] * 4
        assert outcome is not None
        assert outcome.state is GenerationState.DONE_SUCCESS
        assert outcome.artifacts == (artifact,)
        assert outcome.attempts == 3
        assert session.view.artifacts == [artifact]
        recorder.record.assert_awaited_once_with(outcome)

    @pytest.mark.asyncio()
    async def test_video_timeout(self, scheduler: ManualScheduler) -> None:
        backend = FakeBackend()
        recorder = _make_recorder()
        session = _make_session(backend, scheduler, recorder)

        await session.submit(VIDEO_FORM)
        while scheduler.pending:
            await scheduler.fire_next()

        assert len(backend.checked) == 30
        assert session.state is GenerationState.DONE_TIMEOUT
        assert session.view.error_message == "Video generation timed out after 30 attempts."
        recorder.record.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_status_failure_is_terminal(self, scheduler: ManualScheduler) -> None:
        backend = FakeBackend()
        backend.statuses = [ProviderStatusError("fake", "Error: upstream 503", retryable=True)]
        session = _make_session(backend, scheduler)

        await session.submit(VIDEO_FORM)
        await scheduler.fire_next()

        assert session.state is GenerationState.DONE_ERROR
        assert session.view.error_message == "Error checking video status: upstream 503"
        assert scheduler.pending == []

    @pytest.mark.asyncio()
    async def test_elapsed_ms_tracks_monotonic_clock(self, scheduler: ManualScheduler) -> None:
        now = [50.0]
        session = _make_session(FakeBackend(), scheduler, monotonic=lambda: now[0])

        await session.submit(VIDEO_FORM)
        now[0] = 62.5

        assert session.elapsed_ms() == pytest.approx(12500.0)


# ===================================================================
# Cancellation and supersession
# ===================================================================


class TestSessionCancel:
    @pytest.mark.asyncio()
    async def test_cancel_while_polling(self, scheduler: ManualScheduler) -> None:
        backend = FakeBackend()
        backend.statuses = [StatusResult.succeeded([make_artifact()])]
        recorder = _make_recorder()
        session = _make_session(backend, scheduler, recorder)

        await session.submit(VIDEO_FORM)
        timer = scheduler.pending[0]
        session.cancel()

        assert timer.cancelled
        assert session.state is GenerationState.CANCELLED
        assert session.view.is_loading is False
        assert await session.wait() is None

        await scheduler.fire(timer)
        assert backend.checked == []
        recorder.record.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_cancel_after_terminal_is_noop(self, scheduler: ManualScheduler) -> None:
        backend = FakeBackend()
        backend.submit_result = SyncResult(artifacts=(make_artifact("media/a.png"),))
        session = _make_session(backend, scheduler)

        await session.submit(IMAGE_FORM)
        session.cancel()

        assert session.state is GenerationState.DONE_SUCCESS

    @pytest.mark.asyncio()
    async def test_cancel_during_submission_discards_result(
        self, scheduler: ManualScheduler
    ) -> None:
        backend = FakeBackend()
        backend.submit_gate = asyncio.Event()
        session = _make_session(backend, scheduler)

        submit = asyncio.create_task(session.submit(VIDEO_FORM))
        await asyncio.sleep(0)
        session.cancel()
        backend.submit_gate.set()
        await submit

        assert session.state is GenerationState.CANCELLED
        assert scheduler.calls == []

    @pytest.mark.asyncio()
    async def test_new_submission_stops_previous_loop(self, scheduler: ManualScheduler) -> None:
        backend = FakeBackend()
        session = _make_session(backend, scheduler)

        await session.submit(VIDEO_FORM)
        first_timer = scheduler.pending[0]

        backend.submit_result = SubmittedJob("operations/op-2")
        await session.submit(VIDEO_FORM)

        assert first_timer.cancelled
        assert len(scheduler.pending) == 1
        assert session.handle is not None
        assert session.handle.job_token == "operations/op-2"

        await scheduler.fire(first_timer)
        assert backend.checked == []

    @pytest.mark.asyncio()
    async def test_superseded_submission_result_is_discarded(
        self, scheduler: ManualScheduler
    ) -> None:
        backend = FakeBackend()
        gate = asyncio.Event()
        backend.submit_gate = gate
        session = _make_session(backend, scheduler)

        first = asyncio.create_task(session.submit(VIDEO_FORM))
        await asyncio.sleep(0)

        backend.submit_gate = None
        backend.submit_result = SyncResult(artifacts=(make_artifact("media/b.png"),))
        await session.submit(IMAGE_FORM)
        assert session.state is GenerationState.DONE_SUCCESS

        gate.set()
        await first

        assert session.state is GenerationState.DONE_SUCCESS
        assert session.view.artifacts == [make_artifact("media/b.png")]
        assert scheduler.calls == []

    @pytest.mark.asyncio()
    async def test_outcome_recorded_late_does_not_resolve_newer_operation(
        self, scheduler: ManualScheduler
    ) -> None:
        backend = FakeBackend()
        backend.submit_result = SyncResult(artifacts=(make_artifact("media/a.png"),))
        recording = asyncio.Event()
        release = asyncio.Event()

        async def _slow_record(outcome: Any) -> RecordResult:
            recording.set()
            await release.wait()
            return RecordResult(record_id="rec", success=True)

        recorder = AsyncMock()
        recorder.record.side_effect = _slow_record
        session = _make_session(backend, scheduler, recorder)

        first = asyncio.create_task(session.submit(IMAGE_FORM))
        await recording.wait()

        backend.submit_result = SubmittedJob("operations/op-2")
        await session.submit(VIDEO_FORM)
        assert session.state is GenerationState.POLLING

        release.set()
        await first

        waiter = asyncio.ensure_future(session.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        assert session.state is GenerationState.POLLING

        backend.statuses = [StatusResult.succeeded([make_artifact()])]
        await scheduler.fire_next()

        outcome = await waiter
        assert outcome is not None
        assert outcome.operation_id == "operations/op-2"
        assert session.view.artifacts == [make_artifact()]
