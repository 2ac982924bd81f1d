"""Azure Functions entry point: Generation Studio.

This module registers all Azure Functions (HTTP routes, the generation
orchestrator, activities) using the Python v2 programming model.

All business logic lives in the gen_studio package. This file is purely
the wiring layer between Azure Functions bindings and application code.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import azure.durable_functions as df
import azure.functions as func

from gen_studio.core.exceptions import ContractError, StudioError, ValidationError
from gen_studio.core.ingress import deserialize_activity_input, parse_json_body

app = func.FunctionApp()

logger = logging.getLogger("gen_studio.function_app")


def _json_response(body: object, status_code: int = 200) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(body),
        status_code=status_code,
        mimetype="application/json",
    )


def _error_response(message: str, status_code: int) -> func.HttpResponse:
    return _json_response({"error": message}, status_code=status_code)


def _studio_error_response(exc: StudioError) -> func.HttpResponse:
    return _json_response({"error": exc.message, "code": exc.code}, status_code=exc.http_status)


# ---------------------------------------------------------------------------
# HTTP: Submit a generation
# ---------------------------------------------------------------------------


@app.function_name("submit_generation")
@app.route(route="generations", methods=["POST"])
@app.durable_client_input(client_name="client")
async def submit_generation_http(
    req: func.HttpRequest,
    client: df.DurableOrchestrationClient,
) -> func.HttpResponse:
    """Submit a generation from posted form state.

    Images are generated inline: the response carries the artifacts and
    the history record id.  Videos are accepted by the backend, handed to
    ``generation_orchestrator`` for polling, and answered with the
    Durable Functions check-status payload (HTTP 202).
    """
    from gen_studio.activities.build_request import build_generation_request
    from gen_studio.activities.submit_generation import SubmissionError, submit_generation
    from gen_studio.core.config import StudioConfig
    from gen_studio.core.constants import MODEL_LABELS
    from gen_studio.models.generation import SubmittedJob
    from gen_studio.utils.helpers import utc_now

    try:
        form = parse_json_body(req.get_body())
        request = build_generation_request(form)
    except (ValidationError, ContractError) as exc:
        logger.info("Generation rejected | code=%s | error=%s", exc.code, exc.message)
        return _studio_error_response(exc)

    config = StudioConfig.from_env()

    if not request.is_long_running:
        return await _generate_inline(form, config)

    backend = _build_backend(config)
    started_at = utc_now()
    try:
        result = await submit_generation(backend, request, model_labels=MODEL_LABELS)
    except SubmissionError as exc:
        return _studio_error_response(exc)
    finally:
        await backend.aclose()

    if not isinstance(result, SubmittedJob):
        return _error_response("Backend returned an unexpected result", 502)

    try:
        instance_id = await client.start_new(
            "generation_orchestrator",
            client_input={
                "job_token": result.job_token,
                "request": request.to_dict(),
                "started_at": started_at.isoformat(),
            },
        )
    except Exception:
        logger.exception("Failed to start orchestrator | job=%s", result.job_token)
        raise

    logger.info(
        "Orchestrator started | instance_id=%s | job=%s | model=%s",
        instance_id,
        result.job_token,
        request.model,
    )
    return client.create_check_status_response(req, instance_id)


async def _generate_inline(form: dict[str, Any], config: Any) -> func.HttpResponse:
    """Run a synchronous generation through a ``GenerationSession``."""
    from gen_studio.activities.record_history import build_history_recorder, build_record_id
    from gen_studio.models.outcome import GenerationState
    from gen_studio.orchestrators.session import GenerationSession

    recorder = build_history_recorder()
    backend = _build_backend(config)
    session = GenerationSession(backend, recorder=recorder)
    try:
        request = await session.submit(form)
        outcome = await session.wait()
        await recorder.drain()
    finally:
        await backend.aclose()

    if request is None:
        return _error_response(session.view.error_message, 400)
    if outcome is None or outcome.state is not GenerationState.DONE_SUCCESS:
        return _error_response(session.view.error_message, 502)

    return _json_response(
        {
            "operation_id": outcome.operation_id,
            "state": outcome.state.value,
            "artifacts": [a.to_dict() for a in outcome.artifacts],
            "record_id": build_record_id(
                request.generation_type.value,
                outcome.started_at,
                outcome.operation_id,
            ),
        }
    )


def _build_backend(config: Any) -> Any:
    from gen_studio.core.ingress import get_blob_service_client
    from gen_studio.providers.factory import backend_config_from, get_backend
    from gen_studio.storage.blob_store import ArtifactBlobStore

    return get_backend(
        config.generation_backend,
        backend_config_from(config),
        artifact_store=ArtifactBlobStore(
            get_blob_service_client(),
            signed_url_ttl_minutes=config.signed_url_ttl_minutes,
        ),
    )


# ---------------------------------------------------------------------------
# HTTP: Generation status / cancellation
# ---------------------------------------------------------------------------


@app.function_name("generation_status")
@app.route(route="generations/{instance_id}", methods=["GET"])
@app.durable_client_input(client_name="client")
async def generation_status(
    req: func.HttpRequest,
    client: df.DurableOrchestrationClient,
) -> func.HttpResponse:
    """Return the state of a long-running generation.

    While polling, ``custom_status`` carries ``state`` and ``attempts``;
    once finished, ``output`` is the ``GenerationOutcomeDict``.
    """
    instance_id = req.route_params.get("instance_id", "")
    if not instance_id:
        return _error_response("Missing instance_id", 400)

    status = await client.get_status(instance_id)
    if not status or not status.instance_id:
        return _error_response("Instance not found", 404)

    runtime_status = status.runtime_status
    return _json_response(
        {
            "instance_id": instance_id,
            "runtime_status": runtime_status.value if runtime_status else "",
            "custom_status": status.custom_status,
            "output": status.output,
        }
    )


@app.function_name("cancel_generation")
@app.route(route="generations/{instance_id}", methods=["DELETE"])
@app.durable_client_input(client_name="client")
async def cancel_generation(
    req: func.HttpRequest,
    client: df.DurableOrchestrationClient,
) -> func.HttpResponse:
    """Stop tracking a long-running generation. No history is recorded."""
    instance_id = req.route_params.get("instance_id", "")
    if not instance_id:
        return _error_response("Missing instance_id", 400)

    status = await client.get_status(instance_id)
    if not status or not status.instance_id:
        return _error_response("Instance not found", 404)

    await client.terminate(instance_id, "cancelled by user")
    logger.info("Generation cancelled | instance_id=%s", instance_id)
    return func.HttpResponse(status_code=202)


# ---------------------------------------------------------------------------
# HTTP: History
# ---------------------------------------------------------------------------


@app.function_name("list_history")
@app.route(route="history", methods=["GET"])
def list_history_http(req: func.HttpRequest) -> func.HttpResponse:
    """Most recent history records, newest first (``?limit=&type=``)."""
    from gen_studio.activities.history_queries import list_history, parse_history_query
    from gen_studio.core.config import StudioConfig
    from gen_studio.storage.history_store import get_history_store

    config = StudioConfig.from_env()
    try:
        limit, generation_type = parse_history_query(
            dict(req.params), max_limit=config.history_limit
        )
    except ValidationError as exc:
        return _studio_error_response(exc)

    records = list_history(
        get_history_store(config),
        limit=limit,
        generation_type=generation_type,
    )
    return _json_response({"records": records, "count": len(records)})


@app.function_name("delete_history_record")
@app.route(route="history/{record_id}", methods=["DELETE"])
def delete_history_record_http(req: func.HttpRequest) -> func.HttpResponse:
    """Delete one history record."""
    from gen_studio.activities.history_queries import delete_history_record
    from gen_studio.core.config import StudioConfig
    from gen_studio.storage.history_store import get_history_store

    record_id = req.route_params.get("record_id", "")
    try:
        deleted = delete_history_record(get_history_store(StudioConfig.from_env()), record_id)
    except ValidationError as exc:
        return _studio_error_response(exc)

    if not deleted:
        return _error_response("Record not found", 404)
    return func.HttpResponse(status_code=204)


@app.function_name("clear_history")
@app.route(route="history", methods=["DELETE"])
def clear_history_http(req: func.HttpRequest) -> func.HttpResponse:  # noqa: ARG001
    """Delete every history record."""
    from gen_studio.activities.history_queries import clear_history
    from gen_studio.core.config import StudioConfig
    from gen_studio.storage.history_store import get_history_store

    count = clear_history(get_history_store(StudioConfig.from_env()))
    return _json_response({"deleted": count})


@app.function_name("artifact_url")
@app.route(route="artifacts/url", methods=["GET"])
def artifact_url_http(req: func.HttpRequest) -> func.HttpResponse:
    """Signed display URL for an artifact reference (``?ref=``)."""
    from gen_studio.activities.history_queries import resolve_artifact_url
    from gen_studio.core.config import StudioConfig
    from gen_studio.core.ingress import get_blob_service_client
    from gen_studio.storage.blob_store import ArtifactBlobStore

    config = StudioConfig.from_env()
    blob_store = ArtifactBlobStore(
        get_blob_service_client(),
        signed_url_ttl_minutes=config.signed_url_ttl_minutes,
    )
    try:
        url = resolve_artifact_url(blob_store, req.params.get("ref", ""))
    except (ValidationError, ContractError) as exc:
        return _studio_error_response(exc)
    return _json_response({"url": url})


# ---------------------------------------------------------------------------
# Orchestrator: Long-running generation
# ---------------------------------------------------------------------------


@app.function_name("generation_orchestrator")
@app.orchestration_trigger(context_name="context")
def generation_orchestrator(context: df.DurableOrchestrationContext) -> object:
    """Durable Functions orchestrator for a submitted video generation.

    Polls with backoff until terminal and records history on success.
    See ``gen_studio.orchestrators.durable`` for implementation.
    """
    from gen_studio.orchestrators.durable import generation_orchestrator as orchestrator_function

    return orchestrator_function(context)


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------


@app.function_name("check_status")
@app.activity_trigger(input_name="activityInput")
async def check_status_activity(activityInput: str) -> dict[str, object]:  # noqa: N803
    """Durable Functions activity: check a long-running generation once.

    Input:
        JSON string (or dict when replaying) with ``job_token`` and
        ``request`` (``GenerationRequest.to_dict()``).

    Returns:
        ``StatusResult.to_dict()``.

    Raises:
        StatusCheckError: If the status check fails; the orchestrator
            treats this as terminal.
    """
    from gen_studio.activities.check_status import check_status_activity as run_check
    from gen_studio.core.config import StudioConfig

    payload = deserialize_activity_input(activityInput)
    backend = _build_backend(StudioConfig.from_env())
    try:
        result = await run_check(payload, backend=backend)
    finally:
        await backend.aclose()
    return dict(result)


@app.function_name("record_history")
@app.activity_trigger(input_name="activityInput")
def record_history_activity(activityInput: str) -> dict[str, object]:  # noqa: N803
    """Durable Functions activity: persist one successful generation.

    Input:
        JSON string (or dict when replaying) with ``outcome``,
        ``ended_at``, and ``execution_time_ms``.

    Returns:
        Dict with ``record_id``, ``success``, and ``duplicate``.
    """
    from gen_studio.activities.record_history import record_history

    payload = deserialize_activity_input(activityInput)
    result = record_history(payload)

    logger.info(
        "record_history activity completed | id=%s | success=%s | duplicate=%s",
        result["record_id"],
        result["success"],
        result["duplicate"],
    )
    return dict(result)
