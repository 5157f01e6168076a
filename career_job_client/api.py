import json
import sys
from typing import Optional

import aiohttp
from aiohttp import web
from loguru import logger
from pydantic import ValidationError

from career_job_client.errors import JobError
from career_job_client.job_dispatch_client import JobDispatchClient
from career_job_client.jobs import (
    JobPayload,
    JobType,
    build_payload,
    smoke_roadmap_payload,
)
from career_job_client.settings import RunnerSettings, ServerSettings

SERVICE_NAME = "career-job-client"

dispatch_client_key = web.AppKey("dispatch_client", JobDispatchClient)
runner_settings_key = web.AppKey("runner_settings", RunnerSettings)
polling_key = web.AppKey("polling", dict)


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _bad_request(message: str) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(
        text=json.dumps({"error": message}), content_type="application/json"
    )


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except JobError as e:
        logger.error(f"{request.method} {request.path} failed: {e.message}")
        return web.json_response(e.to_dict(), status=e.http_status)
    except Exception:
        logger.exception(f"{request.method} {request.path} failed unexpectedly")
        return _error("Internal server error", 500)


async def _read_json(request: web.Request) -> dict:
    try:
        body = await request.json()
    except ValueError as e:
        # covers JSONDecodeError and bodies that are not valid in their charset
        raise _bad_request(f"Malformed JSON body: {e}") from e
    if not isinstance(body, dict):
        raise _bad_request("Request body must be a JSON object")
    return body


def _with_user_email(request: web.Request, body: dict) -> dict:
    email = request.headers.get("X-User-Email") or body.get("userEmail")
    if email:
        body = {**body, "userEmail": email}
    return body


def _payload(request: web.Request, job_type: JobType, body: dict) -> JobPayload:
    try:
        return build_payload(job_type, _with_user_email(request, body))
    except ValidationError as e:
        logger.info(f"{request.method} {request.path} rejected: {e.error_count()} invalid fields")
        raise _bad_request(f"Invalid submission data: {e}") from e


async def _run(request: web.Request, job_type: JobType, body: dict):
    client = request.app[dispatch_client_key]
    payload = _payload(request, job_type, body)
    config = request.app[polling_key].get(job_type)
    return await client.run_job(job_type, payload, config=config)


async def handle_resume_analyzer(request: web.Request) -> web.Response:
    body = await _read_json(request)
    logger.info(f"Resume analysis requested for record {body.get('recordId')}")
    output = await _run(request, JobType.resume_analysis, body)
    return web.json_response({"success": True, "result": output})


async def handle_roadmap_agent(request: web.Request) -> web.Response:
    body = await _read_json(request)
    logger.info(f"Roadmap requested for {body.get('roadmapId')}")
    output = await _run(request, JobType.roadmap, body)
    return web.json_response(output)


async def handle_submit_test(request: web.Request) -> web.Response:
    body = await _read_json(request)
    payload = _payload(request, JobType.test_evaluation, body)
    client = request.app[dispatch_client_key]
    run_id = await client.dispatch(JobType.test_evaluation, payload)
    logger.info(f"Test {payload.test_id} queued for evaluation as run {run_id}")
    return web.json_response(
        {
            "message": "Test evaluation queued successfully! You will receive a detailed report soon.",
            "evaluationRunId": run_id,
            "testId": payload.test_id,
            "userId": payload.user_id,
        },
        status=202,
    )


async def handle_debug_roadmap(request: web.Request) -> web.Response:
    client = request.app[dispatch_client_key]
    try:
        run_id = await client.dispatch(JobType.roadmap, smoke_roadmap_payload())
    except JobError as e:
        logger.error(f"Smoke test error: {e.message}")
        return web.json_response({"ok": False, "error": e.message}, status=500)
    return web.json_response(
        {"ok": True, "message": "Roadmap event sent successfully.", "runId": run_id}
    )


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "service": SERVICE_NAME})


def create_app(
    settings: Optional[RunnerSettings] = None,
    polling: Optional[dict] = None,
) -> web.Application:
    """Build the web application; polling maps a JobType to its StatusPollingConfig override"""
    settings = settings or RunnerSettings.from_env()
    app = web.Application(middlewares=[error_middleware])
    app[runner_settings_key] = settings
    app[polling_key] = dict(polling or {})

    app.router.add_get("/health", handle_health)
    app.router.add_post("/api/ai-resume-analyzer", handle_resume_analyzer)
    app.router.add_post("/api/ai-roadmap-agent", handle_roadmap_agent)
    app.router.add_post("/api/submit-test-for-review", handle_submit_test)
    app.router.add_get("/api/debug/run-roadmap", handle_debug_roadmap)
    app.cleanup_ctx.append(_client_context)
    return app


async def _client_context(app: web.Application):
    settings = app[runner_settings_key]
    timeout = aiohttp.ClientTimeout(total=settings.request_timeout)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        app[dispatch_client_key] = JobDispatchClient(settings, session=session)
        yield


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)


def main() -> None:
    server_settings = ServerSettings.from_env()
    configure_logging(server_settings.log_level)
    logger.info(f"Starting {SERVICE_NAME} on {server_settings.host}:{server_settings.port}")
    # handler cancellation stops in-flight polling when the caller disconnects
    web.run_app(
        create_app(),
        host=server_settings.host,
        port=server_settings.port,
        handler_cancellation=True,
        print=None,
    )


if __name__ == "__main__":
    main()
