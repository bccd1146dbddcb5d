from typing import Any, Optional

from . import metrics
from .auth import API_KEY_HEADER
from .executor import CompletedWithError, JobExecutor
from .registry import Registry
from .router import HttpSourceRequestRouter
from .schemas import (
    HandleTriggerSource,
    HttpSourceRequest,
    HttpSourceRequestHeaders,
    InitializeTriggerBody,
    Invalid,
    NormalizedRequest,
    NormalizedResponse,
    PreprocessRunBody,
    RunJobBody,
    decode,
)

ACTION_HEADER = "x-trigger-action"
JOB_ID_HEADER = "x-trigger-job-id"

ACTIONS = (
    "PING",
    "INITIALIZE",
    "INITIALIZE_TRIGGER",
    "EXECUTE_JOB",
    "PREPROCESS_RUN",
    "DELIVER_HTTP_SOURCE_REQUEST",
)


def respond(status: int, body: Any) -> NormalizedResponse:
    return NormalizedResponse(status=status, body=body)


def message(status: int, text: str) -> NormalizedResponse:
    return respond(status, {"message": text})


class RequestDispatcher:
    """Single entry point the backend calls.

    Authorizes, then branches on method and the action header. Bodies are
    validated before any registry is consulted.
    """

    def __init__(self, client, registry: Registry, executor: JobExecutor, router: HttpSourceRequestRouter):
        self._client = client
        self._registry = registry
        self._executor = executor
        self._router = router
        self._post_actions = {
            "INITIALIZE": self._initialize,
            "INITIALIZE_TRIGGER": self._initialize_trigger,
            "EXECUTE_JOB": self._execute_job,
            "PREPROCESS_RUN": self._preprocess_run,
            "DELIVER_HTTP_SOURCE_REQUEST": self._deliver_http_source_request,
        }

    async def handle(self, request: NormalizedRequest) -> NormalizedResponse:
        method = request.method.upper()
        action = request.headers.get(ACTION_HEADER)
        self._client.logger.debug("handling %s request, action=%s", method, action)

        response = await self._dispatch(method, action, request)

        metrics.endpoint_requests_total.labels(
            method=method,
            action=action if action in ACTIONS else "none",
            status=str(response.status),
        ).inc()
        return response

    async def _dispatch(self, method: str, action: Optional[str], request: NormalizedRequest) -> NormalizedResponse:
        if not self._client.authorized(request.headers.get(API_KEY_HEADER)):
            return message(401, "Unauthorized")

        if method == "GET":
            return self._get(action, request)

        if method == "POST":
            handler = self._post_actions.get(action)
            if handler is not None:
                return await handler(request)

        return message(405, "Method not allowed")

    def _get(self, action: Optional[str], request: NormalizedRequest) -> NormalizedResponse:
        if action == "PING":
            return message(200, "PONG")

        job_id = request.headers.get(JOB_ID_HEADER)
        if job_id:
            job = self._registry.get_job(job_id)
            if job is None:
                return message(404, "Job not found")
            return respond(200, job.to_json())

        return respond(200, self._registry.snapshot())

    async def _initialize(self, request: NormalizedRequest) -> NormalizedResponse:
        await self._client.listen()
        return message(200, "Initialized")

    async def _initialize_trigger(self, request: NormalizedRequest) -> NormalizedResponse:
        body = decode(InitializeTriggerBody, request.body)
        if isinstance(body, Invalid):
            return message(400, "Invalid trigger body")

        trigger = self._registry.get_dynamic_trigger(body.value.id)
        if trigger is None:
            return message(404, "Dynamic trigger not found")

        return respond(200, trigger.registered_trigger_for_params(body.value.params))

    async def _execute_job(self, request: NormalizedRequest) -> NormalizedResponse:
        execution = decode(RunJobBody, request.body)
        if isinstance(execution, Invalid):
            return message(400, "Invalid execution")

        job = self._registry.get_job(execution.value.job.id)
        if job is None:
            return message(404, "Job not found")

        outcome = await self._executor.execute(execution.value, job)
        if isinstance(outcome, CompletedWithError):
            return respond(500, outcome.error)

        return respond(200, outcome.to_response(execution.value.run.id))

    async def _preprocess_run(self, request: NormalizedRequest) -> NormalizedResponse:
        body = decode(PreprocessRunBody, request.body)
        if isinstance(body, Invalid):
            return message(400, "Invalid body")

        job = self._registry.get_job(body.value.job.id)
        if job is None:
            return message(404, "Job not found")

        try:
            results = await self._executor.preprocess(body.value, job)
        except (ValueError, TypeError):
            return message(400, "Invalid payload")

        return respond(200, results)

    async def _deliver_http_source_request(self, request: NormalizedRequest) -> NormalizedResponse:
        headers = decode(HttpSourceRequestHeaders, request.headers)
        if isinstance(headers, Invalid):
            return message(400, "Invalid headers")

        data = headers.value
        source_request = HttpSourceRequest(
            url=data.http_url,
            method=data.http_method,
            headers=data.http_headers,
            raw_body=request.body,
        )
        source = HandleTriggerSource(
            key=data.key,
            dynamic_id=data.dynamic_id,
            secret=data.secret,
            params=data.params,
            data=data.data,
        )

        results = await self._router.route(source, source_request)
        return respond(200, results)
