import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Any, Dict, Union

from . import metrics
from .context import build_preprocess_context, build_run_context
from .errors import error_to_json
from .io import IO, with_integrations
from .job import Job
from .schemas import ErrorWithMessage, ErrorWithStack, Ok, PreprocessRunBody, RunJobBody, ServerTask, decode

UNKNOWN_ERROR = {"message": "Unknown error"}


@dataclass
class Completed:
    output: Any = None
    kind = "completed"

    def to_response(self, execution_id: str) -> Dict[str, Any]:
        return {"completed": True, "output": self.output, "executionId": execution_id, "task": None}


@dataclass
class CompletedWithError:
    error: Dict[str, Any]
    kind = "error"

    def to_response(self, execution_id: str) -> Dict[str, Any]:
        return {"completed": True, "error": self.error, "executionId": execution_id, "task": None}


@dataclass
class Suspended:
    task: ServerTask
    kind = "suspended"

    def to_response(self, execution_id: str) -> Dict[str, Any]:
        return {"completed": False, "output": None, "executionId": execution_id, "task": self.task.to_json()}


RunOutcome = Union[Completed, CompletedWithError, Suspended]


def classify_error(exc: BaseException) -> Dict[str, Any]:
    shape = error_to_json(exc)

    with_stack = decode(ErrorWithStack, shape)
    if isinstance(with_stack, Ok):
        return with_stack.value.to_json()

    with_message = decode(ErrorWithMessage, shape)
    if isinstance(with_message, Ok):
        return with_message.value.to_json()

    return dict(UNKNOWN_ERROR)


class JobExecutor:
    """Runs job code against the task cache carried by one request.

    Holds no state between calls; everything needed to resume a run arrives
    with the next request's ``tasks``.
    """

    def __init__(self, api_client, client):
        self._api_client = api_client
        self._client = client

    async def execute(self, body: RunJobBody, job: Job) -> RunOutcome:
        self._client.logger.debug("executing job %s for run %s", job.id, body.run.id)

        context = build_run_context(body)
        io = IO(
            run_id=body.run.id,
            cached_tasks=body.tasks,
            api_client=self._api_client,
            client=self._client,
            context=context,
        )
        decorated = with_integrations(io, body.connections, job.integrations)

        start = time.time()
        try:
            outcome = await self._invoke(job, body.event.payload, io, decorated, context)
        finally:
            metrics.execution_latency_seconds.observe(time.time() - start)

        metrics.job_executions_total.labels(outcome=outcome.kind).inc()
        self._client.logger.info("job %s run %s finished: %s", job.id, body.run.id, outcome.kind)
        return outcome

    async def _invoke(self, job: Job, raw_payload: Any, io: IO, decorated, context) -> RunOutcome:
        async def run():
            payload = job.trigger.event.parse_payload(raw_payload if raw_payload is not None else {})
            result = job.run(payload, decorated, context)
            if inspect.isawaitable(result):
                result = await result
            return result

        suspension = io.suspension
        run_task = asyncio.ensure_future(run())
        try:
            await asyncio.wait({run_task, suspension}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not run_task.done() and not suspension.done():
                run_task.cancel()

        if suspension.done():
            run_task.cancel()
            await asyncio.gather(run_task, return_exceptions=True)
            return Suspended(task=suspension.result())

        suspension.cancel()
        if run_task.cancelled():
            return CompletedWithError(error=dict(UNKNOWN_ERROR))

        exc = run_task.exception()
        if exc is None:
            return Completed(output=run_task.result())

        self._client.logger.warning("job %s raised %s", job.id, type(exc).__name__)
        return CompletedWithError(error=classify_error(exc))

    async def preprocess(self, body: PreprocessRunBody, job: Job) -> Dict[str, Any]:
        context = build_preprocess_context(body)
        self._client.logger.debug("preprocessing job %s for run %s", job.id, context.run.id)

        event = job.trigger.event
        payload = event.parse_payload(body.event.payload if body.event.payload is not None else {})
        elements = event.run_elements(payload) if event.run_elements is not None else []

        return {"abort": False, "elements": list(elements or [])}
