import asyncio
import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from .errors import TaskCanceledError, TaskErroredError, error_to_json
from .schemas import CachedTask, ConnectionAuth, ServerTask
from .sources import Integration

TaskCallback = Callable[[ServerTask, "IO"], Awaitable[Any]]


class RunLogger(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[run {self.extra['run_id']}] {msg}", kwargs


class IO:
    """Side-effect gateway handed to job code.

    Every side effect goes through ``run_task``. Tasks already present in the
    cache supplied with the run are replayed from it. When the backend says a
    task cannot finish yet, the run is suspended: ``suspension`` resolves to
    that task and the calling coroutine parks until the executor stops it.
    """

    def __init__(self, run_id: str, cached_tasks: Iterable[CachedTask], api_client, client, context):
        self._id = run_id
        self._cached_tasks: Dict[str, CachedTask] = {task.idempotency_key: task for task in cached_tasks}
        self._api_client = api_client
        self._client = client
        self._context = context
        self._suspension: Optional[asyncio.Future] = None
        self.logger = RunLogger(client.logger, {"run_id": run_id})

    @property
    def suspension(self) -> asyncio.Future:
        if self._suspension is None:
            self._suspension = asyncio.get_running_loop().create_future()
        return self._suspension

    def idempotency_key(self, key: str, parent_id: Optional[str] = None) -> str:
        raw = json.dumps([self._id, parent_id or "", key])
        return hashlib.sha256(raw.encode()).hexdigest()

    async def run_task(
        self,
        key: str,
        options: Optional[Dict[str, Any]] = None,
        callback: Optional[TaskCallback] = None,
        parent_id: Optional[str] = None,
    ) -> Any:
        idempotency_key = self.idempotency_key(key, parent_id)

        cached = self._cached_tasks.get(idempotency_key)
        if cached is not None and cached.status == "COMPLETED":
            self.logger.debug("replaying cached task %s", key)
            return cached.output

        request = {"idempotencyKey": idempotency_key, "displayKey": key, "noop": False}
        request.update(options or {})
        if parent_id:
            request["parentId"] = parent_id

        task = await self._api_client.run_task(self._id, request)

        if task.status == "COMPLETED":
            self._remember(task)
            return task.output
        if task.status == "ERRORED":
            raise TaskErroredError(task)
        if task.status == "CANCELED":
            raise TaskCanceledError(task)
        if task.status == "WAITING" or (task.status == "RUNNING" and task.operation):
            await self._suspend(task)

        output = None
        if callback is not None:
            try:
                output = await callback(task, self)
            except Exception as exc:
                await self._api_client.fail_task(self._id, task.id, {"error": error_to_json(exc)})
                raise

        completed = await self._api_client.complete_task(self._id, task.id, {"output": output})
        self._remember(completed)
        return completed.output

    def _remember(self, task: ServerTask) -> None:
        self._cached_tasks[task.idempotency_key] = CachedTask(
            id=task.id,
            idempotency_key=task.idempotency_key,
            status=task.status,
            noop=task.noop,
            output=task.output,
            parent_id=task.parent_id,
        )

    async def _suspend(self, task: ServerTask) -> None:
        if self.suspension.done():
            # Already suspended; cleanup code must not park the cancelled run again
            raise asyncio.CancelledError()
        self.suspension.set_result(task)
        self.logger.debug("suspending on task %s", task.id)
        # Park until the executor cancels the run
        await asyncio.get_running_loop().create_future()

    async def wait(self, key: str, seconds: float) -> None:
        delay_until = datetime.now(timezone.utc) + timedelta(seconds=seconds)
        await self.run_task(
            key,
            {
                "name": "wait",
                "icon": "clock",
                "params": {"seconds": seconds},
                "noop": True,
                "delayUntil": delay_until.isoformat(),
            },
        )

    async def send_event(self, key: str, event: Dict[str, Any], options: Optional[Dict[str, Any]] = None):
        async def send(task, io):
            return await self._api_client.send_event(event, options)

        return await self.run_task(
            key,
            {"name": "sendEvent", "params": {"event": event, "options": options}},
            send,
        )

    async def update_source(self, key: str, options: Dict[str, Any]):
        async def update(task, io):
            return await self._client.update_source(options["key"], options)

        return await self.run_task(
            key,
            {
                "name": "Update Source",
                "description": "Update Source",
                "properties": [{"label": "key", "text": options["key"]}],
                "params": options,
            },
            update,
        )

    async def register_trigger(self, key: str, trigger, id: str, params: Any):
        async def register(task, io):
            return await trigger.register(id, params)

        return await self.run_task(
            key,
            {
                "name": "register trigger",
                "properties": [{"label": "trigger", "text": trigger.id}, {"label": "id", "text": id}],
                "params": params,
            },
            register,
        )

    async def register_schedule(self, key: str, schedule, id: str, options: Dict[str, Any]):
        async def register(task, io):
            return await schedule.register(id, options)

        return await self.run_task(
            key,
            {"name": "register schedule", "icon": "schedule", "params": options},
            register,
        )

    async def unregister_schedule(self, key: str, schedule, id: str):
        async def unregister(task, io):
            return await schedule.unregister(id)

        return await self.run_task(key, {"name": "unregister schedule", "icon": "schedule", "params": {"id": id}}, unregister)

    async def get_auth(self, key: str, client_id: str):
        async def fetch(task, io):
            auth = await self._client.get_auth(client_id)
            return auth.to_json() if auth is not None else None

        return await self.run_task(key, {"name": "get auth", "noop": True}, fetch)


class IntegrationIO:
    """Runs tasks with an integration's client handed to the callback."""

    def __init__(self, io: IO, key: str, integration: Integration, client: Any):
        self._io = io
        self.key = key
        self.integration = integration
        self.client = client

    async def run_task(self, key: str, callback, options: Optional[Dict[str, Any]] = None):
        task_options = {"icon": self.integration.id, "name": key}
        task_options.update(options or {})
        return await self._io.run_task(key, task_options, lambda task, io: callback(self.client, task, io))


class IOWithIntegrations:
    def __init__(self, io: IO, integrations: Dict[str, IntegrationIO]):
        self._io = io
        self._integrations = integrations

    def __getattr__(self, name):
        if name in self._integrations:
            return self._integrations[name]
        return getattr(self._io, name)


def with_integrations(
    io: IO,
    connections: Dict[str, ConnectionAuth],
    integrations: Dict[str, Integration],
) -> IOWithIntegrations:
    decorated = {
        key: IntegrationIO(io, key, integration, integration.client_for(connections.get(key)))
        for key, integration in integrations.items()
    }
    return IOWithIntegrations(io, decorated)
