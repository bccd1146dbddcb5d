import logging
from typing import Any, Dict, Optional

from . import config
from .api_client import ApiClient
from .auth import authorized
from .dispatcher import RequestDispatcher
from .events import EventSpecification, register_source_event
from .executor import JobExecutor
from .job import Job, QueueOptions
from .registry import Registry
from .router import HttpSourceRequestRouter
from .schemas import NormalizedRequest, NormalizedResponse
from .sources import ExternalSource
from .triggers import DynamicTrigger, EventTrigger

logger = logging.getLogger("jobrelay")


class TriggerClient:
    """Holds the jobs and sources of one application and answers the backend.

    Attach everything during setup, then route inbound calls to
    ``handle_request``.
    """

    def __init__(self, name: str, options: Optional[config.TriggerClientOptions] = None, api_client=None):
        self.name = name
        self.options = options or config.TriggerClientOptions()
        self._endpoint = self.options.endpoint
        self.registry = Registry()
        self.api_client = api_client or ApiClient(
            api_key=self.api_key(), api_url=config.resolve_api_url(self.options.api_url)
        )
        # Levels are per client; the shared jobrelay logger is left untouched
        self.logger = logger.getChild(f"clients.{name}")
        self.logger.setLevel(config.resolve_log_level(self.options.log_level))

        self.executor = JobExecutor(self.api_client, self)
        self.router = HttpSourceRequestRouter(self.registry)
        self.dispatcher = RequestDispatcher(self, self.registry, self.executor, self.router)

    @property
    def endpoint(self) -> str:
        if self._endpoint is None:
            self._endpoint = config.build_endpoint_url(self.options.path)
        return self._endpoint

    async def handle_request(self, request: NormalizedRequest) -> NormalizedResponse:
        return await self.dispatcher.handle(request)

    def api_key(self) -> Optional[str]:
        return config.resolve_api_key(self.options.api_key)

    def authorized(self, api_key: Optional[str]) -> bool:
        return authorized(api_key, self.api_key())

    async def listen(self):
        return await self.api_client.register_endpoint(url=self.endpoint, name=self.name)

    def define_job(self, **kwargs) -> Job:
        job = Job(**kwargs)
        self.attach(job)
        return job

    # Registration

    def attach(self, job: Job) -> None:
        if not job.enabled:
            return
        self.registry.add_job(job)
        job.trigger.attach_to_job(self, job)

    def attach_dynamic_trigger(self, trigger: DynamicTrigger) -> None:
        self.registry.add_dynamic_trigger(trigger)

        async def register(event, io, ctx):
            updates = await trigger.source.register(event.source.params, event, io, ctx)
            if not updates:
                return None
            return await io.update_source("update-source", {"key": event.source.key, **updates})

        self.attach(
            Job(
                id=f"register-dynamic-trigger-{trigger.id}",
                name=f"Register dynamic trigger {trigger.id}",
                version=trigger.source.version,
                trigger=EventTrigger(event=register_source_event, filter={"dynamicTriggerId": [trigger.id]}),
                integrations={"integration": trigger.source.integration},
                run=register,
                internal=True,
            )
        )

    def attach_job_to_dynamic_trigger(self, job: Job, trigger: DynamicTrigger) -> None:
        self.registry.add_job_to_dynamic_trigger(trigger.id, job)

    def attach_source(self, key: str, source: ExternalSource, event: EventSpecification, params: Any) -> None:
        async def handler(s, r):
            return await source.handle(s, r)

        self.registry.add_source(
            key=key,
            channel=source.channel,
            params=params,
            event_name=event.name,
            client_id=source.client_id,
            handler=handler,
        )

        async def register(registration, io, ctx):
            updates = await source.register(params, registration, io, ctx)
            if not updates:
                return None
            return await io.update_source("update-source", {"key": key, **updates})

        self.attach(
            Job(
                id=key,
                name=key,
                version=source.version,
                trigger=EventTrigger(event=register_source_event, filter={"source": {"key": [key]}}),
                integrations={"integration": source.integration},
                queue=QueueOptions(name=key, max_concurrent=1),
                start_position="initial",
                run=register,
                internal=True,
            )
        )

    def attach_dynamic_schedule(self, key: str, job: Job) -> None:
        self.registry.add_schedule(key, job)

    # Backend forwarders

    async def register_trigger(self, id: str, key: str, body: Dict[str, Any]):
        return await self.api_client.register_trigger(self.name, id, key, body)

    async def get_auth(self, id: str):
        return await self.api_client.get_auth(self.name, id)

    async def send_event(self, event: Dict[str, Any], options: Optional[Dict[str, Any]] = None):
        return await self.api_client.send_event(event, options)

    async def register_schedule(self, id: str, key: str, schedule: Dict[str, Any]):
        return await self.api_client.register_schedule(self.name, id, key, schedule)

    async def unregister_schedule(self, id: str, key: str):
        return await self.api_client.unregister_schedule(self.name, id, key)

    async def update_source(self, key: str, source: Dict[str, Any]):
        return await self.api_client.update_source(self.name, key, source)
