from typing import Any, Dict, Optional, Union

from .events import EventSpecification, scheduled_event
from .sources import ExternalSource


def deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class EventTrigger:
    """Runs a job whenever a matching event is delivered."""

    def __init__(
        self,
        event: EventSpecification,
        name: Optional[str] = None,
        source: Optional[str] = None,
        filter: Optional[Dict[str, Any]] = None,
    ):
        self.event = event
        self.name = name or event.name
        self.source = source or event.source
        self.filter = filter

    @property
    def preprocess_runs(self) -> bool:
        return self.event.run_elements is not None

    def attach_to_job(self, client, job) -> None:
        return None

    def to_json(self) -> Dict[str, Any]:
        rule: Dict[str, Any] = {"event": self.name, "source": self.source}
        payload = deep_merge(self.event.filter or {}, self.filter or {})
        if payload:
            rule["payload"] = payload
        return {"type": "static", "title": self.event.title, "rule": rule}


class ExternalSourceTrigger:
    """Runs a job on events produced by an external source with fixed params."""

    def __init__(self, event: EventSpecification, source: ExternalSource, params: Any = None):
        self.event = event
        self.source = source
        self.params = params

    @property
    def preprocess_runs(self) -> bool:
        return self.event.run_elements is not None

    def attach_to_job(self, client, job) -> None:
        client.attach_source(
            key=self.source.key(self.params),
            source=self.source,
            event=self.event,
            params=self.params,
        )

    def to_json(self) -> Dict[str, Any]:
        payload = deep_merge(self.source.filter(self.params), self.event.filter or {})
        rule: Dict[str, Any] = {"event": self.event.name, "source": self.event.source}
        if payload:
            rule["payload"] = payload
        return {"type": "static", "title": self.event.title, "rule": rule}


class DynamicTrigger:
    """A trigger whose source parameters arrive at runtime.

    Creating one registers it with the client straight away; jobs using it
    are associated on attach.
    """

    def __init__(self, client, id: str, event: EventSpecification, source: ExternalSource):
        self.client = client
        self.id = id
        self.event = event
        self.source = source
        client.attach_dynamic_trigger(self)

    @property
    def preprocess_runs(self) -> bool:
        return self.event.run_elements is not None

    def registered_trigger_for_params(self, params: Any) -> Dict[str, Any]:
        source: Dict[str, Any] = {
            "key": self.source.key(params),
            "channel": self.source.channel,
            "params": params,
            "events": [self.event.name],
        }
        if self.source.client_id:
            source["clientId"] = self.source.client_id

        return {
            "rule": {
                "event": self.event.name,
                "source": self.event.source,
                "payload": deep_merge(self.source.filter(params), self.event.filter or {}),
            },
            "source": source,
        }

    async def register(self, key: str, params: Any):
        return await self.client.register_trigger(self.id, key, self.registered_trigger_for_params(params))

    def attach_to_job(self, client, job) -> None:
        client.attach_job_to_dynamic_trigger(job, self)

    def to_json(self) -> Dict[str, Any]:
        return {"type": "dynamic", "id": self.id}


class IntervalTrigger:
    def __init__(self, seconds: int):
        if seconds < 60:
            raise ValueError("Interval must be at least 60 seconds")
        self.seconds = seconds
        self.event = scheduled_event

    preprocess_runs = False

    def attach_to_job(self, client, job) -> None:
        return None

    def to_json(self) -> Dict[str, Any]:
        return {"type": "scheduled", "schedule": {"type": "interval", "options": {"seconds": self.seconds}}}


class CronTrigger:
    def __init__(self, cron: str):
        self.cron = cron
        self.event = scheduled_event

    preprocess_runs = False

    def attach_to_job(self, client, job) -> None:
        return None

    def to_json(self) -> Dict[str, Any]:
        return {"type": "scheduled", "schedule": {"type": "cron", "options": {"cron": self.cron}}}


class DynamicSchedule:
    """A schedule whose registrations are created at runtime, one per key."""

    def __init__(self, client, id: str):
        self.client = client
        self.id = id
        self.event = scheduled_event

    preprocess_runs = False

    async def register(self, key: str, metadata: Dict[str, Any]):
        return await self.client.register_schedule(self.id, key, metadata)

    async def unregister(self, key: str):
        return await self.client.unregister_schedule(self.id, key)

    def attach_to_job(self, client, job) -> None:
        client.attach_dynamic_schedule(self.id, job)

    def to_json(self) -> Dict[str, Any]:
        return {"type": "dynamic", "id": self.id}


Trigger = Union[EventTrigger, ExternalSourceTrigger, DynamicTrigger, IntervalTrigger, CronTrigger, DynamicSchedule]
