from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .job import Job
from .schemas import SourceMetadata

HttpSourceHandler = Callable[..., Awaitable[Any]]


@dataclass
class Registry:
    """In-memory bookkeeping for everything attached to one client.

    Filled during application setup and read by request handling afterwards.
    """

    jobs: Dict[str, Job] = field(default_factory=dict)
    dynamic_triggers: Dict[str, Any] = field(default_factory=dict)
    dynamic_trigger_jobs: Dict[str, List[Dict[str, str]]] = field(default_factory=dict)
    sources: Dict[str, SourceMetadata] = field(default_factory=dict)
    http_source_handlers: Dict[str, HttpSourceHandler] = field(default_factory=dict)
    schedules: Dict[str, List[Dict[str, str]]] = field(default_factory=dict)

    def add_job(self, job: Job) -> None:
        self.jobs[job.id] = job

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.jobs.get(job_id)

    def add_dynamic_trigger(self, trigger) -> None:
        self.dynamic_triggers[trigger.id] = trigger

    def get_dynamic_trigger(self, trigger_id: str):
        return self.dynamic_triggers.get(trigger_id)

    def add_job_to_dynamic_trigger(self, trigger_id: str, job: Job) -> None:
        # Append, not dedupe: every attach call is recorded
        self.dynamic_trigger_jobs.setdefault(trigger_id, []).append(job.ref())

    def add_source(
        self,
        key: str,
        channel: str,
        params: Any,
        event_name: str,
        client_id: Optional[str],
        handler: HttpSourceHandler,
    ) -> SourceMetadata:
        self.http_source_handlers[key] = handler

        source = self.sources.get(key)
        if source is None:
            source = SourceMetadata(channel=channel, key=key, params=params, events=[], client_id=client_id)

        if event_name not in source.events:
            source.events = [*source.events, event_name]

        self.sources[key] = source
        return source

    def get_http_source_handler(self, key: str) -> Optional[HttpSourceHandler]:
        return self.http_source_handlers.get(key)

    def add_schedule(self, key: str, job: Job) -> None:
        self.schedules.setdefault(key, []).append(job.ref())

    def snapshot(self) -> Dict[str, Any]:
        return {
            "jobs": [job.to_json() for job in self.jobs.values()],
            "sources": [source.to_json() for source in self.sources.values()],
            "dynamicTriggers": [
                {"id": trigger_id, "jobs": list(self.dynamic_trigger_jobs.get(trigger_id, []))}
                for trigger_id in self.dynamic_triggers
            ],
            "dynamicSchedules": [{"id": key, "jobs": list(jobs)} for key, jobs in self.schedules.items()],
        }
