from typing import Any, Awaitable, Callable, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .sources import Integration
from .triggers import Trigger

RunFn = Callable[[Any, Any, Any], Awaitable[Any]]


class QueueOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    max_concurrent: Optional[int] = Field(default=None, alias="maxConcurrent")


class Job:
    """A named, versioned unit of work.

    ``run`` is awaited as ``run(payload, io, context)``; the payload has
    already been parsed by the trigger's event specification.
    """

    def __init__(
        self,
        id: str,
        name: str,
        version: str,
        trigger: Trigger,
        run: RunFn,
        integrations: Optional[Dict[str, Integration]] = None,
        queue: Optional[QueueOptions] = None,
        start_position: Literal["initial", "latest"] = "latest",
        enabled: bool = True,
        internal: bool = False,
    ):
        self.id = id
        self.name = name
        self.version = version
        self.trigger = trigger
        self.run = run
        self.integrations = integrations or {}
        self.queue = queue
        self.start_position = start_position
        self.enabled = enabled
        self.internal = internal

    def ref(self) -> Dict[str, str]:
        return {"id": self.id, "version": self.version}

    def to_json(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "event": self.trigger.event.to_json(),
            "trigger": self.trigger.to_json(),
            "integrations": {key: integration.to_json() for key, integration in self.integrations.items()},
            "startPosition": self.start_position,
            "enabled": self.enabled,
            "preprocessRuns": self.trigger.preprocess_runs,
            "internal": self.internal,
        }
        if self.queue is not None:
            data["queue"] = self.queue.model_dump(by_alias=True, exclude_none=True)
        return data
