from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel

from .schemas import RegisterSourceEvent, ScheduledPayload

REGISTER_SOURCE_EVENT = "dev.trigger.source.register"
SCHEDULED_EVENT = "dev.trigger.scheduled"


def _identity(payload: Any) -> Any:
    return payload


class EventSpecification:
    """Describes an event a job can be triggered by.

    ``parse_payload`` must either return the decoded payload or raise.
    ``run_elements`` is only consulted when a run is preprocessed.
    """

    def __init__(
        self,
        name: str,
        parse_payload: Callable[[Any], Any] = _identity,
        title: Optional[str] = None,
        source: str = "trigger.dev",
        icon: Optional[str] = None,
        filter: Optional[Dict[str, Any]] = None,
        run_elements: Optional[Callable[[Any], List[Dict[str, Any]]]] = None,
    ):
        self.name = name
        self.parse_payload = parse_payload
        self.title = title or name
        self.source = source
        self.icon = icon
        self.filter = filter
        self.run_elements = run_elements

    @classmethod
    def from_model(cls, name: str, model: Type[BaseModel], **kwargs) -> "EventSpecification":
        return cls(name, parse_payload=model.model_validate, **kwargs)

    def to_json(self) -> Dict[str, Any]:
        data = {"name": self.name, "title": self.title, "source": self.source}
        if self.icon:
            data["icon"] = self.icon
        return data


register_source_event = EventSpecification.from_model(
    REGISTER_SOURCE_EVENT,
    RegisterSourceEvent,
    title="Register Source",
    source="internal",
    icon="register-source",
)

scheduled_event = EventSpecification.from_model(
    SCHEDULED_EVENT,
    ScheduledPayload,
    title="Schedule",
    source="trigger.dev",
    icon="schedule-interval",
)
