from datetime import datetime
from typing import Any, Optional

from .schemas import (
    Account,
    Environment,
    JobRef,
    Organization,
    PreprocessRunBody,
    RunJobBody,
    RunRef,
    WireModel,
)


class EventContext(WireModel):
    id: str
    name: str
    context: Any = None
    timestamp: datetime


class TriggerContext(WireModel):
    """What job code gets to see about its run. Never carries the payload."""

    event: EventContext
    organization: Organization
    environment: Environment
    job: JobRef
    run: RunRef
    account: Optional[Account] = None


class TriggerPreprocessContext(TriggerContext):
    pass


def _event_context(body) -> EventContext:
    event = body.event
    return EventContext(id=event.id, name=event.name, context=event.context, timestamp=event.timestamp)


def build_run_context(body: RunJobBody) -> TriggerContext:
    return TriggerContext(
        event=_event_context(body),
        organization=body.organization,
        environment=body.environment,
        job=body.job,
        run=body.run,
        account=body.account,
    )


def build_preprocess_context(body: PreprocessRunBody) -> TriggerPreprocessContext:
    return TriggerPreprocessContext(
        event=_event_context(body),
        organization=body.organization,
        environment=body.environment,
        job=body.job,
        run=body.run,
        account=body.account,
    )
