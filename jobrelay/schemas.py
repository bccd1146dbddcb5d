import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Generic, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

TaskStatus = Literal["PENDING", "WAITING", "RUNNING", "COMPLETED", "ERRORED", "CANCELED"]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class NormalizedRequest(BaseModel):
    method: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None


class NormalizedResponse(BaseModel):
    status: int
    body: Any = None


# Inbound run payloads

class ApiEventLog(WireModel):
    id: str
    name: str
    payload: Any = None
    context: Any = None
    timestamp: datetime
    deliver_at: Optional[datetime] = None


class JobRef(WireModel):
    id: str
    version: str


class RunRef(WireModel):
    id: str
    is_test: bool = False
    started_at: Optional[datetime] = None


class Environment(WireModel):
    id: str
    slug: str
    type: str


class Organization(WireModel):
    id: str
    title: str
    slug: str


class Account(WireModel):
    id: str
    metadata: Any = None


class ConnectionAuth(WireModel):
    type: Literal["oauth2"] = "oauth2"
    access_token: str
    scopes: Optional[List[str]] = None
    additional_fields: Optional[Dict[str, str]] = None


class CachedTask(WireModel):
    id: str
    idempotency_key: str
    status: TaskStatus
    noop: bool = False
    output: Any = None
    parent_id: Optional[str] = None


class ServerTask(WireModel):
    id: str
    name: Optional[str] = None
    idempotency_key: str
    status: TaskStatus
    noop: bool = False
    output: Any = None
    error: Optional[str] = None
    params: Any = None
    properties: Optional[List[Dict[str, Any]]] = None
    delay_until: Optional[datetime] = None
    operation: Optional[str] = None
    parent_id: Optional[str] = None


class RunJobBody(WireModel):
    event: ApiEventLog
    job: JobRef
    run: RunRef
    environment: Environment
    organization: Organization
    account: Optional[Account] = None
    connections: Dict[str, ConnectionAuth] = Field(default_factory=dict)
    tasks: List[CachedTask] = Field(default_factory=list)


class PreprocessRunBody(WireModel):
    event: ApiEventLog
    job: JobRef
    run: RunRef
    environment: Environment
    organization: Organization
    account: Optional[Account] = None


class InitializeTriggerBody(WireModel):
    id: str
    params: Any = None
    account_id: Optional[str] = None


# Webhook delivery

def _json_header(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


class HttpSourceRequestHeaders(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(alias="x-ts-key")
    dynamic_id: Optional[str] = Field(default=None, alias="x-ts-dynamic-id")
    secret: Optional[str] = Field(default=None, alias="x-ts-secret")
    params: Any = Field(default=None, alias="x-ts-params")
    data: Any = Field(default=None, alias="x-ts-data")
    http_url: str = Field(alias="x-ts-http-url")
    http_method: str = Field(alias="x-ts-http-method")
    http_headers: Dict[str, str] = Field(alias="x-ts-http-headers")

    @field_validator("params", "data", "http_headers", mode="before")
    @classmethod
    def decode_json(cls, value):
        return _json_header(value)


class HandleTriggerSource(WireModel):
    key: str
    dynamic_id: Optional[str] = None
    secret: Optional[str] = None
    params: Any = None
    data: Any = None


class HttpSourceRequest(WireModel):
    url: str
    method: str
    headers: Dict[str, str] = Field(default_factory=dict)
    raw_body: Any = None


class SendEvent(WireModel):
    name: str
    payload: Any = None
    context: Any = None
    id: Optional[str] = None
    timestamp: Optional[datetime] = None


class HandleResult(BaseModel):
    events: List[SendEvent] = Field(default_factory=list)
    response: Optional[NormalizedResponse] = None


# Registration

class SourceMetadata(WireModel):
    channel: str
    key: str
    params: Any = None
    events: List[str] = Field(default_factory=list)
    client_id: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        # params is always sent, even when null; clientId only when known
        data = self.model_dump(mode="json", by_alias=True)
        if data.get("clientId") is None:
            data.pop("clientId", None)
        return data


class RegisteredSource(WireModel):
    key: str
    params: Any = None
    active: bool = False
    secret: Optional[str] = None
    data: Any = None
    channel: str
    client_id: Optional[str] = None


class RegisterSourceEvent(WireModel):
    id: str
    source: RegisteredSource
    events: List[str] = Field(default_factory=list)
    missing_events: List[str] = Field(default_factory=list)
    orphaned_events: List[str] = Field(default_factory=list)
    dynamic_trigger_id: Optional[str] = None


class ScheduledPayload(WireModel):
    ts: datetime
    last_timestamp: Optional[datetime] = None


# Errors surfaced from job code

class ErrorWithStack(WireModel):
    message: str
    name: Optional[str] = None
    stack: str


class ErrorWithMessage(WireModel):
    message: str


T = TypeVar("T")


@dataclass
class Ok(Generic[T]):
    value: T


@dataclass
class Invalid:
    reason: str


def decode(model: Type[T], data: Any) -> Union[Ok[T], Invalid]:
    """Validate ``data`` against ``model`` without raising."""
    try:
        return Ok(model.model_validate(data))
    except (ValidationError, ValueError) as exc:
        return Invalid(str(exc))
