import logging
import re
from typing import Any, Awaitable, Callable, Dict, Literal, Optional

from .schemas import ConnectionAuth

logger = logging.getLogger("jobrelay.sources")

SourceChannel = Literal["HTTP", "SQS", "SMTP"]

RegisterFn = Callable[..., Awaitable[Optional[Dict[str, Any]]]]
HandleFn = Callable[..., Awaitable[Any]]


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower())
    return slug.strip("-")


class Integration:
    """An external service a job talks to.

    When ``uses_local_auth`` is false the backend owns the credentials and
    hands them over per run as a ``ConnectionAuth``.
    """

    def __init__(
        self,
        id: str,
        metadata: Optional[Dict[str, Any]] = None,
        uses_local_auth: bool = False,
        client_factory: Optional[Callable[[Optional[ConnectionAuth]], Any]] = None,
    ):
        self.id = id
        self.metadata = metadata or {"id": id, "name": id}
        self.uses_local_auth = uses_local_auth
        self.client_factory = client_factory

    def client_for(self, auth: Optional[ConnectionAuth]) -> Any:
        if self.client_factory is None:
            return None
        return self.client_factory(None if self.uses_local_auth else auth)

    def to_json(self) -> Dict[str, Any]:
        return {"id": self.id, "metadata": self.metadata}


class ExternalSource:
    """A webhook or polling feed that turns inbound requests into events.

    ``register(params, event, io, ctx)`` sets the feed up with the origin and
    may return update instructions for the backend. ``handle(source, request,
    logger)`` converts a raw delivery into ``{"events": [...], "response": ...}``
    or returns ``None``.
    """

    def __init__(
        self,
        channel: SourceChannel,
        version: str,
        integration: Integration,
        key: Callable[[Any], str],
        register: RegisterFn,
        handle: HandleFn,
        filter: Optional[Callable[[Any], Dict[str, Any]]] = None,
        id: Optional[str] = None,
    ):
        self.channel = channel
        self.version = version
        self.integration = integration
        self.id = id or integration.id
        self._key = key
        self._register = register
        self._handle = handle
        self._filter = filter

    def key(self, params: Any) -> str:
        return slugify(self._key(params))

    def filter(self, params: Any) -> Dict[str, Any]:
        if self._filter is None:
            return {}
        return self._filter(params)

    @property
    def client_id(self) -> Optional[str]:
        if self.integration.uses_local_auth:
            return None
        return self.integration.id

    async def register(self, params: Any, event, io, ctx) -> Optional[Dict[str, Any]]:
        return await self._register(params, event, io, ctx)

    async def handle(self, source, request, handler_logger: logging.Logger = logger):
        return await self._handle(source, request, handler_logger)
