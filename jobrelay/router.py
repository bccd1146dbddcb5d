import logging
from typing import Any, Dict

from . import metrics
from .registry import Registry
from .schemas import HandleResult, HandleTriggerSource, HttpSourceRequest
from .sources import logger as source_logger

logger = logging.getLogger("jobrelay.router")


def acknowledgement() -> Dict[str, Any]:
    return {"status": 200, "body": {"ok": True}}


def _normalize(results: Any) -> Dict[str, Any]:
    if results is None:
        return {"events": [], "response": acknowledgement()}

    result = results if isinstance(results, HandleResult) else HandleResult.model_validate(results)
    response = result.response.model_dump() if result.response is not None else acknowledgement()
    return {"events": [event.to_json() for event in result.events], "response": response}


class HttpSourceRequestRouter:
    """Hands an inbound webhook delivery to the source that owns it.

    Deliveries for sources nobody registered are acknowledged with an empty
    event list so the origin stops retrying.
    """

    def __init__(self, registry: Registry):
        self._registry = registry

    async def route(self, source: HandleTriggerSource, request: HttpSourceRequest) -> Dict[str, Any]:
        logger.debug("handling HTTP source request for %s", source.key)

        if source.dynamic_id:
            trigger = self._registry.get_dynamic_trigger(source.dynamic_id)
            if trigger is None:
                logger.debug("no dynamic trigger registered for %s", source.dynamic_id)
                metrics.http_source_deliveries_total.labels(kind="unknown").inc()
                return {"events": [], "response": acknowledgement()}

            metrics.http_source_deliveries_total.labels(kind="dynamic").inc()
            return _normalize(await trigger.source.handle(source, request, source_logger))

        handler = self._registry.get_http_source_handler(source.key)
        if handler is None:
            logger.debug("no handler registered for source %s", source.key)
            metrics.http_source_deliveries_total.labels(kind="unknown").inc()
            return {"events": [], "response": acknowledgement()}

        metrics.http_source_deliveries_total.labels(kind="static").inc()
        return _normalize(await handler(source, request))
