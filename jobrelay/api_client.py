import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from .errors import ApiClientError
from .schemas import ConnectionAuth, ServerTask

logger = logging.getLogger("jobrelay.api_client")


class ApiClient:
    """Thin async client for the orchestration backend."""

    def __init__(self, api_key: Optional[str], api_url: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._api_key = api_key
        self._api_url = api_url.rstrip("/")
        self._transport = transport

    async def _request(self, method: str, path: str, json: Any = None, headers: Optional[Dict[str, str]] = None):
        request_headers = {"Authorization": f"Bearer {self._api_key}"}
        request_headers.update(headers or {})

        async with httpx.AsyncClient(base_url=self._api_url, transport=self._transport) as client:
            response = await client.request(method, path, json=json, headers=request_headers)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("%s %s failed with %s", method, path, response.status_code)
            raise ApiClientError(exc) from exc

        if not response.content:
            return None
        return response.json()

    async def register_endpoint(self, url: str, name: str) -> Dict[str, Any]:
        logger.debug("registering endpoint %s at %s", name, url)
        return await self._request("POST", "/api/v1/endpoints", json={"url": url, "name": name})

    async def run_task(self, run_id: str, task: Dict[str, Any]) -> ServerTask:
        data = await self._request(
            "POST",
            f"/api/v1/runs/{run_id}/tasks",
            json=task,
            headers={"Idempotency-Key": task["idempotencyKey"]},
        )
        return ServerTask.model_validate(data)

    async def complete_task(self, run_id: str, task_id: str, task: Dict[str, Any]) -> ServerTask:
        data = await self._request("POST", f"/api/v1/runs/{run_id}/tasks/{task_id}/complete", json=task)
        return ServerTask.model_validate(data)

    async def fail_task(self, run_id: str, task_id: str, body: Dict[str, Any]) -> ServerTask:
        data = await self._request("POST", f"/api/v1/runs/{run_id}/tasks/{task_id}/fail", json=body)
        return ServerTask.model_validate(data)

    async def send_event(self, event: Dict[str, Any], options: Optional[Dict[str, Any]] = None):
        return await self._request("POST", "/api/v1/events", json={"event": event, "options": options})

    async def update_source(self, client: str, key: str, source: Dict[str, Any]):
        return await self._request("PUT", f"/api/v1/{quote(client)}/sources/{key}", json=source)

    async def register_trigger(self, client: str, id: str, key: str, body: Dict[str, Any]):
        return await self._request(
            "PUT", f"/api/v1/{quote(client)}/triggers/{id}/registrations/{key}", json=body
        )

    async def register_schedule(self, client: str, id: str, key: str, schedule: Dict[str, Any]):
        return await self._request(
            "POST", f"/api/v1/{quote(client)}/schedules/{id}/registrations", json={"id": key, **schedule}
        )

    async def unregister_schedule(self, client: str, id: str, key: str):
        return await self._request(
            "DELETE", f"/api/v1/{quote(client)}/schedules/{id}/registrations/{quote(key)}"
        )

    async def get_auth(self, client: str, id: str) -> Optional[ConnectionAuth]:
        data = await self._request("GET", f"/api/v1/{quote(client)}/auth/{id}")
        if data is None:
            return None
        return ConnectionAuth.model_validate(data)
