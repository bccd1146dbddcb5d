import json

import httpx
import pytest

from jobrelay.api_client import ApiClient
from jobrelay.errors import ApiClientError


def recording_transport(requests, status=200, body=None):
    def handler(request: httpx.Request):
        requests.append(request)
        return httpx.Response(status, json=body if body is not None else {})

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_register_endpoint_sends_bearer_key():
    requests = []
    client = ApiClient("secret", "https://api.example.com/", transport=recording_transport(requests, body={"id": "ep"}))

    result = await client.register_endpoint("https://app.example.com/api/trigger", "my-app")

    assert result == {"id": "ep"}
    assert requests[0].url == "https://api.example.com/api/v1/endpoints"
    assert requests[0].headers["authorization"] == "Bearer secret"
    assert json.loads(requests[0].content) == {"url": "https://app.example.com/api/trigger", "name": "my-app"}


@pytest.mark.asyncio
async def test_run_task_sends_idempotency_key():
    requests = []
    task = {"id": "task_1", "idempotencyKey": "abc", "status": "RUNNING", "noop": False}
    client = ApiClient("secret", "https://api.example.com", transport=recording_transport(requests, body=task))

    server_task = await client.run_task("run_1", {"idempotencyKey": "abc", "displayKey": "step"})

    assert server_task.id == "task_1"
    assert server_task.status == "RUNNING"
    assert requests[0].url.path == "/api/v1/runs/run_1/tasks"
    assert requests[0].headers["idempotency-key"] == "abc"


@pytest.mark.asyncio
async def test_errors_are_wrapped():
    requests = []
    client = ApiClient("secret", "https://api.example.com", transport=recording_transport(requests, status=422, body={"error": "bad"}))

    with pytest.raises(ApiClientError) as excinfo:
        await client.send_event({"name": "user.created", "payload": {}})

    assert excinfo.value.status_code == 422


@pytest.mark.asyncio
async def test_get_auth_parses_connection():
    requests = []
    body = {"type": "oauth2", "accessToken": "tok", "scopes": ["repo"]}
    client = ApiClient("secret", "https://api.example.com", transport=recording_transport(requests, body=body))

    auth = await client.get_auth("my app", "github")

    assert auth.access_token == "tok"
    assert requests[0].url.raw_path == b"/api/v1/my%20app/auth/github"
