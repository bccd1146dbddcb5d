import pytest
from httpx import ASGITransport, AsyncClient

from jobrelay.client import TriggerClient
from jobrelay.config import TriggerClientOptions
from jobrelay.main import create_app
from jobrelay.schemas import ConnectionAuth, ServerTask

API_KEY = "test-key"


class FakeApiClient:
    """In-memory stand-in for the backend; records every call."""

    def __init__(self):
        self.calls = []
        self.statuses = {}
        self.tasks = {}
        self.auth = {}
        self._counter = 0

    async def register_endpoint(self, url, name):
        self.calls.append(("register_endpoint", url, name))
        return {"id": "endpoint_1", "url": url}

    async def run_task(self, run_id, task):
        self.calls.append(("run_task", run_id, task))
        self._counter += 1
        status = self.statuses.get(task["displayKey"], "RUNNING")
        server_task = ServerTask(
            id=f"task_{self._counter}",
            name=task.get("name"),
            idempotency_key=task["idempotencyKey"],
            status=status,
            noop=task.get("noop", False),
            error="Task failed" if status == "ERRORED" else None,
        )
        self.tasks[server_task.id] = server_task
        return server_task

    async def complete_task(self, run_id, task_id, body):
        self.calls.append(("complete_task", run_id, task_id, body))
        task = self.tasks[task_id].model_copy(update={"status": "COMPLETED", "output": body.get("output")})
        self.tasks[task_id] = task
        return task

    async def fail_task(self, run_id, task_id, body):
        self.calls.append(("fail_task", run_id, task_id, body))
        task = self.tasks[task_id].model_copy(update={"status": "ERRORED"})
        self.tasks[task_id] = task
        return task

    async def send_event(self, event, options=None):
        self.calls.append(("send_event", event, options))
        return {"id": "event_1", **event}

    async def update_source(self, client, key, source):
        self.calls.append(("update_source", client, key, source))
        return {"key": key}

    async def register_trigger(self, client, id, key, body):
        self.calls.append(("register_trigger", client, id, key, body))
        return {"id": key}

    async def register_schedule(self, client, id, key, schedule):
        self.calls.append(("register_schedule", client, id, key, schedule))
        return {"id": key}

    async def unregister_schedule(self, client, id, key):
        self.calls.append(("unregister_schedule", client, id, key))
        return {"ok": True}

    async def get_auth(self, client, id):
        self.calls.append(("get_auth", client, id))
        return self.auth.get(id)

    def cache(self):
        """Every task seen so far, as completed cache entries for the next call."""
        return [
            {
                "id": task.id,
                "idempotencyKey": task.idempotency_key,
                "status": "COMPLETED",
                "noop": task.noop,
                "output": task.output,
            }
            for task in self.tasks.values()
        ]

    def call_names(self):
        return [call[0] for call in self.calls]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "TRIGGER_API_KEY",
        "TRIGGER_API_URL",
        "TRIGGER_ENDPOINT",
        "TRIGGER_LOG_LEVEL",
        "TRIGGER_HOST",
        "HOST",
        "HOSTNAME",
        "NOW_URL",
        "VERCEL_URL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def api():
    return FakeApiClient()


@pytest.fixture
def trigger_client(api):
    return TriggerClient("test-app", TriggerClientOptions(api_key=API_KEY), api_client=api)


@pytest.fixture
def headers():
    def build(action=None, **extra):
        values = {"x-trigger-api-key": API_KEY}
        if action:
            values["x-trigger-action"] = action
        values.update(extra)
        return values

    return build


@pytest.fixture
def make_run_body():
    def build(job_id, payload=None, tasks=None, connections=None, run_id="run_1"):
        return {
            "event": {
                "id": "evt_1",
                "name": "user.created",
                "payload": payload,
                "context": {"source": "test"},
                "timestamp": "2026-01-01T00:00:00Z",
            },
            "job": {"id": job_id, "version": "1.0.0"},
            "run": {"id": run_id, "isTest": False, "startedAt": "2026-01-01T00:00:01Z"},
            "environment": {"id": "env_1", "slug": "dev", "type": "DEVELOPMENT"},
            "organization": {"id": "org_1", "title": "Acme", "slug": "acme"},
            "account": {"id": "acct_1"},
            "connections": connections or {},
            "tasks": tasks or [],
        }

    return build


@pytest.fixture
def oauth_connection():
    return ConnectionAuth(access_token="token-123", scopes=["repo"])


@pytest.fixture
async def client(trigger_client):
    app = create_app(trigger_client)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac
