import asyncio

import pytest
from pydantic import BaseModel

from jobrelay.errors import TaskErroredError
from jobrelay.events import EventSpecification
from jobrelay.executor import Completed, CompletedWithError, Suspended, classify_error
from jobrelay.job import Job
from jobrelay.schemas import RunJobBody
from jobrelay.sources import ExternalSource, Integration
from jobrelay.triggers import DynamicSchedule, DynamicTrigger, EventTrigger


def make_job(run, event=None, integrations=None):
    return Job(
        id="job",
        name="Job",
        version="1.0.0",
        trigger=EventTrigger(event=event or EventSpecification("user.created")),
        run=run,
        integrations=integrations,
    )


@pytest.mark.asyncio
async def test_resumed_run_does_not_repeat_side_effects(trigger_client, api, make_run_body):
    charges = []

    async def charge(task, io):
        charges.append(task.id)
        return {"charged": True}

    async def run(payload, io, ctx):
        receipt = await io.run_task("charge-card", {"name": "charge"}, charge)
        await io.wait("cool-off", 60)
        return receipt

    job = make_job(run)
    api.statuses["cool-off"] = "WAITING"

    first = await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job")), job)

    assert isinstance(first, Suspended)
    assert first.task.status == "WAITING"
    assert charges == ["task_1"]

    api.statuses.clear()
    api.calls.clear()
    second = await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job", tasks=api.cache())), job)

    assert second == Completed(output={"charged": True})
    assert charges == ["task_1"]
    assert api.calls == []


@pytest.mark.asyncio
async def test_cache_prefix_only_replays_known_tasks(trigger_client, api, make_run_body):
    seen = []

    async def step(task, io):
        seen.append(task.id)
        return len(seen)

    async def run(payload, io, ctx):
        a = await io.run_task("a", {}, step)
        b = await io.run_task("b", {}, step)
        return [a, b]

    job = make_job(run)
    await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job")), job)
    cache = [entry for entry in api.cache() if entry["id"] == "task_1"]

    outcome = await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job", tasks=cache)), job)

    assert outcome == Completed(output=[1, 3])
    assert seen == ["task_1", "task_2", "task_3"]


@pytest.mark.asyncio
async def test_same_key_in_another_run_is_not_replayed(trigger_client, api, make_run_body):
    async def run(payload, io, ctx):
        return await io.run_task("a", {}, lambda task, io: _value(task.id))

    job = make_job(run)
    await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job")), job)

    outcome = await trigger_client.executor.execute(
        RunJobBody.model_validate(make_run_body("job", tasks=api.cache(), run_id="run_2")), job
    )

    assert outcome == Completed(output="task_2")


async def _value(value):
    return value


@pytest.mark.asyncio
async def test_failed_callback_is_reported_and_classified(trigger_client, api, make_run_body):
    async def explode(task, io):
        raise ValueError("card declined")

    async def run(payload, io, ctx):
        return await io.run_task("charge-card", {}, explode)

    outcome = await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job")), make_job(run))

    assert isinstance(outcome, CompletedWithError)
    assert outcome.error["message"] == "card declined"
    assert api.call_names() == ["run_task", "fail_task"]
    assert api.calls[1][3]["error"]["message"] == "card declined"


@pytest.mark.asyncio
async def test_errored_task_fails_the_run(trigger_client, api, make_run_body):
    async def run(payload, io, ctx):
        return await io.run_task("lookup", {}, _value)

    api.statuses["lookup"] = "ERRORED"
    outcome = await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job")), make_job(run))

    assert isinstance(outcome, CompletedWithError)
    assert outcome.error["message"] == "Task failed"
    assert outcome.error["name"] == TaskErroredError.__name__


@pytest.mark.asyncio
async def test_suspension_is_not_swallowed_by_job_code(trigger_client, api, make_run_body):
    async def run(payload, io, ctx):
        try:
            await io.wait("nap", 300)
        except Exception:
            return "swallowed"
        return "finished"

    api.statuses["nap"] = "WAITING"
    outcome = await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job")), make_job(run))

    assert isinstance(outcome, Suspended)


@pytest.mark.asyncio
async def test_waiting_in_finally_block_does_not_hang_the_run(trigger_client, api, make_run_body):
    async def run(payload, io, ctx):
        try:
            await io.wait("first", 60)
        finally:
            await io.wait("cleanup", 60)

    api.statuses["first"] = "WAITING"
    api.statuses["cleanup"] = "WAITING"
    outcome = await asyncio.wait_for(
        trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job")), make_job(run)),
        timeout=5,
    )

    assert isinstance(outcome, Suspended)
    assert outcome.task.id == "task_1"


@pytest.mark.asyncio
async def test_running_task_with_operation_suspends(trigger_client, api, make_run_body):
    async def run(payload, io, ctx):
        return await io.run_task("fetch", {"operation": "fetch-request"}, _value)

    original = api.run_task

    async def run_task(run_id, task):
        server_task = await original(run_id, task)
        return server_task.model_copy(update={"operation": task.get("operation")})

    api.run_task = run_task
    outcome = await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job")), make_job(run))

    assert isinstance(outcome, Suspended)
    assert outcome.task.operation == "fetch-request"


class Signup(BaseModel):
    email: str


@pytest.mark.asyncio
async def test_payload_is_parsed_and_context_has_no_payload(trigger_client, make_run_body):
    received = {}

    async def run(payload, io, ctx):
        received["payload"] = payload
        received["context"] = ctx
        return payload.email

    job = make_job(run, event=EventSpecification.from_model("user.created", Signup))
    outcome = await trigger_client.executor.execute(
        RunJobBody.model_validate(make_run_body("job", {"email": "ada@example.com"})), job
    )

    assert outcome == Completed(output="ada@example.com")
    assert isinstance(received["payload"], Signup)
    context = received["context"].to_json()
    assert "payload" not in context["event"]
    assert context["event"]["context"] == {"source": "test"}
    assert context["run"]["id"] == "run_1"
    assert context["organization"]["slug"] == "acme"


@pytest.mark.asyncio
async def test_invalid_payload_is_a_run_error(trigger_client, make_run_body):
    job = make_job(lambda payload, io, ctx: payload, event=EventSpecification.from_model("user.created", Signup))
    outcome = await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job", {"name": "x"})), job)

    assert isinstance(outcome, CompletedWithError)
    assert "stack" in outcome.error


@pytest.mark.asyncio
async def test_sync_run_functions_are_supported(trigger_client, make_run_body):
    job = make_job(lambda payload, io, ctx: {"got": payload})
    outcome = await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job", 5)), job)
    assert outcome == Completed(output={"got": 5})


@pytest.mark.asyncio
async def test_integration_clients_are_handed_to_tasks(trigger_client, make_run_body, oauth_connection):
    github = Integration("github", client_factory=lambda auth: {"token": auth.access_token if auth else None})

    async def run(payload, io, ctx):
        return await io.github.run_task("list-repos", lambda client, task, io: _value(client["token"]))

    job = make_job(run, integrations={"github": github})
    body = make_run_body("job", connections={"github": oauth_connection.to_json()})
    outcome = await trigger_client.executor.execute(RunJobBody.model_validate(body), job)

    assert outcome == Completed(output="token-123")


@pytest.mark.asyncio
async def test_io_helpers_go_through_tasks(trigger_client, api, make_run_body):
    async def run(payload, io, ctx):
        await io.send_event("notify", {"name": "user.notified", "payload": {"id": 1}})
        await io.update_source("update", {"key": "github-acme-app", "secret": "s"})
        return "ok"

    outcome = await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job")), make_job(run))

    assert outcome == Completed(output="ok")
    assert "send_event" in api.call_names()
    assert ("update_source", "test-app", "github-acme-app", {"key": "github-acme-app", "secret": "s"}) in api.calls


def test_classify_error_shapes():
    try:
        raise RuntimeError("with stack")
    except RuntimeError as exc:
        raised = exc

    with_stack = classify_error(raised)
    assert with_stack["message"] == "with stack"
    assert "Traceback" in with_stack["stack"]

    assert classify_error(ValueError("never raised")) == {"message": "never raised"}
    assert classify_error(Exception()) == {"message": "Unknown error"}


@pytest.mark.asyncio
async def test_registrations_through_io(trigger_client, api, make_run_body, oauth_connection):
    async def register(params, event, io, ctx):
        return None

    async def handle(source, request, logger):
        return None

    source = ExternalSource("HTTP", "1.0.0", Integration("github"), lambda p: f"gh.{p['repo']}", register, handle)
    issues = DynamicTrigger(trigger_client, "issues", EventSpecification("issue.opened"), source)
    nightly = DynamicSchedule(trigger_client, "nightly")
    api.auth["github"] = oauth_connection

    async def run(payload, io, ctx):
        await io.register_trigger("register-repo", issues, "acme-app", {"repo": "acme/app"})
        await io.register_schedule("schedule", nightly, "acme", {"type": "cron", "options": {"cron": "0 0 * * *"}})
        await io.unregister_schedule("unschedule", nightly, "old")
        return await io.get_auth("auth", "github")

    outcome = await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job")), make_job(run))

    assert outcome == Completed(output={"type": "oauth2", "accessToken": "token-123", "scopes": ["repo"]})
    registration = next(call for call in api.calls if call[0] == "register_trigger")
    assert registration[1:4] == ("test-app", "issues", "acme-app")
    assert registration[4]["source"]["key"] == "gh-acme-app"
    assert ("register_schedule", "test-app", "nightly", "acme", {"type": "cron", "options": {"cron": "0 0 * * *"}}) in api.calls
    assert ("unregister_schedule", "test-app", "nightly", "old") in api.calls


@pytest.mark.asyncio
async def test_canceled_task_fails_the_run(trigger_client, api, make_run_body):
    async def run(payload, io, ctx):
        return await io.run_task("lookup", {}, _value)

    api.statuses["lookup"] = "CANCELED"
    outcome = await trigger_client.executor.execute(RunJobBody.model_validate(make_run_body("job")), make_job(run))

    assert isinstance(outcome, CompletedWithError)
    assert outcome.error["name"] == "TaskCanceledError"
