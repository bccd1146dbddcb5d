import traceback

import httpx


class ConfigurationError(RuntimeError):
    """The client could not work out where it is reachable."""


class TaskErroredError(Exception):
    def __init__(self, task):
        self.task = task
        super().__init__(task.error or f"Task {task.id} errored")


class TaskCanceledError(Exception):
    def __init__(self, task):
        self.task = task
        super().__init__(f"Task {task.id} was canceled")


class ApiClientError(Exception):
    def __init__(self, exc: httpx.HTTPStatusError):
        self.status_code = exc.response.status_code
        self.body = exc.response.text
        super().__init__(f"{exc.request.method} {exc.request.url} failed with {self.status_code}")


def error_to_json(exc: BaseException) -> dict:
    """Shape an exception the way job errors are reported to the backend."""
    message = getattr(exc, "message", None)
    if not isinstance(message, str):
        message = str(exc) or None
    data = {"name": type(exc).__name__, "message": message}
    if exc.__traceback__ is not None:
        data["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return data
