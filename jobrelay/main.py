import time

from fastapi import FastAPI, Request

from .api.endpoint import build_router
from .metrics import metrics_response, request_latency_seconds


def create_app(client, path: str = "/api/trigger") -> FastAPI:
    app = FastAPI(title=f"{client.name} trigger endpoint")

    app.include_router(build_router(client, path))

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start = time.time()
        try:
            response = await call_next(request)
            return response
        finally:
            request_latency_seconds.observe(time.time() - start)

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics():
        return metrics_response()

    return app
