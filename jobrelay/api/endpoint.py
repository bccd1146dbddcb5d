import json
from typing import Optional

from fastapi import APIRouter, Request, Security
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from ..auth import api_key_header
from ..dispatcher import ACTION_HEADER
from ..schemas import NormalizedRequest

METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


async def read_body(request: Request):
    raw = await request.body()
    # Webhook deliveries are handed to sources as the exact bytes received
    if request.headers.get(ACTION_HEADER) == "DELIVER_HTTP_SOURCE_REQUEST":
        return raw
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def build_router(client, path: str = "/api/trigger") -> APIRouter:
    router = APIRouter()

    @router.api_route(path, methods=METHODS)
    async def trigger_endpoint(request: Request, api_key: Optional[str] = Security(api_key_header)):
        normalized = NormalizedRequest(
            method=request.method,
            headers={name.lower(): value for name, value in request.headers.items()},
            body=await read_body(request),
        )
        response = await client.handle_request(normalized)
        return JSONResponse(status_code=response.status, content=jsonable_encoder(response.body))

    return router
