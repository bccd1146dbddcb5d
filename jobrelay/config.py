import logging
import os
from typing import Optional

from pydantic import BaseModel

from .errors import ConfigurationError

DEFAULT_API_URL = "https://api.trigger.dev"

# Checked in order; the first non-empty value is used as the public host
HOST_VARIABLES = ("TRIGGER_HOST", "HOST", "HOSTNAME", "NOW_URL", "VERCEL_URL")


class TriggerClientOptions(BaseModel):
    api_key: Optional[str] = None
    api_url: Optional[str] = None
    endpoint: Optional[str] = None
    path: Optional[str] = None
    log_level: Optional[str] = None


def resolve_api_key(explicit: Optional[str] = None) -> Optional[str]:
    return explicit or os.getenv("TRIGGER_API_KEY")


def resolve_api_url(explicit: Optional[str] = None) -> str:
    return explicit or os.getenv("TRIGGER_API_URL") or DEFAULT_API_URL


def resolve_log_level(explicit: Optional[str] = None) -> int:
    """Map a level name such as ``"debug"`` to a ``logging`` level.

    Unknown names fall back to ``INFO`` rather than failing client setup.
    """
    name = (explicit or os.getenv("TRIGGER_LOG_LEVEL") or "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO



def build_endpoint_url(path: Optional[str] = None) -> str:
    """Work out the public URL of this endpoint from the environment.

    ``TRIGGER_ENDPOINT`` wins outright. Otherwise the first host found in
    ``HOST_VARIABLES`` is served over https. ``path`` is appended either way.
    """
    suffix = path or ""
    endpoint = os.getenv("TRIGGER_ENDPOINT")
    if endpoint:
        return endpoint + suffix

    for name in HOST_VARIABLES:
        host = os.getenv(name)
        if host:
            return "https://" + host + suffix

    raise ConfigurationError(
        "Could not determine the endpoint for the trigger client. "
        "Please set the TRIGGER_ENDPOINT environment variable."
    )
