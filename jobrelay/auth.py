import hmac
from typing import Optional

from fastapi.security.api_key import APIKeyHeader

API_KEY_HEADER = "x-trigger-api-key"
api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def authorized(api_key: Optional[str], configured: Optional[str]) -> bool:
    # No configured key means nobody is authorized
    if not configured or api_key is None:
        return False
    return hmac.compare_digest(api_key.encode(), configured.encode())
