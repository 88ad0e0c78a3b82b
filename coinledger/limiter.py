from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from .config import settings
from .dependencies import gateway_key_ok


def rate_limit_key(request: Request) -> str:
    """Bucket gateway traffic per actor and everything else per client address.

    Actor headers are only read alongside a valid gateway key.
    """
    if gateway_key_ok(request.headers.get("x-internal-api-key")):
        actor = request.headers.get("x-user-id") or request.headers.get("x-admin-id")
        if actor:
            return f"actor:{actor}"
    return get_remote_address(request)


limiter = Limiter(key_func=rate_limit_key, enabled=settings.rate_limit_enabled)
