from dataclasses import dataclass
import hmac

from fastapi import Header, HTTPException, Request

from .config import settings


@dataclass
class AuthContext:
    actor_id: str
    validated_via_gateway: bool
    ip_address: str | None = None


def gateway_key_ok(x_internal_api_key: str | None) -> bool:
    if not settings.internal_api_key or not x_internal_api_key:
        return False
    return hmac.compare_digest(x_internal_api_key, settings.internal_api_key)


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def _resolve(request: Request, actor_id: str | None, x_internal_api_key: str | None, header_name: str) -> AuthContext:
    actor_id = (actor_id or "").strip()
    if len(actor_id) > 64:
        raise HTTPException(status_code=400, detail=f"{header_name} is too long")
    if gateway_key_ok(x_internal_api_key):
        if not actor_id:
            raise HTTPException(status_code=401, detail=f"{header_name} is required for internal auth")
        return AuthContext(actor_id=actor_id, validated_via_gateway=True, ip_address=_client_ip(request))

    if settings.allow_insecure_dev_auth and actor_id:
        return AuthContext(actor_id=actor_id, validated_via_gateway=False, ip_address=_client_ip(request))

    raise HTTPException(status_code=401, detail="Unauthorized")


def current_user_dep(
    request: Request,
    x_user_id: str | None = Header(default=None, alias="X-User-ID"),
    x_internal_api_key: str | None = Header(default=None, alias="X-Internal-API-Key"),
) -> AuthContext:
    return _resolve(request, x_user_id, x_internal_api_key, "X-User-ID")


def current_admin_dep(
    request: Request,
    x_admin_id: str | None = Header(default=None, alias="X-Admin-ID"),
    x_internal_api_key: str | None = Header(default=None, alias="X-Internal-API-Key"),
) -> AuthContext:
    return _resolve(request, x_admin_id, x_internal_api_key, "X-Admin-ID")
