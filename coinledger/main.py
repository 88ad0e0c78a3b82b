from contextlib import asynccontextmanager
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .errors import LedgerError, ledger_error_handler
from .limiter import limiter
from .routers import admin, charges, coins, gifts, health, wallet, withdrawals


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    force=True,
)
logger = logging.getLogger("coinledger.api")


class ApiAccessLogMiddleware(BaseHTTPMiddleware):
    """One log line per request with the caller, outcome and timing."""

    async def dispatch(self, request, call_next):
        request_id = request.headers.get("x-request-id") or uuid4().hex[:8]
        request.state.request_id = request_id
        started_at = time.perf_counter()

        method = request.method
        path = request.url.path
        query = request.url.query
        full_path = f"{path}?{query}" if query else path
        actor = request.headers.get("x-admin-id") or request.headers.get("x-user-id") or "-"
        auth_mode = "gateway" if request.headers.get("x-internal-api-key") else "dev"

        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = (time.perf_counter() - started_at) * 1000
            logger.exception(
                "API %s %s | status=500 | actor=%s | auth=%s | t=%.1fms | req_id=%s",
                method,
                full_path,
                actor,
                auth_mode,
                elapsed_ms,
                request_id,
            )
            raise

        elapsed_ms = (time.perf_counter() - started_at) * 1000
        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "API %s %s | status=%s | actor=%s | auth=%s | t=%.1fms | req_id=%s",
            method,
            full_path,
            response.status_code,
            actor,
            auth_mode,
            elapsed_ms,
            request_id,
        )
        response.headers["X-Request-ID"] = request_id
        return response


logging.getLogger("uvicorn.access").disabled = True
logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Coin ledger API starting | env=%s | cache=%s | rate_limit=%s",
        settings.app_env,
        "redis" if settings.redis_url else "off",
        settings.rate_limit_enabled,
    )
    yield


app = FastAPI(title="Coin Ledger API", version="0.1.0", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(LedgerError, ledger_error_handler)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.add_middleware(SlowAPIMiddleware)
app.add_middleware(ApiAccessLogMiddleware)

if settings.cors_origins():
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "X-User-ID",
            "X-Admin-ID",
            "X-Internal-API-Key",
            "X-Recipient-Tier",
            "X-Request-ID",
        ],
    )

app.include_router(health.router)
app.include_router(coins.router)
app.include_router(wallet.router)
app.include_router(charges.router)
app.include_router(gifts.router)
app.include_router(withdrawals.router)
app.include_router(admin.router)
