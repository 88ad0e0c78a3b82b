"""ARQ worker: periodic ledger housekeeping outside the HTTP request cycle."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from arq.connections import RedisSettings
from arq.cron import cron

from . import withdrawals
from .config import settings
from .database import SessionLocal

logger = logging.getLogger("coinledger.worker")


def _expire_stale_withdrawals(older_than_hours: int) -> int:
    db = SessionLocal()
    try:
        return withdrawals.expire_stale(db, older_than_hours=older_than_hours)
    finally:
        db.close()


async def task_expire_stale_withdrawals(ctx: dict[str, Any], *, older_than_hours: int | None = None) -> dict[str, Any]:
    """Cancel pending withdrawals nobody reviewed in time and return their holds."""
    hours = settings.withdrawal_expiry_hours if older_than_hours is None else older_than_hours
    expired = await asyncio.to_thread(_expire_stale_withdrawals, hours)
    logger.info("Worker: stale withdrawal sweep done | expired=%s | hours=%s", expired, hours)
    return {"expired": expired, "older_than_hours": hours}


async def on_worker_startup(ctx: dict[str, Any]) -> None:
    logger.info("ARQ worker started")


async def on_worker_shutdown(ctx: dict[str, Any]) -> None:
    logger.info("ARQ worker shutting down")


class WorkerSettings:
    functions = [task_expire_stale_withdrawals]
    cron_jobs = [cron(task_expire_stale_withdrawals, minute=0, run_at_startup=True)]
    redis_settings = RedisSettings.from_dsn(settings.redis_url or "redis://localhost:6379/0")
    on_startup = on_worker_startup
    on_shutdown = on_worker_shutdown
    max_tries = 3
    job_timeout = 300
