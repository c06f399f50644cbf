"""arq job functions. Each job body lives in worker/cron.py; these wrappers add logging context and the dead-letter."""

import uuid
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

from arq.connections import RedisSettings

from toptake.core.config import get_settings
from toptake.core.logging import bind_job, configure_logging, get_logger

log = get_logger(__name__)


async def _run_with_dlq(job_name: str, job_id: str | None, job_try: int, coro: Awaitable[Any]) -> Any:
    """Await the job; on failure write a FailedJob row and re-raise so arq records the failure too."""
    bind_job(job_name, job_id)
    try:
        return await coro
    except Exception as e:
        from toptake.models.failed_job import FailedJob
        fid = job_id or str(uuid.uuid4())
        await FailedJob(
            job_name=job_name,
            job_id=fid,
            job_try=job_try,
            error_type=type(e).__name__,
            reason=str(e)[:2000],
        ).insert()
        log.exception("job_failed", job_try=job_try, reason=str(e))
        raise


async def _run(ctx: dict[str, Any], job_name: str, body: Callable[[], Awaitable[Any]]) -> Any:
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    return await _run_with_dlq(job_name, job_id, int(ctx.get("job_try") or 1), body())


async def refresh_streaks(ctx: dict[str, Any]) -> int:
    """Cron: recompute cached streak fields; returns users whose cache changed."""
    from toptake.worker.cron import run_refresh_streaks
    return await _run(ctx, "refresh_streaks", run_refresh_streaks)


async def reconcile_ledger(ctx: dict[str, Any]) -> int:
    """Cron: compare balances with history sums; returns the mismatch count."""
    from toptake.worker.cron import run_reconcile_ledger
    mismatches = await _run(ctx, "reconcile_ledger", run_reconcile_ledger)
    return len(mismatches)


async def startup(ctx: dict) -> None:
    from toptake.db.init import init_db
    configure_logging(debug=get_settings().debug, service="toptake-worker")
    await init_db()
    log.info("worker_started")


async def shutdown(ctx: dict) -> None:
    log.info("worker_shutdown")


def get_redis_settings() -> RedisSettings:
    u = urlparse(get_settings().redis_url)
    db = u.path.lstrip("/")
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(db) if db else 0,
        ssl=u.scheme == "rediss",
    )
