"""Run ARQ worker. Usage: python -m toptake.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from toptake.worker.tasks import get_redis_settings, reconcile_ledger, refresh_streaks, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [refresh_streaks, reconcile_ledger]
    cron_jobs = [
        cron(refresh_streaks, minute=5),  # hourly at :05
        cron(reconcile_ledger, hour=3, minute=30),  # daily 03:30 UTC
    ]
    on_startup = startup
    on_shutdown = shutdown


if __name__ == "__main__":
    run_worker(WorkerSettings)
