"""Cron: keep cached streaks fresh and audit the credit ledger."""

from toptake.core.audit import log_event
from toptake.core.logging import get_logger
from toptake.models.credit_balance import CreditBalance
from toptake.models.user import User
from toptake.services import credits as credits_service
from toptake.services import users as users_service
from toptake.services.date_keys import today_key, utcnow

log = get_logger(__name__)

BATCH_SIZE = 200


async def run_refresh_streaks() -> int:
    """Recompute cached streak fields for every user as of their own today. Returns users updated."""
    now = utcnow()
    updated = 0
    skip = 0
    while True:
        users = await User.find_all().sort("_id").skip(skip).limit(BATCH_SIZE).to_list()
        if not users:
            break
        for user in users:
            today = today_key(now, user.timezone_offset_minutes)
            before = (user.current_streak, user.longest_streak)
            summary = await users_service.refresh_streak_cache(user, today)
            if before != (summary.current, summary.longest):
                updated += 1
        skip += len(users)
    log.info("streaks_refreshed", users=skip, updated=updated)
    return updated


async def run_reconcile_ledger() -> list[dict]:
    """Compare every balance row with its history sum; log and audit mismatches."""
    mismatches = []
    rows = await CreditBalance.find_all().to_list()
    for row in rows:
        result = await credits_service.reconcile(row.user_id, row.credit_type)
        if result["consistent"]:
            continue
        result["user_id"] = str(row.user_id)
        mismatches.append(result)
        log.warning("ledger_mismatch", **result)
        await log_event(str(row.user_id), "ledger_mismatch", "credit_balance", str(row.id), result)
    log.info("ledger_reconciled", balances=len(rows), mismatches=len(mismatches))
    return mismatches
