from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from toptake.core.audit import log_event
from toptake.core.config import get_settings
from toptake.core.exceptions import BadRequestError, storage_errors
from toptake.core.logging import get_logger
from toptake.models.credit_balance import CreditType
from toptake.models.credit_history import CreditReason
from toptake.models.user import User
from toptake.services import credits as credits_service
from toptake.services import streaks as streaks_service
from toptake.services.date_keys import utcnow, validate_offset

log = get_logger(__name__)


async def get_by_external_id(external_id: str) -> User | None:
    with storage_errors("get_user"):
        return await User.find_one(User.external_id == external_id)


async def register_user(external_id: str, timezone_offset_minutes: int = 0) -> User:
    """Create the engine-side user for an identity subject; idempotent. Grants the welcome credits once."""
    external_id = (external_id or "").strip()
    if not external_id:
        raise BadRequestError("Missing identity subject")
    validate_offset(timezone_offset_minutes)
    user = await get_by_external_id(external_id)
    if user is None:
        user = User(external_id=external_id, timezone_offset_minutes=timezone_offset_minutes)
        try:
            with storage_errors("insert_user"):
                await user.insert()
        except DuplicateKeyError:
            # registered concurrently; use that record
            user = await get_by_external_id(external_id)
        else:
            log.info("user_created", user_id=str(user.id), external_id=external_id)
            await log_event(str(user.id), "user_created", "user", str(user.id), {"external_id": external_id})
    welcome = get_settings().welcome_anonymous_credits
    if welcome > 0:
        await credits_service.grant(
            user.id,
            CreditType.ANONYMOUS,
            welcome,
            reason=CreditReason.GRANT,
            reference_type="welcome",
            reference_id=str(user.id),
            idempotency_key=f"welcome:{user.id}",
        )
    return user


async def update_timezone(user: User, timezone_offset_minutes: int) -> User:
    """Affects only future "today" computations; stored prompt dates are untouched."""
    validate_offset(timezone_offset_minutes)
    if user.timezone_offset_minutes == timezone_offset_minutes:
        return user
    previous = user.timezone_offset_minutes
    user.timezone_offset_minutes = timezone_offset_minutes
    user.updated_at = utcnow()
    with storage_errors("update_timezone"):
        await user.save()
    log.info("timezone_updated", user_id=str(user.id), previous=previous, current=timezone_offset_minutes)
    return user


async def refresh_streak_cache(user: User, today_key: str) -> streaks_service.StreakSummary:
    """Recompute and store the cached streak fields on the user."""
    summary = await streaks_service.get_streak(user.id, today_key)
    if (user.current_streak, user.longest_streak, user.streak_as_of) != (summary.current, summary.longest, today_key):
        user.current_streak = summary.current
        user.longest_streak = summary.longest
        user.streak_as_of = today_key
        user.updated_at = utcnow()
        with storage_errors("refresh_streak_cache"):
            await user.save()
    return summary


async def get_user(user_id: PydanticObjectId) -> User | None:
    with storage_errors("get_user"):
        return await User.get(user_id)


def user_to_dict(user: User) -> dict:
    return {
        "id": str(user.id),
        "external_id": user.external_id,
        "timezone_offset_minutes": user.timezone_offset_minutes,
        "role": user.role,
        "current_streak": user.current_streak,
        "longest_streak": user.longest_streak,
        "streak_as_of": user.streak_as_of,
    }
