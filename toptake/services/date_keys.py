"""Calendar-day keys ("prompt dates") derived from a UTC instant and a user's offset.

Every "what day is it for this user" question goes through here.
"""

from datetime import date, datetime, timedelta, timezone

from toptake.core.exceptions import BadRequestError, InvalidDateKeyError

KEY_FORMAT = "%Y-%m-%d"
MIN_OFFSET_MINUTES = -12 * 60
MAX_OFFSET_MINUTES = 14 * 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(now_utc: datetime) -> datetime:
    if now_utc.tzinfo is None:
        return now_utc.replace(tzinfo=timezone.utc)
    return now_utc.astimezone(timezone.utc)


def today_key(now_utc: datetime, timezone_offset_minutes: int) -> str:
    """Shift now by the offset, truncate to a date, format YYYY-MM-DD."""
    local = _as_utc(now_utc) + timedelta(minutes=timezone_offset_minutes)
    return local.date().strftime(KEY_FORMAT)


def parse_key(key: str) -> date:
    try:
        parsed = datetime.strptime(key, KEY_FORMAT).date()
    except (TypeError, ValueError) as e:
        raise InvalidDateKeyError(f"Invalid date key: {key!r}", details={"key": key}) from e
    if parsed.strftime(KEY_FORMAT) != key:
        # reject non-canonical forms such as 2024-3-1
        raise InvalidDateKeyError(f"Invalid date key: {key!r}", details={"key": key})
    return parsed


def format_key(day: date) -> str:
    return day.strftime(KEY_FORMAT)


def shift_key(key: str, days: int) -> str:
    return format_key(parse_key(key) + timedelta(days=days))


def days_between(earlier: str, later: str) -> int:
    return (parse_key(later) - parse_key(earlier)).days


def is_future_or_today(key: str, now_utc: datetime, timezone_offset_minutes: int) -> bool:
    return parse_key(key) >= parse_key(today_key(now_utc, timezone_offset_minutes))


def is_past(key: str, now_utc: datetime, timezone_offset_minutes: int) -> bool:
    return not is_future_or_today(key, now_utc, timezone_offset_minutes)


def validate_offset(minutes: int) -> int:
    if not MIN_OFFSET_MINUTES <= minutes <= MAX_OFFSET_MINUTES:
        raise BadRequestError(
            "timezone_offset_minutes must be between -720 and 840",
            details={"timezone_offset_minutes": minutes},
        )
    return minutes
