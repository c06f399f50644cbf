from datetime import datetime, timezone
from typing import Literal

from beanie import Document, Indexed
from pydantic import Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Document):
    external_id: Indexed(str, unique=True)  # identity-provider subject
    timezone_offset_minutes: int = 0  # signed minutes from UTC
    role: Literal["user", "admin"] = "user"
    # Cached, derived from submissions; never authoritative
    current_streak: int = 0
    longest_streak: int = 0
    streak_as_of: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    class Settings:
        name = "users"
