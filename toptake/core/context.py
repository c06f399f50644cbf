"""Request-scoped viewer context passed into every engine call."""

from dataclasses import dataclass
from datetime import datetime

from toptake.models.user import User
from toptake.services import date_keys


@dataclass(frozen=True)
class ViewerContext:
    user: User
    now_utc: datetime
    request_id: str | None = None

    @property
    def user_id(self):
        return self.user.id

    @property
    def today_key(self) -> str:
        return date_keys.today_key(self.now_utc, self.user.timezone_offset_minutes)
