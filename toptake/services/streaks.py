"""Current and longest streaks over the set of accepted prompt dates."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable

from beanie import PydanticObjectId

from toptake.core.exceptions import storage_errors
from toptake.models.submission import Submission
from toptake.services.date_keys import parse_key


@dataclass(frozen=True)
class StreakSummary:
    current: int
    longest: int

    def as_dict(self) -> dict[str, int]:
        return {"current": self.current, "longest": self.longest}


def current_streak(dates: Iterable[str], today_key: str) -> int:
    """
    Consecutive days ending today, or ending yesterday when today has no
    submission yet: today is not over, so it cannot break the streak.
    """
    days = {parse_key(d) for d in dates}
    cursor = parse_key(today_key)
    if cursor not in days:
        cursor -= timedelta(days=1)
    count = 0
    while cursor in days:
        count += 1
        cursor -= timedelta(days=1)
    return count


def longest_streak(dates: Iterable[str]) -> int:
    days = sorted({parse_key(d) for d in dates})
    longest = 0
    run = 0
    previous = None
    for day in days:
        if previous is not None and day - previous == timedelta(days=1):
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        previous = day
    return longest


def compute(dates: Iterable[str], today_key: str) -> StreakSummary:
    dates = list(dates)
    return StreakSummary(current=current_streak(dates, today_key), longest=longest_streak(dates))


async def load_prompt_dates(user_id: PydanticObjectId) -> list[str]:
    """Distinct prompt dates with an accepted submission for this user."""
    with storage_errors("load_prompt_dates"):
        return await Submission.distinct("prompt_date", {"user_id": user_id})


async def get_streak(user_id: PydanticObjectId, today_key: str) -> StreakSummary:
    return compute(await load_prompt_dates(user_id), today_key)
