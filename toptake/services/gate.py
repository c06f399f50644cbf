"""Gate state: should the viewer see the feed or the lock screen?

Evaluated fresh on every call against the viewer's current "today"; a
calendar-day rollover is picked up on the next evaluation, no timer involved.
"""

from dataclasses import dataclass
from enum import Enum

from toptake.core.config import get_settings
from toptake.core.context import ViewerContext
from toptake.services import prompts as prompts_service
from toptake.services import submissions as submissions_service
from toptake.services.date_keys import days_between, parse_key


class GateStatus(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    LATE_ELIGIBLE = "late_eligible"


@dataclass(frozen=True)
class GateState:
    status: GateStatus
    today_key: str
    prompt_date: str

    def as_dict(self) -> dict:
        return {
            "status": self.status.value,
            "today": self.today_key,
            "prompt_date": self.prompt_date,
        }


async def get_gate_state(ctx: ViewerContext) -> GateState:
    """Unlocked iff the viewer has an accepted submission for today's key."""
    today = ctx.today_key
    submitted = await submissions_service.has_submission(ctx.user_id, today)
    return GateState(
        status=GateStatus.UNLOCKED if submitted else GateStatus.LOCKED,
        today_key=today,
        prompt_date=today,
    )


async def is_late_eligible(ctx: ViewerContext, prompt_date: str) -> bool:
    """Past, inside the late window, has an active prompt, and nothing submitted yet."""
    day = parse_key(prompt_date)
    today = ctx.today_key
    if day >= parse_key(today):
        return False
    if days_between(prompt_date, today) > get_settings().late_submit_window_days:
        return False
    if await submissions_service.has_submission(ctx.user_id, prompt_date):
        return False
    return await prompts_service.get_prompt(prompt_date) is not None


async def evaluate_date(ctx: ViewerContext, prompt_date: str) -> GateState:
    """
    State of a specific date. Does not change the primary gate, which is always
    evaluated against today.
    """
    day = parse_key(prompt_date)
    today = ctx.today_key
    if day == parse_key(today):
        return await get_gate_state(ctx)
    if day > parse_key(today):
        status = GateStatus.LOCKED
    elif await submissions_service.has_submission(ctx.user_id, prompt_date):
        status = GateStatus.UNLOCKED
    elif await is_late_eligible(ctx, prompt_date):
        status = GateStatus.LATE_ELIGIBLE
    else:
        status = GateStatus.LOCKED
    return GateState(status=status, today_key=today, prompt_date=prompt_date)
