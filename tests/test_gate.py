"""Gate state and today's submission flow through the engine."""

from datetime import datetime, timezone

import pytest
from pymongo.errors import AutoReconnect

from toptake.core.exceptions import InsufficientCreditError, NotEligibleError, StorageUnavailableError
from toptake.models.credit_balance import CreditType
from toptake.models.credit_history import CreditHistoryEntry, CreditReason
from toptake.models.submission import Submission
from toptake.services import credits as credits_service
from toptake.services import engine
from toptake.services.gate import GateStatus

pytestmark = pytest.mark.asyncio


async def test_locked_until_submitted(viewer):
    ctx = viewer()
    state = await engine.get_gate_state(ctx)
    assert state.status == GateStatus.LOCKED
    assert state.as_dict() == {"status": "locked", "today": "2024-03-02", "prompt_date": "2024-03-02"}
    await engine.submit(ctx, "my take")
    assert (await engine.get_gate_state(ctx)).status == GateStatus.UNLOCKED


async def test_relocks_on_next_calendar_day(viewer):
    await engine.submit(viewer(), "my take")
    tomorrow = viewer(at=datetime(2024, 3, 3, 0, 1, tzinfo=timezone.utc))
    state = await engine.get_gate_state(tomorrow)
    assert state.status == GateStatus.LOCKED
    assert state.today_key == "2024-03-03"


async def test_today_follows_user_offset(user, viewer):
    user.timezone_offset_minutes = -300
    await user.save()
    ctx = viewer(at=datetime(2024, 3, 2, 3, 0, tzinfo=timezone.utc))
    submission = await engine.submit(ctx, "late night take")
    assert submission.prompt_date == "2024-03-01"


async def test_future_prompt_not_eligible(viewer):
    with pytest.raises(NotEligibleError):
        await engine.submit(viewer(), "too early", prompt_date="2024-03-03")


async def test_streak_cache_refreshed_after_submit(user, viewer, make_submission):
    await make_submission(user.id, "2024-03-01")
    await engine.submit(viewer(), "two in a row")
    assert user.current_streak == 2
    assert user.longest_streak == 2
    assert user.streak_as_of == "2024-03-02"


async def test_evaluate_specific_dates(user, viewer, make_prompt, make_submission):
    ctx = viewer()
    await make_prompt("2024-02-28")
    await make_prompt("2023-10-01")
    await make_submission(user.id, "2024-02-27")
    assert (await engine.get_gate_state_for_date(ctx, "2024-02-28")).status == GateStatus.LATE_ELIGIBLE
    assert (await engine.get_gate_state_for_date(ctx, "2024-02-27")).status == GateStatus.UNLOCKED
    # no prompt that day
    assert (await engine.get_gate_state_for_date(ctx, "2024-02-26")).status == GateStatus.LOCKED
    # outside the late window
    assert (await engine.get_gate_state_for_date(ctx, "2023-10-01")).status == GateStatus.LOCKED
    assert (await engine.get_gate_state_for_date(ctx, "2024-03-05")).status == GateStatus.LOCKED
    # primary gate unaffected
    assert (await engine.get_gate_state(ctx)).status == GateStatus.LOCKED


async def test_anonymous_submit_spends_credit(user, viewer):
    await credits_service.grant(user.id, CreditType.ANONYMOUS, 1)
    submission = await engine.submit(viewer(), "hidden take", is_anonymous=True)
    assert submission.is_anonymous
    assert await credits_service.get_balance(user.id, CreditType.ANONYMOUS) == 0


async def test_anonymous_submit_without_credit(user, viewer):
    with pytest.raises(InsufficientCreditError):
        await engine.submit(viewer(), "hidden take", is_anonymous=True)
    assert await Submission.find(Submission.user_id == user.id).count() == 0
    assert (await engine.get_gate_state(viewer())).status == GateStatus.LOCKED


async def test_anonymous_credit_refunded_on_storage_fault(user, viewer, monkeypatch):
    await credits_service.grant(user.id, CreditType.ANONYMOUS, 1)

    async def unavailable(self, *args, **kwargs):
        raise AutoReconnect("connection reset")

    monkeypatch.setattr(Submission, "insert", unavailable)
    with pytest.raises(StorageUnavailableError):
        await engine.submit(viewer(), "hidden take", is_anonymous=True)
    assert await credits_service.get_balance(user.id, CreditType.ANONYMOUS) == 1
    entries = await CreditHistoryEntry.find(CreditHistoryEntry.user_id == user.id).to_list()
    assert sorted(e.reason for e in entries) == sorted([CreditReason.GRANT, CreditReason.SPEND, CreditReason.REFUND])
    assert (await credits_service.reconcile(user.id, CreditType.ANONYMOUS))["consistent"]


async def test_behind_utc_user_keeps_streak_before_posting(user, viewer, make_submission):
    # 03:00 UTC on Mar 2 is still the evening of Mar 1 at UTC-5
    user.timezone_offset_minutes = -300
    await user.save()
    await make_submission(user.id, "2024-02-28")
    await make_submission(user.id, "2024-02-29")
    ctx = viewer(at=datetime(2024, 3, 2, 3, 0, tzinfo=timezone.utc))

    state = await engine.get_gate_state(ctx)
    assert state.status == GateStatus.LOCKED
    assert state.today_key == "2024-03-01"
    streak = await engine.get_streak(ctx)
    assert streak.current == 2
    assert streak.longest == 2
