"""Late submissions funded by a late-submit credit or a confirmed payment."""

import pytest
from pymongo.errors import AutoReconnect

from toptake.core.exceptions import (
    AlreadySubmittedError,
    ConcurrencyConflictError,
    InvalidContentError,
    InsufficientCreditError,
    NotEligibleError,
    StorageUnavailableError,
)
from toptake.models.credit_balance import CreditType
from toptake.models.credit_history import CreditHistoryEntry, CreditReason
from toptake.models.submission import Submission
from toptake.services import credits as credits_service
from toptake.services import engine
from toptake.services.gate import GateStatus
from toptake.services.late_submissions import PaymentConfirmation

pytestmark = pytest.mark.asyncio

MISSED = "2024-02-28"


async def _late_history(user_id):
    return await CreditHistoryEntry.find(
        CreditHistoryEntry.user_id == user_id,
        CreditHistoryEntry.credit_type == CreditType.LATE_SUBMIT,
    ).to_list()


async def test_late_submit_spends_credit_and_recomputes_streak(user, viewer, make_prompt, make_submission):
    await make_prompt(MISSED)
    await make_submission(user.id, "2024-02-27")
    await make_submission(user.id, "2024-02-29")
    await make_submission(user.id, "2024-03-01")
    await credits_service.grant(user.id, CreditType.LATE_SUBMIT, 1)

    before = await engine.get_streak(viewer())
    submission = await engine.late_submit(viewer(), MISSED, "better late than never")

    assert submission.is_late_submit
    assert submission.prompt_date == MISSED
    assert await credits_service.get_balance(user.id, CreditType.LATE_SUBMIT) == 0
    spends = [e for e in await _late_history(user.id) if e.reason == CreditReason.SPEND]
    assert len(spends) == 1
    assert spends[0].reference_id == MISSED
    after = await engine.get_streak(viewer())
    assert before.longest == 2
    assert after.longest == 4
    assert after.current == 4
    assert user.longest_streak == 4
    # today's gate is untouched by a late fill
    assert (await engine.get_gate_state(viewer())).status == GateStatus.LOCKED


async def test_past_date_through_submit_uses_late_flow(user, viewer, make_prompt):
    await make_prompt(MISSED)
    await credits_service.grant(user.id, CreditType.LATE_SUBMIT, 1)
    submission = await engine.submit(viewer(), "via submit", prompt_date=MISSED)
    assert submission.is_late_submit


async def test_late_submit_without_credit(user, viewer, make_prompt):
    await make_prompt(MISSED)
    with pytest.raises(InsufficientCreditError):
        await engine.late_submit(viewer(), MISSED, "no credit")
    assert await Submission.find(Submission.user_id == user.id).count() == 0
    assert await _late_history(user.id) == []


async def test_late_submit_already_submitted(user, viewer, make_prompt, make_submission):
    await make_prompt(MISSED)
    existing = await make_submission(user.id, MISSED)
    await credits_service.grant(user.id, CreditType.LATE_SUBMIT, 1)
    with pytest.raises(AlreadySubmittedError) as exc:
        await engine.late_submit(viewer(), MISSED, "again")
    assert exc.value.existing.id == existing.id
    assert await credits_service.get_balance(user.id, CreditType.LATE_SUBMIT) == 1


@pytest.mark.parametrize("prompt_date", ["2024-03-02", "2024-03-05", "2024-02-10"])
async def test_late_submit_not_eligible(user, viewer, make_prompt, prompt_date):
    # 2024-02-10 has no prompt
    await make_prompt("2024-03-02")
    await make_prompt("2024-03-05")
    await credits_service.grant(user.id, CreditType.LATE_SUBMIT, 1)
    with pytest.raises(NotEligibleError):
        await engine.late_submit(viewer(), prompt_date, "nope")
    assert await credits_service.get_balance(user.id, CreditType.LATE_SUBMIT) == 1


async def test_late_submit_anonymous_spends_both(user, viewer, make_prompt):
    await make_prompt(MISSED)
    await credits_service.grant(user.id, CreditType.LATE_SUBMIT, 1)
    await credits_service.grant(user.id, CreditType.ANONYMOUS, 1)
    submission = await engine.late_submit(viewer(), MISSED, "anon and late", is_anonymous=True)
    assert submission.is_anonymous and submission.is_late_submit
    assert await credits_service.get_balance(user.id, CreditType.LATE_SUBMIT) == 0
    assert await credits_service.get_balance(user.id, CreditType.ANONYMOUS) == 0


async def test_late_submit_anonymous_refunds_late_credit_when_short(user, viewer, make_prompt):
    await make_prompt(MISSED)
    await credits_service.grant(user.id, CreditType.LATE_SUBMIT, 1)
    with pytest.raises(InsufficientCreditError):
        await engine.late_submit(viewer(), MISSED, "anon and late", is_anonymous=True)
    assert await credits_service.get_balance(user.id, CreditType.LATE_SUBMIT) == 1
    assert (await credits_service.reconcile(user.id, CreditType.LATE_SUBMIT))["consistent"]


async def test_late_submit_funded_by_payment(user, viewer, make_prompt):
    await make_prompt(MISSED)
    payment = PaymentConfirmation(receipt_id="rcpt-100", amount_cents=199)
    submission = await engine.late_submit(viewer(), MISSED, "paid for it", payment=payment)
    assert submission.is_late_submit
    reasons = sorted(e.reason.value for e in await _late_history(user.id))
    assert reasons == ["purchase", "spend"]
    assert await credits_service.get_balance(user.id, CreditType.LATE_SUBMIT) == 0


async def test_receipt_cannot_fund_a_second_date(user, viewer, make_prompt):
    await make_prompt(MISSED)
    await make_prompt("2024-02-27")
    payment = PaymentConfirmation(receipt_id="rcpt-200")
    await engine.late_submit(viewer(), MISSED, "paid for it", payment=payment)
    with pytest.raises(ConcurrencyConflictError):
        await engine.late_submit(viewer(), "2024-02-27", "reused receipt", payment=payment)
    assert await Submission.find(Submission.prompt_date == "2024-02-27").count() == 0


async def test_storage_fault_refunds_late_credit(user, viewer, make_prompt, monkeypatch):
    await make_prompt(MISSED)
    await credits_service.grant(user.id, CreditType.LATE_SUBMIT, 1)

    async def unavailable(self, *args, **kwargs):
        raise AutoReconnect("connection reset")

    monkeypatch.setattr(Submission, "insert", unavailable)
    with pytest.raises(StorageUnavailableError):
        await engine.late_submit(viewer(), MISSED, "lost in transit")
    assert await credits_service.get_balance(user.id, CreditType.LATE_SUBMIT) == 1
    refunds = [e for e in await _late_history(user.id) if e.reason == CreditReason.REFUND]
    assert len(refunds) == 1
    assert (await credits_service.reconcile(user.id, CreditType.LATE_SUBMIT))["consistent"]


async def _paid_credit_kept(user_id, receipt_id):
    entries = await _late_history(user_id)
    purchases = [e for e in entries if e.reason == CreditReason.PURCHASE]
    assert [e.idempotency_key for e in purchases] == [f"receipt:{receipt_id}"]
    assert await credits_service.get_balance(user_id, CreditType.LATE_SUBMIT) == 1
    assert (await credits_service.reconcile(user_id, CreditType.LATE_SUBMIT))["consistent"]


async def test_paid_late_submit_with_invalid_content_keeps_credit(user, viewer, make_prompt):
    await make_prompt(MISSED)
    with pytest.raises(InvalidContentError):
        await engine.late_submit(viewer(), MISSED, "   ", payment=PaymentConfirmation(receipt_id="rcpt-300"))
    await _paid_credit_kept(user.id, "rcpt-300")

    # the same confirmation retried with valid content uses the booked credit
    submission = await engine.late_submit(
        viewer(), MISSED, "second try", payment=PaymentConfirmation(receipt_id="rcpt-300")
    )
    assert submission.is_late_submit
    assert await credits_service.get_balance(user.id, CreditType.LATE_SUBMIT) == 0


async def test_paid_late_submit_for_submitted_date_keeps_credit(user, viewer, make_prompt, make_submission):
    await make_prompt(MISSED)
    await make_submission(user.id, MISSED)
    with pytest.raises(AlreadySubmittedError):
        await engine.late_submit(viewer(), MISSED, "again", payment=PaymentConfirmation(receipt_id="rcpt-301"))
    await _paid_credit_kept(user.id, "rcpt-301")


@pytest.mark.parametrize("prompt_date", ["2024-02-10", "2024-03-02"])
async def test_paid_late_submit_for_ineligible_date_keeps_credit(user, viewer, make_prompt, prompt_date):
    # 2024-02-10 has no prompt; 2024-03-02 is today
    await make_prompt("2024-03-02")
    with pytest.raises(NotEligibleError):
        await engine.late_submit(viewer(), prompt_date, "nope", payment=PaymentConfirmation(receipt_id="rcpt-302"))
    await _paid_credit_kept(user.id, "rcpt-302")
