"""Retroactive submissions for a missed prompt date, funded by a credit or a confirmed payment."""

from contextlib import AsyncExitStack
from dataclasses import dataclass

from toptake.core.audit import log_event
from toptake.core.config import get_settings
from toptake.core.context import ViewerContext
from toptake.core.exceptions import AlreadySubmittedError, ConcurrencyConflictError, NotEligibleError
from toptake.core.logging import get_logger
from toptake.models.credit_balance import CreditType
from toptake.models.submission import Submission
from toptake.services import credits as credits_service
from toptake.services import gate as gate_service
from toptake.services import payments as payments_service
from toptake.services import submissions as submissions_service

log = get_logger(__name__)


@dataclass(frozen=True)
class PaymentConfirmation:
    """An external payment already verified by the caller; never re-checked here."""
    receipt_id: str
    amount_cents: int | None = None


async def late_submit(
    ctx: ViewerContext,
    prompt_date: str,
    content: str,
    is_anonymous: bool = False,
    payment: PaymentConfirmation | None = None,
) -> Submission:
    """
    Spend the late-submit credit (and an anonymous credit when asked), then
    record the backdated submission. Any failure after a spend refunds it.

    A confirmed payment is booked as a purchased late-submit credit before any
    check runs: the processor has already charged the user, so a rejected or
    failed submission leaves that credit on the balance.
    """
    settings = get_settings()
    if payment is not None:
        purchase = await payments_service.purchase_credits_confirmed(
            ctx.user_id,
            CreditType.LATE_SUBMIT,
            settings.late_submit_credit_cost,
            payment.receipt_id,
            reference_type="late_submission",
            reference_id=prompt_date,
            amount_cents=payment.amount_cents,
        )
        if purchase.reference_id != prompt_date:
            raise ConcurrencyConflictError(
                "Receipt was already used for another date",
                details={"receipt_id": payment.receipt_id, "prompt_date": purchase.reference_id},
            )

    submissions_service.validate_content(content)
    existing = await submissions_service.get_submission(ctx.user_id, prompt_date)
    if existing is not None:
        raise AlreadySubmittedError(existing)
    if not await gate_service.is_late_eligible(ctx, prompt_date):
        raise NotEligibleError(
            "Date is not eligible for late submission",
            details={"prompt_date": prompt_date, "today": ctx.today_key},
        )

    async with AsyncExitStack() as stack:
        await stack.enter_async_context(
            credits_service.credit_gated(
                ctx.user_id,
                CreditType.LATE_SUBMIT,
                settings.late_submit_credit_cost,
                reference_type="late_submission",
                reference_id=prompt_date,
            )
        )
        if is_anonymous:
            await stack.enter_async_context(
                credits_service.credit_gated(
                    ctx.user_id,
                    CreditType.ANONYMOUS,
                    settings.anonymous_credit_cost,
                    reference_type="late_submission",
                    reference_id=prompt_date,
                )
            )
        submission = await submissions_service.record_submission(
            ctx.user_id,
            prompt_date,
            content,
            is_anonymous=is_anonymous,
            is_late_submit=True,
            today_key=ctx.today_key,
        )

    log.info(
        "late_submission_recorded",
        user_id=str(ctx.user_id),
        prompt_date=prompt_date,
        funded_by="payment" if payment else "credit",
    )
    await log_event(
        str(ctx.user_id),
        "late_submission",
        "submission",
        str(submission.id),
        {"prompt_date": prompt_date, "funded_by": "payment" if payment else "credit"},
    )
    return submission
