from fastapi import APIRouter, Depends, Header, Request

from toptake.core.context import ViewerContext
from toptake.core.exceptions import AlreadySubmittedError, NotFoundError
from toptake.deps import get_now
from toptake.services import engine
from toptake.services import payments as payments_service
from toptake.services import submissions as submissions_service
from toptake.services import users as user_service
from toptake.services.late_submissions import PaymentConfirmation

router = APIRouter()


@router.post("/confirmed")
async def payment_confirmed(
    request: Request,
    x_payment_signature: str | None = Header(None, alias="X-Payment-Signature"),
):
    """Server-to-server: processor confirmed a credit purchase -> grant credits (idempotent per receipt)."""
    body = await request.body()
    payments_service.verify_signed_payload(body, x_payment_signature)
    data = payments_service.parse_payload(body, payments_service.PurchaseConfirmation)
    entry = await engine.purchase_credits_confirmed(
        data.user_id, data.credit_type, data.amount, data.external_receipt_id
    )
    return {"status": "ok", "entry_id": str(entry.id)}


@router.post("/late-submissions")
async def payment_late_submission(
    request: Request,
    x_payment_signature: str | None = Header(None, alias="X-Payment-Signature"),
    now=Depends(get_now),
):
    """Server-to-server: a paid late submission; the payment is booked as a late_submit credit and spent."""
    body = await request.body()
    payments_service.verify_signed_payload(body, x_payment_signature)
    data = payments_service.parse_payload(body, payments_service.LateSubmissionPayment)
    user = await user_service.get_user(data.user_id)
    if not user:
        raise NotFoundError("User not found")
    ctx = ViewerContext(user=user, now_utc=now, request_id=getattr(request.state, "request_id", None))
    payment = PaymentConfirmation(receipt_id=data.external_receipt_id, amount_cents=data.amount_cents)
    try:
        submission = await engine.late_submit(
            ctx, data.prompt_date, data.content, is_anonymous=data.is_anonymous, payment=payment
        )
    except AlreadySubmittedError as e:
        return {"status": "already_submitted", "submission": submissions_service.submission_to_dict(e.existing)}
    return {"status": "accepted", "submission": submissions_service.submission_to_dict(submission)}
