"""Confirmed external payments: signature check and idempotent credit purchase."""

from beanie import PydanticObjectId
from pydantic import BaseModel, Field, ValidationError

from toptake.core.audit import log_event
from toptake.core.config import get_settings
from toptake.core.exceptions import BadRequestError, ConcurrencyConflictError, NotFoundError, UnauthorizedError
from toptake.core.logging import get_logger
from toptake.core.security import verify_payment_signature
from toptake.models.credit_balance import CreditType
from toptake.models.credit_history import CreditHistoryEntry, CreditReason
from toptake.models.user import User
from toptake.services import credits as credits_service

log = get_logger(__name__)


class PurchaseConfirmation(BaseModel):
    user_id: PydanticObjectId
    credit_type: CreditType
    amount: int = Field(gt=0)
    external_receipt_id: str = Field(min_length=1, max_length=200)
    amount_cents: int | None = None


class LateSubmissionPayment(BaseModel):
    user_id: PydanticObjectId
    prompt_date: str
    content: str
    is_anonymous: bool = False
    external_receipt_id: str = Field(min_length=1, max_length=200)
    amount_cents: int | None = None


def receipt_key(external_receipt_id: str) -> str:
    return f"receipt:{external_receipt_id}"


def verify_signed_payload(payload: bytes, signature: str | None) -> None:
    """HMAC over the raw body with the shared payment secret."""
    secret = get_settings().payment_webhook_secret
    if not secret:
        raise BadRequestError("Payment confirmations not configured")
    if not signature or not verify_payment_signature(payload, signature, secret):
        raise UnauthorizedError("Invalid payment signature")


def parse_payload(payload: bytes, model: type[BaseModel]):
    try:
        return model.model_validate_json(payload)
    except ValidationError as e:
        raise BadRequestError("Invalid payment payload", details={"errors": e.errors(include_context=False)}) from e


async def purchase_credits_confirmed(
    user_id: PydanticObjectId,
    credit_type: CreditType,
    amount: int,
    external_receipt_id: str,
    reference_type: str = "receipt",
    reference_id: str | None = None,
    amount_cents: int | None = None,
) -> CreditHistoryEntry:
    """
    Book credits for a payment the processor already confirmed. The receipt id
    is the idempotency key, so replayed confirmations grant once.
    """
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    existing = await CreditHistoryEntry.find_one(
        CreditHistoryEntry.idempotency_key == receipt_key(external_receipt_id),
    )
    if existing:
        if existing.user_id != user_id or existing.credit_type != credit_type:
            raise ConcurrencyConflictError(
                "Receipt already applied to a different purchase",
                details={"receipt_id": external_receipt_id},
            )
        log.info("purchase_replay", user_id=str(user_id), receipt_id=external_receipt_id)
        return existing  # already applied
    entry = await credits_service.grant(
        user_id,
        credit_type,
        amount,
        reason=CreditReason.PURCHASE,
        reference_type=reference_type,
        reference_id=reference_id or external_receipt_id,
        idempotency_key=receipt_key(external_receipt_id),
    )
    log.info(
        "purchase_confirmed",
        user_id=str(user_id),
        credit_type=entry.credit_type.value,
        amount=amount,
        receipt_id=external_receipt_id,
    )
    await log_event(
        str(user_id),
        "purchase_confirmed",
        "credit_history",
        str(entry.id),
        {
            "credit_type": entry.credit_type.value,
            "amount": amount,
            "receipt_id": external_receipt_id,
            "amount_cents": amount_cents,
        },
    )
    return entry
