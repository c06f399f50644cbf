from datetime import datetime
from enum import Enum

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from toptake.models.credit_balance import CreditType
from toptake.models.user import _utcnow


class CreditReason(str, Enum):
    PURCHASE = "purchase"
    GRANT = "grant"
    SPEND = "spend"
    REFUND = "refund"
    ADMIN_ADJUST = "admin_adjust"


class CreditHistoryEntry(Document):
    """Append-only; sum of deltas per (user, credit type) equals the balance."""
    user_id: PydanticObjectId
    credit_type: CreditType
    delta: int  # positive = credit, negative = debit
    reason: CreditReason
    reference_type: str | None = None  # submission, receipt, prompt_date, etc.
    reference_id: str | None = None
    refund_of: PydanticObjectId | None = None
    idempotency_key: str
    created_at: datetime = Field(default_factory=_utcnow)

    class Settings:
        name = "credit_history"
        indexes = [
            IndexModel([("user_id", ASCENDING), ("credit_type", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("idempotency_key", ASCENDING)], unique=True),
        ]
