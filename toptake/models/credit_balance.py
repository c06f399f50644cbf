from enum import Enum

from beanie import Document, PydanticObjectId
from pymongo import ASCENDING, IndexModel


class CreditType(str, Enum):
    ANONYMOUS = "anonymous"
    LATE_SUBMIT = "late_submit"
    SNEAK_PEEK = "sneak_peek"
    BOOST = "boost"
    EXTRA_TAKES = "extra_takes"
    DELETE = "delete"


class CreditBalance(Document):
    """Current balance per (user, credit type); updated atomically alongside history."""
    user_id: PydanticObjectId
    credit_type: CreditType
    balance: int = 0

    class Settings:
        name = "credit_balances"
        indexes = [
            IndexModel([("user_id", ASCENDING), ("credit_type", ASCENDING)], unique=True),
        ]
