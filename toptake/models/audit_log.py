from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from toptake.models.user import _utcnow


class AuditLog(Document):
    """Append-only record of purchases, late submissions, admin changes and ledger mismatches."""
    user_id: str | None = None  # actor; None for worker events
    event_type: str  # purchase_confirmed, late_submission, credits_adjusted, ledger_mismatch, ...
    entity_type: str
    entity_id: str | None = None
    request_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            IndexModel([("event_type", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("user_id", ASCENDING), ("created_at", DESCENDING)]),
        ]
