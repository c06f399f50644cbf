"""Dead-letter rows for worker jobs that raised."""

from datetime import datetime

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from toptake.models.user import _utcnow


class FailedJob(Document):
    job_name: str  # refresh_streaks | reconcile_ledger
    job_id: str
    job_try: int = 1
    error_type: str
    reason: str = ""
    created_at: datetime = Field(default_factory=_utcnow)

    class Settings:
        name = "failed_jobs"
        indexes = [
            IndexModel([("job_name", ASCENDING), ("created_at", DESCENDING)]),
        ]
