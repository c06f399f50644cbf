from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from toptake.models.user import _utcnow


class Submission(Document):
    """A user's accepted answer ("take") for exactly one prompt date."""
    user_id: PydanticObjectId
    prompt_date: str  # logical date; differs from created_at's day for late submits
    content: str
    is_anonymous: bool = False
    is_late_submit: bool = False
    created_at: datetime = Field(default_factory=_utcnow)

    class Settings:
        name = "submissions"
        indexes = [
            IndexModel([("user_id", ASCENDING), ("prompt_date", ASCENDING)], unique=True),
            IndexModel([("prompt_date", ASCENDING), ("created_at", DESCENDING)]),
        ]
