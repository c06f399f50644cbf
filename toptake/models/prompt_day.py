from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field

from toptake.models.user import _utcnow


class PromptDay(Document):
    """One calendar day's prompt, created by the external scheduler."""
    prompt_date: Indexed(str, unique=True)  # YYYY-MM-DD
    text: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    class Settings:
        name = "prompt_days"
