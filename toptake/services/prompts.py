"""Prompt-of-the-day lookup and administration."""

from toptake.core.exceptions import BadRequestError, ConflictError, NoPromptForDateError, storage_errors
from toptake.core.logging import get_logger
from toptake.models.prompt_day import PromptDay
from toptake.models.submission import Submission
from toptake.services.date_keys import parse_key, utcnow

log = get_logger(__name__)


async def get_prompt(prompt_date: str) -> PromptDay | None:
    """Active prompt for the date, or None."""
    parse_key(prompt_date)
    with storage_errors("get_prompt"):
        return await PromptDay.find_one(
            PromptDay.prompt_date == prompt_date,
            PromptDay.is_active == True,  # noqa: E712
        )


async def require_prompt(prompt_date: str) -> PromptDay:
    prompt = await get_prompt(prompt_date)
    if prompt is None:
        raise NoPromptForDateError(prompt_date)
    return prompt


async def upsert_prompt(prompt_date: str, text: str, is_active: bool = True) -> PromptDay:
    """
    Create a prompt, or correct an existing one. Once submissions reference a
    date only its text may change.
    """
    parse_key(prompt_date)
    text = (text or "").strip()
    if not text:
        raise BadRequestError("Prompt text required")
    with storage_errors("upsert_prompt"):
        existing = await PromptDay.find_one(PromptDay.prompt_date == prompt_date)
        if existing is None:
            prompt = PromptDay(prompt_date=prompt_date, text=text, is_active=is_active)
            await prompt.insert()
            log.info("prompt_created", prompt_date=prompt_date)
            return prompt
        if existing.is_active != is_active:
            referenced = await Submission.find(Submission.prompt_date == prompt_date).count()
            if referenced:
                raise ConflictError(
                    "Prompt already has submissions; only text corrections are allowed",
                    details={"prompt_date": prompt_date, "submissions": referenced},
                )
        existing.text = text
        existing.is_active = is_active
        existing.updated_at = utcnow()
        await existing.save()
    log.info("prompt_updated", prompt_date=prompt_date)
    return existing


def prompt_to_dict(p: PromptDay) -> dict:
    return {"prompt_date": p.prompt_date, "text": p.text, "is_active": p.is_active}
