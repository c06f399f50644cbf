"""Submission registry: at most one accepted submission per (user, prompt date).

State per (user, prompt date): Absent -> Pending -> Accepted, or Pending ->
Rejected. Pending only exists inside record_submission; nothing is stored for
a rejected attempt.

The registry never touches credits. Anonymous and late submissions must be
funded by the caller before record_submission is invoked (see
services/engine.py and services/late_submissions.py).
"""

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from toptake.core.config import get_settings
from toptake.core.exceptions import (
    AlreadySubmittedError,
    ConcurrencyConflictError,
    InvalidContentError,
    NotEligibleError,
    storage_errors,
)
from toptake.core.logging import get_logger
from toptake.models.submission import Submission
from toptake.services import prompts as prompts_service
from toptake.services.date_keys import parse_key

log = get_logger(__name__)


def validate_content(content: str | None) -> str:
    """Stripped content within [1, max_content_length]."""
    max_len = get_settings().max_content_length
    text = (content or "").strip()
    if not text:
        raise InvalidContentError("Content is empty", details={"min_length": 1})
    if len(text) > max_len:
        raise InvalidContentError(
            f"Content exceeds {max_len} characters",
            details={"max_length": max_len, "length": len(text)},
        )
    return text


async def get_submission(user_id: PydanticObjectId, prompt_date: str) -> Submission | None:
    with storage_errors("get_submission"):
        return await Submission.find_one(
            Submission.user_id == user_id,
            Submission.prompt_date == prompt_date,
        )


async def has_submission(user_id: PydanticObjectId, prompt_date: str) -> bool:
    return await get_submission(user_id, prompt_date) is not None


async def list_submissions(user_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[Submission]:
    """User's submissions, most recent prompt date first."""
    with storage_errors("list_submissions"):
        return (
            await Submission.find(Submission.user_id == user_id)
            .sort(-Submission.prompt_date)
            .skip(offset)
            .limit(limit)
            .to_list()
        )


async def record_submission(
    user_id: PydanticObjectId,
    prompt_date: str,
    content: str,
    is_anonymous: bool,
    is_late_submit: bool,
    today_key: str,
) -> Submission:
    """
    Validate and persist an accepted submission.

    Raises InvalidContentError, AlreadySubmittedError (carrying the existing
    record; retries land here), NotEligibleError, NoPromptForDateError, or
    StorageUnavailableError. Validation failures happen before any write.
    """
    text = validate_content(content)
    day = parse_key(prompt_date)
    existing = await get_submission(user_id, prompt_date)
    if existing is not None:
        raise AlreadySubmittedError(existing)
    today = parse_key(today_key)
    if is_late_submit:
        if day >= today:
            raise NotEligibleError(
                "Late submission is only allowed for past dates",
                details={"prompt_date": prompt_date, "today": today_key},
            )
        await prompts_service.require_prompt(prompt_date)
    elif day != today:
        raise NotEligibleError(
            "Submissions are only accepted for today's prompt",
            details={"prompt_date": prompt_date, "today": today_key},
        )

    submission = Submission(
        user_id=user_id,
        prompt_date=prompt_date,
        content=text,
        is_anonymous=is_anonymous,
        is_late_submit=is_late_submit,
    )
    try:
        with storage_errors("insert_submission"):
            await submission.insert()
    except DuplicateKeyError:
        # lost the race to a concurrent duplicate; report the winner
        winner = await get_submission(user_id, prompt_date)
        if winner is None:
            raise ConcurrencyConflictError(
                "Concurrent submission changed state; re-read and retry",
                details={"prompt_date": prompt_date},
            )
        raise AlreadySubmittedError(winner)
    log.info(
        "submission_accepted",
        user_id=str(user_id),
        prompt_date=prompt_date,
        is_anonymous=is_anonymous,
        is_late_submit=is_late_submit,
    )
    return submission


def submission_to_dict(s: Submission) -> dict:
    return {
        "id": str(s.id),
        "prompt_date": s.prompt_date,
        "content": s.content,
        "is_anonymous": s.is_anonymous,
        "is_late_submit": s.is_late_submit,
        "created_at": s.created_at.isoformat(),
    }
