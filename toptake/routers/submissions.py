from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from toptake.core.context import ViewerContext
from toptake.core.exceptions import AlreadySubmittedError
from toptake.deps import get_viewer_context
from toptake.services import engine
from toptake.services import submissions as submissions_service

router = APIRouter()


class SubmitRequest(BaseModel):
    content: str
    is_anonymous: bool = False
    prompt_date: str | None = None  # defaults to the viewer's today


class LateSubmitRequest(BaseModel):
    prompt_date: str
    content: str
    is_anonymous: bool = False


@router.post("")
async def submit(body: SubmitRequest, ctx: ViewerContext = Depends(get_viewer_context)):
    """
    Answer today's prompt (or a past one, funded by a late-submit credit).
    A retry after a dropped response returns the existing submission.
    """
    try:
        submission = await engine.submit(ctx, body.content, body.is_anonymous, body.prompt_date)
    except AlreadySubmittedError as e:
        return {"status": "already_submitted", "submission": submissions_service.submission_to_dict(e.existing)}
    return {"status": "accepted", "submission": submissions_service.submission_to_dict(submission)}


@router.post("/late")
async def submit_late(body: LateSubmitRequest, ctx: ViewerContext = Depends(get_viewer_context)):
    """Retroactive answer for a missed past prompt; spends one late-submit credit."""
    try:
        submission = await engine.late_submit(ctx, body.prompt_date, body.content, is_anonymous=body.is_anonymous)
    except AlreadySubmittedError as e:
        return {"status": "already_submitted", "submission": submissions_service.submission_to_dict(e.existing)}
    return {"status": "accepted", "submission": submissions_service.submission_to_dict(submission)}


@router.get("")
async def list_submissions(
    ctx: ViewerContext = Depends(get_viewer_context),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """My submissions, most recent prompt date first."""
    items = await submissions_service.list_submissions(ctx.user_id, limit=limit, offset=offset)
    return {
        "submissions": [submissions_service.submission_to_dict(s) for s in items],
        "limit": limit,
        "offset": offset,
    }
