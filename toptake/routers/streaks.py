from fastapi import APIRouter, Depends

from toptake.core.context import ViewerContext
from toptake.deps import get_viewer_context
from toptake.services import engine

router = APIRouter()


@router.get("/me")
async def streaks_me(ctx: ViewerContext = Depends(get_viewer_context)):
    """Current and longest streak as of the viewer's today."""
    summary = await engine.get_streak(ctx)
    return {**summary.as_dict(), "as_of": ctx.today_key}
