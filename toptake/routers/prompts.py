from fastapi import APIRouter, Depends

from toptake.core.context import ViewerContext
from toptake.deps import get_viewer_context
from toptake.services import engine
from toptake.services import prompts as prompts_service

router = APIRouter()


@router.get("/today")
async def prompt_today(ctx: ViewerContext = Depends(get_viewer_context)):
    """Today's prompt in the viewer's timezone."""
    prompt = await prompts_service.require_prompt(ctx.today_key)
    return {"prompt": prompts_service.prompt_to_dict(prompt)}


@router.get("/tomorrow")
async def prompt_tomorrow(ctx: ViewerContext = Depends(get_viewer_context)):
    """Sneak peek at tomorrow's prompt; costs one sneak_peek credit per day revealed."""
    prompt = await engine.sneak_peek(ctx)
    return {"prompt": prompts_service.prompt_to_dict(prompt)}
