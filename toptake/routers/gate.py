from fastapi import APIRouter, Depends

from toptake.core.context import ViewerContext
from toptake.deps import get_viewer_context
from toptake.services import engine

router = APIRouter()


@router.get("")
async def gate_state(ctx: ViewerContext = Depends(get_viewer_context)):
    """Feed or lock screen: unlocked once today's prompt is answered."""
    state = await engine.get_gate_state(ctx)
    return state.as_dict()


@router.get("/dates/{prompt_date}")
async def gate_for_date(prompt_date: str, ctx: ViewerContext = Depends(get_viewer_context)):
    """State of a specific date; late_eligible when a missed past prompt can still be answered."""
    state = await engine.get_gate_state_for_date(ctx, prompt_date)
    return {**state.as_dict(), "late_eligible": await engine.get_late_eligibility(ctx, prompt_date)}
