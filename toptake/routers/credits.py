from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, Field

from toptake.core.context import ViewerContext
from toptake.core.security import normalize_idempotency_key
from toptake.deps import get_viewer_context
from toptake.models.credit_balance import CreditType
from toptake.services import credits as credits_service
from toptake.services import engine

router = APIRouter()


class SpendRequest(BaseModel):
    amount: int = Field(default=1, gt=0)


@router.get("/balances")
async def credits_balances(ctx: ViewerContext = Depends(get_viewer_context)):
    """Balance for every credit type."""
    balances = await engine.get_credit_balances(ctx)
    return {"balances": {t.value: n for t, n in balances.items()}}


@router.get("/history")
async def credits_history(
    ctx: ViewerContext = Depends(get_viewer_context),
    credit_type: CreditType | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return history entries for current user (newest first)."""
    entries = await credits_service.list_history(ctx.user_id, credit_type, limit=limit, offset=offset)
    return {
        "entries": [credits_service.history_entry_to_dict(e) for e in entries],
        "limit": limit,
        "offset": offset,
    }


@router.post("/{credit_type}/spend")
async def credits_spend(
    credit_type: CreditType,
    body: SpendRequest,
    ctx: ViewerContext = Depends(get_viewer_context),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
):
    """Spend credits for a gated action; retries with the same Idempotency-Key charge once."""
    entry = await engine.spend_credit_for_action(
        ctx,
        credit_type,
        body.amount,
        idempotency_key=normalize_idempotency_key(idempotency_key),
    )
    balance = await credits_service.get_balance(ctx.user_id, credit_type)
    return {"entry": credits_service.history_entry_to_dict(entry), "balance": balance}
