from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel

from toptake.core.audit import log_event
from toptake.core.exceptions import NotFoundError
from toptake.core.security import normalize_idempotency_key
from toptake.deps import require_admin
from toptake.models.credit_balance import CreditType
from toptake.models.user import User
from toptake.services import credits as credits_service
from toptake.services import prompts as prompts_service
from toptake.services import users as user_service

router = APIRouter()


class PromptRequest(BaseModel):
    text: str
    is_active: bool = True


class AdjustRequest(BaseModel):
    user_id: PydanticObjectId
    credit_type: CreditType
    delta: int
    note: str | None = None


@router.put("/prompts/{prompt_date}")
async def admin_upsert_prompt(prompt_date: str, body: PromptRequest, admin: User = Depends(require_admin)):
    """Admin: create a prompt or correct its text."""
    prompt = await prompts_service.upsert_prompt(prompt_date, body.text, body.is_active)
    await log_event(str(admin.id), "prompt_upserted", "prompt_day", prompt_date, {"is_active": body.is_active})
    return {"prompt": prompts_service.prompt_to_dict(prompt)}


@router.post("/credits/adjust")
async def admin_adjust_credits(
    body: AdjustRequest,
    admin: User = Depends(require_admin),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
):
    """Admin: signed balance correction (never below zero)."""
    if not await user_service.get_user(body.user_id):
        raise NotFoundError("User not found")
    entry = await credits_service.admin_adjust(
        body.user_id,
        body.credit_type,
        body.delta,
        reference_id=str(admin.id),
        idempotency_key=normalize_idempotency_key(idempotency_key),
    )
    await log_event(
        str(admin.id),
        "credits_adjusted",
        "credit_history",
        str(entry.id),
        {"user_id": str(body.user_id), "credit_type": body.credit_type.value, "delta": body.delta, "note": body.note},
    )
    balance = await credits_service.get_balance(body.user_id, body.credit_type)
    return {"entry": credits_service.history_entry_to_dict(entry), "balance": balance}


@router.get("/credits/reconcile/{user_id}")
async def admin_reconcile(user_id: PydanticObjectId, admin: User = Depends(require_admin)):
    """Admin: compare each balance with the sum of its history."""
    return {"results": [await credits_service.reconcile(user_id, t) for t in CreditType]}
