from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from toptake.deps import get_current_user, get_identity
from toptake.models.user import User
from toptake.services import users as user_service

router = APIRouter()


class RegisterRequest(BaseModel):
    timezone_offset_minutes: int = Field(default=0, ge=-720, le=840)


class TimezoneRequest(BaseModel):
    timezone_offset_minutes: int = Field(ge=-720, le=840)


@router.post("/register")
async def users_register(body: RegisterRequest, subject: str = Depends(get_identity)):
    """Create the engine user for this identity (idempotent) and grant welcome credits once."""
    user = await user_service.register_user(subject, body.timezone_offset_minutes)
    return {"user": user_service.user_to_dict(user)}


@router.get("/me")
async def users_me(user: User = Depends(get_current_user)):
    return {"user": user_service.user_to_dict(user)}


@router.patch("/me/timezone")
async def users_update_timezone(body: TimezoneRequest, user: User = Depends(get_current_user)):
    """Change the offset used for future "today" computations."""
    user = await user_service.update_timezone(user, body.timezone_offset_minutes)
    return {"user": user_service.user_to_dict(user)}
