"""User registration, timezone changes and prompt administration."""

import pytest

from toptake.core.exceptions import BadRequestError, ConflictError, NoPromptForDateError
from toptake.models.credit_balance import CreditType
from toptake.models.user import User
from toptake.services import credits as credits_service
from toptake.services import prompts as prompts_service
from toptake.services import users as users_service

pytestmark = pytest.mark.asyncio


async def test_register_grants_welcome_credits_once(db):
    user = await users_service.register_user("subject-9", timezone_offset_minutes=60)
    again = await users_service.register_user("subject-9")
    assert again.id == user.id
    assert user.timezone_offset_minutes == 60
    assert await credits_service.get_balance(user.id, CreditType.ANONYMOUS) == 3
    assert await User.find(User.external_id == "subject-9").count() == 1


async def test_register_rejects_bad_input(db):
    with pytest.raises(BadRequestError):
        await users_service.register_user("   ")
    with pytest.raises(BadRequestError):
        await users_service.register_user("subject-10", timezone_offset_minutes=900)


async def test_update_timezone(user):
    updated = await users_service.update_timezone(user, -480)
    assert updated.timezone_offset_minutes == -480
    stored = await User.get(user.id)
    assert stored.timezone_offset_minutes == -480


async def test_get_prompt_ignores_inactive(make_prompt):
    await make_prompt("2024-03-02", is_active=False)
    assert await prompts_service.get_prompt("2024-03-02") is None
    with pytest.raises(NoPromptForDateError):
        await prompts_service.require_prompt("2024-03-02")


async def test_upsert_prompt_creates_and_corrects(db):
    created = await prompts_service.upsert_prompt("2024-03-04", "Cats or dogs?")
    updated = await prompts_service.upsert_prompt("2024-03-04", "Cats or dogs, really?")
    assert updated.id == created.id
    assert (await prompts_service.require_prompt("2024-03-04")).text == "Cats or dogs, really?"


async def test_upsert_prompt_rejects_empty_text(db):
    with pytest.raises(BadRequestError):
        await prompts_service.upsert_prompt("2024-03-04", "  ")


async def test_referenced_prompt_cannot_be_deactivated(user, make_prompt, make_submission):
    await make_prompt("2024-03-01")
    await make_submission(user.id, "2024-03-01")
    with pytest.raises(ConflictError):
        await prompts_service.upsert_prompt("2024-03-01", "Hot take?", is_active=False)
