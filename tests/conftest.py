import os
from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# In-memory Mongo; no server needed
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "toptake_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-payment-secret")

# 15:00 UTC on 2024-03-02; "today" is 2024-03-02 for a UTC user
NOW = datetime(2024, 3, 2, 15, 0, tzinfo=timezone.utc)
TODAY = "2024-03-02"


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest_asyncio.fixture
async def db():
    from toptake.db.init import init_db
    client = AsyncMongoMockClient()
    await init_db(client=client)
    yield client


@pytest_asyncio.fixture
async def user(db):
    from toptake.models.user import User
    u = User(external_id="subject-1", timezone_offset_minutes=0)
    await u.insert()
    return u


@pytest.fixture
def viewer(user):
    """Build a ViewerContext for a user at a given instant (defaults: fixture user, NOW)."""
    from toptake.core.context import ViewerContext

    def _viewer(u=None, at: datetime = NOW):
        return ViewerContext(user=u or user, now_utc=at, request_id="test-request")

    return _viewer


@pytest.fixture
def make_prompt(db):
    from toptake.models.prompt_day import PromptDay

    async def _make(prompt_date: str, text: str = "Hot take?", is_active: bool = True):
        prompt = PromptDay(prompt_date=prompt_date, text=text, is_active=is_active)
        await prompt.insert()
        return prompt

    return _make


@pytest.fixture
def make_submission(db):
    """Insert an accepted submission directly, bypassing the registry checks."""
    from toptake.models.submission import Submission

    async def _make(user_id, prompt_date: str, content: str = "take", is_late_submit: bool = False):
        submission = Submission(
            user_id=user_id, prompt_date=prompt_date, content=content, is_late_submit=is_late_submit
        )
        await submission.insert()
        return submission

    return _make


@pytest.fixture
def auth_headers():
    from toptake.core.security import create_session_cookie
    from toptake.deps import SESSION_COOKIE_NAME

    def _headers(subject: str) -> dict[str, str]:
        return {"Cookie": f"{SESSION_COOKIE_NAME}={create_session_cookie({'sub': subject})}"}

    return _headers


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from toptake.deps import get_now
    from toptake.main import app
    app.dependency_overrides[get_now] = lambda: NOW
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
