"""Shared FastAPI dependencies."""

from datetime import datetime

from fastapi import Depends, Request

from toptake.core.context import ViewerContext
from toptake.core.exceptions import ForbiddenError, UnauthorizedError
from toptake.core.logging import bind_user_id
from toptake.core.security import load_session_cookie
from toptake.models.user import User
from toptake.services import users as user_service
from toptake.services.date_keys import utcnow

SESSION_COOKIE_NAME = "toptake_session"


def get_now() -> datetime:
    """Current UTC instant; overridden in tests."""
    return utcnow()


async def get_identity(request: Request) -> str:
    """Dependency: identity subject from the session cookie issued by the identity provider."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    subject = payload.get("sub")
    if not subject:
        raise UnauthorizedError("Invalid session")
    return subject


async def get_current_user(subject: str = Depends(get_identity)) -> User:
    """Dependency: registered engine user for the session subject."""
    user = await user_service.get_by_external_id(subject)
    if not user:
        raise UnauthorizedError("User not registered")
    bind_user_id(str(user.id))
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Dependency: require current user to have role admin."""
    if user.role != "admin":
        raise ForbiddenError("Admin only")
    return user


async def get_viewer_context(
    request: Request,
    user: User = Depends(get_current_user),
    now: datetime = Depends(get_now),
) -> ViewerContext:
    return ViewerContext(
        user=user,
        now_utc=now,
        request_id=getattr(request.state, "request_id", None),
    )
