"""Shared FastAPI dependencies."""

from fastapi import Request

from storefront.container import Container
from storefront.core.config import get_settings
from storefront.core.exceptions import ForbiddenError, UnauthorizedError
from storefront.core.security import load_session_cookie, verify_admin_key

SESSION_COOKIE_NAME = "storefront_session"
ADMIN_KEY_HEADER = "X-Admin-Key"


def get_container(request: Request) -> Container:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise RuntimeError("Service container not initialised")
    return container


async def get_optional_user_id(request: Request) -> str | None:
    """User id from the signed session cookie; None for guests. A tampered cookie is rejected."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        return None
    payload = load_session_cookie(cookie)
    if not payload or not payload.get("user_id"):
        raise UnauthorizedError("Invalid or expired session")
    return str(payload["user_id"])


async def get_current_user_id(request: Request) -> str:
    user_id = await get_optional_user_id(request)
    if not user_id:
        raise UnauthorizedError("Not authenticated")
    return user_id


async def require_admin_key(request: Request) -> None:
    expected = get_settings().admin_api_key
    if not expected:
        raise ForbiddenError("Admin API disabled")
    if not verify_admin_key(request.headers.get(ADMIN_KEY_HEADER), expected):
        raise ForbiddenError("Admin only")
