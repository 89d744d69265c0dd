"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The only credential is the sealed session cookie issued by SessionManager.
try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

A cookie that fails to unseal, has expired, or names a user that no longer
exists is treated exactly like no cookie at all.

Layer rule: no imports from web/ or core/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import PublicUser
from auth.session import SessionManager
from auth.store import UserStore


def try_get_current_user(request: Request) -> PublicUser | None:
    """Resolve the session cookie to a user. Never raises."""
    sessions: SessionManager = request.app.state.session_manager
    user_store: UserStore = request.app.state.user_store

    session = sessions.read_session(request.cookies.get(sessions.cookie_name))
    if session is None:
        return None
    user = user_store.get_by_id(session.user_id)
    if user is None:
        return None
    return PublicUser.from_user(user)


def get_current_user(request: Request) -> PublicUser:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: PublicUser = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
