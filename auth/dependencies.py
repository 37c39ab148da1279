"""
auth/dependencies.py -- Session boundary: from a Starlette session to an AuthRequest.

The session cookie (Starlette SessionMiddleware, signed with SECRET_KEY)
stores only the user's session key. SessionCodec converts between that key and
a User; get_auth_request() runs it once per request and hands the
Authenticator a typed AuthRequest, so nothing downstream ever inspects the
raw session.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from typing import Protocol

from fastapi import Request

from auth.models import AuthRequest, User

logger = logging.getLogger("hostgate.auth.session")

SESSION_KEY = "user_id"


class UserLookup(Protocol):
    async def get_user(self, user_id: str) -> User | None: ...


class SessionCodec:
    """Serializes a User into a session key and back."""

    def __init__(self, users: UserLookup) -> None:
        self.users = users

    def to_session_key(self, user: User) -> str:
        return user.id

    async def from_session_key(self, key: str) -> User | None:
        """Resolve a session key; deleted or deactivated users resolve to None."""
        user = await self.users.get_user(key)
        if user is None:
            logger.warning("Session refers to unknown user %s", key)
            return None
        if not user.is_active:
            return None
        return user


async def get_auth_request(request: Request) -> AuthRequest:
    """Build the AuthRequest for the current HTTP request.

    Use as a FastAPI dependency:
        @router.get("/api/login")
        async def login(auth_request: AuthRequest = Depends(get_auth_request)): ...
    """
    codec: SessionCodec = request.app.state.session_codec
    key = request.session.get(SESSION_KEY)
    user = await codec.from_session_key(key) if key else None
    if key and user is None:
        request.session.pop(SESSION_KEY, None)
    return AuthRequest(user=user, params=dict(request.query_params), transport=request)
