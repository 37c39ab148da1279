"""
api/routes/auth.py -- Sign-in, authorization and provider callback routes.

Routes:
  GET /api/login        -- sign in through an external provider (host=...)
  GET /api/authorize    -- grant additional scopes for a provider
  GET /api/deauthorize  -- disconnect a provider from the account
  GET /auth/{path}      -- provider callbacks, dispatched by callback path

Every route answers with a 302. The decisions live in auth/authenticator.py;
this module only adapts FastAPI requests to AuthRequest values.

Security:
  [H2] GET /api/login is rate-limited per client IP (Settings.login_rate_limit).
  Sessions are read through get_auth_request() only -- never from the raw
  session dict in a route.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.limiter import limiter, login_rate_limit
from auth.authenticator import Authenticator
from auth.dependencies import get_auth_request
from auth.models import AuthRequest

router = APIRouter()


def _authenticator(request: Request) -> Authenticator:
    return request.app.state.authenticator


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.get("/api/login", name="login")
async def login(request: Request, auth_request: AuthRequest = Depends(get_auth_request)):
    """Start sign-in with the provider for ?host=..., then return to ?returnTo=..."""
    return await _authenticator(request).authenticate(auth_request)


@router.get("/api/authorize", name="authorize")
async def authorize(request: Request, auth_request: AuthRequest = Depends(get_auth_request)):
    """Request scopes from ?host=... (?scopes=a,b&override=true) for the signed-in user."""
    return await _authenticator(request).authorize(auth_request)


@router.get("/api/deauthorize", name="deauthorize")
async def deauthorize(request: Request, auth_request: AuthRequest = Depends(get_auth_request)):
    """Disconnect the provider for ?host=... from the signed-in user."""
    return await _authenticator(request).deauthorize(auth_request)


@router.get("/auth/{callback_path:path}", name="auth_callback")
async def auth_callback(request: Request, callback_path: str):
    """Hand the request to the provider whose callback path it matches."""
    response = await _authenticator(request).handle_callback(request)
    if response is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Unknown auth callback."})
    return response
