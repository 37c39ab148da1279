"""
auth/authenticator.py -- Entry points for sign-in, scope authorization and
provider disconnect.

Each entry point takes an AuthRequest (session identity + query parameters)
and always answers with a redirect: either the provider's own authorization
redirect, the caller's returnTo URL, or the failure ("sorry") page carrying a
human-readable message. Nothing is raised to the transport and nothing is left
pending between requests; the only state that crosses the redirect hop is the
signed SignInState.

Per request the steps run strictly in sequence (parameters -> provider ->
policy -> scopes -> signed state -> delegate), because each step needs the
previous step's result. The Authenticator itself holds no per-request state.

Query parameters:
  host      provider host, required by all three flows
  returnTo  where to land afterwards (required by authorize, else dashboard)
  scopes    comma-separated scopes to request (authorize)
  override  "true" replaces the current scopes instead of merging (authorize)

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

from starlette.responses import RedirectResponse

from auth.metrics import increase_login_counter
from auth.models import AuthProviderInfo, AuthRequest, SignInState, Token, User
from auth.policy import PermissionPolicy
from auth.providers import AuthProvider, HostContextProvider
from auth.scopes import merge_scopes, parse_scopes
from auth.state import SignInStateCodec
from core.urls import HostUrl

logger = logging.getLogger("hostgate.auth.authenticator")

MISSING_PARAMETERS = "Bad request: missing parameters."
NOT_AUTHENTICATED = "Not authenticated. Please login."
INTERNAL_ERROR = "Something went wrong. Please try again."


class TokenLookup(Protocol):
    async def get_token_for_host(self, user: User, host: str) -> Token | None: ...


class UserService(Protocol):
    async def disconnect(self, user: User, provider_id: str, host: str) -> None: ...


ErrorReporter = Callable[[BaseException, AuthRequest], Any]


def _log_request_error(exc: BaseException, request: AuthRequest) -> None:
    logger.error("Request error: %s", exc, exc_info=exc)


class Authenticator:
    """Composes provider lookup, permission policy and scope merge.

    Collaborators are passed in explicitly; the only shared state they expose
    is the read-only provider registry.

    on_error receives every collaborator failure (membership lookup, provider
    handshake, disconnect, callback) before the failure page is shown, so the
    transport never sees an exception from these flows.
    """

    def __init__(
        self,
        registry: HostContextProvider,
        policy: PermissionPolicy,
        codec: SignInStateCodec,
        tokens: TokenLookup,
        users: UserService,
        urls: HostUrl,
        on_error: ErrorReporter = _log_request_error,
    ) -> None:
        self.registry = registry
        self.policy = policy
        self.codec = codec
        self.tokens = tokens
        self.users = users
        self.urls = urls
        self.on_error = on_error

    # ------------------------------------------------------------------
    # Redirect helpers
    # ------------------------------------------------------------------

    def sorry(self, message: str) -> RedirectResponse:
        return RedirectResponse(self.urls.as_sorry(message), status_code=302)

    def _failed(self, exc: BaseException, request: AuthRequest, action: str) -> RedirectResponse:
        self.on_error(exc, request)
        logger.error("%s failed (host=%r): %s", action, request.param("host"), exc)
        return self.sorry(INTERNAL_ERROR)

    def _provider_for(self, request: AuthRequest) -> tuple[str, AuthProvider | None]:
        host = request.param("host")
        return host, self.registry.get(host) if host else None

    # ------------------------------------------------------------------
    # Sign-in
    # ------------------------------------------------------------------

    async def authenticate(self, request: AuthRequest) -> Any:
        return_to = request.param("returnTo") or self.urls.as_dashboard()
        if request.is_authenticated:
            logger.info("User is already authenticated. Continue. (user=%s)", request.user.id)
            return RedirectResponse(return_to, status_code=302)
        if request.param("returnTo"):
            logger.info("Stored returnTo URL: %s", return_to)

        host, provider = self._provider_for(request)
        if provider is None:
            logger.info("Login: bad request, missing parameters (host=%r)", host)
            return self.sorry(MISSING_PARAMETERS)

        try:
            decision = await self.policy.check_login(provider.info)
            if not decision.allowed:
                increase_login_counter("failed", provider.info.host)
                logger.info("Login with %r refused: %s (provider=%s)", host, decision.reason.value, provider.info.id)
                return self.sorry(decision.message)

            state = self.codec.sign(SignInState(host=host, return_to=return_to))
            return await provider.authorize(request.transport, state)
        except Exception as exc:
            return self._failed(exc, request, "Login")

    # ------------------------------------------------------------------
    # Scope authorization
    # ------------------------------------------------------------------

    async def authorize(self, request: AuthRequest) -> Any:
        user = request.user
        if user is None:
            logger.info("Authorize: user is not authenticated")
            return self.sorry(NOT_AUTHENTICATED)

        return_to = request.param("returnTo")
        host, provider = self._provider_for(request)
        if not return_to or provider is None:
            logger.info("Authorize: bad request, missing parameters (host=%r)", host)
            return self.sorry(MISSING_PARAMETERS)

        info = provider.info
        try:
            decision = await self.policy.check_authorize(user, info)
            if not decision.allowed:
                logger.info("Authorization with %r refused for user %s (provider=%s)", host, user.id, info.id)
                return self.sorry(decision.message)

            override = request.params.get("override") == "true"
            scopes = await self._wanted_scopes(user, info, parse_scopes(request.params.get("scopes")), override)
            logger.info(
                "Wanted scopes (%s): %s",
                "overriding" if override else "merging",
                ",".join(scopes),
            )

            state = self.codec.sign(SignInState(host=host, return_to=return_to, override_scopes=override))
            return await provider.authorize(request.transport, state, scopes)
        except Exception as exc:
            return self._failed(exc, request, "Authorization")

    async def _wanted_scopes(
        self, user: User, info: AuthProviderInfo, requested: list[str], override: bool
    ) -> list[str]:
        wanted = requested or list(info.required_scopes_default)
        if override:
            return wanted
        current = await self._current_scopes(user, info)
        merged = merge_scopes(current, wanted)
        # A user who signed in with another identity holds no token for this
        # host yet; the defaults are needed for the new token to be usable.
        if not current:
            merged = merge_scopes(info.required_scopes_default, merged)
        return merged

    async def _current_scopes(self, user: User, info: AuthProviderInfo) -> list[str]:
        try:
            token = await self.tokens.get_token_for_host(user, info.host)
        except Exception:
            logger.debug("Token lookup failed for %s on %s", user.id, info.host, exc_info=True)
            return []
        return list(token.scopes) if token is not None else []

    # ------------------------------------------------------------------
    # Disconnect
    # ------------------------------------------------------------------

    async def deauthorize(self, request: AuthRequest) -> RedirectResponse:
        user = request.user
        if user is None:
            logger.info("Deauthorize: user is not authenticated")
            return self.sorry(NOT_AUTHENTICATED)

        return_to = request.param("returnTo") or self.urls.as_dashboard()
        host, provider = self._provider_for(request)
        if provider is None:
            logger.warning("Deauthorize: bad request, missing parameters (host=%r)", host)
            return self.sorry(MISSING_PARAMETERS)

        try:
            await self.users.disconnect(user, provider.info.id, provider.info.host)
        except Exception as exc:
            self.on_error(exc, request)
            logger.error("Failed to disconnect a provider (host=%s, user=%s)", host, user.id)
            reason = str(exc) or "unknown reason"
            return self.sorry(f"Failed to disconnect a provider: {reason}")
        return RedirectResponse(return_to, status_code=302)

    # ------------------------------------------------------------------
    # Provider callbacks
    # ------------------------------------------------------------------

    async def handle_callback(self, transport: Any) -> Any | None:
        """Dispatch a provider callback by path; None when no provider matches."""
        provider = self.registry.find_by_callback_path(transport.url.path)
        if provider is None:
            return None
        logger.info("Auth provider callback. Path: %s", provider.callback_path)
        try:
            return await provider.callback(transport)
        except Exception as exc:
            request = AuthRequest(user=None, params={"host": provider.info.host}, transport=transport)
            return self._failed(exc, request, "Provider callback")
