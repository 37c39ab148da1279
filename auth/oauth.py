"""
auth/oauth.py -- Authlib-backed identity providers and registry assembly.

build_registry() reads configuration at startup to decide which providers are
active:
  builtin  -- GitHub, GitLab, Bitbucket. Registered only when both client ID
              and secret are configured. Always verified.
  dynamic  -- providers stored in the auth_providers table, registered by a
              user (owner_id) or an organization (organization_id).

AuthlibProvider is the handshake capability the Authenticator delegates to.
It never decides anything about permissions; it only runs the OAuth 2.0
authorization code flow:

  authorize() -- redirect to the provider with the signed sign-in state as the
      OAuth "state" parameter and the scopes the Authenticator computed.
  callback()  -- verify the signed state, exchange the code, link the session
      (sign-in) and store the token (authorization), redirect to returnTo.
      A state without overrideScopes is a sign-in; one carrying it is an
      authorization and needs a session. Without override the granted
      scopes are merged into the stored token's scopes.

Security notes:
  The OAuth state is checked twice. Authlib compares it with the value stored
  in the Starlette session before the redirect (CSRF), and verify() checks our
  own signature and expiry and that the state was issued for THIS host.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx
from authlib.integrations.starlette_client import OAuth, OAuthError
from starlette.responses import RedirectResponse

from auth.authenticator import NOT_AUTHENTICATED
from auth.dependencies import SESSION_KEY
from auth.metrics import increase_login_counter
from auth.models import AuthProviderInfo, User
from auth.providers import HostContextProvider, normalize_host
from auth.scopes import merge_scopes, parse_token_scopes
from auth.state import SignInStateCodec
from auth.store import AuthStore
from core.config import Settings
from core.urls import HostUrl

logger = logging.getLogger("hostgate.auth.oauth")

# ---------------------------------------------------------------------------
# Builtin provider definitions
# ---------------------------------------------------------------------------

_BUILTIN_PROVIDERS: tuple[dict, ...] = (
    {
        "setting": "github",
        "id": "Public-GitHub",
        "host": "github.com",
        "type": "GitHub",
        "scope_separator": ",",
        "required_scopes_default": ("user:email",),
        "authorize_url": "https://github.com/login/oauth/authorize",
        "access_token_url": "https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        "api_base_url": "https://api.github.com/",
    },
    {
        "setting": "gitlab",
        "id": "Public-GitLab",
        "host": "gitlab.com",
        "type": "GitLab",
        "required_scopes_default": ("read_user", "api"),
        "authorize_url": "https://gitlab.com/oauth/authorize",
        "access_token_url": "https://gitlab.com/oauth/token",  # noqa: S106 -- URL, not a password
        "api_base_url": "https://gitlab.com/api/v4/",
    },
    {
        "setting": "bitbucket",
        "id": "Public-Bitbucket",
        "host": "bitbucket.org",
        "type": "Bitbucket",
        "required_scopes_default": ("account", "repository"),
        "authorize_url": "https://bitbucket.org/site/oauth2/authorize",
        "access_token_url": "https://bitbucket.org/site/oauth2/access_token",  # noqa: S106 -- URL, not a password
        "api_base_url": "https://api.bitbucket.org/2.0/",
    },
)


def builtin_provider_infos(settings: Settings) -> list[AuthProviderInfo]:
    """Return the builtin providers whose client ID and secret are configured."""
    infos: list[AuthProviderInfo] = []
    for entry in _BUILTIN_PROVIDERS:
        client_id = getattr(settings, f"{entry['setting']}_client_id")
        client_secret = getattr(settings, f"{entry['setting']}_client_secret")
        if not (client_id and client_secret):
            continue
        fields = {k: v for k, v in entry.items() if k != "setting"}
        infos.append(
            AuthProviderInfo(
                **fields,
                verified=True,
                builtin=True,
                client_id=client_id,
                client_secret=client_secret,
            )
        )
    return infos


# ---------------------------------------------------------------------------
# Provider adapter
# ---------------------------------------------------------------------------


def host_label(info: AuthProviderInfo) -> str:
    return f"{info.type} ({info.host})"


class AuthlibProvider:
    """Runs the OAuth 2.0 code flow for one configured provider."""

    def __init__(self, info: AuthProviderInfo, client: Any, codec: SignInStateCodec, store: AuthStore, urls: HostUrl):
        self.info = info
        self.client = client
        self.codec = codec
        self.store = store
        self.urls = urls

    @property
    def callback_path(self) -> str:
        return self.info.callback_path

    def _sorry(self, message: str) -> RedirectResponse:
        return RedirectResponse(self.urls.as_sorry(message), status_code=302)

    async def authorize(self, request: Any, state: str, scopes: Sequence[str] | None = None) -> Any:
        """Redirect to the provider's authorization endpoint.

        Without scopes, the client's registered default scope applies.
        """
        redirect_uri = self.urls.with_path(self.callback_path)
        kwargs: dict = {"state": state}
        if scopes:
            kwargs["scope"] = self.info.scope_separator.join(scopes)
        return await self.client.authorize_redirect(request, redirect_uri, **kwargs)

    async def callback(self, request: Any) -> Any:
        host = self.info.host
        state = self.codec.verify(request.query_params.get("state"))
        if state is None or normalize_host(state.host) != normalize_host(host):
            logger.warning("Callback for %r with invalid or foreign sign-in state", host)
            return self._sorry("Sign-in state is invalid or expired. Please try again.")

        user_id = request.session.get(SESSION_KEY)
        signing_in = not user_id
        if signing_in and state.override_scopes is not None:
            logger.info("Authorization callback for %r without a session", host)
            return self._sorry(NOT_AUTHENTICATED)
        if signing_in and self.info.organization_id:
            increase_login_counter("failed", host)
            logger.info("Login callback for organization provider %r refused", host)
            return self._sorry(f'Login with "{host}" is not permitted.')

        try:
            token = await self.client.authorize_access_token(request)
        except OAuthError:
            logger.exception("OAuth token exchange failed for %r", host)
            return self._sorry(f'Authorization with "{host}" failed.')

        if signing_in:
            try:
                subject = await self._subject(token)
            except (ValueError, httpx.HTTPError):
                logger.warning("Could not read the account of a %r callback", host, exc_info=True)
                return self._sorry(f'Login with "{host}" failed.')
            user = await self.store.find_user_by_identity(self.info.id, subject)
            if user is None or not user.is_active:
                increase_login_counter("failed", host)
                logger.info("Login with %r: no active account linked to subject %s", host, subject)
                return self._sorry(f'No account is linked to this "{host}" identity.')
            increase_login_counter("succeeded", host)
            request.session[SESSION_KEY] = user.id
            user_id = user.id

        scopes = parse_token_scopes(token.get("scope"))
        if state.override_scopes is False:
            current = await self.store.get_token_for_host(User(id=user_id), host)
            if current is not None:
                scopes = merge_scopes(current.scopes, scopes)
        await self.store.save_token(user_id, host, token["access_token"], scopes)
        logger.info("Stored token for %r (user=%s, scopes=%s)", host, user_id, ",".join(scopes))
        return RedirectResponse(state.return_to, status_code=302)

    async def _subject(self, token: dict) -> str:
        """Return the provider's stable subject id for the token's owner.

        OIDC providers put it in the id_token claims; the Git hosters only
        expose it through their user endpoint.
        """
        userinfo = token.get("userinfo")
        if userinfo and userinfo.get("sub"):
            return str(userinfo["sub"])
        resp = await self.client.get(self.info.user_endpoint, token=token)
        resp.raise_for_status()
        profile = resp.json()
        subject = profile.get("id") or profile.get("uuid")
        if not subject:
            raise ValueError(f"{host_label(self.info)}: profile response carries no id")
        return str(subject)


# ---------------------------------------------------------------------------
# Registry assembly
# ---------------------------------------------------------------------------


def _register(oauth: OAuth, info: AuthProviderInfo) -> Any:
    kwargs: dict = {
        "client_id": info.client_id,
        "client_secret": info.client_secret,
        "client_kwargs": {"scope": info.scope_separator.join(info.required_scopes_default)},
    }
    for name in ("authorize_url", "access_token_url", "api_base_url", "server_metadata_url"):
        value = getattr(info, name)
        if value:
            kwargs[name] = value
    oauth.register(name=info.id, **kwargs)
    return oauth.create_client(info.id)


def build_providers(
    settings: Settings,
    store: AuthStore,
    codec: SignInStateCodec,
    urls: HostUrl,
    oauth: OAuth | None = None,
) -> list[AuthlibProvider]:
    """Create an AuthlibProvider for every builtin and stored provider."""
    oauth = oauth or OAuth()
    providers: list[AuthlibProvider] = []
    for info in [*builtin_provider_infos(settings), *store.list_auth_providers()]:
        client = _register(oauth, info)
        providers.append(AuthlibProvider(info, client, codec, store, urls))
        logger.info("%s auth provider registered (id=%s, verified=%s)", host_label(info), info.id, info.verified)
    return providers


def build_registry(
    settings: Settings,
    store: AuthStore,
    codec: SignInStateCodec,
    urls: HostUrl,
    oauth: OAuth | None = None,
) -> HostContextProvider:
    return HostContextProvider(build_providers(settings, store, codec, urls, oauth))
