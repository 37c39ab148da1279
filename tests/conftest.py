"""
tests/conftest.py -- Shared test fixtures for hostgate.

This module provides:
  - provider infos covering every branch of the permission table
  - fake collaborators (provider handshake, memberships, tokens, disconnect)
    that record what the Authenticator asked of them
  - make_authenticator: builds an Authenticator from those fakes
  - store: an isolated in-memory AuthStore
  - web_client: TestClient with follow_redirects=False for route tests

Environment variables must be set before any core/auth/api import so
get_settings() auto-generates SECRET_KEY in dev mode instead of raising
ValueError, and so the sign-in rate limit does not trip across test modules.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

# CRITICAL: set before any hostgate import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from starlette.responses import RedirectResponse

from auth.authenticator import Authenticator
from auth.dependencies import SessionCodec, get_auth_request
from auth.models import AuthProviderInfo, AuthRequest, TeamMembership, Token, User
from auth.policy import PermissionPolicy
from auth.providers import HostContextProvider
from auth.state import SignInStateCodec
from auth.store import AuthStore
from core.urls import HostUrl

HOST_URL = "https://gate.example.com"
SECRET = "test-secret-key-0123456789abcdef0123456789"

# ---------------------------------------------------------------------------
# Provider configurations
# ---------------------------------------------------------------------------

GITHUB = AuthProviderInfo(
    id="Public-GitHub",
    host="github.com",
    type="GitHub",
    verified=True,
    builtin=True,
    scope_separator=",",
    required_scopes_default=("user:email",),
)
# Unverified organization provider (scenario B/C).
ORG_UNVERIFIED = AuthProviderInfo(
    id="org1-gh",
    host="gh.org",
    verified=False,
    organization_id="org1",
    required_scopes_default=("read:user",),
)
ORG_VERIFIED = AuthProviderInfo(
    id="org2-gl",
    host="gl.org",
    type="GitLab",
    verified=True,
    organization_id="org2",
    required_scopes_default=("read_user", "api"),
)
PERSONAL_UNVERIFIED = AuthProviderInfo(
    id="alice-ghe",
    host="git.alice.dev",
    verified=False,
    owner_id="alice",
    required_scopes_default=("repo",),
)
DYNAMIC_VERIFIED = AuthProviderInfo(
    id="acme-ghe",
    host="ghe.acme.corp",
    verified=True,
    owner_id="bob",
    required_scopes_default=("user:email",),
)

ALICE = User(id="alice", name="Alice")
BOB = User(id="bob", name="Bob")


def sorry_message(location: str) -> str | None:
    """Return the decoded failure message of a sorry-page URL, else None."""
    parsed = urlparse(location)
    if parsed.path != "/sorry":
        return None
    return unquote(parsed.fragment)


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeProvider:
    """Handshake capability that records every delegation."""

    def __init__(self, info: AuthProviderInfo, error: Exception | None = None) -> None:
        self.info = info
        self.error = error
        self.authorize_calls: list[tuple[str, list[str] | None]] = []
        self.callback_paths: list[str] = []

    @property
    def callback_path(self) -> str:
        return self.info.callback_path

    async def authorize(self, request, state, scopes=None):
        self.authorize_calls.append((state, None if scopes is None else list(scopes)))
        if self.error is not None:
            raise self.error
        return RedirectResponse(f"https://{self.info.host}/oauth/authorize", status_code=302)

    async def callback(self, request):
        self.callback_paths.append(request.url.path)
        if self.error is not None:
            raise self.error
        return RedirectResponse(f"{HOST_URL}/workspaces", status_code=302)


class FakeMemberships:
    def __init__(self, *memberships: TeamMembership, error: Exception | None = None) -> None:
        self._by_key = {(m.user_id, m.team_id): m for m in memberships}
        self.error = error
        self.lookups = 0

    async def find_team_membership(self, user_id, team_id):
        self.lookups += 1
        if self.error is not None:
            raise self.error
        return self._by_key.get((user_id, team_id))


class FakeTokens:
    def __init__(self, *tokens: tuple[str, Token], error: Exception | None = None) -> None:
        self._by_key = {(user_id, t.host): t for user_id, t in tokens}
        self.error = error

    async def get_token_for_host(self, user, host):
        if self.error is not None:
            raise self.error
        return self._by_key.get((user.id, host))


class FakeUsers:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.disconnected: list[tuple[str, str, str]] = []

    async def disconnect(self, user, provider_id, host):
        if self.error is not None:
            raise self.error
        self.disconnected.append((user.id, provider_id, host))


@dataclass
class Harness:
    authenticator: Authenticator
    providers: dict[str, FakeProvider]
    codec: SignInStateCodec
    users: FakeUsers
    reported: list[BaseException]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def urls() -> HostUrl:
    return HostUrl(HOST_URL)


@pytest.fixture
def codec() -> SignInStateCodec:
    return SignInStateCodec(SECRET, expire_seconds=300)


@pytest.fixture
def make_authenticator(urls, codec):
    """Factory: make_authenticator(memberships=..., tokens=..., users=..., allow_dynamic=...)."""

    def _make(
        memberships: FakeMemberships | None = None,
        tokens: FakeTokens | None = None,
        users: FakeUsers | None = None,
        allow_dynamic: bool = True,
        infos: tuple[AuthProviderInfo, ...] = (GITHUB, ORG_UNVERIFIED, ORG_VERIFIED, PERSONAL_UNVERIFIED, DYNAMIC_VERIFIED),
    ) -> Harness:
        providers = {info.host: FakeProvider(info) for info in infos}
        users = users or FakeUsers()
        reported: list[BaseException] = []
        authenticator = Authenticator(
            registry=HostContextProvider(providers.values()),
            policy=PermissionPolicy(memberships or FakeMemberships(), allow_dynamic_providers=allow_dynamic),
            codec=codec,
            tokens=tokens or FakeTokens(),
            users=users,
            urls=urls,
            on_error=lambda exc, request: reported.append(exc),
        )
        return Harness(authenticator, providers, codec, users, reported)

    return _make


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    """Isolated in-memory AuthStore."""
    s = AuthStore("sqlite://")
    yield s
    s.close()


@dataclass
class SessionHolder:
    user: User | None = None


@pytest.fixture
def web_client(urls, codec) -> Generator[tuple[TestClient, SessionHolder, Harness], None, None]:
    """Yield (client, session, harness) for route integration tests.

    The real FastAPI app runs with a patched lifespan that wires fake
    providers and collaborators. get_auth_request is overridden so tests set
    the signed-in user through session.user instead of forging cookies.

    follow_redirects=False is essential: the tests assert on Location headers.
    """
    from api.main import app

    infos = (GITHUB, ORG_UNVERIFIED, ORG_VERIFIED, PERSONAL_UNVERIFIED, DYNAMIC_VERIFIED)
    providers = {info.host: FakeProvider(info) for info in infos}
    registry = HostContextProvider(providers.values())
    users = FakeUsers()
    reported: list[BaseException] = []
    authenticator = Authenticator(
        registry=registry,
        policy=PermissionPolicy(FakeMemberships(TeamMembership("alice", "org1", "owner"))),
        codec=codec,
        tokens=FakeTokens(),
        users=users,
        urls=urls,
        on_error=lambda exc, request: reported.append(exc),
    )
    store = AuthStore("sqlite://")
    session = SessionHolder()

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.registry = registry
        app.state.session_codec = SessionCodec(store)
        app.state.authenticator = authenticator
        yield

    async def session_auth_request(request: Request) -> AuthRequest:
        return AuthRequest(user=session.user, params=dict(request.query_params), transport=request)

    app.router.lifespan_context = test_lifespan
    app.dependency_overrides[get_auth_request] = session_auth_request

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, session, Harness(authenticator, providers, codec, users, reported)

    app.dependency_overrides.pop(get_auth_request, None)
    store.close()
