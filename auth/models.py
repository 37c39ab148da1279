"""
auth/models.py -- Domain dataclasses for sign-in and authorization entities.

Pattern: Data class (pure data container, next to zero logic). Stores, the
policy and the authenticator do the work; these classes own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class User:
    """An authenticated platform identity.

    Frozen: the identity attached to a request never changes while that
    request is being decided.
    """

    id: str
    name: str = ""
    is_active: bool = True
    created_at: str | None = None


@dataclass(frozen=True)
class AuthProviderInfo:
    """Configuration of one external identity provider, keyed by host.

    builtin providers come from the platform's own configuration; all others
    were registered at runtime by a user (owner_id) or an organization
    (organization_id). An unverified provider has not been confirmed by its
    owner yet and is only usable by that owner.

    The OAuth endpoint fields are consumed by auth/oauth.py only; the policy
    and the authenticator never look at them.
    """

    id: str
    host: str
    type: str = "OAuth"
    verified: bool = False
    organization_id: str | None = None
    owner_id: str | None = None
    builtin: bool = False
    required_scopes_default: tuple[str, ...] = ()
    # Joiner for the scope parameter sent to the provider (GitHub uses ",").
    scope_separator: str = " "

    client_id: str = ""
    client_secret: str = ""
    authorize_url: str | None = None
    access_token_url: str | None = None
    api_base_url: str | None = None
    server_metadata_url: str | None = None
    user_endpoint: str = "user"

    @property
    def callback_path(self) -> str:
        return f"/auth/{self.host}/callback"


@dataclass(frozen=True)
class TeamMembership:
    """A user's membership in an organization (team)."""

    user_id: str
    team_id: str
    role: str  # "owner", "member"


@dataclass(frozen=True)
class Token:
    """A provider access token held by a user for one host."""

    host: str
    value: str
    scopes: tuple[str, ...] = ()
    updated_at: str | None = None


@dataclass(frozen=True)
class SignInState:
    """Intent carried through the provider redirect as a signed token.

    override_scopes is None for plain sign-in and a bool for scope
    authorization, mirroring whether the claim is present on the wire.
    """

    host: str
    return_to: str
    override_scopes: bool | None = None


@dataclass
class AuthRequest:
    """Request context handed to every Authenticator entry point.

    Built once at the transport boundary (auth/dependencies.py): user is the
    session identity or None for anonymous callers. transport is the raw
    Starlette request, passed through untouched to provider adapters.
    """

    user: User | None = None
    params: Mapping[str, str] = field(default_factory=dict)
    transport: Any = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def param(self, name: str) -> str:
        """Return a stripped query parameter, "" when absent."""
        return (self.params.get(name) or "").strip()


class PolicyReason(str, Enum):
    LOGIN_NOT_PERMITTED = "login_not_permitted"
    PROVIDER_NOT_ALLOWED = "provider_not_allowed"
    AUTHORIZATION_NOT_PERMITTED = "authorization_not_permitted"


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of a permission check. message is shown on the failure page."""

    allowed: bool
    reason: PolicyReason | None = None
    message: str = ""

    @classmethod
    def allow(cls) -> PolicyDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: PolicyReason, message: str) -> PolicyDecision:
        return cls(allowed=False, reason=reason, message=message)
