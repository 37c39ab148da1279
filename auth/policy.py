"""
auth/policy.py -- Permission rules for sign-in and scope authorization.

The rules form an ordered decision table. Evaluation stops at the first rule
that matches, and several conditions overlap, so the ORDER is part of the
policy -- reordering two steps changes who gets in:

  Step  Condition                                                   Outcome
  1     provider belongs to an organization (sign-in)               deny: login not permitted
  2     dynamic providers disabled, provider not builtin            deny: provider not allowed
  3     provider not verified (sign-in)                             deny: login not permitted
  4     unverified org provider, caller not an owner of the org     deny: authorization not permitted
  5     unverified personal provider, caller not its owner          deny: authorization not permitted
  6     org provider, caller not a member of the org                deny: authorization not permitted
  7     otherwise                                                   allow

check_login() runs steps 1-3, check_authorize() runs steps 2 and 4-6.
A denial is a value, never an exception: the authenticator turns it into a
redirect to the failure page carrying decision.message.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from typing import Protocol

from auth.models import AuthProviderInfo, PolicyDecision, PolicyReason, TeamMembership, User

logger = logging.getLogger("hostgate.auth.policy")

OWNER_ROLE = "owner"


class MembershipLookup(Protocol):
    async def find_team_membership(self, user_id: str, team_id: str) -> TeamMembership | None: ...


def _login_denied(info: AuthProviderInfo) -> PolicyDecision:
    return PolicyDecision.deny(PolicyReason.LOGIN_NOT_PERMITTED, f'Login with "{info.host}" is not permitted.')


def _authorization_denied(info: AuthProviderInfo) -> PolicyDecision:
    return PolicyDecision.deny(
        PolicyReason.AUTHORIZATION_NOT_PERMITTED, f'Authorization with "{info.host}" is not permitted.'
    )


class PermissionPolicy:
    """Evaluates the decision table against a provider and a caller."""

    def __init__(self, memberships: MembershipLookup, *, allow_dynamic_providers: bool = True) -> None:
        self.memberships = memberships
        self.allow_dynamic_providers = allow_dynamic_providers

    def _dynamic_provider_refused(self, info: AuthProviderInfo) -> PolicyDecision | None:
        # Step 2
        if not self.allow_dynamic_providers and not info.builtin:
            return PolicyDecision.deny(PolicyReason.PROVIDER_NOT_ALLOWED, f"Login with {info.host} is not allowed.")
        return None

    async def check_login(self, info: AuthProviderInfo) -> PolicyDecision:
        """Decide whether info may be used for plain sign-in."""
        # Step 1: organizational providers only ever grant scopes.
        if info.organization_id:
            return _login_denied(info)
        refused = self._dynamic_provider_refused(info)
        if refused is not None:
            return refused
        # Step 3
        if not info.verified:
            return _login_denied(info)
        return PolicyDecision.allow()

    async def check_authorize(self, user: User, info: AuthProviderInfo) -> PolicyDecision:
        """Decide whether user may authorize scopes with info.

        Scope override needs no separate rule: whoever may authorize may also
        replace the current scope set.
        """
        refused = self._dynamic_provider_refused(info)
        if refused is not None:
            return refused

        membership: TeamMembership | None = None
        if info.organization_id:
            membership = await self.memberships.find_team_membership(user.id, info.organization_id)

        if not info.verified:
            # Step 4
            if info.organization_id and (membership is None or membership.role != OWNER_ROLE):
                return _authorization_denied(info)
            # Step 5
            if not info.organization_id and user.id != info.owner_id:
                return _authorization_denied(info)

        # Step 6
        if info.organization_id and membership is None:
            return _authorization_denied(info)

        return PolicyDecision.allow()
