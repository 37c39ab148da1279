"""
auth/state.py -- Signed sign-in state carried through the provider redirect.

Security design decisions:
  JWT: python-jose with HS256, signed with SECRET_KEY. The token travels as the
       OAuth "state" parameter, so it leaves the platform and comes back on the
       callback. Signing makes it tamper-evident: a caller cannot swap the host
       or point returnTo elsewhere without invalidating the signature.

  Expiry: every state expires after Settings.state_expire_seconds. A sign-in
       that takes longer than that has to start over.

  Verification returns None on any failure -- the callback turns that into a
       redirect to the failure page.

Claim names (host, returnTo, overrideScopes) are the wire contract with the
callback handler and must not change.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import SignInState

logger = logging.getLogger("hostgate.auth.state")

_ALGORITHM = "HS256"


class SignInStateCodec:
    """Signs and verifies SignInState payloads."""

    def __init__(self, secret_key: str, expire_seconds: int = 300) -> None:
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds

    def sign(self, state: SignInState) -> str:
        now = datetime.now(timezone.utc)
        payload: dict = {
            "host": state.host,
            "returnTo": state.return_to,
            "iat": now,
            "exp": now + timedelta(seconds=self.expire_seconds),
        }
        if state.override_scopes is not None:
            payload["overrideScopes"] = state.override_scopes
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str | None) -> SignInState | None:
        """Decode and verify a state token. Returns None on any failure."""
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError:
            logger.info("Rejected sign-in state: bad signature or expired")
            return None
        host = payload.get("host")
        return_to = payload.get("returnTo")
        if not isinstance(host, str) or not isinstance(return_to, str):
            return None
        override = payload.get("overrideScopes")
        return SignInState(
            host=host,
            return_to=return_to,
            override_scopes=bool(override) if override is not None else None,
        )
