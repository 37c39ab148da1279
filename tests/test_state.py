"""Unit tests for auth/state.py -- signed sign-in state."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from conftest import SECRET
from jose import jwt

from auth.models import SignInState
from auth.state import SignInStateCodec


class TestSignInStateCodec:
    def test_sign_in_state_verifies(self, codec: SignInStateCodec) -> None:
        state = SignInState(host="github.com", return_to="https://gate.example.com/workspaces")
        assert codec.verify(codec.sign(state)) == state

    def test_authorize_state_keeps_override_flag(self, codec: SignInStateCodec) -> None:
        state = SignInState(host="gh.org", return_to="https://x", override_scopes=False)
        assert codec.verify(codec.sign(state)).override_scopes is False

    def test_wire_claims(self, codec: SignInStateCodec) -> None:
        """Claim names are the contract with the callback handler."""
        token = codec.sign(SignInState(host="gh.org", return_to="https://x", override_scopes=True))
        claims = jwt.get_unverified_claims(token)
        assert claims["host"] == "gh.org"
        assert claims["returnTo"] == "https://x"
        assert claims["overrideScopes"] is True
        assert "exp" in claims

    def test_sign_in_state_has_no_override_claim(self, codec: SignInStateCodec) -> None:
        token = codec.sign(SignInState(host="github.com", return_to="https://x"))
        assert "overrideScopes" not in jwt.get_unverified_claims(token)

    def test_tampered_token_rejected(self, codec: SignInStateCodec) -> None:
        token = codec.sign(SignInState(host="github.com", return_to="https://x"))
        header, _payload, signature = token.split(".")
        forged = jwt.encode({"host": "evil.example", "returnTo": "https://evil"}, "another-secret-key-0123456789abcdef")
        assert codec.verify(f"{header}.{forged.split('.')[1]}.{signature}") is None

    def test_other_key_rejected(self) -> None:
        other = SignInStateCodec("another-secret-key-0123456789abcdef", 300)
        token = other.sign(SignInState(host="github.com", return_to="https://x"))
        assert SignInStateCodec(SECRET).verify(token) is None

    def test_expired_rejected(self, codec: SignInStateCodec) -> None:
        past = datetime.now(timezone.utc) - timedelta(minutes=10)
        token = jwt.encode(
            {"host": "github.com", "returnTo": "https://x", "iat": past, "exp": past + timedelta(minutes=5)},
            SECRET,
            algorithm="HS256",
        )
        assert codec.verify(token) is None

    def test_missing_claims_rejected(self, codec: SignInStateCodec) -> None:
        token = jwt.encode({"host": "github.com"}, SECRET, algorithm="HS256")
        assert codec.verify(token) is None

    def test_empty_and_garbage_rejected(self, codec: SignInStateCodec) -> None:
        assert codec.verify(None) is None
        assert codec.verify("") is None
        assert codec.verify("not-a-jwt") is None
