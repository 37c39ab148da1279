"""Unit tests for auth/dependencies.py -- session key <-> user, AuthRequest assembly."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

from auth.dependencies import SESSION_KEY, SessionCodec, get_auth_request
from auth.models import User
from auth.store import AuthStore


def _http_request(store: AuthStore, session: dict, **params: str):
    app = SimpleNamespace(state=SimpleNamespace(session_codec=SessionCodec(store)))
    return SimpleNamespace(app=app, session=session, query_params=params)


class TestSessionCodec:
    def test_round_trip(self, store: AuthStore) -> None:
        uid = store.create_user(User(id="", name="Alice"))
        codec = SessionCodec(store)
        user = asyncio.run(codec.from_session_key(uid))
        assert codec.to_session_key(user) == uid

    def test_unknown_key(self, store: AuthStore) -> None:
        assert asyncio.run(SessionCodec(store).from_session_key("gone")) is None

    def test_inactive_user_treated_as_missing(self, store: AuthStore) -> None:
        uid = store.create_user(User(id="", name="Mallory", is_active=False))
        assert asyncio.run(SessionCodec(store).from_session_key(uid)) is None


class TestGetAuthRequest:
    def test_anonymous(self, store: AuthStore) -> None:
        request = _http_request(store, {}, host="github.com")
        auth_request = asyncio.run(get_auth_request(request))
        assert auth_request.is_authenticated is False
        assert auth_request.param("host") == "github.com"
        assert auth_request.transport is request

    def test_authenticated(self, store: AuthStore) -> None:
        uid = store.create_user(User(id="", name="Alice"))
        auth_request = asyncio.run(get_auth_request(_http_request(store, {SESSION_KEY: uid})))
        assert auth_request.user.id == uid

    def test_stale_session_key_cleared(self, store: AuthStore) -> None:
        session = {SESSION_KEY: "deleted-user"}
        auth_request = asyncio.run(get_auth_request(_http_request(store, session)))
        assert auth_request.user is None
        assert SESSION_KEY not in session
