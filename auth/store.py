"""
auth/store.py -- SQLAlchemy Core persistence layer for auth lookups.

Pattern: Repository + Data Mapper. AuthStore is the repository; the _row_to_*
functions are the mappers. The policy and the authenticator never touch SQL.

Two kinds of methods:
  async lookups (get_user, find_team_membership, get_token_for_host, ...)
      are what the request path awaits. The blocking query runs in
      Starlette's threadpool so one slow lookup never stalls other requests.
  sync helpers (create_user, add_team_member, put_token, ...) seed data for
      administration scripts and tests.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from starlette.concurrency import run_in_threadpool

from auth.models import AuthProviderInfo, TeamMembership, Token, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

# A user's linked accounts at external providers.
_identities = Table(
    "identities",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("auth_provider_id", String(255), nullable=False),
    Column("auth_id", String(255), nullable=False),  # provider's stable subject
    UniqueConstraint("auth_provider_id", "auth_id"),
)

_team_memberships = Table(
    "team_memberships",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("team_id", String(36), nullable=False),
    Column("user_id", String(36), nullable=False),
    Column("role", String(30), nullable=False, server_default="member"),
    UniqueConstraint("team_id", "user_id"),
)

_tokens = Table(
    "tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False),
    Column("host", String(255), nullable=False),
    Column("value", Text, nullable=False),
    Column("scopes", Text, nullable=False, server_default=""),  # comma-separated
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("user_id", "host"),
)

# Providers registered at runtime by users or organizations. Builtin
# providers come from Settings and are never stored here.
_auth_providers = Table(
    "auth_providers",
    _metadata,
    Column("id", String(255), primary_key=True),
    Column("host", String(255), nullable=False, unique=True),
    Column("type", String(30), nullable=False),
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("organization_id", String(36)),
    Column("owner_id", String(36)),
    Column("client_id", Text, nullable=False, server_default=""),
    Column("client_secret", Text, nullable=False, server_default=""),
    Column("authorize_url", Text),
    Column("access_token_url", Text),
    Column("api_base_url", Text),
    Column("server_metadata_url", Text),
    Column("default_scopes", Text, nullable=False, server_default=""),  # comma-separated
    Column("created_at", String(32), nullable=False),
)


class ProviderDisconnectError(Exception):
    """Raised when an identity cannot be disconnected from a provider."""


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so lookups are not blocked by token writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _join(scopes) -> str:
    return ",".join(scopes)


def _split(raw: str | None) -> tuple[str, ...]:
    return tuple(s for s in (raw or "").split(",") if s)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for users, identities, team memberships, tokens and providers.

    Usage:
        store = AuthStore("sqlite:///hostgate.db")
        uid = store.create_user(User(id="", name="alice"))
        user = await store.get_user(uid)
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///hostgate.db") -> None:
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if db_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise each threadpool worker
                # would open its own empty in-memory database.
                engine_kwargs["poolclass"] = StaticPool
        self.engine: Engine = create_engine(db_url, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users and identities
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a user and return its id (generated when user.id is empty)."""
        user_id = user.id or str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    name=user.name,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
        return user_id

    def _get_user(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    async def get_user(self, user_id: str) -> User | None:
        """Look up a user by id. Returns None if not found."""
        return await run_in_threadpool(self._get_user, user_id)

    def link_identity(self, user_id: str, auth_provider_id: str, auth_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_identities.insert().values(user_id=user_id, auth_provider_id=auth_provider_id, auth_id=auth_id))
            conn.commit()

    def _find_user_by_identity(self, auth_provider_id: str, auth_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select()
                .join(_identities, _identities.c.user_id == _users.c.id)
                .where((_identities.c.auth_provider_id == auth_provider_id) & (_identities.c.auth_id == auth_id))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    async def find_user_by_identity(self, auth_provider_id: str, auth_id: str) -> User | None:
        """Look up the user linked to a provider subject. Returns None if unlinked."""
        return await run_in_threadpool(self._find_user_by_identity, auth_provider_id, auth_id)

    def _disconnect(self, user_id: str, auth_provider_id: str, host: str) -> None:
        with self.engine.connect() as conn:
            rows = conn.execute(_identities.select().where(_identities.c.user_id == user_id)).fetchall()
            linked = [r for r in rows if r.auth_provider_id == auth_provider_id]
            if linked and len(rows) == len(linked):
                raise ProviderDisconnectError("Cannot disconnect the last sign-in identity of an account.")
            conn.execute(
                _identities.delete().where(
                    (_identities.c.user_id == user_id) & (_identities.c.auth_provider_id == auth_provider_id)
                )
            )
            conn.execute(_tokens.delete().where((_tokens.c.user_id == user_id) & (_tokens.c.host == host)))
            conn.commit()

    async def disconnect(self, user: User, provider_id: str, host: str) -> None:
        """Remove the user's identity and token for one provider.

        Raises ProviderDisconnectError if this identity is the only way the
        user can sign in.
        """
        await run_in_threadpool(self._disconnect, user.id, provider_id, host)

    # ------------------------------------------------------------------
    # Team memberships
    # ------------------------------------------------------------------

    def add_team_member(self, team_id: str, user_id: str, role: str = "member") -> None:
        with self.engine.connect() as conn:
            conn.execute(_team_memberships.insert().values(team_id=team_id, user_id=user_id, role=role))
            conn.commit()

    def _find_team_membership(self, user_id: str, team_id: str) -> TeamMembership | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _team_memberships.select().where(
                    (_team_memberships.c.user_id == user_id) & (_team_memberships.c.team_id == team_id)
                )
            ).fetchone()
        return _row_to_membership(row) if row is not None else None

    async def find_team_membership(self, user_id: str, team_id: str) -> TeamMembership | None:
        return await run_in_threadpool(self._find_team_membership, user_id, team_id)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def put_token(self, user_id: str, host: str, value: str, scopes) -> None:
        """Insert or replace the user's token for host."""
        with self.engine.connect() as conn:
            conn.execute(_tokens.delete().where((_tokens.c.user_id == user_id) & (_tokens.c.host == host)))
            conn.execute(
                _tokens.insert().values(
                    user_id=user_id, host=host, value=value, scopes=_join(scopes), updated_at=_now_iso()
                )
            )
            conn.commit()

    async def save_token(self, user_id: str, host: str, value: str, scopes) -> None:
        await run_in_threadpool(self.put_token, user_id, host, value, scopes)

    def _get_token(self, user_id: str, host: str) -> Token | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _tokens.select().where((_tokens.c.user_id == user_id) & (_tokens.c.host == host))
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    async def get_token_for_host(self, user: User, host: str) -> Token | None:
        """Return the user's token for host, or None if none was granted."""
        return await run_in_threadpool(self._get_token, user.id, host)

    # ------------------------------------------------------------------
    # Dynamic auth providers
    # ------------------------------------------------------------------

    def create_auth_provider(self, info: AuthProviderInfo) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _auth_providers.insert().values(
                    id=info.id,
                    host=info.host,
                    type=info.type,
                    verified=1 if info.verified else 0,
                    organization_id=info.organization_id,
                    owner_id=info.owner_id,
                    client_id=info.client_id,
                    client_secret=info.client_secret,
                    authorize_url=info.authorize_url,
                    access_token_url=info.access_token_url,
                    api_base_url=info.api_base_url,
                    server_metadata_url=info.server_metadata_url,
                    default_scopes=_join(info.required_scopes_default),
                    created_at=_now_iso(),
                )
            )
            conn.commit()

    def list_auth_providers(self) -> list[AuthProviderInfo]:
        """Return all stored providers, oldest first (registration order)."""
        with self.engine.connect() as conn:
            rows = conn.execute(_auth_providers.select().order_by(_auth_providers.c.created_at)).fetchall()
        return [_row_to_provider(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(id=row.id, name=row.name, created_at=row.created_at, is_active=bool(row.is_active))


def _row_to_membership(row) -> TeamMembership:
    return TeamMembership(user_id=row.user_id, team_id=row.team_id, role=row.role)


def _row_to_token(row) -> Token:
    return Token(host=row.host, value=row.value, scopes=_split(row.scopes), updated_at=row.updated_at)


def _row_to_provider(row) -> AuthProviderInfo:
    return AuthProviderInfo(
        id=row.id,
        host=row.host,
        type=row.type,
        verified=bool(row.verified),
        organization_id=row.organization_id,
        owner_id=row.owner_id,
        builtin=False,
        required_scopes_default=_split(row.default_scopes),
        scope_separator="," if row.type == "GitHub" else " ",
        client_id=row.client_id,
        client_secret=row.client_secret,
        authorize_url=row.authorize_url,
        access_token_url=row.access_token_url,
        api_base_url=row.api_base_url,
        server_metadata_url=row.server_metadata_url,
    )
