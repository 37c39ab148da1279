"""
auth/providers.py -- Host-keyed registry of configured identity providers.

HostContextProvider maps a host ("github.com", "gitlab.acme.corp") to the
AuthProvider that handles it. The registry is built once at startup
(auth/oauth.py:build_registry) and is read-only afterwards: a config reload
builds a new mapping and swaps it in with replace(), so a request that is
already resolving a provider never sees a half-updated registry.

Callback dispatch: requests under /auth/ are matched by exact string prefix
against every provider's callback path in registration order. The first match
wins. Two providers whose callback paths overlap (e.g. hosts "git.acme" and
"git.acme.corp" share the prefix "/auth/git.acme") resolve to whichever was
registered first.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any, Protocol, runtime_checkable

from auth.models import AuthProviderInfo

logger = logging.getLogger("hostgate.auth.providers")

CALLBACK_PREFIX = "/auth/"


@runtime_checkable
class AuthProvider(Protocol):
    """The handshake capability of one provider.

    The authenticator only decides whether and with which scopes a handshake
    may start; how the redirect and the code exchange work is up to the
    implementation (see auth/oauth.py:AuthlibProvider).
    """

    info: AuthProviderInfo

    @property
    def callback_path(self) -> str: ...

    async def authorize(self, request: Any, state: str, scopes: Sequence[str] | None = None) -> Any: ...

    async def callback(self, request: Any) -> Any: ...


def normalize_host(host: str | None) -> str:
    return (host or "").strip().lower()


class HostContextProvider:
    """Read-only registry of AuthProviders keyed by normalized host.

    Usage:
        registry = HostContextProvider([github_provider, gitlab_provider])
        provider = registry.get("github.com")
    """

    def __init__(self, providers: Iterable[AuthProvider] = ()) -> None:
        self._by_host: dict[str, AuthProvider] = self._index(providers)

    @staticmethod
    def _index(providers: Iterable[AuthProvider]) -> dict[str, AuthProvider]:
        by_host: dict[str, AuthProvider] = {}
        for provider in providers:
            host = normalize_host(provider.info.host)
            if host in by_host:
                logger.warning("Duplicate auth provider for host %r ignored (id=%s)", host, provider.info.id)
                continue
            by_host[host] = provider
        return by_host

    def get(self, host: str | None) -> AuthProvider | None:
        """Return the provider for host, or None when host is empty or unknown."""
        key = normalize_host(host)
        if not key:
            return None
        return self._by_host.get(key)

    def all(self) -> list[AuthProvider]:
        """Return every provider in registration order."""
        return list(self._by_host.values())

    def find_by_callback_path(self, path: str) -> AuthProvider | None:
        """Return the first provider whose callback path prefixes path."""
        if not path.startswith(CALLBACK_PREFIX):
            return None
        for provider in self._by_host.values():
            if path.startswith(provider.callback_path):
                return provider
        return None

    def replace(self, providers: Iterable[AuthProvider]) -> None:
        """Swap in a new provider set (config reload)."""
        self._by_host = self._index(providers)
        logger.info("Auth provider registry reloaded (%d providers)", len(self._by_host))

    def __len__(self) -> int:
        return len(self._by_host)
