"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in api/routes/auth.py
(to apply per-route limits with @limiter.limit()). A single shared instance
keeps one in-memory counter store for every route.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Current sign-in limit, read from Settings on every check."""
    return get_settings().login_rate_limit
