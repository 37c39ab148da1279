"""
core/urls.py -- Absolute URLs derived from the platform's public base URL.

Every auth outcome is a redirect, and the two fixed destinations are the
dashboard (default return target) and the failure ("sorry") page. The sorry
page reads its message from the URL fragment, so the message never reaches
server access logs.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

from urllib.parse import quote, urljoin

from core.config import Settings


class HostUrl:
    """Builds dashboard, failure-page and callback URLs for one base URL."""

    def __init__(self, base: str, dashboard_path: str = "/workspaces", sorry_path: str = "/sorry") -> None:
        self.base = base.rstrip("/") + "/"
        self.dashboard_path = dashboard_path
        self.sorry_path = sorry_path

    @classmethod
    def from_settings(cls, settings: Settings) -> HostUrl:
        return cls(settings.host_url, settings.dashboard_path, settings.sorry_path)

    def with_path(self, path: str) -> str:
        return urljoin(self.base, path.lstrip("/"))

    def as_dashboard(self) -> str:
        return self.with_path(self.dashboard_path)

    def as_sorry(self, message: str) -> str:
        """Return the failure page URL carrying message in the fragment."""
        return f"{self.with_path(self.sorry_path)}#{quote(message, safe='')}"
