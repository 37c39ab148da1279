"""
auth/metrics.py -- Prometheus counters for the sign-in flow.

Metrics live in the default prometheus_client registry and are exposed by
whatever exporter the deployment runs. Labels are kept low-cardinality:
status is "failed" or "succeeded", host is one of the configured providers.
"""

from __future__ import annotations

from prometheus_client import Counter

_login_attempts_total = Counter(
    "hostgate_login_attempts_total",
    "Sign-in attempts through external identity providers.",
    ["status", "host"],
)


def increase_login_counter(status: str, host: str) -> None:
    _login_attempts_total.labels(status=status, host=host).inc()
