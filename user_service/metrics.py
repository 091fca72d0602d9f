"""Prometheus collectors for the user service."""

from __future__ import annotations

from prometheus_client import Counter

LOGIN_ATTEMPTS = Counter(
    "user_service_login_attempts_total",
    "Login attempts by outcome.",
    ["outcome"],
)

ACCOUNTS_CREATED = Counter(
    "user_service_accounts_created_total",
    "Accounts created, split by registration path.",
    ["kind"],
)
