"""API routers package."""

from bankrec.routers import accounts, events, matching, reconciliations, rules, transactions

__all__ = [
    "accounts",
    "events",
    "matching",
    "reconciliations",
    "rules",
    "transactions",
]
