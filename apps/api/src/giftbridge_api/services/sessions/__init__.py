"""Checkout session lifecycle services."""

from .lifecycle import CheckoutSessionLifecycle, SessionStatistics, generate_session_id
from .store import CheckoutSessionStore, SessionAggregate

__all__ = [
    "CheckoutSessionLifecycle",
    "CheckoutSessionStore",
    "SessionAggregate",
    "SessionStatistics",
    "generate_session_id",
]
