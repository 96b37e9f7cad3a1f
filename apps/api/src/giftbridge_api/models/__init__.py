"""SQLAlchemy models package."""

from .checkout_session import (  # noqa: F401
    TERMINAL_SESSION_STATUSES,
    CheckoutSession,
    CheckoutSessionStatusEnum,
)
from .gift_code import GiftCode, GiftCodeStatusEnum  # noqa: F401
