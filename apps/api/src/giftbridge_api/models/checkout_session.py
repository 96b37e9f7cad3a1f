"""Checkout session model tracking a stablecoin top-up purchase."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from giftbridge_api.db.base import Base


class CheckoutSessionStatusEnum(str, Enum):
    """Lifecycle states for checkout sessions."""

    CREATED = "CREATED"
    PENDING = "PENDING"
    PAID = "PAID"
    PROCESSING = "PROCESSING"
    FULFILLED = "FULFILLED"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


TERMINAL_SESSION_STATUSES = frozenset(
    {
        CheckoutSessionStatusEnum.COMPLETED,
        CheckoutSessionStatusEnum.EXPIRED,
        CheckoutSessionStatusEnum.FAILED,
    }
)


class CheckoutSession(Base):
    """Persisted checkout session; top-up is fixed at creation."""

    __tablename__ = "checkout_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    session_id = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(String(255), nullable=True, index=True)
    source_url = Column(Text, nullable=False)
    cart_total_cents = Column(Integer, nullable=False)
    current_balance_cents = Column(Integer, nullable=False, default=0)
    top_up_amount_cents = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(CheckoutSessionStatusEnum, name="checkout_session_status_enum"),
        nullable=False,
        default=CheckoutSessionStatusEnum.CREATED,
        server_default=CheckoutSessionStatusEnum.CREATED.value,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    metadata_json = Column("metadata", JSON, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES
