"""Gift code inventory model."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Enum as SqlEnum, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID

from giftbridge_api.db.base import Base


class GiftCodeStatusEnum(str, Enum):
    """Lifecycle states for pre-purchased gift codes."""

    AVAILABLE = "AVAILABLE"
    ALLOCATED = "ALLOCATED"
    REDEEMED = "REDEEMED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


class GiftCode(Base):
    """A single gift code with a fixed face denomination in cents."""

    __tablename__ = "gift_code_inventory"
    __table_args__ = (
        CheckConstraint("denomination > 0", name="denomination_positive"),
        Index("ix_gift_code_inventory_status_denomination", "status", "denomination"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    code = Column(String(64), nullable=False, unique=True, index=True)
    denomination = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(GiftCodeStatusEnum, name="gift_code_status_enum"),
        nullable=False,
        default=GiftCodeStatusEnum.AVAILABLE,
        server_default=GiftCodeStatusEnum.AVAILABLE.value,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<GiftCode id={self.id} denomination={self.denomination} status={self.status}>"
