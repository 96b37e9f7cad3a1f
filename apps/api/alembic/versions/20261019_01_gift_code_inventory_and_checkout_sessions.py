"""Create gift code inventory and checkout session tables."""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


GIFT_CODE_STATUS_ENUM = "gift_code_status_enum"
CHECKOUT_SESSION_STATUS_ENUM = "checkout_session_status_enum"


def upgrade() -> None:
    op.create_table(
        "gift_code_inventory",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("denomination", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "AVAILABLE",
                "ALLOCATED",
                "REDEEMED",
                "EXPIRED",
                "FAILED",
                name=GIFT_CODE_STATUS_ENUM,
            ),
            nullable=False,
            server_default="AVAILABLE",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.CheckConstraint("denomination > 0", name="ck_gift_code_inventory_denomination_positive"),
    )
    op.create_index("ix_gift_code_inventory_code", "gift_code_inventory", ["code"], unique=True)
    op.create_index("ix_gift_code_inventory_status", "gift_code_inventory", ["status"])
    op.create_index(
        "ix_gift_code_inventory_status_denomination",
        "gift_code_inventory",
        ["status", "denomination"],
    )

    op.create_table(
        "checkout_sessions",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("session_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column("source_url", sa.Text(), nullable=False),
        sa.Column("cart_total_cents", sa.Integer(), nullable=False),
        sa.Column("current_balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("top_up_amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "CREATED",
                "PENDING",
                "PAID",
                "PROCESSING",
                "FULFILLED",
                "COMPLETED",
                "EXPIRED",
                "FAILED",
                name=CHECKOUT_SESSION_STATUS_ENUM,
            ),
            nullable=False,
            server_default="CREATED",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
    )
    op.create_index("ix_checkout_sessions_session_id", "checkout_sessions", ["session_id"], unique=True)
    op.create_index("ix_checkout_sessions_user_id", "checkout_sessions", ["user_id"])
    op.create_index("ix_checkout_sessions_status", "checkout_sessions", ["status"])
    op.create_index("ix_checkout_sessions_expires_at", "checkout_sessions", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_checkout_sessions_expires_at", table_name="checkout_sessions")
    op.drop_index("ix_checkout_sessions_status", table_name="checkout_sessions")
    op.drop_index("ix_checkout_sessions_user_id", table_name="checkout_sessions")
    op.drop_index("ix_checkout_sessions_session_id", table_name="checkout_sessions")
    op.drop_table("checkout_sessions")

    op.drop_index("ix_gift_code_inventory_status_denomination", table_name="gift_code_inventory")
    op.drop_index("ix_gift_code_inventory_status", table_name="gift_code_inventory")
    op.drop_index("ix_gift_code_inventory_code", table_name="gift_code_inventory")
    op.drop_table("gift_code_inventory")

    sa.Enum(name=CHECKOUT_SESSION_STATUS_ENUM).drop(op.get_bind(), checkfirst=True)
    sa.Enum(name=GIFT_CODE_STATUS_ENUM).drop(op.get_bind(), checkfirst=True)
