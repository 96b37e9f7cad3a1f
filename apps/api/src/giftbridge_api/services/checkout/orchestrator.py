"""Payment confirmation orchestration: session to PAID, then gift code allocation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from giftbridge_api.models.checkout_session import CheckoutSession, CheckoutSessionStatusEnum
from giftbridge_api.models.gift_code import GiftCode
from giftbridge_api.services.errors import (
    ConflictError,
    ConflictReason,
    FieldError,
    GiftBridgeError,
    InvalidTransitionError,
    NotFoundError,
)
from giftbridge_api.services.inventory.service import GiftCodeInventoryService
from giftbridge_api.services.sessions.lifecycle import CheckoutSessionLifecycle
from giftbridge_api.services.validation import check_amount, raise_for_errors, require_session_id

_REPLAYABLE_STATUSES = frozenset(
    {
        CheckoutSessionStatusEnum.PROCESSING,
        CheckoutSessionStatusEnum.FULFILLED,
        CheckoutSessionStatusEnum.COMPLETED,
    }
)


@dataclass
class PaymentConfirmation:
    """Allocation attached to a confirmed checkout session."""

    session: CheckoutSession
    allocated_codes: list[GiftCode] = field(default_factory=list)
    allocated_cents: int = 0
    remaining_cents: int = 0
    replayed: bool = False


class PaymentConfirmationOrchestrator:
    """Drives a session through payment and records the gift codes claimed for it."""

    # meta: checkout: payment-confirmation

    def __init__(
        self,
        session: AsyncSession,
        *,
        lifecycle: CheckoutSessionLifecycle | None = None,
        inventory: GiftCodeInventoryService | None = None,
    ) -> None:
        self._lifecycle = lifecycle or CheckoutSessionLifecycle(session)
        self._inventory = inventory or GiftCodeInventoryService(session)

    async def confirm_payment(
        self,
        session_id: str,
        transaction_hash: str,
        amount_cents: int | None = None,
        *,
        now: datetime | None = None,
    ) -> PaymentConfirmation:
        """Mark the session paid and allocate codes for whatever top-up is still outstanding.

        Confirming a session that already moved past PAID returns the
        allocation recorded on it without touching inventory.
        """

        operation = "checkout.confirm_payment"
        require_session_id(session_id, operation=operation)
        errors: list[FieldError] = []
        if not isinstance(transaction_hash, str) or not transaction_hash.strip():
            errors.append(FieldError("transactionHash", "transactionHash is required"))
        if amount_cents is not None:
            errors += check_amount(amount_cents, "amount", allow_zero=False, label="Amount")
        raise_for_errors(errors, operation=operation)

        now = now or datetime.now(timezone.utc)
        checkout_session = await self._lifecycle.get(session_id)
        if checkout_session is None:
            raise NotFoundError("Checkout session not found", operation=operation)

        status = checkout_session.status
        if status in _REPLAYABLE_STATUSES:
            logger.info(
                "Payment confirmation replayed for settled session",
                session_id=session_id,
                status=status.value,
            )
            return await self._recorded_confirmation(checkout_session)

        payment_metadata: dict[str, Any] = {"transactionHash": transaction_hash}
        if amount_cents is not None:
            payment_metadata["paidAmountCents"] = amount_cents

        if status == CheckoutSessionStatusEnum.CREATED:
            checkout_session = await self._lifecycle.transition(
                session_id, CheckoutSessionStatusEnum.PENDING, now=now
            )
            status = checkout_session.status
        if status == CheckoutSessionStatusEnum.PENDING:
            checkout_session = await self._lifecycle.transition(
                session_id,
                CheckoutSessionStatusEnum.PAID,
                metadata=payment_metadata,
                now=now,
            )
            status = checkout_session.status
        if status != CheckoutSessionStatusEnum.PAID:
            raise InvalidTransitionError("session", status, CheckoutSessionStatusEnum.PAID).with_operation(operation)

        recorded = dict(checkout_session.metadata_json or {})
        code_ids: list[str] = list(recorded.get("allocatedCodeIds") or [])
        allocated_cents = int(recorded.get("allocatedCents") or 0)
        outstanding = max(0, checkout_session.top_up_amount_cents - allocated_cents)

        new_codes: list[GiftCode] = []
        if outstanding > 0:
            result = await self._inventory.allocate(outstanding, now=now)
            if not result.success:
                logger.warning(
                    "Gift code allocation failed for paid session",
                    session_id=session_id,
                    outstanding_cents=outstanding,
                    reason=result.reason.value if result.reason else None,
                )
                raise ConflictError(
                    f"Failed to allocate gift codes: {result.error}",
                    reason=result.reason or ConflictReason.INVENTORY_EXHAUSTED,
                    operation=operation,
                )
            new_codes = list(result.selected_codes)
            allocated_cents += result.total_allocated
            code_ids.extend(str(code.id) for code in new_codes)

        remaining = max(0, checkout_session.top_up_amount_cents - allocated_cents)
        patch = {
            **payment_metadata,
            "allocatedCodeIds": code_ids,
            "allocatedCents": allocated_cents,
        }
        try:
            if remaining == 0:
                checkout_session = await self._lifecycle.transition(
                    session_id,
                    CheckoutSessionStatusEnum.PROCESSING,
                    metadata=patch,
                    now=now,
                )
            else:
                checkout_session = await self._lifecycle.annotate(
                    session_id,
                    patch,
                    expected_status=CheckoutSessionStatusEnum.PAID,
                    now=now,
                )
        except GiftBridgeError:
            logger.error(
                "Allocated gift codes could not be recorded on session",
                session_id=session_id,
                gift_code_ids=[str(code.id) for code in new_codes],
            )
            raise

        logger.info(
            "Payment confirmed and gift codes allocated",
            session_id=session_id,
            allocated_cents=allocated_cents,
            remaining_cents=remaining,
            code_count=len(code_ids),
        )
        previous_codes = await self._load_codes(code_ids[: len(code_ids) - len(new_codes)])
        return PaymentConfirmation(
            session=checkout_session,
            allocated_codes=previous_codes + new_codes,
            allocated_cents=allocated_cents,
            remaining_cents=remaining,
        )

    async def _recorded_confirmation(self, checkout_session: CheckoutSession) -> PaymentConfirmation:
        recorded = checkout_session.metadata_json or {}
        allocated_cents = int(recorded.get("allocatedCents") or 0)
        return PaymentConfirmation(
            session=checkout_session,
            allocated_codes=await self._load_codes(recorded.get("allocatedCodeIds") or []),
            allocated_cents=allocated_cents,
            remaining_cents=max(0, checkout_session.top_up_amount_cents - allocated_cents),
            replayed=True,
        )

    async def _load_codes(self, code_ids: list[str]) -> list[GiftCode]:
        codes: list[GiftCode] = []
        for code_id in code_ids:
            gift_code = await self._inventory.get_by_id(UUID(str(code_id)))
            if gift_code is not None:
                codes.append(gift_code)
        return codes


__all__ = ["PaymentConfirmation", "PaymentConfirmationOrchestrator"]
