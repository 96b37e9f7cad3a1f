"""Inbound payment webhooks."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from giftbridge_api.api.dependencies.security import require_checkout_api_key
from giftbridge_api.api.errors import to_http_exception
from giftbridge_api.db.session import get_session
from giftbridge_api.models.gift_code import GiftCode
from giftbridge_api.services.checkout import PaymentConfirmationOrchestrator
from giftbridge_api.services.errors import GiftBridgeError

router = APIRouter(prefix="/webhooks", tags=["Webhooks"], dependencies=[Depends(require_checkout_api_key)])


class PaymentConfirmedPayload(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    transaction_hash: str = Field(..., alias="transactionHash")
    amount: int | None = Field(None, description="Paid amount in cents, when the payer reports it")
    status: str | None = None

    class Config:
        populate_by_name = True


class AllocatedCodeResponse(BaseModel):
    id: UUID
    code: str
    denomination: int
    expires_at: datetime = Field(alias="expiresAt")

    class Config:
        populate_by_name = True


class PaymentConfirmedResponse(BaseModel):
    success: bool = True
    message: str
    session_id: str = Field(alias="sessionId")
    status: str
    allocated_amount: int = Field(alias="allocatedAmount")
    remaining_amount: int = Field(alias="remainingAmount")
    allocated_codes: list[AllocatedCodeResponse] = Field(alias="allocatedCodes")
    replayed: bool = False

    class Config:
        populate_by_name = True


def _serialize_code(gift_code: GiftCode) -> AllocatedCodeResponse:
    return AllocatedCodeResponse(
        id=gift_code.id,
        code=gift_code.code,
        denomination=gift_code.denomination,
        expiresAt=gift_code.expires_at,
    )


@router.post("/payment-confirmed", response_model=PaymentConfirmedResponse)
async def payment_confirmed(
    payload: PaymentConfirmedPayload,
    session: AsyncSession = Depends(get_session),
) -> PaymentConfirmedResponse:
    orchestrator = PaymentConfirmationOrchestrator(session)
    try:
        confirmation = await orchestrator.confirm_payment(
            payload.session_id,
            payload.transaction_hash,
            payload.amount,
        )
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc

    message = (
        "Payment already confirmed; returning recorded allocation"
        if confirmation.replayed
        else "Payment confirmed and gift cards allocated successfully"
    )
    return PaymentConfirmedResponse(
        message=message,
        sessionId=confirmation.session.session_id,
        status=confirmation.session.status.value,
        allocatedAmount=confirmation.allocated_cents,
        remainingAmount=confirmation.remaining_cents,
        allocatedCodes=[_serialize_code(code) for code in confirmation.allocated_codes],
        replayed=confirmation.replayed,
    )
