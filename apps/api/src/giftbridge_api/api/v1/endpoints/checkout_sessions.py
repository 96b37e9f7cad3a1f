"""Checkout session API endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from giftbridge_api.api.dependencies.security import require_checkout_api_key
from giftbridge_api.api.errors import to_http_exception
from giftbridge_api.db.session import get_session
from giftbridge_api.models.checkout_session import CheckoutSession, CheckoutSessionStatusEnum
from giftbridge_api.services.errors import GiftBridgeError
from giftbridge_api.services.sessions import CheckoutSessionLifecycle

router = APIRouter(
    prefix="/checkout-sessions",
    tags=["Checkout Sessions"],
    dependencies=[Depends(require_checkout_api_key)],
)


class CreateCheckoutSessionRequest(BaseModel):
    # Loosely typed; CheckoutSessionLifecycle.create reports every bad field at once.
    amazon_url: Any = Field(None, alias="amazonUrl")
    cart_total_cents: Any = Field(None, alias="cartTotalCents")
    current_balance_cents: Any = Field(None, alias="currentBalanceCents")
    user_id: Any = Field(None, alias="userId")
    metadata: Any = None

    class Config:
        populate_by_name = True


class UpdateSessionStatusRequest(BaseModel):
    status: CheckoutSessionStatusEnum
    metadata: dict[str, Any] | str | None = None


class CheckoutSessionResponse(BaseModel):
    session_id: str = Field(alias="sessionId")
    user_id: str | None = Field(None, alias="userId")
    amazon_url: str = Field(alias="amazonUrl")
    cart_total_cents: int = Field(alias="cartTotalCents")
    current_balance_cents: int = Field(alias="currentBalanceCents")
    top_up_amount_cents: int = Field(alias="topUpAmountCents")
    status: CheckoutSessionStatusEnum
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    expires_at: datetime = Field(alias="expiresAt")
    metadata: dict[str, Any] | None = None

    class Config:
        populate_by_name = True
        use_enum_values = True


class SessionStatisticsResponse(BaseModel):
    total_sessions: int = Field(alias="totalSessions")
    status_counts: dict[str, int] = Field(alias="statusCounts")
    average_top_up_cents: int = Field(alias="averageTopUpCents")
    total_top_up_cents: int = Field(alias="totalTopUpCents")
    expired_sessions: int = Field(alias="expiredSessions")

    class Config:
        populate_by_name = True


class SweepResponse(BaseModel):
    expired: int


def serialize_session(checkout_session: CheckoutSession) -> CheckoutSessionResponse:
    return CheckoutSessionResponse(
        sessionId=checkout_session.session_id,
        userId=checkout_session.user_id,
        amazonUrl=checkout_session.source_url,
        cartTotalCents=checkout_session.cart_total_cents,
        currentBalanceCents=checkout_session.current_balance_cents,
        topUpAmountCents=checkout_session.top_up_amount_cents,
        status=checkout_session.status,
        createdAt=checkout_session.created_at,
        updatedAt=checkout_session.updated_at,
        expiresAt=checkout_session.expires_at,
        metadata=checkout_session.metadata_json,
    )


@router.post("", response_model=CheckoutSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_checkout_session(
    payload: CreateCheckoutSessionRequest,
    session: AsyncSession = Depends(get_session),
) -> CheckoutSessionResponse:
    lifecycle = CheckoutSessionLifecycle(session)
    try:
        checkout_session = await lifecycle.create(
            payload.amazon_url,
            payload.cart_total_cents,
            payload.current_balance_cents,
            user_id=payload.user_id,
            metadata=payload.metadata,
        )
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    return serialize_session(checkout_session)


@router.get("", response_model=list[CheckoutSessionResponse])
async def list_checkout_sessions(
    status_filter: CheckoutSessionStatusEnum = Query(..., alias="status"),
    session: AsyncSession = Depends(get_session),
) -> list[CheckoutSessionResponse]:
    lifecycle = CheckoutSessionLifecycle(session)
    try:
        sessions = await lifecycle.list_by_status(status_filter)
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    return [serialize_session(item) for item in sessions]


@router.get("/statistics", response_model=SessionStatisticsResponse)
async def get_session_statistics(session: AsyncSession = Depends(get_session)) -> SessionStatisticsResponse:
    try:
        stats = await CheckoutSessionLifecycle(session).statistics()
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    return SessionStatisticsResponse(
        totalSessions=stats.total_sessions,
        statusCounts=stats.status_counts,
        averageTopUpCents=stats.average_top_up_cents,
        totalTopUpCents=stats.total_top_up_cents,
        expiredSessions=stats.expired_sessions,
    )


@router.post("/sweep-expired", response_model=SweepResponse)
async def sweep_expired_sessions(session: AsyncSession = Depends(get_session)) -> SweepResponse:
    try:
        expired = await CheckoutSessionLifecycle(session).sweep_expired()
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    return SweepResponse(expired=expired)


@router.get("/{session_id}", response_model=CheckoutSessionResponse)
async def get_checkout_session(
    session_id: str,
    session: AsyncSession = Depends(get_session),
) -> CheckoutSessionResponse:
    try:
        checkout_session = await CheckoutSessionLifecycle(session).get(session_id)
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    if checkout_session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"error": "Session not found"})
    return serialize_session(checkout_session)


@router.put("/{session_id}/status", response_model=CheckoutSessionResponse)
async def update_checkout_session_status(
    session_id: str,
    payload: UpdateSessionStatusRequest,
    session: AsyncSession = Depends(get_session),
) -> CheckoutSessionResponse:
    lifecycle = CheckoutSessionLifecycle(session)
    try:
        checkout_session = await lifecycle.transition(session_id, payload.status, metadata=payload.metadata)
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    return serialize_session(checkout_session)
