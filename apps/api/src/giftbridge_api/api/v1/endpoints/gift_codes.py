"""Administrative gift code inventory endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from giftbridge_api.api.dependencies.security import require_inventory_admin_api_key
from giftbridge_api.api.errors import to_http_exception
from giftbridge_api.db.session import get_session
from giftbridge_api.models.gift_code import GiftCode, GiftCodeStatusEnum
from giftbridge_api.observability.inventory import get_inventory_store
from giftbridge_api.services.errors import GiftBridgeError
from giftbridge_api.services.inventory import GiftCodeInventoryService

router = APIRouter(
    prefix="/admin/gift-codes",
    tags=["Gift Code Inventory"],
    dependencies=[Depends(require_inventory_admin_api_key)],
)


class GiftCodeCreateRequest(BaseModel):
    code: str
    denomination: int
    expires_at: datetime | None = Field(None, alias="expiresAt")
    metadata: dict[str, Any] | str | None = None

    class Config:
        populate_by_name = True


class GiftCodeBulkRequest(BaseModel):
    codes: list[str]
    denomination: int
    expires_at: datetime | None = Field(None, alias="expiresAt")

    class Config:
        populate_by_name = True


class GiftCodeStatusRequest(BaseModel):
    status: GiftCodeStatusEnum


class GiftCodeRedeemRequest(BaseModel):
    order_id: str = Field(..., alias="orderId")

    class Config:
        populate_by_name = True


class AllocationRequest(BaseModel):
    target_amount_cents: int = Field(..., alias="targetAmountCents")

    class Config:
        populate_by_name = True


class GiftCodeResponse(BaseModel):
    id: UUID
    code: str
    denomination: int
    status: GiftCodeStatusEnum
    created_at: datetime | None = Field(None, alias="createdAt")
    expires_at: datetime = Field(alias="expiresAt")
    metadata: dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True
        use_enum_values = True


class BulkImportErrorResponse(BaseModel):
    code: str
    error: str


class GiftCodeBulkResponse(BaseModel):
    success: bool = True
    message: str
    gift_codes: list[GiftCodeResponse] = Field(alias="giftCodes")
    errors: list[BulkImportErrorResponse] = Field(default_factory=list)

    class Config:
        populate_by_name = True


class AllocationResponse(BaseModel):
    success: bool
    target_amount_cents: int = Field(alias="targetAmountCents")
    total_allocated: int = Field(alias="totalAllocated")
    remaining_amount: int = Field(alias="remainingAmount")
    allocated_codes: list[GiftCodeResponse] = Field(alias="allocatedCodes")

    class Config:
        populate_by_name = True


class InventoryStatsResponse(BaseModel):
    total_codes: int = Field(alias="totalCodes")
    available_codes: int = Field(alias="availableCodes")
    allocated_codes: int = Field(alias="allocatedCodes")
    redeemed_codes: int = Field(alias="redeemedCodes")
    expired_codes: int = Field(alias="expiredCodes")
    failed_codes: int = Field(alias="failedCodes")
    total_value: int = Field(alias="totalValue")
    available_value: int = Field(alias="availableValue")
    value_by_status: dict[str, int] = Field(alias="valueByStatus")
    denominations: dict[str, int]

    class Config:
        populate_by_name = True


def serialize_gift_code(gift_code: GiftCode) -> GiftCodeResponse:
    return GiftCodeResponse(
        id=gift_code.id,
        code=gift_code.code,
        denomination=gift_code.denomination,
        status=gift_code.status,
        createdAt=gift_code.created_at,
        expiresAt=gift_code.expires_at,
        metadata=gift_code.metadata_json or {},
    )


@router.post("", response_model=GiftCodeResponse, status_code=status.HTTP_201_CREATED)
async def add_gift_code(
    payload: GiftCodeCreateRequest,
    session: AsyncSession = Depends(get_session),
) -> GiftCodeResponse:
    service = GiftCodeInventoryService(session)
    try:
        gift_code = await service.add_code(
            payload.code,
            payload.denomination,
            expires_at=payload.expires_at,
            metadata=payload.metadata,
        )
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    return serialize_gift_code(gift_code)


@router.post(
    "/bulk",
    response_model=GiftCodeBulkResponse,
    status_code=status.HTTP_201_CREATED,
    responses={207: {"model": GiftCodeBulkResponse, "description": "Some codes were rejected"}},
)
async def add_gift_codes_bulk(
    payload: GiftCodeBulkRequest,
    session: AsyncSession = Depends(get_session),
):
    service = GiftCodeInventoryService(session)
    try:
        result = await service.add_codes(payload.codes, payload.denomination, expires_at=payload.expires_at)
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc

    response = GiftCodeBulkResponse(
        message="Some gift codes were added successfully" if result.partial else "All gift codes added successfully",
        giftCodes=[serialize_gift_code(code) for code in result.added],
        errors=[BulkImportErrorResponse(code=item.code, error=item.error) for item in result.errors],
    )
    if result.partial:
        return JSONResponse(
            status_code=status.HTTP_207_MULTI_STATUS,
            content=response.model_dump(mode="json", by_alias=True),
        )
    return response


@router.get("", response_model=list[GiftCodeResponse])
async def list_gift_codes(
    status_filter: GiftCodeStatusEnum | None = Query(None, alias="status"),
    session: AsyncSession = Depends(get_session),
) -> list[GiftCodeResponse]:
    service = GiftCodeInventoryService(session)
    try:
        if status_filter is None:
            codes = await service.list_all()
        else:
            codes = await service.list_by_status(status_filter)
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    return [serialize_gift_code(code) for code in codes]


@router.get("/stats", response_model=InventoryStatsResponse)
async def get_inventory_stats(session: AsyncSession = Depends(get_session)) -> InventoryStatsResponse:
    try:
        stats = await GiftCodeInventoryService(session).stats()
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    return InventoryStatsResponse(
        totalCodes=stats.total_codes,
        availableCodes=stats.available_codes,
        allocatedCodes=stats.allocated_codes,
        redeemedCodes=stats.redeemed_codes,
        expiredCodes=stats.expired_codes,
        failedCodes=stats.failed_codes,
        totalValue=stats.total_value,
        availableValue=stats.available_value,
        valueByStatus=stats.value_by_status,
        denominations=stats.denominations,
    )


@router.get("/observability", summary="Allocation and sweep counters")
async def get_inventory_observability() -> dict[str, object]:
    return get_inventory_store().snapshot().as_dict()


@router.post("/allocate", response_model=AllocationResponse)
async def allocate_gift_codes(
    payload: AllocationRequest,
    session: AsyncSession = Depends(get_session),
) -> AllocationResponse:
    service = GiftCodeInventoryService(session)
    try:
        result = await service.allocate(payload.target_amount_cents)
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    if not result.success:
        raise HTTPException(
            status_code=422,
            detail={"error": result.error, "reason": result.reason.value if result.reason else None},
        )
    return AllocationResponse(
        success=True,
        targetAmountCents=payload.target_amount_cents,
        totalAllocated=result.total_allocated,
        remainingAmount=result.remaining_amount,
        allocatedCodes=[serialize_gift_code(code) for code in result.selected_codes],
    )


@router.post("/sweep-expired")
async def sweep_expired_gift_codes(session: AsyncSession = Depends(get_session)) -> dict[str, int]:
    try:
        expired = await GiftCodeInventoryService(session).sweep_expired()
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    return {"expired": expired}


@router.get("/{code_id}", response_model=GiftCodeResponse)
async def get_gift_code(code_id: UUID, session: AsyncSession = Depends(get_session)) -> GiftCodeResponse:
    try:
        gift_code = await GiftCodeInventoryService(session).get_by_id(code_id)
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    if gift_code is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"error": "Gift code not found"})
    return serialize_gift_code(gift_code)


@router.put("/{code_id}/status", response_model=GiftCodeResponse)
async def update_gift_code_status(
    code_id: UUID,
    payload: GiftCodeStatusRequest,
    session: AsyncSession = Depends(get_session),
) -> GiftCodeResponse:
    try:
        gift_code = await GiftCodeInventoryService(session).update_status(code_id, payload.status)
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    return serialize_gift_code(gift_code)


@router.post("/{code_id}/redeem", response_model=GiftCodeResponse)
async def redeem_gift_code(
    code_id: UUID,
    payload: GiftCodeRedeemRequest,
    session: AsyncSession = Depends(get_session),
) -> GiftCodeResponse:
    try:
        gift_code = await GiftCodeInventoryService(session).redeem(code_id, payload.order_id)
    except GiftBridgeError as exc:
        raise to_http_exception(exc) from exc
    return serialize_gift_code(gift_code)
