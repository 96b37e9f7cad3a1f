"""Collaborator-facing gift code inventory operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from giftbridge_api.core.settings import settings
from giftbridge_api.models.gift_code import GiftCode, GiftCodeStatusEnum
from giftbridge_api.services.errors import (
    ConflictError,
    ConflictReason,
    FieldError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from giftbridge_api.services.inventory.allocator import AllocationResult, GiftCodeAllocator
from giftbridge_api.services.inventory.store import GiftCodeStore
from giftbridge_api.services.validation import (
    check_amount,
    check_future,
    check_gift_code,
    ensure_aware,
    parse_metadata,
    raise_for_errors,
)

GIFT_CODE_TRANSITIONS: dict[GiftCodeStatusEnum, frozenset[GiftCodeStatusEnum]] = {
    GiftCodeStatusEnum.AVAILABLE: frozenset(
        {GiftCodeStatusEnum.ALLOCATED, GiftCodeStatusEnum.EXPIRED, GiftCodeStatusEnum.FAILED}
    ),
    GiftCodeStatusEnum.ALLOCATED: frozenset(
        {GiftCodeStatusEnum.REDEEMED, GiftCodeStatusEnum.EXPIRED, GiftCodeStatusEnum.FAILED}
    ),
    GiftCodeStatusEnum.REDEEMED: frozenset(),
    GiftCodeStatusEnum.EXPIRED: frozenset(),
    GiftCodeStatusEnum.FAILED: frozenset(),
}

EXPIRABLE_CODE_STATUSES = frozenset({GiftCodeStatusEnum.AVAILABLE, GiftCodeStatusEnum.ALLOCATED})


def can_transition_code(current: GiftCodeStatusEnum, requested: GiftCodeStatusEnum) -> bool:
    return requested in GIFT_CODE_TRANSITIONS[current]


@dataclass
class InventoryStats:
    total_codes: int
    available_codes: int
    allocated_codes: int
    redeemed_codes: int
    expired_codes: int
    failed_codes: int
    total_value: int
    available_value: int
    value_by_status: dict[str, int] = field(default_factory=dict)
    denominations: dict[str, int] = field(default_factory=dict)


@dataclass
class BulkImportError:
    code: str
    error: str


@dataclass
class BulkImportResult:
    added: list[GiftCode] = field(default_factory=list)
    errors: list[BulkImportError] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.errors)


class GiftCodeInventoryService:
    """Inventory import, allocation, redemption and reporting."""

    def __init__(self, session: AsyncSession, *, store: GiftCodeStore | None = None) -> None:
        self._store = store or GiftCodeStore(session)
        self._allocator = GiftCodeAllocator(self._store)

    async def add_code(
        self,
        code: str,
        denomination: int,
        *,
        expires_at: datetime | None = None,
        metadata: Any = None,
        now: datetime | None = None,
    ) -> GiftCode:
        now = now or datetime.now(timezone.utc)
        errors = check_gift_code(code)
        errors += check_amount(denomination, "denomination", allow_zero=False, label="Denomination")
        errors += check_future(expires_at, "expiresAt", now=now)
        parsed_metadata, metadata_errors = parse_metadata(metadata)
        errors += metadata_errors
        raise_for_errors(errors, operation="inventory.add_code")
        if await self._store.get_by_code(code) is not None:
            raise ConflictError(
                "Gift code already exists",
                reason=ConflictReason.DUPLICATE_CODE,
                operation="inventory.add_code",
            )

        gift_code = GiftCode(
            code=code,
            denomination=denomination,
            status=GiftCodeStatusEnum.AVAILABLE,
            created_at=now,
            expires_at=ensure_aware(expires_at)
            if expires_at
            else now + timedelta(days=settings.gift_code_default_ttl_days),
            metadata_json=parsed_metadata or {},
        )
        stored = await self._store.insert(gift_code)
        logger.info(
            "Gift code added to inventory",
            gift_code_id=str(stored.id),
            code=code,
            denomination=denomination,
        )
        return stored

    async def add_codes(
        self,
        codes: Iterable[str],
        denomination: int,
        *,
        expires_at: datetime | None = None,
        now: datetime | None = None,
    ) -> BulkImportResult:
        """Import each code independently; one bad code never blocks the rest."""

        codes = list(codes)
        now = now or datetime.now(timezone.utc)
        errors: list[FieldError] = []
        if not codes:
            errors.append(FieldError("codes", "codes array is required and must not be empty"))
        errors += check_amount(denomination, "denomination", allow_zero=False, label="Denomination")
        errors += check_future(expires_at, "expiresAt", now=now)
        raise_for_errors(errors, operation="inventory.add_codes")

        result = BulkImportResult()
        added_ids: list[UUID] = []
        for code in codes:
            try:
                stored = await self.add_code(code, denomination, expires_at=expires_at, now=now)
            except (ValidationError, ConflictError) as exc:
                result.errors.append(BulkImportError(code=code, error=exc.message))
                continue
            added_ids.append(stored.id)

        # rows added before a failed insert were expired by its rollback
        for code_id in added_ids:
            stored = await self._store.get_by_id(code_id)
            if stored is not None:
                result.added.append(stored)

        logger.info(
            "Gift code bulk import finished",
            added=len(result.added),
            rejected=len(result.errors),
            denomination=denomination,
        )
        return result

    async def allocate(self, target_amount_cents: int, *, now: datetime | None = None) -> AllocationResult:
        return await self._allocator.allocate(target_amount_cents, now=now)

    async def get_by_code(self, code: str) -> GiftCode | None:
        return await self._store.get_by_code(code)

    async def get_by_id(self, code_id: UUID) -> GiftCode | None:
        return await self._store.get_by_id(code_id)

    async def list_all(self) -> list[GiftCode]:
        return await self._store.list_all()

    async def list_by_status(self, status: GiftCodeStatusEnum) -> list[GiftCode]:
        return await self._store.list_by_status(status)

    async def update_status(
        self,
        code_id: UUID,
        status: GiftCodeStatusEnum,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> GiftCode:
        """Move a code forward along the status graph."""

        gift_code = await self._require(code_id, operation="inventory.update_status")
        current = gift_code.status
        if not can_transition_code(current, status):
            raise InvalidTransitionError("gift code", current, status).with_operation("inventory.update_status")

        kwargs: dict[str, Any] = {}
        if metadata is not None:
            kwargs["metadata"] = {**(gift_code.metadata_json or {}), **metadata}
        updated = await self._store.compare_and_set_status(code_id, expected=current, new=status, **kwargs)
        if not updated:
            raise ConflictError(
                "Gift code status changed concurrently",
                reason=ConflictReason.CONCURRENT_UPDATE,
                operation="inventory.update_status",
            )

        logger.info(
            "Gift code status updated",
            gift_code_id=str(code_id),
            from_status=current.value,
            to_status=status.value,
        )
        return await self._require(code_id, operation="inventory.update_status")

    async def redeem(self, code_id: UUID, order_id: str, *, now: datetime | None = None) -> GiftCode:
        """Mark an allocated, unexpired code as redeemed against ``order_id``."""

        now = now or datetime.now(timezone.utc)
        if not isinstance(order_id, str) or not order_id.strip():
            raise ValidationError([FieldError("orderId", "Order ID is required")], operation="inventory.redeem")

        gift_code = await self._require(code_id, operation="inventory.redeem")
        if gift_code.status != GiftCodeStatusEnum.ALLOCATED:
            raise ConflictError(
                f"Cannot redeem gift code: Invalid status {gift_code.status.value}",
                reason=ConflictReason.INVALID_TRANSITION,
                operation="inventory.redeem",
            )
        if ensure_aware(gift_code.expires_at) < now:
            raise ConflictError(
                "Cannot redeem gift code: Code expired",
                reason=ConflictReason.INVALID_TRANSITION,
                operation="inventory.redeem",
            )

        return await self.update_status(
            code_id,
            GiftCodeStatusEnum.REDEEMED,
            metadata={"orderId": order_id, "redeemedAt": now.isoformat()},
        )

    async def sweep_expired(self, *, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        count = await self._store.expire_due(now, EXPIRABLE_CODE_STATUSES)
        if count:
            logger.info("Expired gift codes swept", count=count)
        return count

    async def stats(self) -> InventoryStats:
        aggregate = await self._store.aggregate()
        counts = aggregate.counts
        values = aggregate.values
        return InventoryStats(
            total_codes=sum(counts.values()),
            available_codes=counts.get(GiftCodeStatusEnum.AVAILABLE, 0),
            allocated_codes=counts.get(GiftCodeStatusEnum.ALLOCATED, 0),
            redeemed_codes=counts.get(GiftCodeStatusEnum.REDEEMED, 0),
            expired_codes=counts.get(GiftCodeStatusEnum.EXPIRED, 0),
            failed_codes=counts.get(GiftCodeStatusEnum.FAILED, 0),
            total_value=sum(values.values()),
            available_value=values.get(GiftCodeStatusEnum.AVAILABLE, 0),
            value_by_status={status.value: values.get(status, 0) for status in GiftCodeStatusEnum},
            denominations={str(denomination): count for denomination, count in aggregate.denominations.items()},
        )

    async def _require(self, code_id: UUID, *, operation: str) -> GiftCode:
        gift_code = await self._store.get_by_id(code_id)
        if gift_code is None:
            raise NotFoundError(f"Gift code {code_id} not found", operation=operation)
        return gift_code


__all__ = [
    "BulkImportError",
    "BulkImportResult",
    "EXPIRABLE_CODE_STATUSES",
    "GIFT_CODE_TRANSITIONS",
    "GiftCodeInventoryService",
    "InventoryStats",
    "can_transition_code",
]
