"""Persistence access for the gift code inventory table."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from giftbridge_api.models.gift_code import GiftCode, GiftCodeStatusEnum
from giftbridge_api.services.errors import ConflictError, ConflictReason, PersistenceError

_UNSET: Any = object()


@dataclass
class InventoryAggregate:
    """Raw per-status and per-denomination aggregates read from the store."""

    counts: dict[GiftCodeStatusEnum, int] = field(default_factory=dict)
    values: dict[GiftCodeStatusEnum, int] = field(default_factory=dict)
    denominations: dict[int, int] = field(default_factory=dict)


class GiftCodeStore:
    """Thin data-access layer; every write is a single committed round trip."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            await self._session.rollback()
            raise PersistenceError(operation, exc) from exc

    async def insert(self, gift_code: GiftCode) -> GiftCode:
        async with self._guard("gift_codes.insert"):
            self._session.add(gift_code)
            try:
                await self._session.commit()
            except IntegrityError as exc:
                await self._session.rollback()
                raise ConflictError(
                    "Gift code already exists",
                    reason=ConflictReason.DUPLICATE_CODE,
                    operation="gift_codes.insert",
                ) from exc
        return gift_code

    async def get_by_id(self, code_id: UUID) -> GiftCode | None:
        async with self._guard("gift_codes.get_by_id"):
            stmt = select(GiftCode).where(GiftCode.id == code_id).execution_options(populate_existing=True)
            result = await self._session.execute(stmt)
            return result.scalar_one_or_none()

    async def get_by_code(self, code: str) -> GiftCode | None:
        async with self._guard("gift_codes.get_by_code"):
            stmt = select(GiftCode).where(GiftCode.code == code).execution_options(populate_existing=True)
            result = await self._session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_all(self) -> list[GiftCode]:
        async with self._guard("gift_codes.list_all"):
            stmt = (
                select(GiftCode)
                .order_by(GiftCode.created_at.desc(), GiftCode.id)
                .execution_options(populate_existing=True)
            )
            result = await self._session.execute(stmt)
            return list(result.scalars())

    async def list_by_status(
        self,
        status: GiftCodeStatusEnum,
        *,
        unexpired_at: datetime | None = None,
    ) -> list[GiftCode]:
        """Scan codes in ``status``; with ``unexpired_at`` only those expiring later."""

        async with self._guard("gift_codes.list_by_status"):
            stmt = select(GiftCode).where(GiftCode.status == status)
            if unexpired_at is not None:
                stmt = stmt.where(GiftCode.expires_at > unexpired_at)
            stmt = stmt.order_by(GiftCode.denomination, GiftCode.id).execution_options(populate_existing=True)
            result = await self._session.execute(stmt)
            return list(result.scalars())

    async def compare_and_set_status(
        self,
        code_id: UUID,
        *,
        expected: GiftCodeStatusEnum,
        new: GiftCodeStatusEnum,
        metadata: dict[str, Any] = _UNSET,
    ) -> bool:
        """Move a code from ``expected`` to ``new``; False when the row no longer matches."""

        values: dict[str, Any] = {"status": new}
        if metadata is not _UNSET:
            values["metadata_json"] = metadata
        async with self._guard("gift_codes.compare_and_set_status"):
            stmt = (
                update(GiftCode)
                .where(GiftCode.id == code_id, GiftCode.status == expected)
                .values(**values)
                .execution_options(synchronize_session="evaluate")
            )
            result = await self._session.execute(stmt)
            await self._session.commit()
            return int(getattr(result, "rowcount", 0) or 0) == 1

    async def claim(self, code_id: UUID) -> bool:
        return await self.compare_and_set_status(
            code_id,
            expected=GiftCodeStatusEnum.AVAILABLE,
            new=GiftCodeStatusEnum.ALLOCATED,
        )

    async def expire_due(self, now: datetime, statuses: frozenset[GiftCodeStatusEnum]) -> int:
        async with self._guard("gift_codes.expire_due"):
            stmt = (
                update(GiftCode)
                .where(GiftCode.status.in_(statuses), GiftCode.expires_at <= now)
                .values(status=GiftCodeStatusEnum.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            result = await self._session.execute(stmt)
            await self._session.commit()
            return int(getattr(result, "rowcount", 0) or 0)

    async def aggregate(self) -> InventoryAggregate:
        aggregate = InventoryAggregate()
        async with self._guard("gift_codes.aggregate"):
            status_rows = await self._session.execute(
                select(
                    GiftCode.status,
                    func.count(GiftCode.id),
                    func.coalesce(func.sum(GiftCode.denomination), 0),
                ).group_by(GiftCode.status)
            )
            for status, count, value in status_rows.all():
                aggregate.counts[status] = int(count or 0)
                aggregate.values[status] = int(value or 0)

            denomination_rows = await self._session.execute(
                select(GiftCode.denomination, func.count(GiftCode.id))
                .group_by(GiftCode.denomination)
                .order_by(GiftCode.denomination)
            )
            for denomination, count in denomination_rows.all():
                aggregate.denominations[int(denomination)] = int(count or 0)
        return aggregate


__all__ = ["GiftCodeStore", "InventoryAggregate"]
