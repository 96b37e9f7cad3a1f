"""Persistence access for checkout sessions."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from giftbridge_api.models.checkout_session import CheckoutSession, CheckoutSessionStatusEnum
from giftbridge_api.services.errors import PersistenceError

_UNSET: Any = object()


@dataclass
class SessionAggregate:
    counts: dict[CheckoutSessionStatusEnum, int] = field(default_factory=dict)
    total_top_up_cents: int = 0


class CheckoutSessionStore:
    """Data access for ``checkout_sessions``; status writes are conditional."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            await self._session.rollback()
            raise PersistenceError(operation, exc) from exc

    async def insert(self, checkout_session: CheckoutSession) -> CheckoutSession:
        async with self._guard("checkout_sessions.insert"):
            self._session.add(checkout_session)
            await self._session.commit()
            await self._session.refresh(checkout_session)
        return checkout_session

    async def get(self, session_id: str) -> CheckoutSession | None:
        async with self._guard("checkout_sessions.get"):
            stmt = (
                select(CheckoutSession)
                .where(CheckoutSession.session_id == session_id)
                .execution_options(populate_existing=True)
            )
            result = await self._session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_by_status(self, status: CheckoutSessionStatusEnum) -> list[CheckoutSession]:
        async with self._guard("checkout_sessions.list_by_status"):
            stmt = (
                select(CheckoutSession)
                .where(CheckoutSession.status == status)
                .order_by(CheckoutSession.created_at.desc(), CheckoutSession.session_id)
                .execution_options(populate_existing=True)
            )
            result = await self._session.execute(stmt)
            return list(result.scalars())

    async def list_due(
        self,
        now: datetime,
        statuses: frozenset[CheckoutSessionStatusEnum],
    ) -> list[tuple[str, CheckoutSessionStatusEnum]]:
        """Return ``(session_id, status)`` pairs in ``statuses`` whose expiry passed."""

        async with self._guard("checkout_sessions.list_due"):
            stmt = (
                select(CheckoutSession.session_id, CheckoutSession.status)
                .where(CheckoutSession.status.in_(statuses), CheckoutSession.expires_at < now)
                .order_by(CheckoutSession.expires_at)
            )
            result = await self._session.execute(stmt)
            return [(session_id, status) for session_id, status in result.all()]

    async def compare_and_set_status(
        self,
        session_id: str,
        *,
        expected: CheckoutSessionStatusEnum,
        new: CheckoutSessionStatusEnum,
        metadata: dict[str, Any] | None = _UNSET,
        now: datetime | None = None,
    ) -> bool:
        """Apply ``new`` only while the row still reads ``expected``."""

        values: dict[str, Any] = {"status": new}
        if metadata is not _UNSET:
            values["metadata_json"] = metadata
        if now is not None:
            values["updated_at"] = now
        async with self._guard("checkout_sessions.compare_and_set_status"):
            stmt = (
                update(CheckoutSession)
                .where(CheckoutSession.session_id == session_id, CheckoutSession.status == expected)
                .values(**values)
                .execution_options(synchronize_session="evaluate")
            )
            result = await self._session.execute(stmt)
            await self._session.commit()
            return int(getattr(result, "rowcount", 0) or 0) == 1

    async def aggregate(self) -> SessionAggregate:
        aggregate = SessionAggregate()
        async with self._guard("checkout_sessions.aggregate"):
            rows = await self._session.execute(
                select(
                    CheckoutSession.status,
                    func.count(CheckoutSession.id),
                    func.coalesce(func.sum(CheckoutSession.top_up_amount_cents), 0),
                ).group_by(CheckoutSession.status)
            )
            for status, count, top_up in rows.all():
                aggregate.counts[status] = int(count or 0)
                aggregate.total_top_up_cents += int(top_up or 0)
        return aggregate


__all__ = ["CheckoutSessionStore", "SessionAggregate"]
