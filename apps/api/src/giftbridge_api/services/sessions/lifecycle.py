"""Checkout session lifecycle: creation, guarded transitions and expiry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from giftbridge_api.core.settings import settings
from giftbridge_api.models.checkout_session import (
    TERMINAL_SESSION_STATUSES,
    CheckoutSession,
    CheckoutSessionStatusEnum,
)
from giftbridge_api.services.errors import (
    ConflictError,
    ConflictReason,
    FieldError,
    InvalidTransitionError,
    NotFoundError,
)
from giftbridge_api.services.sessions.store import CheckoutSessionStore
from giftbridge_api.services.validation import (
    SESSION_ID_PREFIX,
    check_amount,
    is_approved_retailer_url,
    parse_metadata,
    raise_for_errors,
    require_session_id,
)


def generate_session_id() -> str:
    return f"{SESSION_ID_PREFIX}{uuid4().hex}"


@dataclass
class SessionStatistics:
    total_sessions: int
    status_counts: dict[str, int] = field(default_factory=dict)
    average_top_up_cents: int = 0
    total_top_up_cents: int = 0
    expired_sessions: int = 0


class CheckoutSessionLifecycle:
    """Owns checkout session state; every status write is a compare-and-swap."""

    _ALLOWED_TRANSITIONS: dict[CheckoutSessionStatusEnum, set[CheckoutSessionStatusEnum]] = {
        CheckoutSessionStatusEnum.CREATED: {
            CheckoutSessionStatusEnum.PENDING,
            CheckoutSessionStatusEnum.EXPIRED,
            CheckoutSessionStatusEnum.FAILED,
        },
        CheckoutSessionStatusEnum.PENDING: {
            CheckoutSessionStatusEnum.PAID,
            CheckoutSessionStatusEnum.EXPIRED,
            CheckoutSessionStatusEnum.FAILED,
        },
        CheckoutSessionStatusEnum.PAID: {
            CheckoutSessionStatusEnum.PROCESSING,
            CheckoutSessionStatusEnum.FAILED,
        },
        CheckoutSessionStatusEnum.PROCESSING: {
            CheckoutSessionStatusEnum.FULFILLED,
            CheckoutSessionStatusEnum.FAILED,
        },
        CheckoutSessionStatusEnum.FULFILLED: {
            CheckoutSessionStatusEnum.COMPLETED,
            CheckoutSessionStatusEnum.FAILED,
        },
        CheckoutSessionStatusEnum.COMPLETED: set(),
        CheckoutSessionStatusEnum.EXPIRED: set(),
        CheckoutSessionStatusEnum.FAILED: set(),
    }

    def __init__(self, session: AsyncSession, *, store: CheckoutSessionStore | None = None) -> None:
        self._store = store or CheckoutSessionStore(session)

    @classmethod
    def allowed_transitions(cls, status: CheckoutSessionStatusEnum) -> frozenset[CheckoutSessionStatusEnum]:
        return frozenset(cls._ALLOWED_TRANSITIONS[status])

    @classmethod
    def can_transition(cls, current: CheckoutSessionStatusEnum, requested: CheckoutSessionStatusEnum) -> bool:
        return requested in cls._ALLOWED_TRANSITIONS[current]

    @classmethod
    def expirable_statuses(cls) -> frozenset[CheckoutSessionStatusEnum]:
        """Statuses the expiry sweep may overwrite; not limited to EXPIRED edges."""

        return frozenset(
            status for status in cls._ALLOWED_TRANSITIONS if status not in TERMINAL_SESSION_STATUSES
        )

    async def create(
        self,
        amazon_url: str,
        cart_total_cents: int,
        current_balance_cents: int,
        *,
        user_id: str | None = None,
        metadata: Any = None,
        now: datetime | None = None,
    ) -> CheckoutSession:
        """Validate the purchase request and persist a CREATED session.

        The top-up is fixed here as ``max(0, cart - balance)`` and never
        recomputed. All field problems are reported together.
        """

        errors: list[FieldError] = []
        if not isinstance(amazon_url, str) or not amazon_url.strip():
            errors.append(FieldError("amazonUrl", "Amazon URL is required"))
        elif not is_approved_retailer_url(amazon_url):
            errors.append(FieldError("amazonUrl", "URL must be from an approved Amazon domain"))
        errors += check_amount(cart_total_cents, "cartTotalCents", allow_zero=False, label="Cart total")
        errors += check_amount(
            current_balance_cents, "currentBalanceCents", allow_zero=True, label="Current balance"
        )
        if user_id is not None and (not isinstance(user_id, str) or not user_id.strip()):
            errors.append(FieldError("userId", "User ID must be a non-empty string"))
        parsed_metadata, metadata_errors = parse_metadata(metadata)
        errors += metadata_errors
        raise_for_errors(errors, operation="sessions.create")

        now = now or datetime.now(timezone.utc)
        top_up = max(0, cart_total_cents - current_balance_cents)
        checkout_session = CheckoutSession(
            session_id=generate_session_id(),
            user_id=user_id,
            source_url=amazon_url,
            cart_total_cents=cart_total_cents,
            current_balance_cents=current_balance_cents,
            top_up_amount_cents=top_up,
            status=CheckoutSessionStatusEnum.CREATED,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(minutes=settings.session_expiry_minutes),
            metadata_json=parsed_metadata,
        )
        stored = await self._store.insert(checkout_session)
        logger.info(
            "Checkout session created",
            session_id=stored.session_id,
            cart_total_cents=cart_total_cents,
            current_balance_cents=current_balance_cents,
            top_up_amount_cents=top_up,
        )
        return stored

    async def get(self, session_id: str) -> CheckoutSession | None:
        require_session_id(session_id, operation="sessions.get")
        return await self._store.get(session_id)

    async def transition(
        self,
        session_id: str,
        new_status: CheckoutSessionStatusEnum,
        *,
        metadata: Any = None,
        now: datetime | None = None,
    ) -> CheckoutSession:
        """Move a session along the status graph if no one else moved it first."""

        operation = "sessions.transition"
        require_session_id(session_id, operation=operation)
        parsed_metadata, metadata_errors = parse_metadata(metadata)
        raise_for_errors(metadata_errors, operation=operation)

        checkout_session = await self._store.get(session_id)
        if checkout_session is None:
            raise NotFoundError(f"Session {session_id} not found", operation=operation)

        current = checkout_session.status
        if not self.can_transition(current, new_status):
            raise InvalidTransitionError("session", current, new_status).with_operation(operation)

        kwargs: dict[str, Any] = {}
        if parsed_metadata is not None:
            kwargs["metadata"] = {**(checkout_session.metadata_json or {}), **parsed_metadata}
        applied = await self._store.compare_and_set_status(
            session_id,
            expected=current,
            new=new_status,
            now=now or datetime.now(timezone.utc),
            **kwargs,
        )
        if not applied:
            logger.warning(
                "Checkout session transition lost to a concurrent update",
                session_id=session_id,
                expected_status=current.value,
                requested_status=new_status.value,
            )
            raise ConflictError(
                f"Session {session_id} changed status concurrently",
                reason=ConflictReason.CONCURRENT_UPDATE,
                operation=operation,
            )

        logger.info(
            "Checkout session status transitioned",
            session_id=session_id,
            from_status=current.value,
            to_status=new_status.value,
        )
        updated = await self._store.get(session_id)
        if updated is None:
            raise NotFoundError(f"Session {session_id} not found", operation=operation)
        return updated

    async def annotate(
        self,
        session_id: str,
        metadata: dict[str, Any],
        *,
        expected_status: CheckoutSessionStatusEnum,
        now: datetime | None = None,
    ) -> CheckoutSession:
        """Merge ``metadata`` into the session without changing its status."""

        operation = "sessions.annotate"
        checkout_session = await self._store.get(session_id)
        if checkout_session is None:
            raise NotFoundError(f"Session {session_id} not found", operation=operation)
        applied = await self._store.compare_and_set_status(
            session_id,
            expected=expected_status,
            new=expected_status,
            metadata={**(checkout_session.metadata_json or {}), **metadata},
            now=now or datetime.now(timezone.utc),
        )
        if not applied:
            raise ConflictError(
                f"Session {session_id} changed status concurrently",
                reason=ConflictReason.CONCURRENT_UPDATE,
                operation=operation,
            )
        updated = await self._store.get(session_id)
        if updated is None:
            raise NotFoundError(f"Session {session_id} not found", operation=operation)
        return updated

    async def sweep_expired(self, *, now: datetime | None = None) -> int:
        """Expire every non-terminal session past its deadline.

        The sweep bypasses the transition table: a stale PAID, PROCESSING or
        FULFILLED session is expired too. Each row still moves through a
        conditional update from the status it was read with, so a session
        that advanced after the read is left alone.
        """

        now = now or datetime.now(timezone.utc)
        due = await self._store.list_due(now, self.expirable_statuses())
        expired = 0
        for session_id, status in due:
            if await self._store.compare_and_set_status(
                session_id,
                expected=status,
                new=CheckoutSessionStatusEnum.EXPIRED,
                now=now,
            ):
                expired += 1
        if expired:
            logger.info("Expired checkout sessions swept", count=expired, candidates=len(due))
        return expired

    async def list_by_status(self, status: CheckoutSessionStatusEnum) -> list[CheckoutSession]:
        return await self._store.list_by_status(status)

    async def statistics(self) -> SessionStatistics:
        aggregate = await self._store.aggregate()
        total = sum(aggregate.counts.values())
        average = round(aggregate.total_top_up_cents / total) if total else 0
        return SessionStatistics(
            total_sessions=total,
            status_counts={status.value: aggregate.counts.get(status, 0) for status in CheckoutSessionStatusEnum},
            average_top_up_cents=average,
            total_top_up_cents=aggregate.total_top_up_cents,
            expired_sessions=aggregate.counts.get(CheckoutSessionStatusEnum.EXPIRED, 0),
        )


__all__ = ["CheckoutSessionLifecycle", "SessionStatistics", "generate_session_id"]
