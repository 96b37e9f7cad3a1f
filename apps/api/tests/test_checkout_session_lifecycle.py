import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from giftbridge_api.models.checkout_session import CheckoutSessionStatusEnum
from giftbridge_api.services.errors import (
    ConflictError,
    ConflictReason,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from giftbridge_api.services.sessions import CheckoutSessionLifecycle
from giftbridge_api.services.validation import ensure_aware, is_valid_session_id

AMAZON_URL = "https://www.amazon.com/gp/cart/view.html"


async def _create(session_factory, *, cart=1811, balance=500, now=None):
    async with session_factory() as session:
        return await CheckoutSessionLifecycle(session).create(AMAZON_URL, cart, balance, now=now)


@pytest.mark.asyncio
async def test_create_computes_top_up(session_factory):
    now = datetime.now(timezone.utc)
    checkout_session = await _create(session_factory, now=now)

    assert checkout_session.top_up_amount_cents == 1311
    assert checkout_session.status == CheckoutSessionStatusEnum.CREATED
    assert is_valid_session_id(checkout_session.session_id)
    assert ensure_aware(checkout_session.expires_at) == now + timedelta(minutes=15)


@pytest.mark.asyncio
async def test_create_clamps_top_up_when_balance_covers_cart(session_factory):
    checkout_session = await _create(session_factory, cart=500, balance=1000)
    assert checkout_session.top_up_amount_cents == 0


@pytest.mark.asyncio
async def test_create_reports_every_invalid_field(session_factory):
    async with session_factory() as session:
        lifecycle = CheckoutSessionLifecycle(session)
        with pytest.raises(ValidationError) as excinfo:
            await lifecycle.create(
                "ftp://evil.example.com/cart",
                0,
                -5,
                user_id="  ",
                metadata="{not json",
            )
        assert await lifecycle.list_by_status(CheckoutSessionStatusEnum.CREATED) == []

    fields = {error.field for error in excinfo.value.errors}
    assert fields == {"amazonUrl", "cartTotalCents", "currentBalanceCents", "userId", "metadata"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "url",
    [
        "https://amazon.com.evil.io/cart",
        "https://notamazon.com/cart",
        "javascript:alert(1)",
    ],
)
async def test_create_rejects_unapproved_hosts(session_factory, url):
    async with session_factory() as session:
        with pytest.raises(ValidationError):
            await CheckoutSessionLifecycle(session).create(url, 1000, 0)


@pytest.mark.asyncio
async def test_create_rejects_amounts_above_ceiling(session_factory):
    async with session_factory() as session:
        with pytest.raises(ValidationError) as excinfo:
            await CheckoutSessionLifecycle(session).create(AMAZON_URL, 1_000_001, 0)

    assert excinfo.value.errors[0].field == "cartTotalCents"


def test_transition_table_covers_every_status():
    status = CheckoutSessionStatusEnum
    expected = {
        status.CREATED: {status.PENDING, status.EXPIRED, status.FAILED},
        status.PENDING: {status.PAID, status.EXPIRED, status.FAILED},
        status.PAID: {status.PROCESSING, status.FAILED},
        status.PROCESSING: {status.FULFILLED, status.FAILED},
        status.FULFILLED: {status.COMPLETED, status.FAILED},
        status.COMPLETED: set(),
        status.EXPIRED: set(),
        status.FAILED: set(),
    }

    actual = {item: set(CheckoutSessionLifecycle.allowed_transitions(item)) for item in status}

    assert actual == expected
    assert CheckoutSessionLifecycle.expirable_statuses() == {
        status.CREATED,
        status.PENDING,
        status.PAID,
        status.PROCESSING,
        status.FULFILLED,
    }


@pytest.mark.asyncio
async def test_transition_follows_declared_edges(session_factory):
    checkout_session = await _create(session_factory)

    async with session_factory() as session:
        lifecycle = CheckoutSessionLifecycle(session)
        with pytest.raises(InvalidTransitionError) as excinfo:
            await lifecycle.transition(checkout_session.session_id, CheckoutSessionStatusEnum.COMPLETED)
        assert excinfo.value.reason == ConflictReason.INVALID_TRANSITION

        unchanged = await lifecycle.get(checkout_session.session_id)
        assert unchanged.status == CheckoutSessionStatusEnum.CREATED

        pending = await lifecycle.transition(
            checkout_session.session_id,
            CheckoutSessionStatusEnum.PENDING,
            metadata={"source": "extension"},
        )
        assert pending.status == CheckoutSessionStatusEnum.PENDING
        assert pending.metadata_json == {"source": "extension"}
        assert pending.top_up_amount_cents == 1311

        paid = await lifecycle.transition(
            checkout_session.session_id,
            CheckoutSessionStatusEnum.PAID,
            metadata='{"transactionHash": "0xabc"}',
        )
        assert paid.metadata_json == {"source": "extension", "transactionHash": "0xabc"}


@pytest.mark.asyncio
async def test_transition_validates_session_reference(session_factory):
    async with session_factory() as session:
        lifecycle = CheckoutSessionLifecycle(session)
        with pytest.raises(ValidationError):
            await lifecycle.transition("SESSION-123", CheckoutSessionStatusEnum.PENDING)
        with pytest.raises(NotFoundError):
            await lifecycle.transition("session-deadbeef", CheckoutSessionStatusEnum.PENDING)


@pytest.mark.asyncio
async def test_concurrent_transitions_apply_once(session_factory):
    checkout_session = await _create(session_factory)

    sessions = [session_factory() for _ in range(2)]
    try:
        outcomes = await asyncio.gather(
            *(
                CheckoutSessionLifecycle(session).transition(
                    checkout_session.session_id,
                    CheckoutSessionStatusEnum.PENDING,
                )
                for session in sessions
            ),
            return_exceptions=True,
        )
    finally:
        for session in sessions:
            await session.close()

    succeeded = [outcome for outcome in outcomes if not isinstance(outcome, Exception)]
    failed = [outcome for outcome in outcomes if isinstance(outcome, Exception)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], ConflictError)
    assert failed[0].reason in {ConflictReason.CONCURRENT_UPDATE, ConflictReason.INVALID_TRANSITION}


@pytest.mark.asyncio
async def test_sweep_expires_overdue_sessions_once(session_factory):
    created_at = datetime.now(timezone.utc) - timedelta(hours=1)
    path = [
        CheckoutSessionStatusEnum.PENDING,
        CheckoutSessionStatusEnum.PAID,
        CheckoutSessionStatusEnum.PROCESSING,
        CheckoutSessionStatusEnum.FULFILLED,
        CheckoutSessionStatusEnum.COMPLETED,
    ]
    # stale[i] is advanced through the first i steps; stale[5] ends COMPLETED.
    stale = [await _create(session_factory, now=created_at) for _ in range(len(path) + 1)]
    fresh = await _create(session_factory)

    async with session_factory() as session:
        lifecycle = CheckoutSessionLifecycle(session)
        for steps, checkout_session in enumerate(stale):
            for target in path[:steps]:
                await lifecycle.transition(checkout_session.session_id, target)

        assert await lifecycle.sweep_expired() == 5
        assert await lifecycle.sweep_expired() == 0

        expired = await lifecycle.list_by_status(CheckoutSessionStatusEnum.EXPIRED)
        assert {item.session_id for item in expired} == {item.session_id for item in stale[:5]}
        assert (await lifecycle.get(stale[5].session_id)).status == CheckoutSessionStatusEnum.COMPLETED
        assert (await lifecycle.get(fresh.session_id)).status == CheckoutSessionStatusEnum.CREATED


@pytest.mark.asyncio
async def test_statistics_summarise_sessions(session_factory):
    first = await _create(session_factory, cart=1811, balance=500)
    await _create(session_factory, cart=2000, balance=0)
    await _create(session_factory, cart=500, balance=1000)

    async with session_factory() as session:
        lifecycle = CheckoutSessionLifecycle(session)
        await lifecycle.transition(first.session_id, CheckoutSessionStatusEnum.FAILED)
        stats = await lifecycle.statistics()

    assert stats.total_sessions == 3
    assert stats.total_top_up_cents == 1311 + 2000
    assert stats.average_top_up_cents == round((1311 + 2000) / 3)
    assert stats.status_counts["CREATED"] == 2
    assert stats.status_counts["FAILED"] == 1
    assert stats.status_counts["COMPLETED"] == 0
    assert set(stats.status_counts) == {status.value for status in CheckoutSessionStatusEnum}
    assert stats.expired_sessions == 0


@pytest.mark.asyncio
async def test_statistics_empty_store(session_factory):
    async with session_factory() as session:
        stats = await CheckoutSessionLifecycle(session).statistics()

    assert stats.total_sessions == 0
    assert stats.average_top_up_cents == 0
