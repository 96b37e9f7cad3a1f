import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from giftbridge_api.models.checkout_session import CheckoutSessionStatusEnum
from giftbridge_api.models.gift_code import GiftCodeStatusEnum
from giftbridge_api.observability.inventory import get_inventory_store
from giftbridge_api.services.inventory import GiftCodeStore
from giftbridge_api.services.sessions import CheckoutSessionLifecycle
from giftbridge_api.workers import ExpirySweepWorker


@pytest.mark.asyncio
async def test_worker_run_once_sweeps_sessions_and_codes(session_factory, seed_codes):
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    await seed_codes(session_factory, [500, 1000], expires_at=past, prefix="X")
    await seed_codes(session_factory, [2500], prefix="K")
    async with session_factory() as session:
        stale = await CheckoutSessionLifecycle(session).create(
            "https://www.amazon.com/cart", 1000, 0, now=past
        )

    worker = ExpirySweepWorker(session_factory, interval_seconds=1)
    summary = await worker.run_once()

    assert summary == {"sessions_expired": 1, "codes_expired": 2}

    async with session_factory() as session:
        refreshed = await CheckoutSessionLifecycle(session).get(stale.session_id)
        available = await GiftCodeStore(session).list_by_status(GiftCodeStatusEnum.AVAILABLE)
    assert refreshed.status == CheckoutSessionStatusEnum.EXPIRED
    assert [code.denomination for code in available] == [2500]

    snapshot = get_inventory_store().snapshot()
    assert snapshot.sweep_totals == {"runs": 1, "sessions_expired": 1, "codes_expired": 2}
    assert snapshot.sweep_events.last_run_at is not None


@pytest.mark.asyncio
async def test_worker_second_run_is_a_no_op(session_factory, seed_codes):
    await seed_codes(session_factory, [500], expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))

    worker = ExpirySweepWorker(session_factory, interval_seconds=1)
    await worker.run_once()
    summary = await worker.run_once()

    assert summary == {"sessions_expired": 0, "codes_expired": 0}
    assert get_inventory_store().snapshot().sweep_totals["runs"] == 2


@pytest.mark.asyncio
async def test_worker_start_and_stop(session_factory):
    worker = ExpirySweepWorker(session_factory, interval_seconds=60)

    worker.start()
    assert worker.is_running is True
    await asyncio.sleep(0)
    await worker.stop()

    assert worker.is_running is False
    assert get_inventory_store().snapshot().sweep_totals["runs"] >= 1
