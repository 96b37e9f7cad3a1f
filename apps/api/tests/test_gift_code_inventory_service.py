from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from giftbridge_api.models.gift_code import GiftCodeStatusEnum
from giftbridge_api.services.errors import (
    ConflictError,
    ConflictReason,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from giftbridge_api.services.inventory import GiftCodeInventoryService, can_transition_code


@pytest.mark.asyncio
async def test_add_code_applies_default_expiry(session_factory):
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        service = GiftCodeInventoryService(session)
        gift_code = await service.add_code("AMAZON-GIFT-CODE-ABC123", 2500, now=now)

        assert gift_code.status == GiftCodeStatusEnum.AVAILABLE
        assert gift_code.denomination == 2500
        assert gift_code.expires_at - now == timedelta(days=365)
        fetched = await service.get_by_code("AMAZON-GIFT-CODE-ABC123")
        assert fetched is not None
        assert fetched.id == gift_code.id


@pytest.mark.asyncio
async def test_add_code_rejects_duplicate(session_factory):
    async with session_factory() as session:
        service = GiftCodeInventoryService(session)
        await service.add_code("AMAZON-GIFT-CODE-DUP001", 500)
        with pytest.raises(ConflictError) as excinfo:
            await service.add_code("AMAZON-GIFT-CODE-DUP001", 500)

    assert excinfo.value.reason == ConflictReason.DUPLICATE_CODE


@pytest.mark.asyncio
async def test_add_code_collects_field_errors(session_factory):
    async with session_factory() as session:
        service = GiftCodeInventoryService(session)
        with pytest.raises(ValidationError) as excinfo:
            await service.add_code(
                "amazon-gift-code-abc123",
                0,
                expires_at=datetime.now(timezone.utc) - timedelta(days=1),
            )
        assert await service.list_all() == []

    fields = {error.field for error in excinfo.value.errors}
    assert fields == {"code", "denomination", "expiresAt"}


@pytest.mark.asyncio
async def test_bulk_import_reports_partial_success(session_factory):
    async with session_factory() as session:
        service = GiftCodeInventoryService(session)
        await service.add_code("AMAZON-GIFT-CODE-BULK01", 1000)
        result = await service.add_codes(
            ["AMAZON-GIFT-CODE-BULK01", "AMAZON-GIFT-CODE-BULK02", "bad-code", "AMAZON-GIFT-CODE-BULK03"],
            1000,
        )

        assert result.partial is True
        assert [code.code for code in result.added] == ["AMAZON-GIFT-CODE-BULK02", "AMAZON-GIFT-CODE-BULK03"]
        assert [item.code for item in result.errors] == ["AMAZON-GIFT-CODE-BULK01", "bad-code"]
        assert len(await service.list_all()) == 3


@pytest.mark.asyncio
async def test_bulk_import_requires_codes(session_factory):
    async with session_factory() as session:
        with pytest.raises(ValidationError):
            await GiftCodeInventoryService(session).add_codes([], 1000)


def test_code_status_graph_is_forward_only():
    for status in GiftCodeStatusEnum:
        assert not can_transition_code(status, GiftCodeStatusEnum.AVAILABLE)
    assert can_transition_code(GiftCodeStatusEnum.AVAILABLE, GiftCodeStatusEnum.ALLOCATED)
    assert can_transition_code(GiftCodeStatusEnum.ALLOCATED, GiftCodeStatusEnum.REDEEMED)
    assert not can_transition_code(GiftCodeStatusEnum.AVAILABLE, GiftCodeStatusEnum.REDEEMED)
    assert not can_transition_code(GiftCodeStatusEnum.REDEEMED, GiftCodeStatusEnum.EXPIRED)


@pytest.mark.asyncio
async def test_update_status_enforces_graph(session_factory):
    async with session_factory() as session:
        service = GiftCodeInventoryService(session)
        gift_code = await service.add_code("AMAZON-GIFT-CODE-STAT01", 500)

        updated = await service.update_status(gift_code.id, GiftCodeStatusEnum.FAILED)
        assert updated.status == GiftCodeStatusEnum.FAILED

        with pytest.raises(InvalidTransitionError) as excinfo:
            await service.update_status(gift_code.id, GiftCodeStatusEnum.AVAILABLE)
        assert excinfo.value.reason == ConflictReason.INVALID_TRANSITION

        with pytest.raises(NotFoundError):
            await service.update_status(uuid4(), GiftCodeStatusEnum.FAILED)


@pytest.mark.asyncio
async def test_redeem_requires_allocated_code(session_factory):
    async with session_factory() as session:
        service = GiftCodeInventoryService(session)
        gift_code = await service.add_code("AMAZON-GIFT-CODE-RDM001", 500)

        with pytest.raises(ConflictError):
            await service.redeem(gift_code.id, "order-1")

        await service.update_status(gift_code.id, GiftCodeStatusEnum.ALLOCATED)
        redeemed = await service.redeem(gift_code.id, "order-1")

        assert redeemed.status == GiftCodeStatusEnum.REDEEMED
        assert redeemed.metadata_json["orderId"] == "order-1"
        assert "redeemedAt" in redeemed.metadata_json


@pytest.mark.asyncio
async def test_redeem_rejects_expired_code(session_factory):
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        service = GiftCodeInventoryService(session)
        gift_code = await service.add_code(
            "AMAZON-GIFT-CODE-RDM002",
            500,
            expires_at=now + timedelta(hours=1),
            now=now,
        )
        await service.update_status(gift_code.id, GiftCodeStatusEnum.ALLOCATED)

        with pytest.raises(ConflictError) as excinfo:
            await service.redeem(gift_code.id, "order-2", now=now + timedelta(hours=2))
        assert "expired" in excinfo.value.message

        with pytest.raises(ValidationError):
            await service.redeem(gift_code.id, "  ")


@pytest.mark.asyncio
async def test_sweep_expires_available_and_allocated_codes(session_factory, seed_codes):
    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    await seed_codes(session_factory, [500], expires_at=past, prefix="A")
    await seed_codes(session_factory, [500], status=GiftCodeStatusEnum.ALLOCATED, expires_at=past, prefix="B")
    await seed_codes(session_factory, [500], status=GiftCodeStatusEnum.REDEEMED, expires_at=past, prefix="C")
    await seed_codes(session_factory, [500], prefix="D")

    async with session_factory() as session:
        service = GiftCodeInventoryService(session)
        assert await service.sweep_expired() == 2
        assert await service.sweep_expired() == 0

        expired = await service.list_by_status(GiftCodeStatusEnum.EXPIRED)
        assert sorted(code.code[-6] for code in expired) == ["A", "B"]
        assert len(await service.list_by_status(GiftCodeStatusEnum.REDEEMED)) == 1


@pytest.mark.asyncio
async def test_stats_aggregate_counts_values_and_denominations(session_factory, seed_codes):
    await seed_codes(session_factory, [500, 1000], prefix="A")
    await seed_codes(session_factory, [1000], status=GiftCodeStatusEnum.ALLOCATED, prefix="B")
    await seed_codes(session_factory, [2500], status=GiftCodeStatusEnum.REDEEMED, prefix="C")
    await seed_codes(session_factory, [500], status=GiftCodeStatusEnum.EXPIRED, prefix="D")
    await seed_codes(session_factory, [1000], status=GiftCodeStatusEnum.FAILED, prefix="E")

    async with session_factory() as session:
        stats = await GiftCodeInventoryService(session).stats()

    assert stats.total_codes == 6
    assert stats.available_codes == 2
    assert stats.allocated_codes == 1
    assert stats.redeemed_codes == 1
    assert stats.expired_codes == 1
    assert stats.failed_codes == 1
    assert stats.available_value == 1500
    assert stats.total_value == 6500
    assert stats.value_by_status["REDEEMED"] == 2500
    assert stats.denominations == {"500": 2, "1000": 3, "2500": 1}


@pytest.mark.asyncio
async def test_stats_for_mixed_inventory_fixture(session_factory, seed_codes):
    await seed_codes(session_factory, [500, 500, 500], prefix="A")
    await seed_codes(session_factory, [1000, 1000], status=GiftCodeStatusEnum.ALLOCATED, prefix="B")
    await seed_codes(session_factory, [2500], status=GiftCodeStatusEnum.REDEEMED, prefix="C")

    async with session_factory() as session:
        stats = await GiftCodeInventoryService(session).stats()

    assert stats.total_codes == 6
    assert stats.available_value == 1500
    assert stats.total_value == 1500 + 2000 + 2500
    assert stats.value_by_status == {
        "AVAILABLE": 1500,
        "ALLOCATED": 2000,
        "REDEEMED": 2500,
        "EXPIRED": 0,
        "FAILED": 0,
    }
