"""Seed development gift code inventory into the API database."""

from __future__ import annotations

import asyncio
import os
import secrets
import string

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from giftbridge_api.core.settings import settings
from giftbridge_api.db.base import Base
from giftbridge_api.services.inventory import GiftCodeInventoryService

_ALPHABET = string.ascii_uppercase + string.digits

DEV_INVENTORY: dict[int, int] = {
    500: int(os.getenv("DEV_GIFT_CODES_500", "10")),
    1000: int(os.getenv("DEV_GIFT_CODES_1000", "10")),
    2500: int(os.getenv("DEV_GIFT_CODES_2500", "5")),
    5000: int(os.getenv("DEV_GIFT_CODES_5000", "2")),
}


def random_code() -> str:
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(settings.gift_code_suffix_length))
    return f"{settings.gift_code_prefix}{suffix}"


async def seed_inventory(session: AsyncSession) -> int:
    service = GiftCodeInventoryService(session)
    added = 0
    for denomination, count in DEV_INVENTORY.items():
        if count <= 0:
            continue
        result = await service.add_codes([random_code() for _ in range(count)], denomination)
        added += len(result.added)
    return added


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        if settings.environment == "development":
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        async with session_factory() as session:
            added = await seed_inventory(session)
        print(f"Development gift code inventory ready ✅ ({added} codes added)")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
