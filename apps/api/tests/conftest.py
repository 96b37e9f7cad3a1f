import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from giftbridge_api.app import create_app  # noqa: E402
from giftbridge_api.db.base import Base  # noqa: E402
from giftbridge_api.db.session import get_session  # noqa: E402
from giftbridge_api.models import GiftCode, GiftCodeStatusEnum  # noqa: E402
from giftbridge_api.observability.inventory import get_inventory_store  # noqa: E402


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_inventory_observability():
    store = get_inventory_store()
    store.reset()
    yield
    store.reset()


def make_code(suffix: str) -> str:
    return f"AMAZON-GIFT-CODE-{suffix}"


async def _seed_codes(
    session_factory,
    denominations,
    *,
    status: GiftCodeStatusEnum = GiftCodeStatusEnum.AVAILABLE,
    expires_at: datetime | None = None,
    prefix: str = "S",
) -> list[GiftCode]:
    now = datetime.now(timezone.utc)
    codes = [
        GiftCode(
            code=make_code(f"{prefix}{index:05d}"),
            denomination=denomination,
            status=status,
            created_at=now,
            expires_at=expires_at or now + timedelta(days=30),
            metadata_json={},
        )
        for index, denomination in enumerate(denominations)
    ]
    async with session_factory() as session:
        session.add_all(codes)
        await session.commit()
    return codes


@pytest.fixture
def seed_codes():
    """Insert codes directly, bypassing service validation."""

    return _seed_codes
