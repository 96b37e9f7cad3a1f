"""Worker wiring for periodic checkout session and gift code expiry sweeps."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from giftbridge_api.core.settings import settings
from giftbridge_api.observability.inventory import InventoryObservabilityStore, get_inventory_store
from giftbridge_api.services.inventory import GiftCodeInventoryService
from giftbridge_api.services.sessions import CheckoutSessionLifecycle

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


class ExpirySweepWorker:
    """Periodically expires overdue checkout sessions and gift codes."""

    # meta: worker: expiry-sweep

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: int | None = None,
        observability: InventoryObservabilityStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.expiry_sweep_interval_seconds
        self._observability = observability or get_inventory_store()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info("Expiry sweep worker started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Expiry sweep worker stopped")

    async def run_once(self, *, now: datetime | None = None) -> Dict[str, int]:
        """Run both sweeps against a single session and return the counts."""

        now = now or datetime.now(timezone.utc)
        session = await self._ensure_session()
        async with session as managed_session:
            sessions_expired = await CheckoutSessionLifecycle(managed_session).sweep_expired(now=now)
            codes_expired = await GiftCodeInventoryService(managed_session).sweep_expired(now=now)

        summary = {"sessions_expired": sessions_expired, "codes_expired": codes_expired}
        self._observability.record_sweep(**summary)
        logger.info("Expiry sweep completed", **summary)
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover
                logger.exception("Expiry sweep iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session
