"""Waste-minimising gift code allocation with optimistic claims.

The allocator reads a snapshot of AVAILABLE, unexpired codes, picks the
combination covering the target with the least overspend and then claims each
selected code through the store's compare-and-swap. The snapshot may be stale
by the time a claim runs; the claim's own matched-row flag is the only source
of truth, so codes another request already took are skipped rather than
retried or substituted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence, TypeVar

from loguru import logger

from giftbridge_api.models.gift_code import GiftCode, GiftCodeStatusEnum
from giftbridge_api.observability.inventory import InventoryObservabilityStore, get_inventory_store
from giftbridge_api.services.errors import ConflictReason, PersistenceError, ValidationError
from giftbridge_api.services.inventory.store import GiftCodeStore
from giftbridge_api.services.validation import check_amount


class Denominated(Protocol):
    id: Any
    denomination: int


CodeT = TypeVar("CodeT", bound=Denominated)


@dataclass
class AllocationResult:
    """Outcome of a single allocation pass."""

    success: bool
    target_amount: int = 0
    selected_codes: list[GiftCode] = field(default_factory=list)
    total_allocated: int = 0
    remaining_amount: int = 0
    error: str | None = None
    reason: ConflictReason | None = None
    lost_claims: int = 0

    @property
    def waste(self) -> int:
        return max(0, self.total_allocated - self.target_amount)

    @classmethod
    def failure(cls, target_amount: int, error: str, reason: ConflictReason) -> "AllocationResult":
        return cls(
            success=False,
            target_amount=target_amount,
            total_allocated=0,
            remaining_amount=target_amount,
            error=error,
            reason=reason,
        )


def _sort_key(code: Denominated) -> tuple[int, str]:
    return (code.denomination, str(code.id))


def select_combination(candidates: Sequence[CodeT], target_amount: int) -> list[CodeT]:
    """Return the codes to claim for ``target_amount``; empty when nothing covers it.

    Exact single-code matches win outright. Otherwise a run of ascending
    denominations is accumulated from every start index until it covers the
    target; the covering run with the smallest waste is kept, fewer codes
    breaking ties. A single covering code is the last resort.
    """

    if target_amount <= 0:
        return []

    ordered = sorted(candidates, key=_sort_key)

    for code in ordered:
        if code.denomination == target_amount:
            return [code]

    best: list[CodeT] = []
    best_waste: int | None = None
    for start in range(len(ordered)):
        running_total = 0
        run: list[CodeT] = []
        for code in ordered[start:]:
            running_total += code.denomination
            run.append(code)
            if running_total >= target_amount:
                waste = running_total - target_amount
                if best_waste is None or waste < best_waste or (waste == best_waste and len(run) < len(best)):
                    best = list(run)
                    best_waste = waste
                break

    if best:
        return best

    for code in ordered:
        if code.denomination >= target_amount:
            return [code]

    return []


class GiftCodeAllocator:
    """Selects and claims gift codes covering a target amount."""

    def __init__(
        self,
        store: GiftCodeStore,
        *,
        observability: InventoryObservabilityStore | None = None,
    ) -> None:
        self._store = store
        self._observability = observability or get_inventory_store()

    async def allocate(self, target_amount: int, *, now: datetime | None = None) -> AllocationResult:
        """Claim gift codes covering ``target_amount``.

        Claims are committed one by one. If the store fails part way the
        raised ``PersistenceError`` carries the codes already claimed in
        ``claimed_codes``; they stay ALLOCATED until the caller releases them.
        """

        errors = check_amount(target_amount, "targetAmountCents", allow_zero=True, label="Target amount")
        if errors:
            raise ValidationError(errors, operation="inventory.allocate")

        if target_amount == 0:
            return AllocationResult(success=True, target_amount=0)

        result = await self._allocate(target_amount, now or datetime.now(timezone.utc))
        self._observability.record_allocation(
            target_amount=target_amount,
            success=result.success,
            total_allocated=result.total_allocated,
            remaining_amount=result.remaining_amount,
            lost_claims=result.lost_claims,
            reason=result.reason.value if result.reason else None,
        )
        return result

    async def _allocate(self, target_amount: int, now: datetime) -> AllocationResult:
        available = await self._store.list_by_status(GiftCodeStatusEnum.AVAILABLE, unexpired_at=now)
        if not available:
            logger.warning("Gift code allocation found no inventory", target_amount=target_amount)
            return AllocationResult.failure(
                target_amount,
                "No gift codes available",
                ConflictReason.INVENTORY_EXHAUSTED,
            )

        total_available = sum(code.denomination for code in available)
        if total_available < target_amount:
            logger.warning(
                "Gift code inventory value below target",
                target_amount=target_amount,
                available_value=total_available,
                available_codes=len(available),
            )
            return AllocationResult.failure(
                target_amount,
                (
                    f"Insufficient gift codes available. Need {target_amount} cents, "
                    f"have {total_available} cents total."
                ),
                ConflictReason.INSUFFICIENT_VALUE,
            )

        selection = select_combination(available, target_amount)
        if not selection:
            return AllocationResult.failure(
                target_amount,
                "No suitable combination of gift codes found",
                ConflictReason.NO_COMBINATION,
            )

        logger.info(
            "Gift code combination selected",
            target_amount=target_amount,
            denominations=[code.denomination for code in selection],
            selected_total=sum(code.denomination for code in selection),
        )

        claimed: list[GiftCode] = []
        lost = 0
        for code in selection:
            try:
                won = await self._store.claim(code.id)
            except PersistenceError as exc:
                exc.claimed_codes = list(claimed)
                logger.error(
                    "Gift code claim aborted by store failure",
                    target_amount=target_amount,
                    claimed_code_ids=[str(item.id) for item in claimed],
                )
                raise
            if won:
                claimed.append(code)
            else:
                lost += 1
                logger.info("Gift code claim lost to a concurrent request", gift_code_id=str(code.id))

        total_allocated = sum(code.denomination for code in claimed)
        remaining = max(0, target_amount - total_allocated)

        if not claimed:
            return AllocationResult(
                success=False,
                target_amount=target_amount,
                remaining_amount=target_amount,
                error="Every selected gift code was claimed by a concurrent request",
                reason=ConflictReason.CLAIMS_LOST,
                lost_claims=lost,
            )

        logger.info(
            "Gift codes allocated",
            target_amount=target_amount,
            total_allocated=total_allocated,
            remaining_amount=remaining,
            waste=max(0, total_allocated - target_amount),
            lost_claims=lost,
        )
        return AllocationResult(
            success=True,
            target_amount=target_amount,
            selected_codes=claimed,
            total_allocated=total_allocated,
            remaining_amount=remaining,
            lost_claims=lost,
        )

