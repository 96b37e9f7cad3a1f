"""In-memory observability helper for allocation and expiry sweep flows."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AllocationEventLog:
    last_success_at: datetime | None = None
    last_success_total: int | None = None
    last_failure_at: datetime | None = None
    last_failure_reason: str | None = None


@dataclass
class SweepEventLog:
    last_run_at: datetime | None = None
    last_sessions_expired: int = 0
    last_codes_expired: int = 0


@dataclass
class InventoryObservabilitySnapshot:
    allocation_totals: Dict[str, int]
    failure_reasons: Dict[str, int]
    allocated_cents: int
    requested_cents: int
    allocation_events: AllocationEventLog
    sweep_totals: Dict[str, int]
    sweep_events: SweepEventLog

    def as_dict(self) -> Dict[str, object]:
        return {
            "allocation": {
                "totals": self.allocation_totals,
                "failure_reasons": self.failure_reasons,
                "requested_cents": self.requested_cents,
                "allocated_cents": self.allocated_cents,
                "events": {
                    "last_success_at": self.allocation_events.last_success_at.isoformat()
                    if self.allocation_events.last_success_at
                    else None,
                    "last_success_total": self.allocation_events.last_success_total,
                    "last_failure_at": self.allocation_events.last_failure_at.isoformat()
                    if self.allocation_events.last_failure_at
                    else None,
                    "last_failure_reason": self.allocation_events.last_failure_reason,
                },
            },
            "sweeps": {
                "totals": self.sweep_totals,
                "events": {
                    "last_run_at": self.sweep_events.last_run_at.isoformat()
                    if self.sweep_events.last_run_at
                    else None,
                    "last_sessions_expired": self.sweep_events.last_sessions_expired,
                    "last_codes_expired": self.sweep_events.last_codes_expired,
                },
            },
        }


@dataclass
class InventoryObservabilityStore:
    _lock: Lock = field(default_factory=Lock)
    _allocation_totals: Counter = field(default_factory=Counter)
    _failure_reasons: Counter = field(default_factory=Counter)
    _requested_cents: int = 0
    _allocated_cents: int = 0
    _allocation_events: AllocationEventLog = field(default_factory=AllocationEventLog)
    _sweep_totals: Counter = field(default_factory=Counter)
    _sweep_events: SweepEventLog = field(default_factory=SweepEventLog)

    def record_allocation(
        self,
        *,
        target_amount: int,
        success: bool,
        total_allocated: int,
        remaining_amount: int,
        lost_claims: int,
        reason: str | None,
    ) -> None:
        with self._lock:
            self._requested_cents += target_amount
            self._allocated_cents += total_allocated
            self._allocation_totals["lost_claims"] += lost_claims
            now = _utcnow()
            if success:
                bucket = "partial" if remaining_amount > 0 else "succeeded"
                self._allocation_totals[bucket] += 1
                self._allocation_events.last_success_at = now
                self._allocation_events.last_success_total = total_allocated
            else:
                self._allocation_totals["failed"] += 1
                self._failure_reasons[reason or "unknown"] += 1
                self._allocation_events.last_failure_at = now
                self._allocation_events.last_failure_reason = reason

    def record_sweep(self, *, sessions_expired: int, codes_expired: int) -> None:
        with self._lock:
            self._sweep_totals["runs"] += 1
            self._sweep_totals["sessions_expired"] += sessions_expired
            self._sweep_totals["codes_expired"] += codes_expired
            self._sweep_events.last_run_at = _utcnow()
            self._sweep_events.last_sessions_expired = sessions_expired
            self._sweep_events.last_codes_expired = codes_expired

    def snapshot(self) -> InventoryObservabilitySnapshot:
        with self._lock:
            return InventoryObservabilitySnapshot(
                allocation_totals=dict(self._allocation_totals),
                failure_reasons=dict(self._failure_reasons),
                allocated_cents=self._allocated_cents,
                requested_cents=self._requested_cents,
                allocation_events=AllocationEventLog(
                    last_success_at=self._allocation_events.last_success_at,
                    last_success_total=self._allocation_events.last_success_total,
                    last_failure_at=self._allocation_events.last_failure_at,
                    last_failure_reason=self._allocation_events.last_failure_reason,
                ),
                sweep_totals=dict(self._sweep_totals),
                sweep_events=SweepEventLog(
                    last_run_at=self._sweep_events.last_run_at,
                    last_sessions_expired=self._sweep_events.last_sessions_expired,
                    last_codes_expired=self._sweep_events.last_codes_expired,
                ),
            )

    def reset(self) -> None:
        with self._lock:
            self._allocation_totals.clear()
            self._failure_reasons.clear()
            self._sweep_totals.clear()
            self._requested_cents = 0
            self._allocated_cents = 0
            self._allocation_events = AllocationEventLog()
            self._sweep_events = SweepEventLog()


_INVENTORY_STORE = InventoryObservabilityStore()


def get_inventory_store() -> InventoryObservabilityStore:
    return _INVENTORY_STORE
