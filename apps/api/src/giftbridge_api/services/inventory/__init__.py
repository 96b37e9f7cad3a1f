"""Gift code inventory services."""

from .allocator import AllocationResult, GiftCodeAllocator, select_combination
from .service import (
    BulkImportError,
    BulkImportResult,
    GiftCodeInventoryService,
    InventoryStats,
    can_transition_code,
)
from .store import GiftCodeStore, InventoryAggregate

__all__ = [
    "AllocationResult",
    "BulkImportError",
    "BulkImportResult",
    "GiftCodeAllocator",
    "GiftCodeInventoryService",
    "GiftCodeStore",
    "InventoryAggregate",
    "InventoryStats",
    "can_transition_code",
    "select_combination",
]
