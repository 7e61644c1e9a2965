"""Pure domain types: clock, DTOs, catalog port, GRN workflow, validation."""

from stock_kernel.domain.catalog import ProductCatalog, ProductRef, StaticProductCatalog
from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.dtos import (
    AdjustmentDirection,
    AdjustmentResult,
    BalanceDiscrepancy,
    GRNCancelResult,
    GRNLineSnapshot,
    GRNLineSpec,
    GRNPostResult,
    GRNSnapshot,
    MovementFilter,
    MovementRecord,
    Page,
    ReorderSuggestion,
    ReservationResult,
    StockLevelSnapshot,
    StockSummary,
    StockTakeResult,
    TransferResult,
)

__all__ = [
    "AdjustmentDirection",
    "AdjustmentResult",
    "BalanceDiscrepancy",
    "Clock",
    "DeterministicClock",
    "GRNCancelResult",
    "GRNLineSnapshot",
    "GRNLineSpec",
    "GRNPostResult",
    "GRNSnapshot",
    "MovementFilter",
    "MovementRecord",
    "Page",
    "ProductCatalog",
    "ProductRef",
    "ReorderSuggestion",
    "ReservationResult",
    "StaticProductCatalog",
    "StockLevelSnapshot",
    "StockSummary",
    "StockTakeResult",
    "SystemClock",
    "TransferResult",
]
