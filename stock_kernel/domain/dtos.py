"""
Frozen data transfer objects returned across the ledger boundary.

Services and selectors hand these to callers instead of ORM instances, so
nothing outside the kernel can mutate ledger state by accident.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Generic, TypeVar
from uuid import UUID

from stock_kernel.models.grn import GRNStatus
from stock_kernel.models.movement import MovementType

T = TypeVar("T")


class AdjustmentDirection(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"

    @property
    def movement_type(self) -> MovementType:
        if self is AdjustmentDirection.INCREASE:
            return MovementType.ADJUSTMENT_INCREASE
        return MovementType.ADJUSTMENT_DECREASE


@dataclass(frozen=True)
class StockLevelSnapshot:
    """Point-in-time view of one StockLevel row."""

    product_id: UUID
    location: str
    quantity_on_hand: int
    quantity_reserved: int
    reorder_level: int = 0
    reorder_quantity: int = 0
    last_stock_take_date: datetime | None = None

    def __post_init__(self):
        if self.quantity_on_hand < 0 or self.quantity_reserved < 0:
            raise ValueError("Stock quantities cannot be negative")
        if self.quantity_reserved > self.quantity_on_hand:
            raise ValueError(
                f"Reserved ({self.quantity_reserved}) exceeds on hand "
                f"({self.quantity_on_hand})"
            )

    @property
    def quantity_available(self) -> int:
        return self.quantity_on_hand - self.quantity_reserved

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_available <= self.reorder_level

    @property
    def is_out_of_stock(self) -> bool:
        return self.quantity_available == 0

    @classmethod
    def empty(cls, product_id: UUID, location: str) -> "StockLevelSnapshot":
        return cls(product_id=product_id, location=location, quantity_on_hand=0, quantity_reserved=0)


@dataclass(frozen=True)
class MovementRecord:
    """An immutable movement as written to the ledger."""

    id: UUID
    seq: int
    product_id: UUID
    location: str
    movement_type: MovementType
    quantity: int
    reference_type: str | None
    reference_number: str | None
    notes: str | None
    created_by_id: UUID
    created_at: datetime
    reverses_movement_id: UUID | None = None
    grn_line_id: UUID | None = None

    @property
    def signed_quantity(self) -> int:
        return self.movement_type.signed(self.quantity)


@dataclass(frozen=True)
class AdjustmentResult:
    stock_level: StockLevelSnapshot
    movement: MovementRecord


@dataclass(frozen=True)
class ReservationResult:
    """Outcome of reserve / release / fulfil."""

    stock_level: StockLevelSnapshot
    quantity: int
    movement: MovementRecord | None = None


@dataclass(frozen=True)
class TransferResult:
    reference_number: str
    source: StockLevelSnapshot
    destination: StockLevelSnapshot
    movements: tuple[MovementRecord, MovementRecord]


@dataclass(frozen=True)
class StockTakeResult:
    stock_level: StockLevelSnapshot
    counted_quantity: int
    variance: int
    movement: MovementRecord | None = None


# ---------------------------------------------------------------------------
# Goods received notes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GRNLineSpec:
    """Caller-supplied line for a draft GRN.  ``gst_rate`` None = configured default."""

    product_id: UUID
    quantity_received: int
    unit_cost: Decimal
    unit: str = "each"
    gst_rate: Decimal | None = None
    description: str | None = None


@dataclass(frozen=True)
class GRNLineSnapshot:
    line_number: int
    product_id: UUID
    description: str | None
    quantity_received: int
    unit: str
    unit_cost: Decimal
    gst_rate: Decimal
    line_total: Decimal

    @property
    def gst_amount(self) -> Decimal:
        return self.line_total * self.gst_rate / Decimal("100")


@dataclass(frozen=True)
class GRNSnapshot:
    id: UUID
    grn_number: str
    vendor_id: UUID
    received_date: date
    received_time: time | None
    warehouse_location: str
    vendor_invoice_number: str | None
    vendor_invoice_date: date | None
    purchase_order_number: str | None
    reference_notes: str | None
    status: GRNStatus
    total_items: int
    total_cost: Decimal
    gst_amount: Decimal
    total_inc_gst: Decimal
    posted_at: datetime | None = None
    cancelled_at: datetime | None = None
    lines: tuple[GRNLineSnapshot, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class GRNPostResult:
    grn: GRNSnapshot
    movements: tuple[MovementRecord, ...]
    stock_levels: tuple[StockLevelSnapshot, ...]


@dataclass(frozen=True)
class GRNCancelResult:
    grn: GRNSnapshot
    reversal_movements: tuple[MovementRecord, ...] = ()


# ---------------------------------------------------------------------------
# Query facade
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Page(Generic[T]):
    items: tuple[T, ...]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.total == 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


@dataclass(frozen=True)
class MovementFilter:
    """Filters for movement history.  ``search`` matches reference_number."""

    product_id: UUID | None = None
    location: str | None = None
    movement_types: tuple[MovementType, ...] = ()
    date_from: datetime | None = None
    date_to: datetime | None = None
    reference_type: str | None = None
    search: str | None = None


@dataclass(frozen=True)
class BalanceDiscrepancy:
    """A stock level whose stored on-hand disagrees with its movement sum."""

    product_id: UUID
    location: str
    stored_on_hand: int
    ledger_on_hand: int

    @property
    def difference(self) -> int:
        return self.stored_on_hand - self.ledger_on_hand


@dataclass(frozen=True)
class ReorderSuggestion:
    product_id: UUID
    location: str
    quantity_available: int
    reorder_level: int
    suggested_quantity: int


@dataclass(frozen=True)
class StockSummary:
    stock_lines: int
    low_stock_count: int
    out_of_stock_count: int
    total_on_hand: int
    total_reserved: int

    @property
    def total_available(self) -> int:
        return self.total_on_hand - self.total_reserved
