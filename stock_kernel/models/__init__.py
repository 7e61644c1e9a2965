"""ORM models for the stock ledger."""

from stock_kernel.models.grn import GoodsReceivedNote, GRNLineItem, GRNStatus
from stock_kernel.models.movement import (
    INBOUND_TYPES,
    OUTBOUND_TYPES,
    MovementType,
    StockMovement,
)
from stock_kernel.models.sequence import SequenceCounter
from stock_kernel.models.stock_level import StockLevel

__all__ = [
    "GoodsReceivedNote",
    "GRNLineItem",
    "GRNStatus",
    "INBOUND_TYPES",
    "OUTBOUND_TYPES",
    "MovementType",
    "SequenceCounter",
    "StockLevel",
    "StockMovement",
]
