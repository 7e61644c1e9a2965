"""
Write services.  Each takes the caller's Session and only flushes.

``build_services`` wires one set of services around a single Session so
they share the StockLevel locks and the movement ledger.
"""

from dataclasses import dataclass

from sqlalchemy.orm import Session

from stock_kernel.config import LedgerConfig
from stock_kernel.domain.catalog import ProductCatalog
from stock_kernel.domain.clock import Clock
from stock_kernel.services.adjustment_service import AdjustmentService
from stock_kernel.services.grn_service import GRNService
from stock_kernel.services.movement_ledger import MovementLedger
from stock_kernel.services.reservation_service import ReservationService
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_locks import StockLevelLocks
from stock_kernel.services.stock_take_service import StockTakeService
from stock_kernel.services.transfer_service import TransferService


@dataclass(frozen=True)
class LedgerServices:
    movements: MovementLedger
    adjustments: AdjustmentService
    grns: GRNService
    reservations: ReservationService
    transfers: TransferService
    stock_takes: StockTakeService


def build_services(
    session: Session,
    *,
    clock: Clock | None = None,
    config: LedgerConfig | None = None,
    catalog: ProductCatalog | None = None,
) -> LedgerServices:
    deps = {"clock": clock, "config": config, "catalog": catalog}
    ledger = MovementLedger(session, **deps)
    return LedgerServices(
        movements=ledger,
        adjustments=AdjustmentService(session, ledger=ledger, **deps),
        grns=GRNService(session, ledger=ledger, **deps),
        reservations=ReservationService(session, ledger=ledger, **deps),
        transfers=TransferService(session, ledger=ledger, **deps),
        stock_takes=StockTakeService(session, ledger=ledger, **deps),
    )


__all__ = [
    "AdjustmentService",
    "GRNService",
    "LedgerServices",
    "MovementLedger",
    "ReservationService",
    "SequenceService",
    "StockLevelLocks",
    "StockTakeService",
    "TransferService",
    "build_services",
]
