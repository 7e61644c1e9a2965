"""
Module: stock_kernel.ledger
Responsibility: Public entry point.  StockLedger owns the transaction for
    every write (one transaction per call), retries lock and version
    conflicts a bounded number of times, and hands out read-only
    selector scopes.
Architecture position: Kernel > outermost layer.  Wires db/, services/
    and selectors/ together; callers depend on this module only.

Invariants enforced:
    - Services flush, StockLedger commits.  Any exception rolls back the
      whole call, so no partial movements are ever visible.
    - Conflicts (version mismatch, PostgreSQL serialization / deadlock /
      lock timeout, SQLite "database is locked") are retried up to
      ``max_conflict_retries`` times with linear backoff, then raised as
      ConcurrencyConflictError.
    - A transaction that cannot begin raises StorageUnavailableError and
      is logged at CRITICAL.

Usage:
    ledger = StockLedger.from_config(load_config("stock_ledger.yaml"))
    ledger.adjust_stock(product_id, "Main Warehouse", "increase", 10,
                        "Opening balance", actor_id=user_id)
    with ledger.read() as reader:
        print(reader.stock.low_stock())
"""

import time as _time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from datetime import time as clock_time
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from stock_kernel.config import LedgerConfig
from stock_kernel.db.engine import build_engine, create_tables, read_only_scope
from stock_kernel.db.immutability import register_immutability_listeners
from stock_kernel.domain.catalog import ProductCatalog
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    AdjustmentDirection,
    AdjustmentResult,
    GRNCancelResult,
    GRNLineSpec,
    GRNPostResult,
    GRNSnapshot,
    MovementRecord,
    ReservationResult,
    StockLevelSnapshot,
    StockTakeResult,
    TransferResult,
)
from stock_kernel.exceptions import ConcurrencyConflictError, StorageUnavailableError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.movement import MovementType
from stock_kernel.selectors import GRNSelector, MovementSelector, StockSelector
from stock_kernel.services import LedgerServices, build_services

logger = get_logger("ledger")

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def _is_retryable_db_error(exc: BaseException) -> bool:
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    if getattr(orig, "pgcode", None) in RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


def _as_conflict(exc: BaseException, operation: str) -> ConcurrencyConflictError | None:
    """The ConcurrencyConflictError ``exc`` stands for, or None if it is not a conflict."""
    if isinstance(exc, ConcurrencyConflictError):
        return exc
    if isinstance(exc, StaleDataError):
        return ConcurrencyConflictError("versioned row", operation)
    if _is_retryable_db_error(exc):
        return ConcurrencyConflictError("locked row", operation)
    return None


@dataclass(frozen=True)
class LedgerReader:
    """Selectors bound to one read-only session."""

    stock: StockSelector
    movements: MovementSelector
    grns: GRNSelector


class StockLedger:
    """
    Transaction boundary and public API of the stock kernel.

    Every mutating method takes an explicit ``actor_id`` and returns
    frozen DTOs built before the commit.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
        catalog: ProductCatalog | None = None,
        sleep: Callable[[float], None] = _time.sleep,
    ):
        self._session_factory = session_factory
        self.clock = clock or SystemClock()
        self.config = config or LedgerConfig()
        self.catalog = catalog
        self._sleep = sleep
        register_immutability_listeners()

    @classmethod
    def from_config(
        cls,
        config: LedgerConfig | None = None,
        *,
        clock: Clock | None = None,
        catalog: ProductCatalog | None = None,
        create_schema: bool = False,
    ) -> "StockLedger":
        """Build the engine and session factory from ``config``."""
        config = config or LedgerConfig()
        engine = build_engine(
            config.database_url,
            echo=config.echo_sql,
            lock_timeout_ms=config.lock_timeout_ms,
        )
        if create_schema:
            create_tables(engine)
        factory = sessionmaker(bind=engine, expire_on_commit=False)
        return cls(factory, clock=clock, config=config, catalog=catalog)

    # ------------------------------------------------------------------
    # Transaction runner
    # ------------------------------------------------------------------

    def _begin(self, session: Session) -> None:
        try:
            session.connection()
        except DBAPIError as exc:
            if _is_retryable_db_error(exc):
                raise
            logger.critical(
                "storage_unavailable",
                extra={"error": str(exc.orig)},
                exc_info=True,
            )
            raise StorageUnavailableError(str(exc.orig)) from exc

    def _run(
        self,
        operation: str,
        actor_id: UUID,
        work: Callable[[LedgerServices], T],
        *,
        reference: str | None = None,
    ) -> T:
        max_attempts = self.config.max_conflict_retries + 1
        with LogContext.bind(
            correlation_id=uuid4(),
            actor_id=actor_id,
            operation=operation,
            reference=reference,
        ):
            attempt = 0
            while True:
                attempt += 1
                session = self._session_factory()
                try:
                    self._begin(session)
                    services = build_services(
                        session, clock=self.clock, config=self.config, catalog=self.catalog
                    )
                    result = work(services)
                    session.commit()
                    return result
                except Exception as exc:
                    session.rollback()
                    conflict = _as_conflict(exc, operation)
                    if conflict is None:
                        raise
                    conflict.attempts = attempt
                    if attempt >= max_attempts:
                        logger.warning(
                            "transaction_conflict_exhausted",
                            extra={"attempts": attempt, "error": str(exc)},
                        )
                        if conflict is exc:
                            raise
                        raise conflict from exc
                    logger.warning(
                        "transaction_conflict_retry",
                        extra={"attempt": attempt, "error": str(exc)},
                    )
                    self._sleep(self.config.retry_backoff_seconds * attempt)
                finally:
                    session.close()

    # ------------------------------------------------------------------
    # Movements
    # ------------------------------------------------------------------

    def record_movement(
        self,
        product_id: UUID,
        location: str,
        movement_type: MovementType | str,
        quantity: int,
        *,
        actor_id: UUID,
        reference_type: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> MovementRecord:
        return self._run(
            "record_movement",
            actor_id,
            lambda s: s.movements.record_movement(
                product_id,
                location,
                movement_type,
                quantity,
                actor_id=actor_id,
                reference_type=reference_type,
                reference_number=reference_number,
                notes=notes,
            ),
            reference=reference_number,
        )

    def adjust_stock(
        self,
        product_id: UUID,
        location: str,
        direction: AdjustmentDirection | str,
        quantity: int,
        reason: str,
        *,
        actor_id: UUID,
    ) -> AdjustmentResult:
        return self._run(
            "adjust_stock",
            actor_id,
            lambda s: s.adjustments.adjust_stock(
                product_id, location, direction, quantity, reason, actor_id=actor_id
            ),
        )

    def transfer_stock(
        self,
        product_id: UUID,
        from_location: str,
        to_location: str,
        quantity: int,
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> TransferResult:
        return self._run(
            "transfer_stock",
            actor_id,
            lambda s: s.transfers.transfer_stock(
                product_id, from_location, to_location, quantity, actor_id=actor_id, notes=notes
            ),
        )

    def record_stock_take(
        self,
        product_id: UUID,
        location: str,
        counted_quantity: int,
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> StockTakeResult:
        return self._run(
            "record_stock_take",
            actor_id,
            lambda s: s.stock_takes.record_stock_take(
                product_id, location, counted_quantity, actor_id=actor_id, notes=notes
            ),
        )

    def set_reorder_levels(
        self,
        product_id: UUID,
        location: str,
        reorder_level: int,
        reorder_quantity: int,
        *,
        actor_id: UUID,
    ) -> StockLevelSnapshot:
        return self._run(
            "set_reorder_levels",
            actor_id,
            lambda s: s.stock_takes.set_reorder_levels(
                product_id, location, reorder_level, reorder_quantity, actor_id=actor_id
            ),
        )

    # ------------------------------------------------------------------
    # Goods received notes
    # ------------------------------------------------------------------

    def create_grn(
        self,
        vendor_id: UUID,
        lines: Sequence[GRNLineSpec],
        *,
        actor_id: UUID,
        received_date: date | None = None,
        received_time: clock_time | None = None,
        warehouse_location: str | None = None,
        vendor_invoice_number: str | None = None,
        vendor_invoice_date: date | None = None,
        purchase_order_number: str | None = None,
        reference_notes: str | None = None,
    ) -> GRNSnapshot:
        return self._run(
            "create_grn",
            actor_id,
            lambda s: s.grns.create_grn(
                vendor_id,
                lines,
                actor_id=actor_id,
                received_date=received_date,
                received_time=received_time,
                warehouse_location=warehouse_location,
                vendor_invoice_number=vendor_invoice_number,
                vendor_invoice_date=vendor_invoice_date,
                purchase_order_number=purchase_order_number,
                reference_notes=reference_notes,
            ),
        )

    def update_grn(self, grn_id: UUID, *, actor_id: UUID, **header_fields) -> GRNSnapshot:
        return self._run(
            "update_grn",
            actor_id,
            lambda s: s.grns.update_grn(grn_id, actor_id=actor_id, **header_fields),
            reference=grn_id,
        )

    def replace_grn_lines(
        self, grn_id: UUID, lines: Sequence[GRNLineSpec], *, actor_id: UUID
    ) -> GRNSnapshot:
        return self._run(
            "replace_grn_lines",
            actor_id,
            lambda s: s.grns.replace_grn_lines(grn_id, lines, actor_id=actor_id),
            reference=grn_id,
        )

    def post_grn(self, grn_id: UUID, *, actor_id: UUID) -> GRNPostResult:
        return self._run(
            "post_grn",
            actor_id,
            lambda s: s.grns.post_grn(grn_id, actor_id=actor_id),
            reference=grn_id,
        )

    def delete_grn(self, grn_id: UUID, *, actor_id: UUID) -> None:
        return self._run(
            "delete_grn",
            actor_id,
            lambda s: s.grns.delete_grn(grn_id, actor_id=actor_id),
            reference=grn_id,
        )

    def cancel_grn(
        self, grn_id: UUID, *, actor_id: UUID, reason: str | None = None
    ) -> GRNCancelResult:
        return self._run(
            "cancel_grn",
            actor_id,
            lambda s: s.grns.cancel_grn(grn_id, actor_id=actor_id, reason=reason),
            reference=grn_id,
        )

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    def reserve(
        self,
        product_id: UUID,
        location: str,
        quantity: int,
        *,
        actor_id: UUID,
        reference: str | None = None,
    ) -> ReservationResult:
        return self._run(
            "reserve",
            actor_id,
            lambda s: s.reservations.reserve(
                product_id, location, quantity, actor_id=actor_id, reference=reference
            ),
            reference=reference,
        )

    def release(
        self,
        product_id: UUID,
        location: str,
        quantity: int,
        *,
        actor_id: UUID,
        reference: str | None = None,
    ) -> ReservationResult:
        return self._run(
            "release",
            actor_id,
            lambda s: s.reservations.release(
                product_id, location, quantity, actor_id=actor_id, reference=reference
            ),
            reference=reference,
        )

    def fulfil(
        self,
        product_id: UUID,
        location: str,
        quantity: int,
        *,
        actor_id: UUID,
        reference: str | None = None,
    ) -> ReservationResult:
        return self._run(
            "fulfil",
            actor_id,
            lambda s: s.reservations.fulfil(
                product_id, location, quantity, actor_id=actor_id, reference=reference
            ),
            reference=reference,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @contextmanager
    def read(self) -> Iterator[LedgerReader]:
        """Read-only selectors on one session; any flush raises ReadOnlySessionError."""
        with read_only_scope(self._session_factory) as session:
            yield LedgerReader(
                stock=StockSelector(session, self.config),
                movements=MovementSelector(session, self.config),
                grns=GRNSelector(session, self.config),
            )

    def get_level(self, product_id: UUID, location: str) -> StockLevelSnapshot | None:
        with self.read() as reader:
            return reader.stock.get_level(product_id, location)

    def get_grn(self, grn_id: UUID) -> GRNSnapshot:
        with self.read() as reader:
            return reader.grns.get(grn_id)
