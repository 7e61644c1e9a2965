"""
Module: stock_kernel.services.grn_service
Responsibility: Goods received note lifecycle -- draft editing, posting
    (one Receipt movement per line) and cancellation (compensating
    Receipt Reversal movements for a posted note).
Architecture position: Kernel > Services.  Uses MovementLedger for every
    stock effect; never touches quantity_on_hand directly.

Invariants enforced:
    - Posting is atomic and non-repeatable: the header is locked, the
      status is checked, every line's movement is written and the status
      becomes Posted in one transaction.  A second post fails the Draft
      check with no side effect.
    - Stock rows for a post or cancel are locked in the global lock order.
    - Totals are recomputed from the lines whenever the lines change.
    - Only Draft notes can be edited or deleted.

Failure modes:
    - InvalidStateError when the workflow does not allow the action.
    - BelowReservedError when cancelling a posted note would take a
      product below its reserved quantity; the note stays Posted.
    - EmptyGRNError / DuplicateLineProductError / InvalidLineError on bad
      line input.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, time
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.dtos import (
    GRNCancelResult,
    GRNLineSpec,
    GRNPostResult,
    GRNSnapshot,
)
from stock_kernel.domain.validation import MAX_QUANTITY, to_decimal, validate_location
from stock_kernel.domain.workflow import require_transition
from stock_kernel.exceptions import (
    DuplicateLineProductError,
    EmptyGRNError,
    GRNNotFoundError,
    InvalidLineError,
    LedgerValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.grn import GoodsReceivedNote, GRNLineItem, GRNStatus
from stock_kernel.models.movement import MovementType, StockMovement
from stock_kernel.services.base import BaseService
from stock_kernel.services.movement_ledger import MovementLedger
from stock_kernel.services.sequence_service import SequenceService

logger = get_logger("services.grn")

GRN_REFERENCE = "GRN"

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")

# Header fields a Draft may change through update_grn.
EDITABLE_FIELDS = frozenset(
    {
        "vendor_id",
        "received_date",
        "received_time",
        "warehouse_location",
        "vendor_invoice_number",
        "vendor_invoice_date",
        "purchase_order_number",
        "reference_notes",
    }
)


def money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class GRNTotals:
    total_items: int
    total_cost: Decimal
    gst_amount: Decimal
    total_inc_gst: Decimal


def compute_totals(lines: Sequence[GRNLineItem]) -> GRNTotals:
    """Document totals: line totals exclude GST, GST is added at each line's rate."""
    total_cost = sum((line.line_total for line in lines), Decimal("0"))
    gst = sum(
        (Decimal(line.line_total) * Decimal(line.gst_rate) / _HUNDRED for line in lines),
        Decimal("0"),
    )
    total_cost = money(Decimal(total_cost))
    gst = money(gst)
    return GRNTotals(
        total_items=len(lines),
        total_cost=total_cost,
        gst_amount=gst,
        total_inc_gst=total_cost + gst,
    )


class GRNService(BaseService):

    def __init__(self, session, *, ledger: MovementLedger | None = None, **kwargs):
        super().__init__(session, **kwargs)
        self.ledger = ledger or MovementLedger(
            session, clock=self.clock, config=self.config, catalog=self.catalog
        )

    # ------------------------------------------------------------------
    # Draft
    # ------------------------------------------------------------------

    def create_grn(
        self,
        vendor_id: UUID,
        lines: Sequence[GRNLineSpec],
        *,
        actor_id: UUID,
        received_date: date | None = None,
        received_time: time | None = None,
        warehouse_location: str | None = None,
        vendor_invoice_number: str | None = None,
        vendor_invoice_date: date | None = None,
        purchase_order_number: str | None = None,
        reference_notes: str | None = None,
    ) -> GRNSnapshot:
        """Create a Draft note with the next GRN number.  No stock effect."""
        line_items = self._build_lines(lines, actor_id)
        location = validate_location(warehouse_location or self.config.default_location)

        grn_number = SequenceService(self.session).next_formatted(
            SequenceService.GRN_NUMBER,
            self.config.grn_number_prefix,
            self.config.grn_number_width,
        )

        grn = GoodsReceivedNote(
            grn_number=grn_number,
            vendor_id=vendor_id,
            received_date=received_date or self.clock.now().date(),
            received_time=received_time,
            warehouse_location=location,
            vendor_invoice_number=vendor_invoice_number,
            vendor_invoice_date=vendor_invoice_date,
            purchase_order_number=purchase_order_number,
            reference_notes=reference_notes,
            status=GRNStatus.DRAFT.value,
            created_by_id=actor_id,
        )
        grn.lines = line_items
        self._apply_totals(grn)
        self.session.add(grn)
        self.session.flush()

        logger.info(
            "grn_created",
            extra={
                "grn_id": str(grn.id),
                "grn_number": grn_number,
                "vendor_id": str(vendor_id),
                "line_count": grn.total_items,
                "total_inc_gst": grn.total_inc_gst,
            },
        )
        return grn.to_dto()

    def update_grn(self, grn_id: UUID, *, actor_id: UUID, **header_fields) -> GRNSnapshot:
        unknown = sorted(set(header_fields) - EDITABLE_FIELDS)
        if unknown:
            raise LedgerValidationError(f"Cannot edit GRN fields: {unknown}")

        grn = self._lock_grn(grn_id)
        require_transition(grn.id, grn.grn_number, grn.status, "edit")

        if "warehouse_location" in header_fields:
            header_fields["warehouse_location"] = validate_location(
                header_fields["warehouse_location"]
            )
        for required in ("vendor_id", "received_date"):
            if required in header_fields and header_fields[required] is None:
                raise LedgerValidationError(f"{required} is required")

        for field_name, value in header_fields.items():
            setattr(grn, field_name, value)
        grn.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "grn_updated",
            extra={"grn_number": grn.grn_number, "fields": sorted(header_fields)},
        )
        return grn.to_dto()

    def replace_grn_lines(
        self,
        grn_id: UUID,
        lines: Sequence[GRNLineSpec],
        *,
        actor_id: UUID,
    ) -> GRNSnapshot:
        """Swap every line of a Draft note and recompute its totals."""
        line_items = self._build_lines(lines, actor_id)

        grn = self._lock_grn(grn_id)
        require_transition(grn.id, grn.grn_number, grn.status, "edit")

        # Old lines must be gone before the new ones reuse their line numbers.
        grn.lines.clear()
        self.session.flush()

        grn.lines.extend(line_items)
        self._apply_totals(grn)
        grn.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "grn_lines_replaced",
            extra={"grn_number": grn.grn_number, "line_count": grn.total_items},
        )
        return grn.to_dto()

    def delete_grn(self, grn_id: UUID, *, actor_id: UUID) -> None:
        """Remove a Draft note and its lines.  Movements are never touched."""
        grn = self._lock_grn(grn_id)
        require_transition(grn.id, grn.grn_number, grn.status, "delete")

        grn_number = grn.grn_number
        self.session.delete(grn)
        self.session.flush()

        logger.info(
            "grn_deleted",
            extra={"grn_number": grn_number, "deleted_by": str(actor_id)},
        )

    # ------------------------------------------------------------------
    # Post / cancel
    # ------------------------------------------------------------------

    def post_grn(self, grn_id: UUID, *, actor_id: UUID) -> GRNPostResult:
        """
        Apply a Draft note to stock: one Receipt per line, then Posted.

        Preconditions:
            - status is Draft, otherwise InvalidStateError.
            - at least one line, otherwise EmptyGRNError.
        """
        grn = self._lock_grn(grn_id)
        require_transition(grn.id, grn.grn_number, grn.status, "post")
        if not grn.lines:
            raise EmptyGRNError()

        location = grn.warehouse_location
        levels = self.ledger.locks.lock_many(
            ((line.product_id, location) for line in grn.lines),
            actor_id=actor_id,
        )

        movements = []
        for line in grn.lines:
            movements.append(
                self.ledger.apply_movement(
                    levels[(line.product_id, location)],
                    MovementType.RECEIPT,
                    line.quantity_received,
                    actor_id=actor_id,
                    reference_type=GRN_REFERENCE,
                    reference_number=grn.grn_number,
                    notes=line.description,
                    grn_line_id=line.id,
                )
            )

        grn.status = GRNStatus.POSTED.value
        grn.posted_at = self.clock.now()
        grn.posted_by_id = actor_id
        grn.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "grn_posted",
            extra={
                "grn_id": str(grn.id),
                "grn_number": grn.grn_number,
                "movement_count": len(movements),
                "location": location,
            },
        )
        return GRNPostResult(
            grn=grn.to_dto(),
            movements=tuple(m.to_dto() for m in movements),
            stock_levels=tuple(level.to_dto() for level in levels.values()),
        )

    def cancel_grn(
        self,
        grn_id: UUID,
        *,
        actor_id: UUID,
        reason: str | None = None,
    ) -> GRNCancelResult:
        """
        Cancel a Draft or Posted note.

        A Draft is only marked Cancelled.  A Posted note gets one Receipt
        Reversal per original Receipt, in the same transaction as the
        status change.
        """
        grn = self._lock_grn(grn_id)
        previous = grn.status_enum
        require_transition(grn.id, grn.grn_number, previous, "cancel")

        reversals = []
        if previous is GRNStatus.POSTED:
            receipts = self._receipts_for(grn)
            self.ledger.locks.lock_many(
                ((m.product_id, m.location) for m in receipts),
                actor_id=actor_id,
                create=False,
            )
            for receipt in receipts:
                reversals.append(
                    self.ledger.reverse_movement(
                        receipt.id,
                        actor_id=actor_id,
                        notes=reason or f"Cancellation of {grn.grn_number}",
                    )
                )

        grn.status = GRNStatus.CANCELLED.value
        grn.cancelled_at = self.clock.now()
        grn.cancelled_by_id = actor_id
        grn.cancellation_reason = reason
        grn.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "grn_cancelled",
            extra={
                "grn_id": str(grn.id),
                "grn_number": grn.grn_number,
                "previous_status": previous.value,
                "reversal_count": len(reversals),
            },
        )
        return GRNCancelResult(
            grn=grn.to_dto(),
            reversal_movements=tuple(m.to_dto() for m in reversals),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_grn(self, grn_id: UUID) -> GoodsReceivedNote:
        grn = self.session.execute(
            select(GoodsReceivedNote)
            .where(GoodsReceivedNote.id == grn_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if grn is None:
            raise GRNNotFoundError(grn_id)
        return grn

    def _receipts_for(self, grn: GoodsReceivedNote) -> list[StockMovement]:
        """Receipts written by post_grn for this note's lines, in ledger order."""
        line_ids = [line.id for line in grn.lines]
        return list(
            self.session.execute(
                select(StockMovement)
                .where(
                    StockMovement.grn_line_id.in_(line_ids),
                    StockMovement.movement_type == MovementType.RECEIPT.value,
                )
                .order_by(StockMovement.seq)
            ).scalars()
        )

    def _apply_totals(self, grn: GoodsReceivedNote) -> None:
        totals = compute_totals(grn.lines)
        grn.total_items = totals.total_items
        grn.total_cost = totals.total_cost
        grn.gst_amount = totals.gst_amount
        grn.total_inc_gst = totals.total_inc_gst

    def _build_lines(self, lines: Sequence[GRNLineSpec], actor_id: UUID) -> list[GRNLineItem]:
        """Validate line specs and turn them into unsaved line items."""
        if not lines:
            raise EmptyGRNError()

        seen: set[UUID] = set()
        items = []
        for number, line_spec in enumerate(lines, start=1):
            if line_spec.product_id in seen:
                raise DuplicateLineProductError(line_spec.product_id)
            seen.add(line_spec.product_id)
            self._require_product(line_spec.product_id)

            qty = line_spec.quantity_received
            if isinstance(qty, bool) or not isinstance(qty, int) or not 0 < qty <= MAX_QUANTITY:
                raise InvalidLineError(number, "quantity_received", "must be a positive integer")

            unit_cost = to_decimal(line_spec.unit_cost)
            if unit_cost is None or unit_cost < 0:
                raise InvalidLineError(number, "unit_cost", "must be a non-negative amount")

            gst_rate = to_decimal(
                line_spec.gst_rate if line_spec.gst_rate is not None else self.config.default_gst_rate
            )
            if gst_rate is None or not Decimal("0") <= gst_rate <= _HUNDRED:
                raise InvalidLineError(number, "gst_rate", "must be between 0 and 100")

            unit = (line_spec.unit or "").strip()
            if not unit:
                raise InvalidLineError(number, "unit", "must not be blank")

            items.append(
                GRNLineItem(
                    line_number=number,
                    product_id=line_spec.product_id,
                    description=line_spec.description,
                    quantity_received=qty,
                    unit=unit,
                    unit_cost=unit_cost,
                    gst_rate=gst_rate,
                    line_total=money(unit_cost * qty),
                    created_by_id=actor_id,
                )
            )
        return items
