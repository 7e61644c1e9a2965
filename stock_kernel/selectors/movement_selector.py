"""
Read models over the movement ledger.

History queries, ledger-derived balances, reconciliation against the
stored StockLevel projection, and CSV export.
"""

import csv
import io
from typing import TextIO
from uuid import UUID

from sqlalchemy import case, func, select

from stock_kernel.domain.dtos import BalanceDiscrepancy, MovementFilter, MovementRecord, Page
from stock_kernel.domain.validation import validate_movement_type
from stock_kernel.exceptions import MovementNotFoundError
from stock_kernel.models.movement import INBOUND_TYPES, MovementType, StockMovement
from stock_kernel.models.stock_level import StockLevel
from stock_kernel.selectors.base import BaseSelector

CSV_HEADERS = (
    "Date",
    "Product Id",
    "Movement Type",
    "Quantity",
    "Reference",
    "Location",
    "Created By",
    "Notes",
)

ADJUSTMENT_TYPES = (MovementType.ADJUSTMENT_INCREASE, MovementType.ADJUSTMENT_DECREASE)

_signed_quantity = case(
    (
        StockMovement.movement_type.in_([t.value for t in INBOUND_TYPES]),
        StockMovement.quantity,
    ),
    else_=-StockMovement.quantity,
)


class MovementSelector(BaseSelector):

    def _filtered(self, criteria: MovementFilter | None):
        stmt = select(StockMovement)
        if criteria is not None:
            if criteria.product_id is not None:
                stmt = stmt.where(StockMovement.product_id == criteria.product_id)
            if criteria.location is not None:
                stmt = stmt.where(StockMovement.location == criteria.location.strip())
            if criteria.movement_types:
                stmt = stmt.where(
                    StockMovement.movement_type.in_(
                        [validate_movement_type(t).value for t in criteria.movement_types]
                    )
                )
            if criteria.date_from is not None:
                stmt = stmt.where(StockMovement.created_at >= criteria.date_from)
            if criteria.date_to is not None:
                stmt = stmt.where(StockMovement.created_at <= criteria.date_to)
            if criteria.reference_type is not None:
                stmt = stmt.where(StockMovement.reference_type == criteria.reference_type)
            if criteria.search:
                stmt = stmt.where(StockMovement.reference_number.ilike(f"%{criteria.search.strip()}%"))
        return stmt.order_by(StockMovement.created_at.desc(), StockMovement.seq.desc())

    def get(self, movement_id: UUID) -> MovementRecord:
        movement = self.session.get(StockMovement, movement_id)
        if movement is None:
            raise MovementNotFoundError(movement_id)
        return movement.to_dto()

    def history(
        self,
        criteria: MovementFilter | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> Page[MovementRecord]:
        """Filtered movements, newest first."""
        page, page_size = self._page_bounds(page, page_size)
        stmt = self._filtered(criteria)
        total = self._count(stmt)
        rows = self.session.execute(
            stmt.offset((page - 1) * page_size).limit(page_size)
        ).scalars()
        return Page(
            items=tuple(m.to_dto() for m in rows),
            page=page,
            page_size=page_size,
            total=total,
        )

    def for_reference(self, reference_type: str, reference_number: str) -> list[MovementRecord]:
        """All movements written for one document, in ledger order."""
        rows = self.session.execute(
            select(StockMovement)
            .where(
                StockMovement.reference_type == reference_type,
                StockMovement.reference_number == reference_number,
            )
            .order_by(StockMovement.seq)
        ).scalars()
        return [m.to_dto() for m in rows]

    def recent_adjustments(self, limit: int = 10) -> list[MovementRecord]:
        stmt = self._filtered(MovementFilter(movement_types=ADJUSTMENT_TYPES)).limit(limit)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def balance_from_ledger(self, product_id: UUID, location: str) -> int:
        """Signed sum of every movement for the pair."""
        total = self.session.execute(
            select(func.coalesce(func.sum(_signed_quantity), 0)).where(
                StockMovement.product_id == product_id,
                StockMovement.location == location.strip(),
            )
        ).scalar_one()
        return int(total)

    def verify_balances(self) -> list[BalanceDiscrepancy]:
        """
        Compare every stored on-hand with its movement sum.

        Returns one BalanceDiscrepancy per disagreeing pair; an empty list
        means the projection reconciles with the ledger.
        """
        ledger = {
            (product_id, location): int(total)
            for product_id, location, total in self.session.execute(
                select(
                    StockMovement.product_id,
                    StockMovement.location,
                    func.sum(_signed_quantity),
                ).group_by(StockMovement.product_id, StockMovement.location)
            )
        }
        stored = {
            (product_id, location): on_hand
            for product_id, location, on_hand in self.session.execute(
                select(StockLevel.product_id, StockLevel.location, StockLevel.quantity_on_hand)
            )
        }

        discrepancies = []
        for key in sorted(set(ledger) | set(stored), key=lambda k: (str(k[0]), k[1])):
            stored_on_hand = stored.get(key, 0)
            ledger_on_hand = ledger.get(key, 0)
            if stored_on_hand != ledger_on_hand:
                discrepancies.append(
                    BalanceDiscrepancy(
                        product_id=key[0],
                        location=key[1],
                        stored_on_hand=stored_on_hand,
                        ledger_on_hand=ledger_on_hand,
                    )
                )
        return discrepancies

    def export_csv(
        self,
        criteria: MovementFilter | None = None,
        stream: TextIO | None = None,
    ) -> str | None:
        """
        Write matching movements as CSV, newest first.

        Quantity is the stored magnitude; Movement Type carries direction.

        Returns the CSV text when no ``stream`` is given.
        """
        out = stream if stream is not None else io.StringIO()
        writer = csv.writer(out)
        writer.writerow(CSV_HEADERS)
        for movement in self.session.execute(self._filtered(criteria)).scalars():
            writer.writerow(
                (
                    movement.created_at.isoformat(),
                    str(movement.product_id),
                    movement.movement_type,
                    movement.quantity,
                    movement.reference_number or "",
                    movement.location,
                    str(movement.created_by_id),
                    movement.notes or "",
                )
            )
        if stream is None:
            return out.getvalue()
        return None
