"""Read models over goods received notes."""

from datetime import date
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import selectinload

from stock_kernel.domain.dtos import GRNSnapshot, Page
from stock_kernel.domain.validation import validate_grn_status
from stock_kernel.exceptions import GRNNotFoundError
from stock_kernel.models.grn import GoodsReceivedNote, GRNStatus
from stock_kernel.selectors.base import BaseSelector


class GRNSelector(BaseSelector):

    def get(self, grn_id: UUID) -> GRNSnapshot:
        grn = self.session.get(GoodsReceivedNote, grn_id)
        if grn is None:
            raise GRNNotFoundError(grn_id)
        return grn.to_dto()

    def get_by_number(self, grn_number: str) -> GRNSnapshot:
        grn = self.session.execute(
            select(GoodsReceivedNote).where(GoodsReceivedNote.grn_number == grn_number)
        ).scalar_one_or_none()
        if grn is None:
            raise GRNNotFoundError(grn_number)
        return grn.to_dto()

    def list_grns(
        self,
        *,
        status: GRNStatus | str | None = None,
        vendor_id: UUID | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        search: str | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> Page[GRNSnapshot]:
        """
        Notes ordered by received date then GRN number, newest first.

        ``search`` matches the GRN number or the vendor invoice number.
        """
        page, page_size = self._page_bounds(page, page_size)

        stmt = select(GoodsReceivedNote)
        if status is not None:
            stmt = stmt.where(GoodsReceivedNote.status == validate_grn_status(status).value)
        if vendor_id is not None:
            stmt = stmt.where(GoodsReceivedNote.vendor_id == vendor_id)
        if date_from is not None:
            stmt = stmt.where(GoodsReceivedNote.received_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(GoodsReceivedNote.received_date <= date_to)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    GoodsReceivedNote.grn_number.ilike(pattern),
                    GoodsReceivedNote.vendor_invoice_number.ilike(pattern),
                )
            )
        stmt = stmt.order_by(
            GoodsReceivedNote.received_date.desc(),
            GoodsReceivedNote.grn_number.desc(),
        )

        total = self._count(stmt)
        rows = self.session.execute(
            stmt.options(selectinload(GoodsReceivedNote.lines))
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars()
        return Page(
            items=tuple(grn.to_dto() for grn in rows),
            page=page,
            page_size=page_size,
            total=total,
        )

    def status_counts(self) -> dict[GRNStatus, int]:
        counts = {status: 0 for status in GRNStatus}
        for status, count in self.session.execute(
            select(GoodsReceivedNote.status, func.count()).group_by(GoodsReceivedNote.status)
        ):
            counts[GRNStatus(status)] = count
        return counts
