"""Read models over StockLevel: balances, low stock, summary, reorder hints."""

from uuid import UUID

from sqlalchemy import func, select

from stock_kernel.domain.dtos import Page, ReorderSuggestion, StockLevelSnapshot, StockSummary
from stock_kernel.models.stock_level import StockLevel
from stock_kernel.selectors.base import BaseSelector


class StockSelector(BaseSelector):

    def _filtered(self, location: str | None = None, product_id: UUID | None = None):
        stmt = select(StockLevel)
        if location is not None:
            stmt = stmt.where(StockLevel.location == location.strip())
        if product_id is not None:
            stmt = stmt.where(StockLevel.product_id == product_id)
        return stmt.order_by(StockLevel.location, StockLevel.product_id)

    def get_level(self, product_id: UUID, location: str) -> StockLevelSnapshot | None:
        level = self.session.execute(
            select(StockLevel).where(
                StockLevel.product_id == product_id,
                StockLevel.location == location.strip(),
            )
        ).scalar_one_or_none()
        return level.to_dto() if level is not None else None

    def levels_for_product(self, product_id: UUID) -> list[StockLevelSnapshot]:
        return [
            level.to_dto()
            for level in self.session.execute(self._filtered(product_id=product_id)).scalars()
        ]

    def list_levels(
        self,
        *,
        location: str | None = None,
        product_id: UUID | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> Page[StockLevelSnapshot]:
        page, page_size = self._page_bounds(page, page_size)
        stmt = self._filtered(location, product_id)
        total = self._count(stmt)
        rows = self.session.execute(
            stmt.offset((page - 1) * page_size).limit(page_size)
        ).scalars()
        return Page(
            items=tuple(level.to_dto() for level in rows),
            page=page,
            page_size=page_size,
            total=total,
        )

    def low_stock(self, location: str | None = None) -> list[StockLevelSnapshot]:
        """Rows where available <= reorder_level."""
        stmt = self._filtered(location).where(
            StockLevel.quantity_available <= StockLevel.reorder_level
        )
        return [level.to_dto() for level in self.session.execute(stmt).scalars()]

    def out_of_stock(self, location: str | None = None) -> list[StockLevelSnapshot]:
        stmt = self._filtered(location).where(StockLevel.quantity_available == 0)
        return [level.to_dto() for level in self.session.execute(stmt).scalars()]

    def locations(self) -> list[str]:
        return list(
            self.session.execute(
                select(StockLevel.location).distinct().order_by(StockLevel.location)
            ).scalars()
        )

    def summary(self, location: str | None = None) -> StockSummary:
        available = StockLevel.quantity_available
        stmt = select(
            func.count(StockLevel.id),
            func.coalesce(func.sum(StockLevel.quantity_on_hand), 0),
            func.coalesce(func.sum(StockLevel.quantity_reserved), 0),
        )
        low = select(func.count(StockLevel.id)).where(available <= StockLevel.reorder_level)
        out = select(func.count(StockLevel.id)).where(available == 0)
        if location is not None:
            location = location.strip()
            stmt = stmt.where(StockLevel.location == location)
            low = low.where(StockLevel.location == location)
            out = out.where(StockLevel.location == location)

        lines, on_hand, reserved = self.session.execute(stmt).one()
        return StockSummary(
            stock_lines=lines,
            low_stock_count=self.session.execute(low).scalar_one(),
            out_of_stock_count=self.session.execute(out).scalar_one(),
            total_on_hand=int(on_hand),
            total_reserved=int(reserved),
        )

    def reorder_suggestions(self, location: str | None = None) -> list[ReorderSuggestion]:
        """
        Low-stock rows with a suggested order quantity.

        The suggestion is the configured reorder_quantity, or the shortfall
        to reorder_level when no reorder quantity is set.  Rows with
        nothing to order are left out.
        """
        suggestions = []
        for level in self.low_stock(location):
            suggested = level.reorder_quantity or (level.reorder_level - level.quantity_available)
            if suggested <= 0:
                continue
            suggestions.append(
                ReorderSuggestion(
                    product_id=level.product_id,
                    location=level.location,
                    quantity_available=level.quantity_available,
                    reorder_level=level.reorder_level,
                    suggested_quantity=suggested,
                )
            )
        return suggestions
