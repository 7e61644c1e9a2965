"""
Row locks on StockLevel.

Every write that touches a balance takes the (product, location) row with
``SELECT ... FOR UPDATE`` first.  A missing row is created lazily inside a
savepoint; if a concurrent transaction inserts the same pair first, the
unique constraint fires, the savepoint is rolled back, and the winner's row
is locked instead.

Multi-pair operations lock in ``(str(product_id), location)`` order so two
transactions touching the same pairs cannot deadlock.

On SQLite ``FOR UPDATE`` is not emitted; the engine opens every
transaction with BEGIN IMMEDIATE, which serializes writers instead.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from stock_kernel.logging_config import get_logger
from stock_kernel.models.stock_level import StockLevel
from stock_kernel.services.base import BaseService

logger = get_logger("services.stock_locks")

StockKey = tuple[UUID, str]


def lock_order(pairs: Iterable[StockKey]) -> list[StockKey]:
    """De-duplicated pairs in the global lock order."""
    return sorted(set(pairs), key=lambda pair: (str(pair[0]), pair[1]))


class StockLevelLocks(BaseService):

    def _select_locked(self, product_id: UUID, location: str) -> StockLevel | None:
        return self.session.execute(
            select(StockLevel)
            .where(
                StockLevel.product_id == product_id,
                StockLevel.location == location,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def lock(
        self,
        product_id: UUID,
        location: str,
        *,
        actor_id: UUID,
        create: bool = True,
    ) -> StockLevel | None:
        """
        Lock the StockLevel row for (product, location).

        Returns None only when the row does not exist and ``create`` is
        False.  A created row starts at zero on hand and zero reserved.
        """
        level = self._select_locked(product_id, location)
        if level is not None or not create:
            return level

        savepoint = self.session.begin_nested()
        try:
            level = StockLevel(
                product_id=product_id,
                location=location,
                quantity_on_hand=0,
                quantity_reserved=0,
                reorder_level=0,
                reorder_quantity=0,
                created_by_id=actor_id,
            )
            self.session.add(level)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "stock_level_create_race",
                extra={"product_id": str(product_id), "location": location},
            )
            level = self._select_locked(product_id, location)
            if level is None:
                raise
            return level

        logger.info(
            "stock_level_created",
            extra={"product_id": str(product_id), "location": location},
        )
        return level

    def lock_many(
        self,
        pairs: Iterable[StockKey],
        *,
        actor_id: UUID,
        create: bool = True,
    ) -> dict[StockKey, StockLevel | None]:
        """Lock several pairs in the global lock order."""
        return {
            pair: self.lock(pair[0], pair[1], actor_id=actor_id, create=create)
            for pair in lock_order(pairs)
        }
