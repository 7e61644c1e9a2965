"""
Stock takes and reorder settings.

A stock take records the counted quantity as a difference movement
(Adjustment Increase or Decrease, reference type "Stock Take"), so the
on-hand balance still equals the movement sum afterwards.
"""

from uuid import UUID

from stock_kernel.domain.dtos import StockLevelSnapshot, StockTakeResult
from stock_kernel.domain.validation import validate_location, validate_quantity
from stock_kernel.exceptions import BelowReservedError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.movement import MovementType
from stock_kernel.services.base import BaseService
from stock_kernel.services.movement_ledger import MovementLedger

logger = get_logger("services.stock_take")

STOCK_TAKE = "Stock Take"


class StockTakeService(BaseService):

    def __init__(self, session, *, ledger: MovementLedger | None = None, **kwargs):
        super().__init__(session, **kwargs)
        self.ledger = ledger or MovementLedger(
            session, clock=self.clock, config=self.config, catalog=self.catalog
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
        counted = validate_quantity(counted_quantity, "counted_quantity", allow_zero=True)
        location = validate_location(location)
        self._require_product(product_id)

        level = self.ledger.locks.lock(product_id, location, actor_id=actor_id)
        if counted < level.quantity_reserved:
            logger.warning(
                "stock_take_rejected",
                extra={
                    "product_id": str(product_id),
                    "location": location,
                    "counted": counted,
                    "reserved": level.quantity_reserved,
                },
            )
            raise BelowReservedError(
                product_id,
                location,
                level.quantity_on_hand - counted,
                level.quantity_on_hand,
                level.quantity_reserved,
            )

        variance = counted - level.quantity_on_hand
        movement = None
        if variance:
            movement_type = (
                MovementType.ADJUSTMENT_INCREASE if variance > 0 else MovementType.ADJUSTMENT_DECREASE
            )
            movement = self.ledger.apply_movement(
                level,
                movement_type,
                abs(variance),
                actor_id=actor_id,
                reference_type=STOCK_TAKE,
                notes=notes or f"Stock take count {counted}",
            )

        level.last_stock_take_date = self.clock.now()
        level.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "stock_take_recorded",
            extra={
                "product_id": str(product_id),
                "location": location,
                "counted": counted,
                "variance": variance,
            },
        )
        return StockTakeResult(
            stock_level=level.to_dto(),
            counted_quantity=counted,
            variance=variance,
            movement=movement.to_dto() if movement is not None else None,
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
        reorder_level = validate_quantity(reorder_level, "reorder_level", allow_zero=True)
        reorder_quantity = validate_quantity(reorder_quantity, "reorder_quantity", allow_zero=True)
        location = validate_location(location)
        self._require_product(product_id)

        level = self.ledger.locks.lock(product_id, location, actor_id=actor_id)
        level.reorder_level = reorder_level
        level.reorder_quantity = reorder_quantity
        level.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "reorder_levels_set",
            extra={
                "product_id": str(product_id),
                "location": location,
                "reorder_level": reorder_level,
                "reorder_quantity": reorder_quantity,
            },
        )
        return level.to_dto()
