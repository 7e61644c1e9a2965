"""Manual stock corrections with a mandatory reason."""

from uuid import UUID

from stock_kernel.domain.dtos import AdjustmentDirection, AdjustmentResult
from stock_kernel.domain.validation import validate_location, validate_quantity, validate_reason
from stock_kernel.exceptions import InvalidMovementTypeError
from stock_kernel.logging_config import get_logger
from stock_kernel.services.base import BaseService
from stock_kernel.services.movement_ledger import MovementLedger

logger = get_logger("services.adjustment")

MANUAL_ADJUSTMENT = "Manual Adjustment"


class AdjustmentService(BaseService):

    def __init__(self, session, *, ledger: MovementLedger | None = None, **kwargs):
        super().__init__(session, **kwargs)
        self.ledger = ledger or MovementLedger(
            session, clock=self.clock, config=self.config, catalog=self.catalog
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
        """
        Increase or decrease on-hand stock by ``quantity``.

        Inputs are checked in the order quantity, reason, then the
        below-reserved guard, and all before the balance changes.  Writes
        exactly one Adjustment Increase / Adjustment Decrease movement with
        the reason as its notes.
        """
        try:
            direction = AdjustmentDirection(direction)
        except ValueError:
            raise InvalidMovementTypeError(direction) from None
        quantity = validate_quantity(quantity)
        reason = validate_reason(reason, "stock adjustment")
        location = validate_location(location)
        self._require_product(product_id)

        increase = direction is AdjustmentDirection.INCREASE
        level = self.ledger.locks.lock(product_id, location, actor_id=actor_id, create=increase)
        if level is None:
            raise self.ledger.below_reserved_error(
                product_id, location, quantity, 0, 0, direction.movement_type
            )

        on_hand_before = level.quantity_on_hand
        movement = self.ledger.apply_movement(
            level,
            direction.movement_type,
            quantity,
            actor_id=actor_id,
            reference_type=MANUAL_ADJUSTMENT,
            notes=reason,
        )

        logger.info(
            "stock_adjusted",
            extra={
                "product_id": str(product_id),
                "location": location,
                "direction": direction.value,
                "quantity": quantity,
                "on_hand_before": on_hand_before,
                "on_hand_after": level.quantity_on_hand,
            },
        )
        return AdjustmentResult(stock_level=level.to_dto(), movement=movement.to_dto())
