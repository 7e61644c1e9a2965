"""
ReservationService -- the only writer of quantity_reserved.

Order and job flows hold stock with ``reserve``, give it back with
``release`` and ship it with ``fulfil``.  Reserving does not move stock,
so it writes no movement; fulfilling writes one Issue movement.
"""

from uuid import UUID

from stock_kernel.domain.dtos import ReservationResult
from stock_kernel.domain.validation import validate_location, validate_quantity
from stock_kernel.exceptions import (
    InsufficientAvailableError,
    InsufficientReservedError,
    StockLevelNotFoundError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.movement import MovementType
from stock_kernel.services.base import BaseService
from stock_kernel.services.movement_ledger import MovementLedger

logger = get_logger("services.reservation")

FULFILMENT = "Fulfilment"


class ReservationService(BaseService):

    def __init__(self, session, *, ledger: MovementLedger | None = None, **kwargs):
        super().__init__(session, **kwargs)
        self.ledger = ledger or MovementLedger(
            session, clock=self.clock, config=self.config, catalog=self.catalog
        )

    def reserve(
        self,
        product_id: UUID,
        location: str,
        quantity: int,
        *,
        actor_id: UUID,
        reference: str | None = None,
    ) -> ReservationResult:
        """Hold ``quantity`` units; fails with InsufficientAvailableError beyond available."""
        quantity = validate_quantity(quantity)
        location = validate_location(location)
        self._require_product(product_id)

        level = self.ledger.locks.lock(product_id, location, actor_id=actor_id, create=False)
        on_hand = level.quantity_on_hand if level is not None else 0
        reserved = level.quantity_reserved if level is not None else 0

        if level is None or quantity > level.quantity_available:
            logger.warning(
                "reservation_rejected",
                extra={
                    "product_id": str(product_id),
                    "location": location,
                    "requested": quantity,
                    "available": on_hand - reserved,
                    "reservation_ref": reference,
                },
            )
            raise InsufficientAvailableError(product_id, location, quantity, on_hand, reserved)

        level.quantity_reserved += quantity
        level.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "stock_reserved",
            extra={
                "product_id": str(product_id),
                "location": location,
                "quantity": quantity,
                "reserved": level.quantity_reserved,
                "reservation_ref": reference,
            },
        )
        return ReservationResult(stock_level=level.to_dto(), quantity=quantity)

    def release(
        self,
        product_id: UUID,
        location: str,
        quantity: int,
        *,
        actor_id: UUID,
        reference: str | None = None,
    ) -> ReservationResult:
        """
        Give back up to ``quantity`` reserved units.

        Over-release is not an error: reserved floors at zero and the
        result's ``quantity`` is what was actually released.
        """
        quantity = validate_quantity(quantity)
        location = validate_location(location)

        level = self.ledger.locks.lock(product_id, location, actor_id=actor_id, create=False)
        if level is None:
            raise StockLevelNotFoundError(product_id, location)

        released = min(quantity, level.quantity_reserved)
        if released < quantity:
            logger.info(
                "release_floored",
                extra={
                    "product_id": str(product_id),
                    "location": location,
                    "requested": quantity,
                    "released": released,
                },
            )
        if released:
            level.quantity_reserved -= released
            level.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "stock_released",
            extra={
                "product_id": str(product_id),
                "location": location,
                "quantity": released,
                "reserved": level.quantity_reserved,
                "reservation_ref": reference,
            },
        )
        return ReservationResult(stock_level=level.to_dto(), quantity=released)

    def fulfil(
        self,
        product_id: UUID,
        location: str,
        quantity: int,
        *,
        actor_id: UUID,
        reference: str | None = None,
    ) -> ReservationResult:
        """Consume reserved stock: reserved and on_hand both drop, one Issue movement."""
        quantity = validate_quantity(quantity)
        location = validate_location(location)

        level = self.ledger.locks.lock(product_id, location, actor_id=actor_id, create=False)
        on_hand = level.quantity_on_hand if level is not None else 0
        reserved = level.quantity_reserved if level is not None else 0

        if level is None or quantity > level.quantity_reserved:
            logger.warning(
                "fulfilment_rejected",
                extra={
                    "product_id": str(product_id),
                    "location": location,
                    "requested": quantity,
                    "reserved": reserved,
                    "reservation_ref": reference,
                },
            )
            raise InsufficientReservedError(product_id, location, quantity, on_hand, reserved)

        # Reserved first, so the Issue passes the on_hand >= reserved guard.
        level.quantity_reserved -= quantity
        movement = self.ledger.apply_movement(
            level,
            MovementType.ISSUE,
            quantity,
            actor_id=actor_id,
            reference_type=FULFILMENT,
            reference_number=reference,
        )
        return ReservationResult(
            stock_level=level.to_dto(),
            quantity=quantity,
            movement=movement.to_dto(),
        )
