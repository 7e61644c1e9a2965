"""
MovementLedger -- the single writer of quantity_on_hand.

Responsibility:
    Appends StockMovement rows and applies their signed quantity to the
    locked StockLevel in the same flush.  Every higher-level operation
    (adjustment, GRN post and cancel, fulfilment, transfer, stock take)
    goes through ``apply_movement`` so the balance and its audit record
    can never diverge.

Invariants enforced:
    - on_hand == signed sum of movements for every (product, location).
    - An outbound movement never takes on_hand below reserved (and so
      never below zero).
    - Movements are never updated or deleted; corrections are new
      reversing movements.
    - ``seq`` comes from SequenceService while the StockLevel lock is
      held, so for any pair the ledger order matches commit order.
"""

from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.dtos import MovementRecord
from stock_kernel.domain.validation import (
    MAX_QUANTITY,
    validate_location,
    validate_movement_type,
    validate_quantity,
)
from stock_kernel.exceptions import (
    BelowReservedError,
    ImmutabilityViolationError,
    InvalidMovementTypeError,
    InvalidQuantityError,
    MovementNotFoundError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.movement import MovementType, StockMovement
from stock_kernel.models.stock_level import StockLevel
from stock_kernel.services.base import BaseService
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_locks import StockLevelLocks

logger = get_logger("services.movement_ledger")

# Movement types that have a compensating counterpart.
REVERSAL_TYPES: dict[MovementType, MovementType] = {
    MovementType.RECEIPT: MovementType.RECEIPT_REVERSAL,
}


class MovementLedger(BaseService):

    def __init__(self, session, *, locks: StockLevelLocks | None = None, **kwargs):
        super().__init__(session, **kwargs)
        self.locks = locks or StockLevelLocks(
            session, clock=self.clock, config=self.config, catalog=self.catalog
        )
        self.sequences = SequenceService(session)

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
        """
        Record one movement and update the balance.

        Raises:
            InvalidQuantityError, InvalidMovementTypeError,
            InvalidLocationError: before anything is locked.
            ProductNotFoundError: a configured catalog does not know the product.
            BelowReservedError: an outbound movement would leave on_hand
                below reserved.
        """
        quantity = validate_quantity(quantity)
        movement_type = validate_movement_type(movement_type)
        if movement_type in REVERSAL_TYPES.values():
            # Compensating movements are only written by reverse_movement.
            raise InvalidMovementTypeError(movement_type.value)
        location = validate_location(location)
        self._require_product(product_id)

        level = self.locks.lock(
            product_id, location, actor_id=actor_id, create=movement_type.is_inbound
        )
        if level is None:
            raise self.below_reserved_error(product_id, location, quantity, 0, 0)

        movement = self.apply_movement(
            level,
            movement_type,
            quantity,
            actor_id=actor_id,
            reference_type=reference_type,
            reference_number=reference_number,
            notes=notes,
        )
        return movement.to_dto()

    def apply_movement(
        self,
        level: StockLevel,
        movement_type: MovementType,
        quantity: int,
        *,
        actor_id: UUID,
        reference_type: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
        reverses: StockMovement | None = None,
        grn_line_id: UUID | None = None,
    ) -> StockMovement:
        """
        Append a movement and apply it to ``level``.

        The caller must already hold the row lock on ``level`` and must have
        validated ``quantity``.  Nothing is written if the guard fails.
        """
        new_on_hand = level.quantity_on_hand + movement_type.signed(quantity)
        if new_on_hand > MAX_QUANTITY:
            raise InvalidQuantityError(
                quantity, "quantity", f"would take quantity_on_hand past {MAX_QUANTITY}"
            )
        if new_on_hand < level.quantity_reserved:
            raise self.below_reserved_error(
                level.product_id,
                level.location,
                quantity,
                level.quantity_on_hand,
                level.quantity_reserved,
                movement_type=movement_type,
            )

        movement = StockMovement(
            seq=self.sequences.next_movement_seq(),
            product_id=level.product_id,
            location=level.location,
            movement_type=movement_type.value,
            quantity=quantity,
            reference_type=reference_type,
            reference_number=reference_number,
            notes=notes,
            reverses_movement_id=reverses.id if reverses is not None else None,
            grn_line_id=grn_line_id,
            created_by_id=actor_id,
            created_at=self.clock.now(),
        )
        self.session.add(movement)

        level.quantity_on_hand = new_on_hand
        level.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "movement_recorded",
            extra={
                "movement_id": str(movement.id),
                "seq": movement.seq,
                "product_id": str(level.product_id),
                "location": level.location,
                "movement_type": movement_type.value,
                "quantity": quantity,
                "on_hand": level.quantity_on_hand,
                "reserved": level.quantity_reserved,
                "reference_number": reference_number,
            },
        )
        return movement

    def reverse_movement(
        self,
        movement_id: UUID,
        *,
        actor_id: UUID,
        reference_type: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> StockMovement:
        """
        Append the compensating movement for ``movement_id``.

        Same magnitude, opposite direction, linked through
        ``reverses_movement_id``.  A movement can be reversed once.
        """
        original = self.session.get(StockMovement, movement_id)
        if original is None:
            raise MovementNotFoundError(movement_id)

        reversal_type = REVERSAL_TYPES.get(original.type_enum)
        if reversal_type is None:
            raise InvalidMovementTypeError(original.movement_type)

        already = self.session.execute(
            select(StockMovement.id).where(StockMovement.reverses_movement_id == movement_id)
        ).scalar_one_or_none()
        if already is not None:
            raise ImmutabilityViolationError(
                entity_type="StockMovement",
                entity_id=str(movement_id),
                reason=f"already reversed by movement {already}",
            )

        level = self.locks.lock(
            original.product_id, original.location, actor_id=actor_id, create=False
        )
        if level is None:
            # A movement always leaves its StockLevel row behind.
            raise MovementNotFoundError(movement_id)

        return self.apply_movement(
            level,
            reversal_type,
            original.quantity,
            actor_id=actor_id,
            reference_type=reference_type or original.reference_type,
            reference_number=reference_number or original.reference_number,
            notes=notes,
            reverses=original,
        )

    def below_reserved_error(
        self,
        product_id: UUID,
        location: str,
        requested: int,
        on_hand: int,
        reserved: int,
        movement_type: MovementType | None = None,
    ) -> BelowReservedError:
        logger.warning(
            "movement_rejected",
            extra={
                "product_id": str(product_id),
                "location": location,
                "movement_type": movement_type.value if movement_type else None,
                "requested": requested,
                "on_hand": on_hand,
                "reserved": reserved,
            },
        )
        return BelowReservedError(product_id, location, requested, on_hand, reserved)
