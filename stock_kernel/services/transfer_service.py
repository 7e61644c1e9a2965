"""Moves stock between two locations as a Transfer Out / Transfer In pair."""

from uuid import UUID

from stock_kernel.domain.dtos import TransferResult
from stock_kernel.domain.validation import validate_location, validate_quantity
from stock_kernel.exceptions import InvalidLocationError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.movement import MovementType
from stock_kernel.services.base import BaseService
from stock_kernel.services.movement_ledger import MovementLedger
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_locks import lock_order

logger = get_logger("services.transfer")

STOCK_TRANSFER = "Stock Transfer"


class TransferService(BaseService):

    def __init__(self, session, *, ledger: MovementLedger | None = None, **kwargs):
        super().__init__(session, **kwargs)
        self.ledger = ledger or MovementLedger(
            session, clock=self.clock, config=self.config, catalog=self.catalog
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
        """
        Move ``quantity`` units of a product from one location to another.

        Both movements share one ``TRF-`` reference.  The source is held to
        the below-reserved rule; nothing is written if it fails.
        """
        quantity = validate_quantity(quantity)
        source_location = validate_location(from_location)
        dest_location = validate_location(to_location)
        if source_location == dest_location:
            raise InvalidLocationError(to_location, "transfer source and destination are the same")
        self._require_product(product_id)

        source_key = (product_id, source_location)
        dest_key = (product_id, dest_location)

        # Source is not created: nothing can leave a location that never held stock.
        levels = {}
        for key in lock_order((source_key, dest_key)):
            levels[key] = self.ledger.locks.lock(
                key[0], key[1], actor_id=actor_id, create=key == dest_key
            )
        source, dest = levels[source_key], levels[dest_key]
        if source is None:
            raise self.ledger.below_reserved_error(
                product_id, source_location, quantity, 0, 0, MovementType.TRANSFER_OUT
            )

        reference = SequenceService(self.session).next_formatted(
            SequenceService.TRANSFER,
            self.config.transfer_reference_prefix,
            self.config.grn_number_width,
        )

        out_movement = self.ledger.apply_movement(
            source,
            MovementType.TRANSFER_OUT,
            quantity,
            actor_id=actor_id,
            reference_type=STOCK_TRANSFER,
            reference_number=reference,
            notes=notes,
        )
        in_movement = self.ledger.apply_movement(
            dest,
            MovementType.TRANSFER_IN,
            quantity,
            actor_id=actor_id,
            reference_type=STOCK_TRANSFER,
            reference_number=reference,
            notes=notes,
        )

        logger.info(
            "stock_transferred",
            extra={
                "product_id": str(product_id),
                "from_location": source_location,
                "to_location": dest_location,
                "quantity": quantity,
                "reference_number": reference,
            },
        )
        return TransferResult(
            reference_number=reference,
            source=source.to_dto(),
            destination=dest.to_dto(),
            movements=(out_movement.to_dto(), in_movement.to_dto()),
        )
