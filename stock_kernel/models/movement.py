"""
Module: stock_kernel.models.movement
Responsibility: ORM persistence for the append-only stock movement ledger,
    the auditable ground truth behind every StockLevel balance.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - quantity is a positive magnitude (CHECK quantity > 0); direction comes
      from movement_type, never from a sign.
    - seq is unique and strictly increasing in commit order for any
      (product, location) because it is allocated under that pair's lock.
      On PostgreSQL it comes from STOCK_MOVEMENT_SEQ, which takes no lock.
    - grn_line_id links a Receipt to the GRN line that posted it; GRN
      cancellation reverses by this link, never by reference text.
    - reverses_movement_id is unique: a movement is compensated at most once.
    - Rows are immutable from creation (db/immutability.py, db/triggers.py).

Audit relevance:
    For every (product, location), quantity_on_hand equals the signed sum of
    its movements.  MovementSelector.verify_balances() checks this.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Sequence,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString


# Non-transactional, so movements on different pairs never wait on each
# other.  Ignored by create_all on SQLite.
STOCK_MOVEMENT_SEQ = Sequence("stock_movement_seq", metadata=Base.metadata)


class MovementType(str, Enum):
    """Kinds of stock movement.  Inbound types add to on-hand, outbound subtract."""

    RECEIPT = "Receipt"
    ADJUSTMENT_INCREASE = "Adjustment Increase"
    TRANSFER_IN = "Transfer In"
    RETURN = "Return"
    ISSUE = "Issue"
    ADJUSTMENT_DECREASE = "Adjustment Decrease"
    TRANSFER_OUT = "Transfer Out"
    RECEIPT_REVERSAL = "Receipt Reversal"

    @property
    def is_inbound(self) -> bool:
        return self in _INBOUND

    @property
    def sign(self) -> int:
        return 1 if self.is_inbound else -1

    def signed(self, quantity: int) -> int:
        return self.sign * quantity


_INBOUND = frozenset(
    {
        MovementType.RECEIPT,
        MovementType.ADJUSTMENT_INCREASE,
        MovementType.TRANSFER_IN,
        MovementType.RETURN,
    }
)

INBOUND_TYPES: tuple[MovementType, ...] = tuple(t for t in MovementType if t.is_inbound)
OUTBOUND_TYPES: tuple[MovementType, ...] = tuple(t for t in MovementType if not t.is_inbound)

_TYPE_VALUES = ", ".join(f"'{t.value}'" for t in MovementType)


class StockMovement(Base):
    """
    One immutable, typed quantity change against a (product, location).

    Not a TrackedBase: there is no updated_at/updated_by because rows are
    never updated.  created_at comes from the injected Clock.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_stock_movement_seq"),
        UniqueConstraint("reverses_movement_id", name="uq_stock_movement_reverses"),
        CheckConstraint("quantity > 0", name="ck_stock_movement_quantity_positive"),
        CheckConstraint(
            f"movement_type IN ({_TYPE_VALUES})",
            name="ck_stock_movement_type",
        ),
        Index("idx_stock_movement_product_location_created", "product_id", "location", "created_at"),
        Index("idx_stock_movement_type", "movement_type"),
        Index("idx_stock_movement_reference", "reference_type", "reference_number"),
        Index("idx_stock_movement_grn_line", "grn_line_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    location: Mapped[str] = mapped_column(String(100), nullable=False)

    movement_type: Mapped[str] = mapped_column(String(30), nullable=False)
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)

    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    reverses_movement_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("stock_movements.id"),
        nullable=True,
    )
    grn_line_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("grn_line_items.id"),
        nullable=True,
    )

    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @property
    def type_enum(self) -> MovementType:
        return MovementType(self.movement_type)

    @property
    def signed_quantity(self) -> int:
        return self.type_enum.signed(self.quantity)

    def to_dto(self):
        from stock_kernel.domain.dtos import MovementRecord

        return MovementRecord(
            id=self.id,
            seq=self.seq,
            product_id=self.product_id,
            location=self.location,
            movement_type=self.type_enum,
            quantity=self.quantity,
            reference_type=self.reference_type,
            reference_number=self.reference_number,
            notes=self.notes,
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            reverses_movement_id=self.reverses_movement_id,
            grn_line_id=self.grn_line_id,
        )

    def __repr__(self) -> str:
        return (
            f"<StockMovement #{self.seq} {self.movement_type} {self.quantity} "
            f"{self.product_id}@{self.location}>"
        )
