"""
Module: stock_kernel.models.stock_level
Responsibility: ORM persistence for per (product, location) stock balances.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Unique (product_id, location).
    - CHECK quantity_on_hand >= 0, quantity_reserved >= 0 and
      quantity_reserved <= quantity_on_hand; the services check first and
      raise typed errors, the constraints are the backstop.
    - quantity_available is derived, never stored.
    - version_id_col: every UPDATE carries ``WHERE version = :old`` so a lost
      update surfaces as StaleDataError on every backend.
    - Rows are never deleted (db/immutability.py, db/triggers.py).

Audit relevance:
    StockLevel is a materialized projection of the movement ledger.  Only
    MovementLedger changes quantity_on_hand and only ReservationService
    changes quantity_reserved.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString


class StockLevel(TrackedBase):
    """One stock balance row per product per location."""

    __tablename__ = "stock_levels"

    __table_args__ = (
        UniqueConstraint("product_id", "location", name="uq_stock_level_product_location"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_stock_level_on_hand_non_negative"),
        CheckConstraint("quantity_reserved >= 0", name="ck_stock_level_reserved_non_negative"),
        CheckConstraint(
            "quantity_reserved <= quantity_on_hand",
            name="ck_stock_level_reserved_within_on_hand",
        ),
        CheckConstraint("reorder_level >= 0", name="ck_stock_level_reorder_level"),
        CheckConstraint("reorder_quantity >= 0", name="ck_stock_level_reorder_quantity"),
        Index("idx_stock_level_location", "location"),
    )

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    location: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity_on_hand: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    quantity_reserved: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    reorder_level: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    reorder_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    last_stock_take_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @hybrid_property
    def quantity_available(self) -> int:
        return self.quantity_on_hand - self.quantity_reserved

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_available <= self.reorder_level

    def to_dto(self):
        from stock_kernel.domain.dtos import StockLevelSnapshot

        return StockLevelSnapshot(
            product_id=self.product_id,
            location=self.location,
            quantity_on_hand=self.quantity_on_hand,
            quantity_reserved=self.quantity_reserved,
            reorder_level=self.reorder_level,
            reorder_quantity=self.reorder_quantity,
            last_stock_take_date=self.last_stock_take_date,
        )

    def __repr__(self) -> str:
        return (
            f"<StockLevel {self.product_id}@{self.location} "
            f"on_hand={self.quantity_on_hand} reserved={self.quantity_reserved}>"
        )
