"""
Module: stock_kernel.models.grn
Responsibility: ORM persistence for Goods Received Notes (header and line
    items).
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - grn_number is unique (allocated by SequenceService, never MAX()+1).
    - status is one of Draft / Received / Posted / Cancelled (CHECK).
    - A product appears at most once per GRN (UNIQUE (grn_id, product_id)).
    - quantity_received > 0, unit_cost >= 0, 0 <= gst_rate <= 100 (CHECK).
    - Header and lines are immutable once the GRN leaves Draft, except for
      the Posted -> Cancelled transition (db/immutability.py).
    - version_id_col guards the header against lost updates.

Failure modes:
    - IntegrityError on duplicate grn_number or duplicate line product.
    - ImmutabilityViolationError on edits after posting.
"""

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import TrackedBase, UUIDString


class GRNStatus(str, Enum):
    """Lifecycle status of a goods received note.

    Contract: Draft -> Posted, Draft -> Cancelled, Posted -> Cancelled
    (compensating reversal).  Received is a stored legacy value with no
    transitions in or out.
    """

    DRAFT = "Draft"
    RECEIVED = "Received"
    POSTED = "Posted"
    CANCELLED = "Cancelled"


_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in GRNStatus)


class GoodsReceivedNote(TrackedBase):
    """Goods received note header."""

    __tablename__ = "goods_received_notes"

    __table_args__ = (
        UniqueConstraint("grn_number", name="uq_grn_number"),
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_grn_status"),
        Index("idx_grn_status", "status"),
        Index("idx_grn_received_date", "received_date"),
        Index("idx_grn_vendor", "vendor_id"),
    )

    grn_number: Mapped[str] = mapped_column(String(30), nullable=False)
    vendor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    received_date: Mapped[date] = mapped_column(Date, nullable=False)
    received_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    warehouse_location: Mapped[str] = mapped_column(String(100), nullable=False)

    vendor_invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    vendor_invoice_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    purchase_order_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reference_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=GRNStatus.DRAFT.value)

    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    gst_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_inc_gst: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    posted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    lines: Mapped[list["GRNLineItem"]] = relationship(
        back_populates="grn",
        cascade="all, delete-orphan",
        order_by="GRNLineItem.line_number",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def status_enum(self) -> GRNStatus:
        return GRNStatus(self.status)

    @property
    def is_draft(self) -> bool:
        return self.status == GRNStatus.DRAFT.value

    def to_dto(self):
        from stock_kernel.domain.dtos import GRNSnapshot

        return GRNSnapshot(
            id=self.id,
            grn_number=self.grn_number,
            vendor_id=self.vendor_id,
            received_date=self.received_date,
            received_time=self.received_time,
            warehouse_location=self.warehouse_location,
            vendor_invoice_number=self.vendor_invoice_number,
            vendor_invoice_date=self.vendor_invoice_date,
            purchase_order_number=self.purchase_order_number,
            reference_notes=self.reference_notes,
            status=self.status_enum,
            total_items=self.total_items,
            total_cost=self.total_cost,
            gst_amount=self.gst_amount,
            total_inc_gst=self.total_inc_gst,
            posted_at=self.posted_at,
            cancelled_at=self.cancelled_at,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<GoodsReceivedNote {self.grn_number} status={self.status}>"


class GRNLineItem(TrackedBase):
    """One product line on a goods received note."""

    __tablename__ = "grn_line_items"

    __table_args__ = (
        UniqueConstraint("grn_id", "product_id", name="uq_grn_line_product"),
        UniqueConstraint("grn_id", "line_number", name="uq_grn_line_number"),
        CheckConstraint("quantity_received > 0", name="ck_grn_line_quantity_positive"),
        CheckConstraint("unit_cost >= 0", name="ck_grn_line_unit_cost"),
        CheckConstraint("gst_rate >= 0 AND gst_rate <= 100", name="ck_grn_line_gst_rate"),
    )

    grn_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("goods_received_notes.id", ondelete="CASCADE"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    quantity_received: Mapped[int] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="each")
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)
    gst_rate: Mapped[Decimal] = mapped_column(nullable=False)
    line_total: Mapped[Decimal] = mapped_column(nullable=False)

    grn: Mapped[GoodsReceivedNote] = relationship(back_populates="lines")

    def to_dto(self):
        from stock_kernel.domain.dtos import GRNLineSnapshot

        return GRNLineSnapshot(
            line_number=self.line_number,
            product_id=self.product_id,
            description=self.description,
            quantity_received=self.quantity_received,
            unit=self.unit,
            unit_cost=self.unit_cost,
            gst_rate=self.gst_rate,
            line_total=self.line_total,
        )

    def __repr__(self) -> str:
        return (
            f"<GRNLineItem {self.line_number} product={self.product_id} "
            f"qty={self.quantity_received}>"
        )
