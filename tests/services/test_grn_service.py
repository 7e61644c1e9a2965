"""
GRNService tests.

Tests cover:
- Draft creation: numbering, totals, GST defaults, line validation
- Posting a two-line GRN: +50 / +10, two Receipts, status Posted
- Re-posting raises InvalidStateError with no side effect
- Deleting a Draft touches no movements; deleting a Posted GRN is rejected
- Draft edits and line replacement; edits blocked after posting
- Cancellation: Draft (status only) and Posted (compensating reversals)
- Cancellation blocked by reservations leaves the GRN Posted
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from stock_kernel.domain.dtos import GRNLineSpec
from stock_kernel.exceptions import (
    BelowReservedError,
    DuplicateLineProductError,
    EmptyGRNError,
    GRNNotFoundError,
    InvalidLineError,
    InvalidStateError,
    LedgerValidationError,
)
from stock_kernel.models.grn import GoodsReceivedNote, GRNStatus
from stock_kernel.models.movement import MovementType, StockMovement
from stock_kernel.services.grn_service import compute_totals, money

MAIN = "Main Warehouse"


def _movements(session, reference_number=None):
    stmt = select(StockMovement).order_by(StockMovement.seq)
    if reference_number is not None:
        stmt = stmt.where(StockMovement.reference_number == reference_number)
    return list(session.execute(stmt).scalars())


def _on_hand(services, product_id, actor_id, location=MAIN):
    level = services.movements.locks.lock(product_id, location, actor_id=actor_id, create=False)
    return level.quantity_on_hand if level is not None else 0


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture
def products():
    return uuid4(), uuid4()


@pytest.fixture
def draft(services, products, make_lines, vendor_id, actor_id):
    """A Draft GRN with lines (A: 50 @ 2.00) and (B: 10 @ 7.50)."""
    a, b = products
    return services.grns.create_grn(
        vendor_id,
        make_lines((a, 50, "2.00"), (b, 10, "7.50")),
        actor_id=actor_id,
        vendor_invoice_number="INV-881",
    )


# =========================================================================
# Draft
# =========================================================================


class TestCreate:

    def test_number_and_defaults(self, draft, clock):
        assert draft.grn_number == "GRN-000001"
        assert draft.status is GRNStatus.DRAFT
        assert draft.warehouse_location == MAIN
        assert draft.received_date == clock.now().date()
        assert [line.line_number for line in draft.lines] == [1, 2]
        assert all(line.gst_rate == Decimal("15") for line in draft.lines)

    def test_numbers_are_sequential(self, services, draft, make_lines, vendor_id, actor_id):
        second = services.grns.create_grn(vendor_id, make_lines((uuid4(), 1, "1")), actor_id=actor_id)
        assert second.grn_number == "GRN-000002"

    def test_totals(self, draft):
        # 50 x 2.00 + 10 x 7.50 = 175.00; GST 15% = 26.25
        assert draft.total_items == 2
        assert draft.total_cost == Decimal("175.00")
        assert draft.gst_amount == Decimal("26.25")
        assert draft.total_inc_gst == Decimal("201.25")

    def test_no_stock_effect(self, services, session, draft, products, actor_id):
        assert _movements(session) == []
        assert _on_hand(services, products[0], actor_id) == 0

    def test_explicit_location_and_rate(self, services, vendor_id, actor_id, make_lines):
        grn = services.grns.create_grn(
            vendor_id,
            make_lines((uuid4(), 3, "10"), gst_rate=Decimal("0")),
            actor_id=actor_id,
            warehouse_location=" Yard ",
            received_date=date(2024, 3, 1),
        )
        assert grn.warehouse_location == "Yard"
        assert grn.gst_amount == Decimal("0.00")
        assert grn.received_date == date(2024, 3, 1)

    def test_empty_rejected(self, services, vendor_id, actor_id):
        with pytest.raises(EmptyGRNError):
            services.grns.create_grn(vendor_id, [], actor_id=actor_id)

    def test_duplicate_product_rejected(self, services, vendor_id, actor_id, make_lines):
        pid = uuid4()
        with pytest.raises(DuplicateLineProductError) as exc_info:
            services.grns.create_grn(vendor_id, make_lines((pid, 1, "1"), (pid, 2, "1")), actor_id=actor_id)
        assert exc_info.value.product_id == pid

    @pytest.mark.parametrize(
        "line_kwargs, field",
        [
            ({"quantity_received": 0}, "quantity_received"),
            ({"quantity_received": 2**63}, "quantity_received"),
            ({"unit_cost": Decimal("-1")}, "unit_cost"),
            ({"unit_cost": "abc"}, "unit_cost"),
            ({"gst_rate": Decimal("150")}, "gst_rate"),
            ({"unit": " "}, "unit"),
        ],
    )
    def test_invalid_line(self, services, vendor_id, actor_id, line_kwargs, field):
        line = GRNLineSpec(
            **{"product_id": uuid4(), "quantity_received": 1, "unit_cost": Decimal("1"), **line_kwargs}
        )
        with pytest.raises(InvalidLineError) as exc_info:
            services.grns.create_grn(vendor_id, [line], actor_id=actor_id)
        assert exc_info.value.field == field
        assert exc_info.value.line_number == 1


class TestTotals:

    def test_half_cent_rounds_up(self):
        class Line:
            def __init__(self, total, rate):
                self.line_total = Decimal(total)
                self.gst_rate = Decimal(rate)

        totals = compute_totals([Line("0.10", "15"), Line("0.20", "12.5")])
        # GST 0.015 + 0.025 = 0.04
        assert totals.gst_amount == Decimal("0.04")
        assert totals.total_cost == Decimal("0.30")
        assert totals.total_inc_gst == Decimal("0.34")

    def test_money(self):
        assert money(Decimal("2.345")) == Decimal("2.35")
        assert money(Decimal("2.344")) == Decimal("2.34")


class TestEditDraft:

    def test_update_header(self, services, draft, actor_id):
        updated = services.grns.update_grn(
            draft.id, actor_id=actor_id, vendor_invoice_number="INV-900", warehouse_location="Yard"
        )
        assert updated.vendor_invoice_number == "INV-900"
        assert updated.warehouse_location == "Yard"

    def test_unknown_field_rejected(self, services, draft, actor_id):
        with pytest.raises(LedgerValidationError):
            services.grns.update_grn(draft.id, actor_id=actor_id, status="Posted")

    def test_replace_lines_recomputes_totals(self, services, draft, actor_id, make_lines):
        pid = uuid4()
        updated = services.grns.replace_grn_lines(
            draft.id, make_lines((pid, 4, "25.00")), actor_id=actor_id
        )
        assert updated.total_items == 1
        assert updated.lines[0].product_id == pid
        assert updated.total_cost == Decimal("100.00")
        assert updated.total_inc_gst == Decimal("115.00")

    def test_unknown_grn(self, services, actor_id):
        with pytest.raises(GRNNotFoundError):
            services.grns.update_grn(uuid4(), actor_id=actor_id, reference_notes="x")


# =========================================================================
# Post
# =========================================================================


class TestPost:

    def test_post_two_lines(self, services, session, draft, products, actor_id, captured_logs):
        a, b = products

        result = services.grns.post_grn(draft.id, actor_id=actor_id)

        assert result.grn.status is GRNStatus.POSTED
        assert result.grn.posted_at is not None
        assert _on_hand(services, a, actor_id) == 50
        assert _on_hand(services, b, actor_id) == 10

        movements = _movements(session, draft.grn_number)
        assert [(m.product_id, m.type_enum, m.quantity) for m in movements] == [
            (a, MovementType.RECEIPT, 50),
            (b, MovementType.RECEIPT, 10),
        ]
        assert all(m.reference_type == "GRN" for m in movements)
        assert len(result.movements) == 2
        assert any(r["message"] == "grn_posted" for r in captured_logs())

    def test_repost_rejected_without_side_effects(self, services, session, draft, products, actor_id):
        services.grns.post_grn(draft.id, actor_id=actor_id)
        before = len(_movements(session))

        with pytest.raises(InvalidStateError) as exc_info:
            services.grns.post_grn(draft.id, actor_id=actor_id)

        assert exc_info.value.status == "Posted"
        assert len(_movements(session)) == before
        assert _on_hand(services, products[0], actor_id) == 50

    def test_posted_grn_cannot_be_edited(self, services, draft, actor_id, make_lines):
        services.grns.post_grn(draft.id, actor_id=actor_id)
        with pytest.raises(InvalidStateError):
            services.grns.update_grn(draft.id, actor_id=actor_id, reference_notes="late note")
        with pytest.raises(InvalidStateError):
            services.grns.replace_grn_lines(draft.id, make_lines((uuid4(), 1, "1")), actor_id=actor_id)

    def test_adds_to_existing_stock(self, services, stock, draft, products, actor_id):
        stock(products[0], 5)
        services.grns.post_grn(draft.id, actor_id=actor_id)
        assert _on_hand(services, products[0], actor_id) == 55


# =========================================================================
# Delete
# =========================================================================


class TestDelete:

    def test_delete_draft(self, services, session, draft, actor_id):
        services.grns.delete_grn(draft.id, actor_id=actor_id)

        assert session.get(GoodsReceivedNote, draft.id) is None
        assert _movements(session) == []

    def test_delete_posted_rejected(self, services, session, draft, actor_id):
        services.grns.post_grn(draft.id, actor_id=actor_id)
        before = len(_movements(session))

        with pytest.raises(InvalidStateError):
            services.grns.delete_grn(draft.id, actor_id=actor_id)

        assert session.get(GoodsReceivedNote, draft.id) is not None
        assert len(_movements(session)) == before


# =========================================================================
# Cancel
# =========================================================================


class TestCancel:

    def test_cancel_draft(self, services, session, draft, actor_id):
        result = services.grns.cancel_grn(draft.id, actor_id=actor_id, reason="Wrong vendor")

        assert result.grn.status is GRNStatus.CANCELLED
        assert result.reversal_movements == ()
        assert _movements(session) == []

    def test_cancel_posted_reverses_receipts(self, services, session, draft, products, actor_id):
        posted = services.grns.post_grn(draft.id, actor_id=actor_id)

        result = services.grns.cancel_grn(draft.id, actor_id=actor_id, reason="Returned to vendor")

        assert result.grn.status is GRNStatus.CANCELLED
        assert len(result.reversal_movements) == 2
        receipts = {m.id: m for m in posted.movements}
        for reversal in result.reversal_movements:
            assert reversal.movement_type is MovementType.RECEIPT_REVERSAL
            original = receipts[reversal.reverses_movement_id]
            assert reversal.quantity == original.quantity
            assert reversal.product_id == original.product_id
        assert _on_hand(services, products[0], actor_id) == 0
        assert _on_hand(services, products[1], actor_id) == 0

    def test_cancel_ignores_receipts_the_grn_did_not_post(
        self, services, session, draft, products, actor_id
    ):
        a, _ = products
        services.grns.post_grn(draft.id, actor_id=actor_id)
        # Same reference as the GRN, but recorded directly.
        services.movements.record_movement(
            a,
            MAIN,
            MovementType.RECEIPT,
            7,
            actor_id=actor_id,
            reference_type="GRN",
            reference_number=draft.grn_number,
        )

        result = services.grns.cancel_grn(draft.id, actor_id=actor_id)

        assert sorted(m.quantity for m in result.reversal_movements) == [10, 50]
        assert _on_hand(services, a, actor_id) == 7

    def test_receipts_link_to_their_lines(self, services, session, draft, actor_id):
        result = services.grns.post_grn(draft.id, actor_id=actor_id)

        line_ids = [line.id for line in session.get(GoodsReceivedNote, draft.id).lines]
        assert [m.grn_line_id for m in result.movements] == line_ids

    def test_cancel_blocked_by_reservation(self, services, session, draft, products, actor_id):
        services.grns.post_grn(draft.id, actor_id=actor_id)
        services.reservations.reserve(products[1], MAIN, 4, actor_id=actor_id)

        with pytest.raises(BelowReservedError) as exc_info:
            services.grns.cancel_grn(draft.id, actor_id=actor_id)

        assert exc_info.value.product_id == products[1]
        assert exc_info.value.reserved == 4

    @pytest.mark.parametrize("action", ["post", "cancel", "delete"])
    def test_cancelled_is_terminal(self, services, draft, actor_id, action):
        services.grns.cancel_grn(draft.id, actor_id=actor_id)
        with pytest.raises(InvalidStateError):
            getattr(services.grns, f"{action}_grn")(draft.id, actor_id=actor_id)

    def test_received_status_allows_nothing(self, services, session, draft, actor_id):
        grn = session.get(GoodsReceivedNote, draft.id)
        grn.status = GRNStatus.RECEIVED.value
        session.flush()

        for action in ("post", "cancel", "delete"):
            with pytest.raises(InvalidStateError):
                getattr(services.grns, f"{action}_grn")(draft.id, actor_id=actor_id)


def test_grn_count_unchanged_by_failed_create(services, session, vendor_id, actor_id):
    with pytest.raises(EmptyGRNError):
        services.grns.create_grn(vendor_id, [], actor_id=actor_id)
    assert session.execute(select(func.count()).select_from(GoodsReceivedNote)).scalar_one() == 0
