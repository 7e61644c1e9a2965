"""
MovementSelector tests.

Tests cover:
- History filters (product, type, date, reference) and pagination
- for_reference returns a document's movements in ledger order
- recent_adjustments only returns adjustments
- Ledger-derived balances reconcile with StockLevel
- CSV export headers and stored quantity magnitudes
"""

import csv
import io
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import update

from stock_kernel.domain.dtos import MovementFilter
from stock_kernel.exceptions import InvalidMovementTypeError, MovementNotFoundError
from stock_kernel.models.movement import MovementType
from stock_kernel.models.stock_level import StockLevel
from stock_kernel.selectors import MovementSelector
from stock_kernel.selectors.movement_selector import CSV_HEADERS

MAIN = "Main Warehouse"


@pytest.fixture
def selector(session, config):
    return MovementSelector(session, config)


@pytest.fixture
def history(services, stock, product_id, actor_id, clock):
    """Increase 10, Issue 3, then a decrease of 1 an hour later."""
    stock(product_id, 10)
    services.movements.record_movement(
        product_id, MAIN, MovementType.ISSUE, 3, actor_id=actor_id, reference_number="SO-7"
    )
    clock.advance(3600)
    services.movements.record_movement(
        product_id, MAIN, MovementType.ADJUSTMENT_DECREASE, 1, actor_id=actor_id, notes="dropped"
    )
    return product_id


class TestHistory:

    def test_newest_first(self, selector, history):
        page = selector.history(MovementFilter(product_id=history))
        assert [m.movement_type for m in page.items] == [
            MovementType.ADJUSTMENT_DECREASE,
            MovementType.ISSUE,
            MovementType.ADJUSTMENT_INCREASE,
        ]
        assert page.total == 3

    def test_type_filter(self, selector, history):
        page = selector.history(
            MovementFilter(product_id=history, movement_types=(MovementType.ISSUE,))
        )
        assert [m.reference_number for m in page.items] == ["SO-7"]

    def test_type_filter_accepts_values(self, selector, history):
        page = selector.history(
            MovementFilter(product_id=history, movement_types=(MovementType.ISSUE.value,))
        )
        assert page.total == 1

    def test_unknown_type_rejected(self, selector, history):
        with pytest.raises(InvalidMovementTypeError):
            selector.history(MovementFilter(movement_types=("Bogus",)))

    def test_date_filter(self, selector, history, clock):
        since = clock.now() - timedelta(minutes=1)
        page = selector.history(MovementFilter(product_id=history, date_from=since))
        assert [m.movement_type for m in page.items] == [MovementType.ADJUSTMENT_DECREASE]

    def test_search_matches_reference(self, selector, history):
        page = selector.history(MovementFilter(search="so-"))
        assert [m.quantity for m in page.items] == [3]

    def test_pagination(self, selector, history):
        page = selector.history(MovementFilter(product_id=history), page=2, page_size=2)
        assert len(page.items) == 1
        assert page.total_pages == 2
        assert not page.has_next

    def test_get(self, selector, history):
        newest = selector.history(MovementFilter(product_id=history)).items[0]
        assert selector.get(newest.id) == newest

    def test_get_unknown(self, selector):
        with pytest.raises(MovementNotFoundError):
            selector.get(uuid4())


class TestReferencesAndAdjustments:

    def test_for_reference(self, selector, services, stock, product_id, actor_id):
        stock(product_id, 5)
        result = services.transfers.transfer_stock(product_id, MAIN, "Yard", 2, actor_id=actor_id)
        movements = selector.for_reference("Stock Transfer", result.reference_number)
        assert [m.movement_type for m in movements] == [
            MovementType.TRANSFER_OUT,
            MovementType.TRANSFER_IN,
        ]

    def test_recent_adjustments(self, selector, history):
        recent = selector.recent_adjustments()
        assert recent
        assert all(
            m.movement_type in (MovementType.ADJUSTMENT_INCREASE, MovementType.ADJUSTMENT_DECREASE)
            for m in recent
        )


class TestReconciliation:

    def test_balance_from_ledger(self, selector, history):
        assert selector.balance_from_ledger(history, MAIN) == 6

    def test_balance_of_unknown_pair(self, selector):
        assert selector.balance_from_ledger(uuid4(), MAIN) == 0

    def test_verify_balances_clean(self, selector, history):
        assert selector.verify_balances() == []

    def test_verify_balances_reports_drift(self, selector, session, history):
        # Bypass the ledger to simulate a corrupted projection.
        session.execute(
            update(StockLevel)
            .where(StockLevel.product_id == history)
            .values(quantity_on_hand=9, version=StockLevel.version + 1)
        )
        [discrepancy] = selector.verify_balances()
        assert discrepancy.product_id == history
        assert discrepancy.stored_on_hand == 9
        assert discrepancy.ledger_on_hand == 6
        assert discrepancy.difference == 3


class TestExport:

    def test_csv(self, selector, history):
        text = selector.export_csv(MovementFilter(product_id=history))
        rows = list(csv.reader(io.StringIO(text)))
        assert tuple(rows[0]) == CSV_HEADERS
        assert [row[3] for row in rows[1:]] == ["1", "3", "10"]
        assert rows[1][7] == "dropped"

    def test_csv_to_stream(self, selector, history):
        stream = io.StringIO()
        assert selector.export_csv(stream=stream) is None
        assert stream.getvalue().startswith("Date,")
