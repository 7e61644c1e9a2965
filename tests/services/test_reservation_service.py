"""
ReservationService tests.

Tests cover:
- Reserve within available; reserve 5 with 3 available rejected
- Release floors at zero
- Fulfil consumes reserved and on-hand with one Issue movement
- Fulfil beyond reserved rejected
"""

import pytest
from sqlalchemy import select

from stock_kernel.exceptions import (
    InsufficientAvailableError,
    InsufficientReservedError,
    InvalidQuantityError,
    StockLevelNotFoundError,
)
from stock_kernel.models.movement import MovementType, StockMovement

MAIN = "Main Warehouse"


class TestReserve:

    def test_reserve_within_available(self, services, stock, product_id, actor_id):
        stock(product_id, 10)
        result = services.reservations.reserve(product_id, MAIN, 4, actor_id=actor_id, reference="JOB-12")
        assert result.quantity == 4
        assert result.stock_level.quantity_reserved == 4
        assert result.stock_level.quantity_on_hand == 10
        assert result.movement is None

    def test_reserve_more_than_available(self, services, stock, product_id, actor_id, captured_logs):
        stock(product_id, 10)
        services.reservations.reserve(product_id, MAIN, 7, actor_id=actor_id)

        with pytest.raises(InsufficientAvailableError) as exc_info:
            services.reservations.reserve(product_id, MAIN, 5, actor_id=actor_id)

        assert exc_info.value.available == 3
        assert exc_info.value.requested == 5
        level = services.movements.locks.lock(product_id, MAIN, actor_id=actor_id)
        assert level.quantity_reserved == 7
        assert any(r["message"] == "reservation_rejected" for r in captured_logs())

    def test_reserve_nothing_in_stock(self, services, product_id, actor_id):
        with pytest.raises(InsufficientAvailableError) as exc_info:
            services.reservations.reserve(product_id, MAIN, 1, actor_id=actor_id)
        assert exc_info.value.on_hand == 0

    def test_reserve_all_available(self, services, stock, product_id, actor_id):
        stock(product_id, 6)
        result = services.reservations.reserve(product_id, MAIN, 6, actor_id=actor_id)
        assert result.stock_level.quantity_available == 0

    def test_quantity_validated(self, services, product_id, actor_id):
        with pytest.raises(InvalidQuantityError):
            services.reservations.reserve(product_id, MAIN, 0, actor_id=actor_id)


class TestRelease:

    def test_release_partial(self, services, stock, product_id, actor_id):
        stock(product_id, 10)
        services.reservations.reserve(product_id, MAIN, 6, actor_id=actor_id)
        result = services.reservations.release(product_id, MAIN, 4, actor_id=actor_id)
        assert result.quantity == 4
        assert result.stock_level.quantity_reserved == 2

    def test_over_release_floors_at_zero(self, services, stock, product_id, actor_id):
        stock(product_id, 10)
        services.reservations.reserve(product_id, MAIN, 3, actor_id=actor_id)
        result = services.reservations.release(product_id, MAIN, 50, actor_id=actor_id)
        assert result.quantity == 3
        assert result.stock_level.quantity_reserved == 0
        assert result.stock_level.quantity_on_hand == 10

    def test_release_with_nothing_reserved(self, services, stock, product_id, actor_id):
        stock(product_id, 1)
        assert services.reservations.release(product_id, MAIN, 1, actor_id=actor_id).quantity == 0

    def test_release_unknown_pair(self, services, product_id, actor_id):
        with pytest.raises(StockLevelNotFoundError):
            services.reservations.release(product_id, MAIN, 1, actor_id=actor_id)


class TestFulfil:

    def test_fulfil_issues_reserved_stock(self, services, session, stock, product_id, actor_id):
        stock(product_id, 10)
        services.reservations.reserve(product_id, MAIN, 6, actor_id=actor_id)

        result = services.reservations.fulfil(product_id, MAIN, 4, actor_id=actor_id, reference="JOB-12")

        assert result.stock_level.quantity_on_hand == 6
        assert result.stock_level.quantity_reserved == 2
        assert result.movement.movement_type is MovementType.ISSUE
        assert result.movement.quantity == 4
        assert result.movement.reference_number == "JOB-12"
        issues = session.execute(
            select(StockMovement).where(
                StockMovement.product_id == product_id,
                StockMovement.movement_type == MovementType.ISSUE.value,
            )
        ).scalars().all()
        assert len(issues) == 1

    def test_fulfil_more_than_reserved(self, services, stock, product_id, actor_id):
        stock(product_id, 10)
        services.reservations.reserve(product_id, MAIN, 2, actor_id=actor_id)

        with pytest.raises(InsufficientReservedError) as exc_info:
            services.reservations.fulfil(product_id, MAIN, 3, actor_id=actor_id)

        assert exc_info.value.reserved == 2
        level = services.movements.locks.lock(product_id, MAIN, actor_id=actor_id)
        assert (level.quantity_on_hand, level.quantity_reserved) == (10, 2)
