"""
AdjustmentService tests.

Tests cover:
- Decrease of 90 rejected with on_hand 100, reserved 20 (no movement)
- Decrease of 70 leaves 30 and exactly one movement
- Reason and quantity validation before any change
- Reason recorded as movement notes
"""

import pytest
from sqlalchemy import select

from stock_kernel.domain.dtos import AdjustmentDirection
from stock_kernel.domain.validation import MAX_QUANTITY
from stock_kernel.exceptions import (
    BelowReservedError,
    InvalidMovementTypeError,
    InvalidQuantityError,
    MissingReasonError,
)
from stock_kernel.models.movement import MovementType, StockMovement
from stock_kernel.services.adjustment_service import MANUAL_ADJUSTMENT

MAIN = "Main Warehouse"


@pytest.fixture
def hundred_with_twenty_reserved(services, stock, product_id, actor_id):
    stock(product_id, 100)
    services.reservations.reserve(product_id, MAIN, 20, actor_id=actor_id)
    return product_id


def _adjustments(session, product_id):
    return list(
        session.execute(
            select(StockMovement)
            .where(
                StockMovement.product_id == product_id,
                StockMovement.movement_type == MovementType.ADJUSTMENT_DECREASE.value,
            )
        ).scalars()
    )


def test_decrease_past_reserved_rejected(services, session, hundred_with_twenty_reserved, actor_id):
    product_id = hundred_with_twenty_reserved

    with pytest.raises(BelowReservedError) as exc_info:
        services.adjustments.adjust_stock(product_id, MAIN, "decrease", 90, "Damaged", actor_id=actor_id)

    assert exc_info.value.requested == 90
    assert exc_info.value.available == 80
    level = services.movements.locks.lock(product_id, MAIN, actor_id=actor_id)
    assert (level.quantity_on_hand, level.quantity_reserved) == (100, 20)
    assert _adjustments(session, product_id) == []


def test_decrease_within_available(services, session, hundred_with_twenty_reserved, actor_id):
    product_id = hundred_with_twenty_reserved

    result = services.adjustments.adjust_stock(
        product_id, MAIN, AdjustmentDirection.DECREASE, 70, "Water damage", actor_id=actor_id
    )

    assert result.stock_level.quantity_on_hand == 30
    assert result.stock_level.quantity_reserved == 20
    assert result.stock_level.quantity_available == 10
    assert result.movement.movement_type is MovementType.ADJUSTMENT_DECREASE
    assert result.movement.quantity == 70
    assert result.movement.notes == "Water damage"
    assert result.movement.reference_type == MANUAL_ADJUSTMENT
    assert len(_adjustments(session, product_id)) == 1


def test_increase_unbounded(services, product_id, actor_id):
    result = services.adjustments.adjust_stock(
        product_id, MAIN, "increase", 1_000_000, "Found pallet", actor_id=actor_id
    )
    assert result.stock_level.quantity_on_hand == 1_000_000
    assert result.movement.movement_type is MovementType.ADJUSTMENT_INCREASE


def test_decrease_to_exactly_reserved(services, hundred_with_twenty_reserved, actor_id):
    result = services.adjustments.adjust_stock(
        hundred_with_twenty_reserved, MAIN, "decrease", 80, "Count correction", actor_id=actor_id
    )
    assert result.stock_level.quantity_on_hand == 20
    assert result.stock_level.quantity_available == 0


@pytest.mark.parametrize(
    "direction, quantity, reason, error",
    [
        ("increase", 0, "x", InvalidQuantityError),
        ("decrease", -5, "x", InvalidQuantityError),
        ("increase", 2**63, "x", InvalidQuantityError),
        ("increase", 5, "", MissingReasonError),
        ("increase", 5, "   ", MissingReasonError),
        ("sideways", 5, "x", InvalidMovementTypeError),
    ],
)
def test_validation(services, session, product_id, actor_id, direction, quantity, reason, error):
    with pytest.raises(error):
        services.adjustments.adjust_stock(product_id, MAIN, direction, quantity, reason, actor_id=actor_id)
    assert session.execute(
        select(StockMovement).where(StockMovement.product_id == product_id)
    ).first() is None


def test_increase_cannot_overflow_on_hand(services, session, product_id, actor_id):
    services.adjustments.adjust_stock(
        product_id, MAIN, "increase", MAX_QUANTITY, "Opening balance", actor_id=actor_id
    )

    with pytest.raises(InvalidQuantityError) as exc_info:
        services.adjustments.adjust_stock(product_id, MAIN, "increase", 1, "One more", actor_id=actor_id)

    assert "quantity_on_hand" in exc_info.value.reason
    assert len(_adjustments(session, product_id)) == 1


def test_quantity_checked_before_reason(services, product_id, actor_id):
    with pytest.raises(InvalidQuantityError):
        services.adjustments.adjust_stock(product_id, MAIN, "increase", 0, "", actor_id=actor_id)


def test_adjustment_logged(services, product_id, actor_id, captured_logs):
    services.adjustments.adjust_stock(product_id, MAIN, "increase", 5, "Opening", actor_id=actor_id)
    adjusted = [r for r in captured_logs() if r["message"] == "stock_adjusted"]
    assert adjusted
    assert adjusted[-1]["on_hand_after"] == 5
