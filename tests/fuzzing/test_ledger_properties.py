"""
Hypothesis-based property tests for the balance invariants.

Random sequences of movements and reservation operations are applied to a
fresh (product, location) pair.  Rejected operations are expected; what
must never happen is a state where:

- on_hand < reserved, or either is negative
- on_hand differs from the signed sum of the pair's movements
- a rejected operation changed anything
"""

from uuid import uuid4

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from stock_kernel.exceptions import StockError
from stock_kernel.models.movement import MovementType
from stock_kernel.selectors import MovementSelector

MAIN = "Main Warehouse"

MOVEMENT_TYPES = [t for t in MovementType if t is not MovementType.RECEIPT_REVERSAL]
RESERVATION_OPS = ["reserve", "release", "fulfil"]

operations = st.lists(
    st.tuples(
        st.sampled_from(MOVEMENT_TYPES + RESERVATION_OPS),
        st.integers(min_value=1, max_value=40),
    ),
    min_size=1,
    max_size=25,
)

FUZZ_SETTINGS = settings(
    max_examples=40,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)


def _apply(services, product_id, op, quantity, actor_id):
    if op == "reserve":
        return services.reservations.reserve(product_id, MAIN, quantity, actor_id=actor_id)
    if op == "release":
        return services.reservations.release(product_id, MAIN, quantity, actor_id=actor_id)
    if op == "fulfil":
        return services.reservations.fulfil(product_id, MAIN, quantity, actor_id=actor_id)
    return services.movements.record_movement(product_id, MAIN, op, quantity, actor_id=actor_id)


def _model_step(on_hand, reserved, op, quantity):
    """Expected (on_hand, reserved) after one operation, or None if it must be rejected."""
    if op == "reserve":
        return (on_hand, reserved + quantity) if quantity <= on_hand - reserved else None
    if op == "release":
        return on_hand, max(reserved - quantity, 0)
    if op == "fulfil":
        return (on_hand - quantity, reserved - quantity) if quantity <= reserved else None
    new_on_hand = on_hand + op.signed(quantity)
    return (new_on_hand, reserved) if new_on_hand >= reserved else None


class TestBalanceProperties:

    @FUZZ_SETTINGS
    @given(steps=operations)
    def test_random_operations_keep_invariants(self, services, session, actor_id, steps):
        product_id = uuid4()
        selector = MovementSelector(session)
        on_hand = reserved = 0
        level_exists = False

        for op, quantity in steps:
            expected = _model_step(on_hand, reserved, op, quantity)
            if op == "release" and not level_exists:
                continue
            try:
                _apply(services, product_id, op, quantity, actor_id)
            except StockError:
                assert expected is None, f"{op} {quantity} rejected at {on_hand}/{reserved}"
                continue
            assert expected is not None, f"{op} {quantity} accepted at {on_hand}/{reserved}"
            on_hand, reserved = expected
            level_exists = True

            level = services.movements.locks.lock(product_id, MAIN, actor_id=actor_id, create=False)
            assert level.quantity_on_hand == on_hand
            assert level.quantity_reserved == reserved
            assert 0 <= level.quantity_reserved <= level.quantity_on_hand

        assert selector.balance_from_ledger(product_id, MAIN) == on_hand

    @FUZZ_SETTINGS
    @given(
        opening=st.integers(min_value=0, max_value=100),
        held=st.integers(min_value=0, max_value=100),
        decrease=st.integers(min_value=1, max_value=200),
    )
    def test_decrease_never_crosses_reserved(self, services, actor_id, opening, held, decrease):
        product_id = uuid4()
        held = min(held, opening)
        if opening:
            services.adjustments.adjust_stock(
                product_id, MAIN, "increase", opening, "Opening balance", actor_id=actor_id
            )
        if held:
            services.reservations.reserve(product_id, MAIN, held, actor_id=actor_id)

        try:
            result = services.adjustments.adjust_stock(
                product_id, MAIN, "decrease", decrease, "Shrinkage", actor_id=actor_id
            )
        except StockError:
            assert opening - decrease < held
        else:
            assert opening - decrease >= held
            assert result.stock_level.quantity_on_hand == opening - decrease
            assert result.stock_level.quantity_available >= 0
