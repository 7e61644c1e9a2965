"""
Input validation shared by the write services.

Every check here runs before any row is locked or changed, so a rejected
call leaves no trace in the ledger.
"""

from decimal import Decimal, InvalidOperation

from stock_kernel.exceptions import (
    InvalidGRNStatusError,
    InvalidLocationError,
    InvalidMovementTypeError,
    InvalidQuantityError,
    MissingReasonError,
)
from stock_kernel.models.grn import GRNStatus
from stock_kernel.models.movement import MovementType

MAX_LOCATION_LENGTH = 100

# Quantities are stored in BIGINT columns.
MAX_QUANTITY = 2**63 - 1


def validate_quantity(quantity: object, field: str = "quantity", *, allow_zero: bool = False) -> int:
    # bool is an int subclass; True is not a quantity.
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError(quantity, field)
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise InvalidQuantityError(quantity, field)
    if quantity > MAX_QUANTITY:
        raise InvalidQuantityError(quantity, field, f"must not exceed {MAX_QUANTITY}")
    return quantity


def validate_location(location: object) -> str:
    if not isinstance(location, str):
        raise InvalidLocationError(location, "must be a string")
    cleaned = location.strip()
    if not cleaned:
        raise InvalidLocationError(location, "must not be empty")
    if len(cleaned) > MAX_LOCATION_LENGTH:
        raise InvalidLocationError(location, f"longer than {MAX_LOCATION_LENGTH} characters")
    return cleaned


def validate_movement_type(movement_type: object) -> MovementType:
    if isinstance(movement_type, MovementType):
        return movement_type
    try:
        return MovementType(movement_type)
    except ValueError:
        raise InvalidMovementTypeError(movement_type) from None


def validate_grn_status(status: object) -> GRNStatus:
    if isinstance(status, GRNStatus):
        return status
    try:
        return GRNStatus(status)
    except ValueError:
        raise InvalidGRNStatusError(status) from None


def validate_reason(reason: object, operation: str) -> str:
    if not isinstance(reason, str) or not reason.strip():
        raise MissingReasonError(operation)
    return reason.strip()


def to_decimal(value: object) -> Decimal | None:
    """Coerce to Decimal, or None when the value is not a finite number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return None
    return result if result.is_finite() else None
