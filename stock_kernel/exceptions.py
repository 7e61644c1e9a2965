"""
Typed exception hierarchy for the stock kernel.

Every error has a typed class, a machine-readable ``code`` class attribute,
and structured instance attributes.  Callers catch by type and read the
attributes; they never parse messages.

    StockKernelError (base)
    |
    +-- LedgerValidationError          rejected before any state change
    |   +-- InvalidQuantityError
    |   +-- InvalidMovementTypeError
    |   +-- InvalidLocationError
    |   +-- InvalidGRNStatusError
    |   +-- MissingReasonError
    |   +-- EmptyGRNError
    |   +-- DuplicateLineProductError
    |   +-- InvalidLineError
    |
    +-- StockError                     balance guards
    |   +-- BelowReservedError
    |   +-- InsufficientAvailableError
    |   +-- InsufficientReservedError
    |
    +-- WorkflowError
    |   +-- InvalidStateError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError   retried by StockLedger, then surfaced
    |
    +-- NotFoundError
    |   +-- ProductNotFoundError
    |   +-- StockLevelNotFoundError
    |   +-- GRNNotFoundError
    |   +-- MovementNotFoundError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |   +-- ReadOnlySessionError
    |
    +-- StorageUnavailableError        fatal: a transaction could not begin

Category        | Code                      | When raised
----------------|---------------------------|-----------------------------------------
Validation      | INVALID_QUANTITY          | Quantity not a positive integer
                | INVALID_MOVEMENT_TYPE     | Unknown movement type
                | INVALID_LOCATION          | Empty / oversize / same-location transfer
                | MISSING_REASON            | Adjustment without a reason
                | EMPTY_GRN                 | GRN without line items
                | DUPLICATE_LINE_PRODUCT    | Same product twice on one GRN
                | INVALID_LINE              | Negative cost, GST out of range, ...
----------------|---------------------------|-----------------------------------------
Stock           | BELOW_RESERVED            | on_hand would drop below reserved
                | INSUFFICIENT_AVAILABLE    | Reservation exceeds available
                | INSUFFICIENT_RESERVED     | Fulfilment exceeds reserved
----------------|---------------------------|-----------------------------------------
Workflow        | INVALID_STATE             | GRN action not allowed from status
----------------|---------------------------|-----------------------------------------
Concurrency     | CONCURRENCY_CONFLICT      | Lock / version contention
----------------|---------------------------|-----------------------------------------
Not found       | PRODUCT_NOT_FOUND         | Catalog does not know the product
                | STOCK_LEVEL_NOT_FOUND     | No stock row for (product, location)
                | GRN_NOT_FOUND             | GRN id does not exist
                | MOVEMENT_NOT_FOUND        | Movement id does not exist
----------------|---------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION    | Update/delete of an immutable record
                | READ_ONLY_SESSION         | Write attempted through the read facade
----------------|---------------------------|-----------------------------------------
Storage         | STORAGE_UNAVAILABLE       | Cannot begin a transaction
"""

from uuid import UUID


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses carry a ``code`` class attribute.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Validation


class LedgerValidationError(StockKernelError):
    """Input rejected before any state change."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(LedgerValidationError):
    """Quantity is not a positive integer, or does not fit a BIGINT column."""

    code: str = "INVALID_QUANTITY"

    def __init__(
        self,
        quantity: object,
        field: str = "quantity",
        reason: str = "must be a positive integer",
    ):
        self.quantity = quantity
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {quantity!r} ({reason})")


class InvalidMovementTypeError(LedgerValidationError):

    code: str = "INVALID_MOVEMENT_TYPE"

    def __init__(self, movement_type: object):
        self.movement_type = movement_type
        super().__init__(f"Unknown movement type: {movement_type!r}")


class InvalidLocationError(LedgerValidationError):

    code: str = "INVALID_LOCATION"

    def __init__(self, location: object, reason: str):
        self.location = location
        self.reason = reason
        super().__init__(f"Invalid location {location!r}: {reason}")


class InvalidGRNStatusError(LedgerValidationError):

    code: str = "INVALID_GRN_STATUS"

    def __init__(self, status: object):
        self.status = status
        super().__init__(f"Unknown goods received note status: {status!r}")


class MissingReasonError(LedgerValidationError):
    """Adjustments require a non-empty reason for the audit trail."""

    code: str = "MISSING_REASON"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"A reason is required for {operation}")


class EmptyGRNError(LedgerValidationError):

    code: str = "EMPTY_GRN"

    def __init__(self) -> None:
        super().__init__("A goods received note needs at least one line item")


class DuplicateLineProductError(LedgerValidationError):

    code: str = "DUPLICATE_LINE_PRODUCT"

    def __init__(self, product_id: UUID):
        self.product_id = product_id
        super().__init__(f"Product {product_id} appears more than once on the GRN")


class InvalidLineError(LedgerValidationError):

    code: str = "INVALID_LINE"

    def __init__(self, line_number: int, field: str, reason: str):
        self.line_number = line_number
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid line {line_number} field '{field}': {reason}")


# Stock balance guards


class StockError(StockKernelError):
    """
    Base exception for balance guard failures.

    Carries enough context for the caller to decide whether to retry,
    prompt a user, or trigger backorder handling.
    """

    code: str = "STOCK_ERROR"

    def __init__(
        self,
        message: str,
        *,
        product_id: UUID,
        location: str,
        requested: int,
        on_hand: int,
        reserved: int,
    ):
        self.product_id = product_id
        self.location = location
        self.requested = requested
        self.on_hand = on_hand
        self.reserved = reserved
        self.available = on_hand - reserved
        super().__init__(message)


class BelowReservedError(StockError):
    """A decrease or issue would make on_hand fall below reserved."""

    code: str = "BELOW_RESERVED"

    def __init__(
        self, product_id: UUID, location: str, requested: int, on_hand: int, reserved: int
    ):
        super().__init__(
            f"Cannot reduce stock of {product_id} at '{location}' by {requested}: "
            f"on hand {on_hand}, reserved {reserved}",
            product_id=product_id,
            location=location,
            requested=requested,
            on_hand=on_hand,
            reserved=reserved,
        )


class InsufficientAvailableError(StockError):
    """A reservation request exceeds quantity_available."""

    code: str = "INSUFFICIENT_AVAILABLE"

    def __init__(
        self, product_id: UUID, location: str, requested: int, on_hand: int, reserved: int
    ):
        super().__init__(
            f"Cannot reserve {requested} of {product_id} at '{location}': "
            f"only {on_hand - reserved} available",
            product_id=product_id,
            location=location,
            requested=requested,
            on_hand=on_hand,
            reserved=reserved,
        )


class InsufficientReservedError(StockError):
    """A fulfilment asks for more than is reserved."""

    code: str = "INSUFFICIENT_RESERVED"

    def __init__(
        self, product_id: UUID, location: str, requested: int, on_hand: int, reserved: int
    ):
        super().__init__(
            f"Cannot fulfil {requested} of {product_id} at '{location}': "
            f"only {reserved} reserved",
            product_id=product_id,
            location=location,
            requested=requested,
            on_hand=on_hand,
            reserved=reserved,
        )


# Workflow


class WorkflowError(StockKernelError):

    code: str = "WORKFLOW_ERROR"


class InvalidStateError(WorkflowError):
    """A GRN operation was attempted from a status that does not permit it."""

    code: str = "INVALID_STATE"

    def __init__(self, grn_id: UUID, grn_number: str | None, status: str, action: str):
        self.grn_id = grn_id
        self.grn_number = grn_number
        self.status = status
        self.action = action
        super().__init__(
            f"Cannot {action} GRN {grn_number or grn_id}: status is {status}"
        )


# Concurrency


class ConcurrencyError(StockKernelError):

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """Lock or version contention; safe for the caller to retry."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, attempts: int = 1):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id} "
            f"(after {attempts} attempt(s))"
        )


# Not found


class NotFoundError(StockKernelError):

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class ProductNotFoundError(NotFoundError):

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: UUID):
        self.product_id = product_id
        super().__init__("Product", str(product_id))


class StockLevelNotFoundError(NotFoundError):

    code: str = "STOCK_LEVEL_NOT_FOUND"

    def __init__(self, product_id: UUID, location: str):
        self.product_id = product_id
        self.location = location
        super().__init__("StockLevel", f"{product_id}@{location}")


class GRNNotFoundError(NotFoundError):

    code: str = "GRN_NOT_FOUND"

    def __init__(self, grn_id: UUID | str):
        self.grn_id = grn_id
        super().__init__("GoodsReceivedNote", str(grn_id))


class MovementNotFoundError(NotFoundError):

    code: str = "MOVEMENT_NOT_FOUND"

    def __init__(self, movement_id: UUID):
        self.movement_id = movement_id
        super().__init__("StockMovement", str(movement_id))


# Immutability


class ImmutabilityError(StockKernelError):

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    StockMovement rows are immutable from creation; GRN headers and lines
    are immutable once they leave Draft; StockLevel rows are never deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class ReadOnlySessionError(ImmutabilityError):
    """A write was flushed through a query-facade session."""

    code: str = "READ_ONLY_SESSION"

    def __init__(self, pending: int):
        self.pending = pending
        super().__init__(
            f"Read-only session cannot flush {pending} pending change(s)"
        )


# Storage


class StorageUnavailableError(StockKernelError):
    """The database could not start a transaction. Alerting condition."""

    code: str = "STORAGE_UNAVAILABLE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Storage unavailable: {reason}")
