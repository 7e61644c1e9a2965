"""
ORM-level immutability enforcement (layer 1 of 2).

Layer 1 (this file) intercepts changes made through SQLAlchemy before the
SQL is emitted.  Layer 2 (db/triggers.py) installs PostgreSQL triggers that
catch raw SQL and bulk statements.  Both layers enforce the same rules.

Entity              | When immutable                 | Rule
--------------------|--------------------------------|-------------------------------
StockMovement       | ALWAYS (from creation)         | no UPDATE, no DELETE
StockLevel          | never deleted                  | no DELETE (set to zero instead)
GoodsReceivedNote   | once status leaves Draft       | only Posted -> Cancelled fields
GRNLineItem         | when parent GRN is not Draft   | no INSERT/UPDATE/DELETE
read-only Session   | always                         | no flush of pending changes

The listeners are registered once at startup (StockLedger does this) and may
be removed in tests that need to tamper on purpose:

    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from stock_kernel.exceptions import ImmutabilityViolationError, ReadOnlySessionError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Audit metadata and the optimistic version counter may always change.
_ALWAYS_MUTABLE = frozenset({"updated_at", "updated_by_id", "version"})

_CANCELLATION_FIELDS = frozenset(
    {"status", "cancelled_at", "cancelled_by_id", "cancellation_reason"}
)


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_fields(target) -> set[str]:
    return {
        attr.key
        for attr in inspect(target).attrs
        if attr.history.has_changes() and attr.key not in _ALWAYS_MUTABLE
    }


# ---------------------------------------------------------------------------
# StockMovement: append-only
# ---------------------------------------------------------------------------


def _check_movement_update(mapper, connection, target):
    # before_update also fires for dirty objects with no net column change
    if not _changed_fields(target):
        return
    _blocked(
        "StockMovement",
        target.id,
        "UPDATE",
        "Stock movements are append-only; record a reversing movement instead",
    )


def _check_movement_delete(mapper, connection, target):
    _blocked(
        "StockMovement",
        target.id,
        "DELETE",
        "Stock movements are append-only and cannot be deleted",
    )


# ---------------------------------------------------------------------------
# StockLevel: never hard-deleted
# ---------------------------------------------------------------------------


def _check_stock_level_delete(mapper, connection, target):
    _blocked(
        "StockLevel",
        target.id,
        "DELETE",
        "Stock levels are never deleted; adjust the quantity to zero instead",
        product_id=str(target.product_id),
        location=target.location,
    )


# ---------------------------------------------------------------------------
# GoodsReceivedNote header
# ---------------------------------------------------------------------------


def _previous_status(target) -> str:
    """Status as it was in the database before this flush."""
    history = get_history(target, "status")
    if history.deleted:
        old = history.deleted[0]
    elif history.unchanged:
        old = history.unchanged[0]
    else:
        old = target.status
    return old.value if hasattr(old, "value") else old


def _check_grn_update(mapper, connection, target):
    from stock_kernel.models.grn import GRNStatus

    old_status = _previous_status(target)
    if old_status == GRNStatus.DRAFT.value:
        return

    changed = _changed_fields(target)
    if not changed:
        return

    new_status = target.status.value if hasattr(target.status, "value") else target.status
    if (
        old_status == GRNStatus.POSTED.value
        and new_status == GRNStatus.CANCELLED.value
        and changed <= _CANCELLATION_FIELDS
    ):
        return

    _blocked(
        "GoodsReceivedNote",
        target.id,
        "UPDATE",
        f"Cannot modify {sorted(changed)} on a {old_status} goods received note",
        grn_number=target.grn_number,
    )


def _check_grn_delete(mapper, connection, target):
    from stock_kernel.models.grn import GRNStatus

    if _previous_status(target) != GRNStatus.DRAFT.value:
        _blocked(
            "GoodsReceivedNote",
            target.id,
            "DELETE",
            "Only draft goods received notes can be deleted",
            grn_number=target.grn_number,
        )


# ---------------------------------------------------------------------------
# GRNLineItem: frozen with its parent
# ---------------------------------------------------------------------------


def _make_line_check(operation: str):
    def _check(mapper, connection, target):
        from stock_kernel.models.grn import GRNStatus

        parent = target.grn
        if parent is None:
            return
        if _previous_status(parent) != GRNStatus.DRAFT.value:
            _blocked(
                "GRNLineItem",
                target.id,
                operation,
                "Line items cannot change once the goods received note leaves Draft",
                grn_number=parent.grn_number,
            )

    _check.__name__ = f"_check_grn_line_{operation.lower()}"
    return _check


_check_grn_line_insert = _make_line_check("INSERT")
_check_grn_line_update = _make_line_check("UPDATE")
_check_grn_line_delete = _make_line_check("DELETE")


# ---------------------------------------------------------------------------
# Read-only sessions (query facade)
# ---------------------------------------------------------------------------


def _check_read_only_flush(session, flush_context, instances):
    if not session.info.get("read_only"):
        return
    pending = len(session.new) + len(session.dirty) + len(session.deleted)
    if pending:
        logger.error("read_only_flush_blocked", extra={"pending": pending})
        raise ReadOnlySessionError(pending)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def _listeners():
    from stock_kernel.models.grn import GoodsReceivedNote, GRNLineItem
    from stock_kernel.models.movement import StockMovement
    from stock_kernel.models.stock_level import StockLevel

    return [
        (Session, "before_flush", _check_read_only_flush),
        (StockMovement, "before_update", _check_movement_update),
        (StockMovement, "before_delete", _check_movement_delete),
        (StockLevel, "before_delete", _check_stock_level_delete),
        (GoodsReceivedNote, "before_update", _check_grn_update),
        (GoodsReceivedNote, "before_delete", _check_grn_delete),
        (GRNLineItem, "before_insert", _check_grn_line_insert),
        (GRNLineItem, "before_update", _check_grn_line_update),
        (GRNLineItem, "before_delete", _check_grn_line_delete),
    ]


def register_immutability_listeners() -> None:
    """Register all immutability listeners.  Safe to call more than once."""
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the immutability listeners.

    WARNING: tests only, to verify the database-level layer on its own.
    """
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)


def immutability_listeners_registered() -> bool:
    return all(event.contains(t, n, f) for t, n, f in _listeners())
