"""
Module: stock_kernel.db.triggers
Responsibility: Install, remove and inspect the PostgreSQL triggers that
    back the ORM immutability listeners (layer 2 of 2).
Architecture position: Kernel > DB.  MUST NOT import from models/,
    services/, selectors/ or domain/.

Invariants enforced:
    - stock_movements: no UPDATE, no DELETE.
    - stock_levels: no DELETE.
    - goods_received_notes: no UPDATE once status leaves Draft, except the
      Posted -> Cancelled transition; no DELETE unless Draft.
    - grn_line_items: no INSERT/UPDATE/DELETE when the parent is not Draft.

Failure modes:
    - PostgreSQL RAISE EXCEPTION surfaces as an SQLAlchemy DBAPIError.
    - TRUNCATE bypasses row triggers (test cleanup relies on this).

SQLite has no equivalent here; there the ORM layer is the only guard.
"""

from sqlalchemy import text
from sqlalchemy.engine import Engine

from stock_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

TRIGGER_NAMES = (
    "trg_stock_movement_append_only",
    "trg_stock_level_no_delete",
    "trg_grn_immutable",
    "trg_grn_line_immutable",
)

_INSTALL_SQL = """
CREATE OR REPLACE FUNCTION stock_movement_append_only() RETURNS trigger AS $$
BEGIN
    RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: stock_movements row % is append-only (%)',
        OLD.id, TG_OP;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_stock_movement_append_only ON stock_movements;
CREATE TRIGGER trg_stock_movement_append_only
    BEFORE UPDATE OR DELETE ON stock_movements
    FOR EACH ROW EXECUTE FUNCTION stock_movement_append_only();

CREATE OR REPLACE FUNCTION stock_level_no_delete() RETURNS trigger AS $$
BEGIN
    RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: stock_levels row % cannot be deleted', OLD.id;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_stock_level_no_delete ON stock_levels;
CREATE TRIGGER trg_stock_level_no_delete
    BEFORE DELETE ON stock_levels
    FOR EACH ROW EXECUTE FUNCTION stock_level_no_delete();

CREATE OR REPLACE FUNCTION grn_immutable() RETURNS trigger AS $$
BEGIN
    IF TG_OP = 'DELETE' THEN
        IF OLD.status <> 'Draft' THEN
            RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: goods_received_notes % is % and cannot be deleted',
                OLD.grn_number, OLD.status;
        END IF;
        RETURN OLD;
    END IF;

    IF OLD.status = 'Draft' THEN
        RETURN NEW;
    END IF;

    IF OLD.status = 'Posted' AND NEW.status = 'Cancelled'
       AND (to_jsonb(NEW) - 'updated_at' - 'updated_by_id' - 'version' - 'status'
                          - 'cancelled_at' - 'cancelled_by_id' - 'cancellation_reason')
         = (to_jsonb(OLD) - 'updated_at' - 'updated_by_id' - 'version' - 'status'
                          - 'cancelled_at' - 'cancelled_by_id' - 'cancellation_reason') THEN
        RETURN NEW;
    END IF;

    -- audit metadata only
    IF (to_jsonb(NEW) - 'updated_at' - 'updated_by_id' - 'version')
     = (to_jsonb(OLD) - 'updated_at' - 'updated_by_id' - 'version') THEN
        RETURN NEW;
    END IF;

    RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: goods_received_notes % is % and cannot be modified',
        OLD.grn_number, OLD.status;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_grn_immutable ON goods_received_notes;
CREATE TRIGGER trg_grn_immutable
    BEFORE UPDATE OR DELETE ON goods_received_notes
    FOR EACH ROW EXECUTE FUNCTION grn_immutable();

CREATE OR REPLACE FUNCTION grn_line_immutable() RETURNS trigger AS $$
DECLARE
    parent_status TEXT;
    parent_id TEXT;
BEGIN
    IF TG_OP = 'INSERT' THEN
        parent_id := NEW.grn_id;
    ELSE
        parent_id := OLD.grn_id;
    END IF;

    SELECT status INTO parent_status FROM goods_received_notes WHERE id = parent_id;

    IF parent_status IS NOT NULL AND parent_status <> 'Draft' THEN
        RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: grn_line_items of a % GRN cannot change (%)',
            parent_status, TG_OP;
    END IF;

    IF TG_OP = 'DELETE' THEN
        RETURN OLD;
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_grn_line_immutable ON grn_line_items;
CREATE TRIGGER trg_grn_line_immutable
    BEFORE INSERT OR UPDATE OR DELETE ON grn_line_items
    FOR EACH ROW EXECUTE FUNCTION grn_line_immutable();
"""

_DROP_SQL = """
DROP TRIGGER IF EXISTS trg_stock_movement_append_only ON stock_movements;
DROP TRIGGER IF EXISTS trg_stock_level_no_delete ON stock_levels;
DROP TRIGGER IF EXISTS trg_grn_immutable ON goods_received_notes;
DROP TRIGGER IF EXISTS trg_grn_line_immutable ON grn_line_items;
DROP FUNCTION IF EXISTS stock_movement_append_only();
DROP FUNCTION IF EXISTS stock_level_no_delete();
DROP FUNCTION IF EXISTS grn_immutable();
DROP FUNCTION IF EXISTS grn_line_immutable();
"""


def install_ledger_triggers(engine: Engine) -> None:
    """Install (or replace) all ledger triggers.  PostgreSQL only."""
    with engine.begin() as conn:
        conn.exec_driver_sql(_INSTALL_SQL)
    logger.info("ledger_triggers_installed", extra={"triggers": list(TRIGGER_NAMES)})


def uninstall_ledger_triggers(engine: Engine) -> None:
    with engine.begin() as conn:
        conn.exec_driver_sql(_DROP_SQL)
    logger.info("ledger_triggers_uninstalled")


def get_installed_triggers(engine: Engine) -> list[str]:
    """Names of ledger triggers currently present in the database."""
    with engine.connect() as conn:
        rows = conn.execute(
            text(
                "SELECT tgname FROM pg_trigger "
                "WHERE NOT tgisinternal AND tgname = ANY(:names)"
            ),
            {"names": list(TRIGGER_NAMES)},
        )
        return sorted(r[0] for r in rows)


def triggers_installed(engine: Engine) -> bool:
    return set(get_installed_triggers(engine)) == set(TRIGGER_NAMES)
