"""
Module: stock_kernel.selectors.base
Responsibility: Base class for the read-only query selectors.
Architecture position: Kernel > Selectors.  May import from models/ and
    domain/.  MUST NOT import from services/.

Invariants enforced:
    - Selectors never add, delete, flush or commit.
    - Selectors return frozen DTOs, never ORM instances.
    - The caller owns the session; StockLedger.read() hands out sessions
      whose flush raises ReadOnlySessionError.
"""

from abc import ABC

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from stock_kernel.config import LedgerConfig
from stock_kernel.domain.validation import validate_quantity


class BaseSelector(ABC):

    def __init__(self, session: Session, config: LedgerConfig | None = None):
        self.session = session
        self.config = config or LedgerConfig()

    def _page_bounds(self, page: int, page_size: int | None) -> tuple[int, int]:
        """Validated (page, page_size); page_size is capped at max_page_size."""
        page = validate_quantity(page, "page")
        if page_size is None:
            page_size = self.config.default_page_size
        page_size = min(validate_quantity(page_size, "page_size"), self.config.max_page_size)
        return page, page_size

    def _count(self, stmt: Select) -> int:
        return self.session.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        ).scalar_one()
