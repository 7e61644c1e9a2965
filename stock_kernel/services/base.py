"""
BaseService -- common constructor for the write services.

Services receive a Session from the caller and persist with
``session.flush()``; they never commit or roll back.  StockLedger owns the
transaction, so a multi-step operation (GRN post, transfer) is atomic.
"""

from abc import ABC
from uuid import UUID

from sqlalchemy.orm import Session

from stock_kernel.config import LedgerConfig
from stock_kernel.domain.catalog import ProductCatalog
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import ProductNotFoundError


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage the transaction lifecycle.
        - Does NOT provide read models; those live in ``selectors/``.
    """

    def __init__(
        self,
        session: Session,
        *,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
        catalog: ProductCatalog | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.config = config or LedgerConfig()
        self.catalog = catalog

    def _require_product(self, product_id: UUID) -> None:
        # Without a catalog every product id is trusted.
        if self.catalog is not None and not self.catalog.exists(product_id):
            raise ProductNotFoundError(product_id)
