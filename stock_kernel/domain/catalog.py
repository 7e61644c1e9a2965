"""
Product catalog port.

Products are owned by an external catalog; the ledger only needs to know
whether an id exists and how to label it in reports.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class ProductRef:
    product_id: UUID
    code: str
    name: str
    unit: str = "each"


class ProductCatalog(ABC):
    """Read-only lookup of products by id."""

    @abstractmethod
    def get(self, product_id: UUID) -> ProductRef | None:
        ...

    def exists(self, product_id: UUID) -> bool:
        return self.get(product_id) is not None


class StaticProductCatalog(ProductCatalog):
    """Catalog backed by an in-memory mapping.  Used by the CLI and tests."""

    def __init__(self, products: Mapping[UUID, ProductRef] | Iterable[ProductRef] = ()):
        if isinstance(products, Mapping):
            self._products = dict(products)
        else:
            self._products = {p.product_id: p for p in products}

    def get(self, product_id: UUID) -> ProductRef | None:
        return self._products.get(product_id)

    def add(self, product: ProductRef) -> None:
        self._products[product.product_id] = product

    def __len__(self) -> int:
        return len(self._products)
