from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Protocol

from sqlalchemy.orm import Session

from app.models.product import Product


@dataclass(frozen=True)
class CatalogueEntry:
    product_id: str
    title: str
    price: Decimal


class CatalogueLookup(Protocol):
    """Read-only product id -> {title, price} source.

    ``lookup`` resolves every requested id in one read so that a single order
    never mixes prices taken at different points in time. Unknown ids are
    simply absent from the result.
    """

    def lookup(self, db: Session, product_ids: Iterable[str]) -> Dict[str, CatalogueEntry]:
        ...


class SqlCatalogue:
    """Catalogue backed by the ``products`` table."""

    def lookup(self, db: Session, product_ids: Iterable[str]) -> Dict[str, CatalogueEntry]:
        ids = sorted(set(product_ids))
        if not ids:
            return {}

        products = (
            db.query(Product)
            .filter(Product.id.in_(ids), Product.is_active == True)
            .all()
        )
        return {
            product.id: CatalogueEntry(
                product_id=product.id,
                title=product.title,
                price=Decimal(str(product.price)),
            )
            for product in products
        }
