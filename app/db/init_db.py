from decimal import Decimal
from sqlalchemy.orm import Session
import logging
from app.core.config import settings
from app.db.base import Base
from app.models.product import Product

logger = logging.getLogger(__name__)

DEMO_PRODUCTS = [
    {"id": "p1", "title": "Canvas Tote Bag", "price": Decimal("10.00")},
    {"id": "p2", "title": "Enamel Pin", "price": Decimal("5.00")},
    {"id": "p3", "title": "Hooded Sweatshirt", "price": Decimal("49.90")},
]


def init_db(db: Session, seed_catalogue: bool = True) -> None:
    """Create tables and, outside production, a small demo catalogue"""

    Base.metadata.create_all(bind=db.get_bind())

    if not seed_catalogue:
        return
    if settings.ENVIRONMENT == "production":
        logger.warning("catalogue_seed_skipped env=%s", settings.ENVIRONMENT)
        return

    for product_data in DEMO_PRODUCTS:
        existing = db.query(Product).filter(Product.id == product_data["id"]).first()
        if not existing:
            db.add(Product(**product_data))
            logger.info("product_created id=%s", product_data["id"])

    db.commit()
    logger.info("database_initialized")


if __name__ == "__main__":
    from app.db.session import SessionLocal
    db = SessionLocal()
    try:
        init_db(db)
    finally:
        db.close()
