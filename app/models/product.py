from sqlalchemy import Column, String, Numeric, Boolean, DateTime
from datetime import datetime
from app.db.base_class import Base


class Product(Base):
    """Catalogue entry. Read-only from the commerce core."""

    __tablename__ = "products"

    id = Column(String(64), primary_key=True)
    title = Column(String(200), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
