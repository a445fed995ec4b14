from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, Text, Index, text
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from app.db.base_class import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_owner_created_at", "owner_id", "created_at"),
        Index(
            "ux_orders_access_code",
            "access_code",
            unique=True,
            postgresql_where=text("access_code IS NOT NULL"),
            sqlite_where=text("access_code IS NOT NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String(255), nullable=True)  # NULL for guest checkout

    # Frozen at creation
    total = Column(Numeric(10, 2), nullable=False)

    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)

    # Guest fulfillment details
    customer_name = Column(String(200), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)

    access_code = Column(String(64), nullable=True)
    idempotency_key = Column(String(64), nullable=True, unique=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
    )

    @property
    def is_guest(self) -> bool:
        return self.owner_id is None


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(64), nullable=False)

    title = Column(String(200), nullable=False)  # Snapshot at order time
    price = Column(Numeric(10, 2), nullable=False)  # Snapshot at order time
    quantity = Column(Integer, nullable=False)

    # Relationships
    order = relationship("Order", back_populates="items")

    @property
    def line_total(self):
        return self.price * self.quantity
