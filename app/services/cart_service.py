from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.exceptions import CartItemNotFound, InternalError, InvalidRequest
from app.models.cart import Cart, CartItem
from app.services.owner import require_owner_id

logger = structlog.get_logger()


def _dialect_insert(db: Session, model):
    """Return an INSERT construct that supports ``ON CONFLICT`` for the bound dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise InternalError(f"Unsupported database dialect: {dialect}")


class CartService:

    @staticmethod
    def _ensure_cart_id(db: Session, owner_id: str) -> int:
        now = datetime.utcnow()
        stmt = (
            _dialect_insert(db, Cart)
            .values(owner_id=owner_id, created_at=now, updated_at=now)
            .on_conflict_do_nothing(index_elements=[Cart.owner_id])
        )
        db.execute(stmt)
        return db.execute(select(Cart.id).where(Cart.owner_id == owner_id)).scalar_one()

    @staticmethod
    def get_or_create_cart(db: Session, owner_id: str) -> Cart:
        """Return the owner's cart with its items, creating an empty one on first access."""
        owner_id = require_owner_id(owner_id)
        try:
            cart_id = CartService._ensure_cart_id(db, owner_id)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("cart_load_failed", owner_id=owner_id)
            raise InternalError("Could not load cart") from exc

        return (
            db.query(Cart)
            .options(selectinload(Cart.items))
            .filter(Cart.id == cart_id)
            .one()
        )

    @staticmethod
    def add_item(
        db: Session,
        owner_id: str,
        product_id: str,
        quantity: int = 1,
        meta: Optional[str] = None,
    ) -> CartItem:
        """
        Add a product to the owner's cart.

        A repeated add for the same product merges into the existing row:
        quantities are summed by the database in one upsert, and ``meta`` is
        only replaced when a new value is supplied.
        """
        owner_id = require_owner_id(owner_id)
        product_id = (product_id or "").strip() if isinstance(product_id, str) else ""
        if not product_id:
            raise InvalidRequest("productId required")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidRequest("quantity must be a positive integer")
        if quantity > settings.MAX_ITEM_QUANTITY:
            raise InvalidRequest(f"quantity must not exceed {settings.MAX_ITEM_QUANTITY}")

        try:
            cart_id = CartService._ensure_cart_id(db, owner_id)

            now = datetime.utcnow()
            insert_stmt = _dialect_insert(db, CartItem).values(
                cart_id=cart_id,
                product_id=product_id,
                quantity=quantity,
                meta=meta,
                created_at=now,
                updated_at=now,
            )
            upsert_stmt = insert_stmt.on_conflict_do_update(
                index_elements=[CartItem.cart_id, CartItem.product_id],
                set_={
                    "quantity": CartItem.quantity + insert_stmt.excluded.quantity,
                    "meta": func.coalesce(insert_stmt.excluded.meta, CartItem.meta),
                    "updated_at": now,
                },
                where=CartItem.quantity + insert_stmt.excluded.quantity <= settings.MAX_ITEM_QUANTITY,
            )
            result = db.execute(upsert_stmt)
            if result.rowcount == 0:
                # Merged line would pass the per-item limit; nothing was written.
                db.rollback()
                raise InvalidRequest(
                    f"quantity must not exceed {settings.MAX_ITEM_QUANTITY}",
                    errors=[{"product_id": product_id, "message": "Cart line limit reached"}],
                )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("cart_item_add_failed", owner_id=owner_id, product_id=product_id)
            raise InternalError("Could not update cart") from exc

        item = (
            db.query(CartItem)
            .filter(CartItem.cart_id == cart_id, CartItem.product_id == product_id)
            .one()
        )

        logger.info(
            "cart_item_added",
            owner_id=owner_id,
            product_id=product_id,
            requested_quantity=quantity,
            quantity=item.quantity,
        )
        return item

    @staticmethod
    def remove_item(db: Session, item_id: int, owner_id: str) -> None:
        """Delete one item from the owner's cart. Items in other carts are reported as missing."""
        owner_id = require_owner_id(owner_id)

        owner_cart_ids = select(Cart.id).where(Cart.owner_id == owner_id)
        try:
            deleted = (
                db.query(CartItem)
                .filter(CartItem.id == item_id, CartItem.cart_id.in_(owner_cart_ids))
                .delete(synchronize_session=False)
            )
            if not deleted:
                db.rollback()
                raise CartItemNotFound()
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("cart_item_remove_failed", owner_id=owner_id, item_id=item_id)
            raise InternalError("Could not update cart") from exc

        db.expire_all()
        logger.info("cart_item_removed", owner_id=owner_id, item_id=item_id)

    @staticmethod
    def clear_items(db: Session, owner_id: str) -> int:
        """Delete every item of the owner's cart without committing. Returns the number removed."""
        owner_cart_ids = select(Cart.id).where(Cart.owner_id == owner_id)
        return (
            db.query(CartItem)
            .filter(CartItem.cart_id.in_(owner_cart_ids))
            .delete(synchronize_session=False)
        )

    @staticmethod
    def clear_cart(db: Session, owner_id: str) -> int:
        owner_id = require_owner_id(owner_id)
        try:
            removed = CartService.clear_items(db, owner_id)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("cart_clear_failed", owner_id=owner_id)
            raise InternalError("Could not update cart") from exc

        db.expire_all()
        logger.info("cart_cleared", owner_id=owner_id, removed_items=removed)
        return removed
