from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.exceptions import CartChanged, Conflict, InternalError, InvalidRequest, OrderNotFound
from app.models.cart import Cart, CartItem
from app.models.order import Order, OrderItem, OrderStatus
from app.models.order_status_history import OrderStatusHistory
from app.schemas.order import CustomerInfo, OrderLine
from app.services.access_code_service import AccessCodeService
from app.services.catalogue import CatalogueLookup
from app.services.owner import Owner, require_owner_id

logger = structlog.get_logger()

CENT = Decimal("0.01")
# Largest value orders.total (Numeric(10, 2)) can hold
MAX_ORDER_TOTAL = Decimal("99999999.99")
GUEST_ACTOR = "guest"


def _to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def _validate_lines(items: Optional[Sequence[OrderLine]]) -> List[OrderLine]:
    if not items:
        raise InvalidRequest("At least one item is required")

    errors = []
    for index, line in enumerate(items):
        product_id = getattr(line, "product_id", None)
        quantity = getattr(line, "quantity", None)
        if not isinstance(product_id, str) or not product_id.strip():
            errors.append({"index": index, "field": "product_id", "message": "productId required"})
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            errors.append({"index": index, "field": "quantity", "message": "quantity must be a positive integer"})
        elif quantity > settings.MAX_ITEM_QUANTITY:
            errors.append(
                {"index": index, "field": "quantity", "message": f"quantity must not exceed {settings.MAX_ITEM_QUANTITY}"}
            )

    if errors:
        raise InvalidRequest("Invalid order items", errors=errors)
    return list(items)


def _with_items(db: Session):
    return db.query(Order).options(selectinload(Order.items))


def find_order_by_idempotency_key(
    db: Session, idempotency_key: str, owner_id: Optional[str]
) -> Optional[Order]:
    """Return the order already placed with this key, if any."""
    existing = _with_items(db).filter(Order.idempotency_key == idempotency_key).first()
    if existing and existing.owner_id != owner_id:
        raise Conflict("Idempotency key already used")
    return existing


def create_order(
    db: Session,
    catalogue: CatalogueLookup,
    *,
    owner_id: Optional[str],
    items: Sequence[OrderLine],
    customer: Optional[CustomerInfo] = None,
    client_total=None,
    idempotency_key: Optional[str] = None,
    cart_items: Optional[Sequence[Tuple[int, int]]] = None,
) -> Order:
    """
    Create an order snapshot from line items.

    Prices and titles are read from the catalogue inside the write
    transaction; nothing the caller sends about prices is persisted. The
    order, its items and (for guests) its access code are committed together,
    or not at all.

    Args:
        owner_id: Authenticated account id, or None for a guest order.
        client_total: Total shown to the customer; only compared and logged.
        cart_items: ``(cart item id, quantity)`` pairs consumed by this checkout.
            Each row is deleted in the same transaction only if its quantity is
            unchanged; otherwise nothing is written and ``CartChanged`` is raised.

    Returns:
        Order: The committed order with its items.
    """
    if owner_id is not None:
        owner_id = require_owner_id(owner_id)
    lines = _validate_lines(items)
    customer = customer or CustomerInfo()

    order = None
    for attempt in range(1, settings.ACCESS_CODE_MAX_ATTEMPTS + 1):
        access_code = None
        try:
            entries = catalogue.lookup(db, [line.product_id for line in lines])
            unknown = sorted({line.product_id for line in lines} - set(entries))
            if unknown:
                db.rollback()
                raise InvalidRequest(
                    "Unknown product",
                    errors=[{"product_id": product_id, "message": "Product not found"} for product_id in unknown],
                )

            order_items = []
            total = Decimal("0")
            for line in lines:
                entry = entries[line.product_id]
                price = _to_money(entry.price)
                total += price * line.quantity
                order_items.append(
                    OrderItem(
                        product_id=entry.product_id,
                        title=entry.title,
                        price=price,
                        quantity=line.quantity,
                    )
                )
            total = _to_money(total)
            if total > MAX_ORDER_TOTAL:
                db.rollback()
                raise InvalidRequest("Order total too large")

            if owner_id is None:
                access_code = AccessCodeService.issue(db)

            order = Order(
                owner_id=owner_id,
                total=total,
                status=OrderStatus.PENDING,
                customer_name=customer.customer_name,
                customer_email=customer.customer_email,
                customer_phone=customer.customer_phone,
                address=customer.address,
                access_code=access_code,
                idempotency_key=idempotency_key,
                items=order_items,
            )
            order.status_history.append(
                OrderStatusHistory(
                    old_status=None,
                    new_status=OrderStatus.PENDING.value,
                    changed_by=owner_id or GUEST_ACTOR,
                    notes="Order placed",
                )
            )
            db.add(order)

            for item_id, quantity in cart_items or ():
                consumed = (
                    db.query(CartItem)
                    .filter(CartItem.id == item_id, CartItem.quantity == quantity)
                    .delete(synchronize_session=False)
                )
                if consumed != 1:
                    db.rollback()
                    raise CartChanged()

            db.commit()
            break
        except IntegrityError as exc:
            db.rollback()
            if idempotency_key:
                existing = find_order_by_idempotency_key(db, idempotency_key, owner_id)
                if existing:
                    return existing
            if access_code is not None and attempt < settings.ACCESS_CODE_MAX_ATTEMPTS:
                logger.warning("order_access_code_conflict", attempt=attempt)
                continue
            logger.exception("order_create_failed", owner_id=owner_id)
            raise InternalError("Could not create order") from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("order_create_failed", owner_id=owner_id)
            raise InternalError("Could not create order") from exc

    if client_total is not None and _to_money(client_total) != order.total:
        logger.warning(
            "client_total_mismatch",
            order_id=order.id,
            client_total=str(_to_money(client_total)),
            total=str(order.total),
        )

    logger.info(
        "order_created",
        order_id=order.id,
        owner_id=owner_id,
        guest=order.is_guest,
        item_count=len(lines),
        total=str(order.total),
    )
    return _with_items(db).filter(Order.id == order.id).one()


def checkout_cart(
    db: Session,
    catalogue: CatalogueLookup,
    owner: Owner,
    *,
    customer: Optional[CustomerInfo] = None,
    client_total=None,
    idempotency_key: Optional[str] = None,
) -> Order:
    """
    Place an order for everything in the owner's cart and empty it in the same transaction.

    The cart is re-read when a concurrent add changes a consumed line between
    the read and the commit, so merged units are either ordered or left in
    the cart, never dropped.
    """
    cart_key = require_owner_id(owner.key)

    for attempt in range(1, settings.CART_CHECKOUT_MAX_ATTEMPTS + 1):
        cart_items = (
            db.query(CartItem)
            .join(Cart, Cart.id == CartItem.cart_id)
            .filter(Cart.owner_id == cart_key)
            .order_by(CartItem.id)
            .with_for_update(of=CartItem)
            .all()
        )
        if not cart_items:
            db.rollback()
            raise InvalidRequest("Cart is empty")

        lines = [OrderLine(product_id=item.product_id, quantity=item.quantity) for item in cart_items]
        try:
            return create_order(
                db,
                catalogue,
                owner_id=owner.order_owner_id,
                items=lines,
                customer=customer,
                client_total=client_total,
                idempotency_key=idempotency_key,
                cart_items=[(item.id, item.quantity) for item in cart_items],
            )
        except CartChanged:
            logger.warning("cart_changed_during_checkout", cart_owner=cart_key, attempt=attempt)
            if attempt == settings.CART_CHECKOUT_MAX_ATTEMPTS:
                raise



def list_orders(db: Session, owner_id: str) -> List[Order]:
    """Orders placed by an owner, newest first."""
    owner_id = require_owner_id(owner_id)
    return (
        _with_items(db)
        .filter(Order.owner_id == owner_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def get_order_by_access_code(db: Session, code: str) -> Order:
    order_id = AccessCodeService.resolve(db, code)
    return _with_items(db).filter(Order.id == order_id).one()


def get_order_for_owner(db: Session, owner_id: str, order_id: int) -> Order:
    owner_id = require_owner_id(owner_id)
    order = (
        _with_items(db)
        .filter(Order.id == order_id, Order.owner_id == owner_id)
        .first()
    )
    if not order:
        raise OrderNotFound()
    return order



def list_all_orders(
    db: Session,
    *,
    status: Optional[OrderStatus] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Order], int]:
    """Seller console listing: every order, newest first, optionally by status."""
    if page < 1 or not 1 <= limit <= 100:
        raise InvalidRequest("page must be >= 1 and limit between 1 and 100")

    query = db.query(Order)
    if status is not None:
        query = query.filter(Order.status == status)

    total = query.count()
    orders = (
        query.options(selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return orders, total
