from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import CartChanged, Conflict, InvalidRequest, NotFound, OrderNotFound
from app.models.cart import CartItem
from app.models.order import Order, OrderItem, OrderStatus
from app.models.order_status_history import OrderStatusHistory
from app.models.product import Product
from app.schemas.order import CustomerInfo, OrderLine
from app.services import order_service
from app.services.cart_service import CartService
from app.services.catalogue import SqlCatalogue
from app.services.owner import Authenticated, Guest


def _lines(*pairs):
    return [OrderLine(product_id=product_id, quantity=quantity) for product_id, quantity in pairs]


def test_guest_order_snapshots_catalogue(db_session: Session, catalogue):
    order = order_service.create_order(
        db_session,
        catalogue,
        owner_id=None,
        items=_lines(("p1", 2), ("p2", 1)),
        customer=CustomerInfo(customer_name="Ada", customer_phone="+44 20 7946 0000"),
    )

    assert order.total == Decimal("25.00")
    assert order.status == OrderStatus.PENDING
    assert order.owner_id is None
    assert order.access_code
    assert order.customer_phone == "+44 20 7946 0000"
    assert [(i.product_id, i.title, i.price, i.quantity) for i in order.items] == [
        ("p1", "Canvas Tote Bag", Decimal("10.00"), 2),
        ("p2", "Enamel Pin", Decimal("5.00"), 1),
    ]


def test_authenticated_order_has_no_access_code(db_session: Session, catalogue):
    order = order_service.create_order(
        db_session, catalogue, owner_id="user-1", items=_lines(("p1", 1))
    )

    assert order.owner_id == "user-1"
    assert order.access_code is None


def test_total_ignores_client_total(db_session: Session, catalogue):
    order = order_service.create_order(
        db_session, catalogue, owner_id="user-1", items=_lines(("p1", 1)), client_total=0.01
    )
    assert order.total == Decimal("10.00")


def test_price_change_after_order_does_not_alter_snapshot(db_session: Session, catalogue):
    order = order_service.create_order(
        db_session, catalogue, owner_id="user-1", items=_lines(("p1", 2))
    )
    catalogue.set_price("p1", "99.00")

    db_session.expire_all()
    reloaded = order_service.get_order_for_owner(db_session, "user-1", order.id)
    assert reloaded.total == Decimal("20.00")
    assert reloaded.items[0].price == Decimal("10.00")


def test_unknown_product_rejected_without_writes(db_session: Session, catalogue):
    with pytest.raises(InvalidRequest) as exc_info:
        order_service.create_order(
            db_session, catalogue, owner_id="user-1", items=_lines(("p1", 1), ("missing", 1))
        )

    assert exc_info.value.errors == [{"product_id": "missing", "message": "Product not found"}]
    assert db_session.query(Order).count() == 0
    assert db_session.query(OrderItem).count() == 0


def test_empty_items_rejected(db_session: Session, catalogue):
    with pytest.raises(InvalidRequest):
        order_service.create_order(db_session, catalogue, owner_id=None, items=[])
    assert catalogue.lookups == 0


def test_bad_quantity_rejected_before_catalogue_read(db_session: Session, catalogue):
    with pytest.raises(InvalidRequest) as exc_info:
        order_service.create_order(
            db_session, catalogue, owner_id=None, items=_lines(("p1", 1), ("p2", 0))
        )

    assert exc_info.value.errors[0]["index"] == 1
    assert catalogue.lookups == 0
    assert db_session.query(Order).count() == 0


def test_initial_history_row(db_session: Session, catalogue):
    order = order_service.create_order(db_session, catalogue, owner_id=None, items=_lines(("p1", 1)))

    history = db_session.query(OrderStatusHistory).filter(OrderStatusHistory.order_id == order.id).all()
    assert [(h.old_status, h.new_status, h.changed_by) for h in history] == [
        (None, "pending", order_service.GUEST_ACTOR)
    ]


def test_idempotency_key_returns_existing_order(db_session: Session, catalogue):
    key = str(uuid4())
    first = order_service.create_order(
        db_session, catalogue, owner_id="user-1", items=_lines(("p1", 1)), idempotency_key=key
    )

    assert order_service.find_order_by_idempotency_key(db_session, key, "user-1").id == first.id
    with pytest.raises(Conflict):
        order_service.find_order_by_idempotency_key(db_session, key, "user-2")

    second = order_service.create_order(
        db_session, catalogue, owner_id="user-1", items=_lines(("p2", 3)), idempotency_key=key
    )
    assert second.id == first.id
    assert db_session.query(Order).count() == 1


def test_checkout_cart_consumes_cart(db_session: Session, catalogue):
    owner = Authenticated(id="user-1")
    CartService.add_item(db_session, owner.key, "p1", quantity=2)
    CartService.add_item(db_session, owner.key, "p2", quantity=1)

    order = order_service.checkout_cart(db_session, catalogue, owner)

    assert order.total == Decimal("25.00")
    assert db_session.query(CartItem).count() == 0


def test_guest_cart_checkout_gets_access_code(db_session: Session, catalogue):
    owner = Guest(session_key="session-xyz")
    CartService.add_item(db_session, owner.key, "p2", quantity=4)

    order = order_service.checkout_cart(db_session, catalogue, owner)

    assert order.owner_id is None
    assert order.access_code
    assert order.total == Decimal("20.00")


def test_checkout_cart_keeps_cart_on_failure(db_session: Session, catalogue):
    owner = Authenticated(id="user-1")
    CartService.add_item(db_session, owner.key, "p1", quantity=1)
    CartService.add_item(db_session, owner.key, "gone", quantity=1)

    with pytest.raises(InvalidRequest):
        order_service.checkout_cart(db_session, catalogue, owner)

    assert db_session.query(CartItem).count() == 2


def test_checkout_empty_cart(db_session: Session, catalogue):
    with pytest.raises(InvalidRequest) as exc_info:
        order_service.checkout_cart(db_session, catalogue, Authenticated(id="user-1"))
    assert exc_info.value.message == "Cart is empty"


def test_list_orders_newest_first(db_session: Session, catalogue):
    first = order_service.create_order(db_session, catalogue, owner_id="user-1", items=_lines(("p1", 1)))
    second = order_service.create_order(db_session, catalogue, owner_id="user-1", items=_lines(("p2", 1)))
    order_service.create_order(db_session, catalogue, owner_id="user-2", items=_lines(("p2", 1)))

    orders = order_service.list_orders(db_session, "user-1")
    assert [order.id for order in orders] == [second.id, first.id]


def test_list_orders_requires_owner(db_session: Session):
    with pytest.raises(InvalidRequest):
        order_service.list_orders(db_session, "")


def test_get_order_for_owner_hides_foreign_orders(db_session: Session, catalogue):
    order = order_service.create_order(db_session, catalogue, owner_id="user-1", items=_lines(("p1", 1)))

    with pytest.raises(OrderNotFound):
        order_service.get_order_for_owner(db_session, "user-2", order.id)


def test_get_order_by_access_code(db_session: Session, catalogue):
    order = order_service.create_order(db_session, catalogue, owner_id=None, items=_lines(("p1", 1)))

    found = order_service.get_order_by_access_code(db_session, order.access_code)
    assert found.id == order.id
    with pytest.raises(NotFound):
        order_service.get_order_by_access_code(db_session, order.access_code + "x")


def test_sql_catalogue_reads_active_products(db_session: Session):
    db_session.add_all(
        [
            Product(id="p1", title="Canvas Tote Bag", price=Decimal("10.00")),
            Product(id="p9", title="Retired Mug", price=Decimal("7.50"), is_active=False),
        ]
    )
    db_session.commit()

    order = order_service.create_order(
        db_session, SqlCatalogue(), owner_id="user-1", items=_lines(("p1", 3))
    )
    assert order.total == Decimal("30.00")

    with pytest.raises(InvalidRequest):
        order_service.create_order(db_session, SqlCatalogue(), owner_id="user-1", items=_lines(("p9", 1)))


def test_add_during_cart_checkout_is_not_lost(session_factory, catalogue, monkeypatch):
    owner = Authenticated(id="user-1")
    buyer = session_factory()
    other = session_factory()
    try:
        CartService.add_item(buyer, owner.key, "p1", quantity=2)
        real_lookup = catalogue.lookup

        def lookup_with_concurrent_add(db, product_ids):
            if catalogue.lookups == 0:
                CartService.add_item(other, owner.key, "p1", quantity=3)
            return real_lookup(db, product_ids)

        monkeypatch.setattr(catalogue, "lookup", lookup_with_concurrent_add)

        order = order_service.checkout_cart(buyer, catalogue, owner)

        other.expire_all()
        left = other.query(CartItem).all()
        assert [(item.product_id, item.quantity) for item in order.items] == [("p1", 5)]
        assert left == []
        assert order.total == Decimal("50.00")
    finally:
        buyer.close()
        other.close()


def test_cart_checkout_gives_up_when_cart_keeps_changing(session_factory, catalogue, monkeypatch):
    owner = Authenticated(id="user-1")
    buyer = session_factory()
    other = session_factory()
    try:
        CartService.add_item(buyer, owner.key, "p1", quantity=2)
        real_lookup = catalogue.lookup

        def lookup_with_concurrent_add(db, product_ids):
            CartService.add_item(other, owner.key, "p1", quantity=1)
            return real_lookup(db, product_ids)

        monkeypatch.setattr(catalogue, "lookup", lookup_with_concurrent_add)

        with pytest.raises(CartChanged):
            order_service.checkout_cart(buyer, catalogue, owner)

        other.expire_all()
        assert other.query(Order).count() == 0
        assert [item.quantity for item in other.query(CartItem).all()] == [
            2 + settings.CART_CHECKOUT_MAX_ATTEMPTS
        ]
    finally:
        buyer.close()
        other.close()


def test_quantity_above_limit_rejected(db_session: Session, catalogue):
    with pytest.raises(InvalidRequest) as exc_info:
        order_service.create_order(
            db_session, catalogue, owner_id="user-1", items=_lines(("p1", 2**63))
        )

    assert exc_info.value.errors[0]["field"] == "quantity"
    assert catalogue.lookups == 0
    assert db_session.query(Order).count() == 0


def test_total_above_column_limit_rejected(db_session: Session, catalogue):
    catalogue.set_price("p1", "99999999.00")

    with pytest.raises(InvalidRequest) as exc_info:
        order_service.create_order(db_session, catalogue, owner_id="user-1", items=_lines(("p1", 2)))

    assert exc_info.value.message == "Order total too large"
    assert db_session.query(Order).count() == 0


def test_list_all_orders_filters_by_status(db_session: Session, catalogue):
    pending = order_service.create_order(db_session, catalogue, owner_id="user-1", items=_lines(("p1", 1)))
    guest = order_service.create_order(db_session, catalogue, owner_id=None, items=_lines(("p2", 1)))
    guest.status = OrderStatus.CANCELLED
    db_session.commit()

    orders, total = order_service.list_all_orders(db_session)
    assert total == 2
    assert [order.id for order in orders] == [guest.id, pending.id]

    orders, total = order_service.list_all_orders(db_session, status=OrderStatus.PENDING)
    assert (total, [order.id for order in orders]) == (1, [pending.id])

    with pytest.raises(InvalidRequest):
        order_service.list_all_orders(db_session, limit=0)
