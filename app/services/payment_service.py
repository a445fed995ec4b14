"""
Order status state machine.

This module is the only writer of ``Order.status``. Every change is a
compare-and-set UPDATE (``... WHERE id = :id AND status = :expected``), so two
concurrent callers can never both apply the same transition; whoever loses
re-reads the row and decides again from the committed state.
"""
import logging
from datetime import datetime
from typing import FrozenSet, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import Conflict, InternalError, OrderNotFound
from app.models.order import Order, OrderStatus
from app.models.order_status_history import OrderStatusHistory
from app.services import order_service

logger = logging.getLogger(__name__)

TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.REFUNDED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),  # Terminal
    OrderStatus.CANCELLED: frozenset(),  # Terminal
    OrderStatus.REFUNDED: frozenset(),  # Terminal
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

# Reaching any of these means payment was already recorded.
PAID_OR_LATER = frozenset(
    {OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.COMPLETED, OrderStatus.REFUNDED}
)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def next_statuses(current: OrderStatus) -> list:
    return sorted(status.value for status in TRANSITIONS.get(current, frozenset()))


def _current_status(db: Session, order_id: int) -> OrderStatus:
    status = db.execute(select(Order.status).where(Order.id == order_id)).scalar_one_or_none()
    if status is None:
        raise OrderNotFound()
    return status


def _compare_and_set(
    db: Session,
    order_id: int,
    expected: OrderStatus,
    target: OrderStatus,
    changed_by: Optional[str],
    notes: Optional[str],
) -> bool:
    updated = (
        db.query(Order)
        .filter(Order.id == order_id, Order.status == expected)
        .update(
            {Order.status: target, Order.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    if not updated:
        return False

    db.add(
        OrderStatusHistory(
            order_id=order_id,
            old_status=expected.value,
            new_status=target.value,
            changed_by=changed_by,
            notes=notes,
        )
    )
    return True


def transition_order(
    db: Session,
    order: Order,
    target: OrderStatus,
    *,
    changed_by: Optional[str] = None,
    notes: Optional[str] = None,
    already_applied: FrozenSet[OrderStatus] = frozenset(),
) -> Order:
    """
    Move an order to ``target`` if the transition table allows it.

    Args:
        already_applied: Statuses in which the request counts as done; the
            order is returned unchanged instead of raising.

    Raises:
        Conflict: The transition is not allowed from the committed status.
    """
    order_id = order.id
    try:
        # Statuses only move forward, so each retry sees a later state.
        for _ in range(len(TRANSITIONS)):
            current = _current_status(db, order_id)

            if current in already_applied:
                logger.info(
                    "order_transition_already_applied order_id=%s status=%s requested=%s",
                    order_id,
                    current.value,
                    target.value,
                )
                db.refresh(order)
                return order

            if not can_transition(current, target):
                raise Conflict(
                    f"Cannot change order status from {current.value} to {target.value}"
                )

            if _compare_and_set(db, order_id, current, target, changed_by, notes):
                db.commit()
                db.refresh(order)
                logger.info(
                    "order_status_changed order_id=%s old_status=%s new_status=%s changed_by=%s",
                    order_id,
                    current.value,
                    target.value,
                    changed_by,
                )
                return order

            # Lost the race; decide again from what was committed.
            db.rollback()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("order_transition_failed order_id=%s target=%s error=%s", order_id, target.value, exc)
        raise InternalError("Could not update order status") from exc

    raise Conflict("Order status changed concurrently, please retry")


def confirm_payment(db: Session, order: Order, changed_by: Optional[str] = None) -> Order:
    """
    Record payment for an order.

    Idempotent: an order that is already paid (or further along) is returned
    unchanged. A cancelled order cannot be paid.
    """
    return transition_order(
        db,
        order,
        OrderStatus.PAID,
        changed_by=changed_by,
        notes="Payment confirmed",
        already_applied=PAID_OR_LATER,
    )


def confirm_payment_by_code(db: Session, access_code: str) -> Order:
    """Guest flow: whoever holds the access code may pay that one order."""
    order = order_service.get_order_by_access_code(db, access_code)
    return confirm_payment(db, order, changed_by=order_service.GUEST_ACTOR)


def confirm_payment_for_owner(db: Session, owner_id: str, order_id: int) -> Order:
    order = order_service.get_order_for_owner(db, owner_id, order_id)
    return confirm_payment(db, order, changed_by=owner_id)


def cancel_order(db: Session, owner_id: str, order_id: int) -> Order:
    order = order_service.get_order_for_owner(db, owner_id, order_id)
    return transition_order(
        db, order, OrderStatus.CANCELLED, changed_by=owner_id, notes="Cancelled by customer"
    )


def confirm_delivery(db: Session, owner_id: str, order_id: int) -> Order:
    order = order_service.get_order_for_owner(db, owner_id, order_id)
    return transition_order(
        db, order, OrderStatus.COMPLETED, changed_by=owner_id, notes="Delivery confirmed"
    )


def update_status(
    db: Session,
    order_id: int,
    target: OrderStatus,
    *,
    changed_by: Optional[str] = None,
    notes: Optional[str] = None,
) -> Order:
    """Seller console: ship, refund, cancel or complete an order."""
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise OrderNotFound()
    if target == OrderStatus.PAID:
        return transition_order(
            db, order, target, changed_by=changed_by, notes=notes or "Payment confirmed",
            already_applied=PAID_OR_LATER,
        )
    return transition_order(db, order, target, changed_by=changed_by, notes=notes)
