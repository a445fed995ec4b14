from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import (
    get_authenticated_owner,
    get_catalogue,
    get_optional_owner,
    get_owner,
    require_admin,
)
from app.core.exceptions import InvalidRequest
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.order import Order, OrderStatus
from app.schemas.order import CheckoutRequest, OrderResponse, PayWithCodeRequest
from app.schemas.order_tracking import OrderStatusUpdate
from app.services import order_service, payment_service
from app.services.catalogue import CatalogueLookup
from app.services.order_tracking_service import OrderTrackingService
from app.services.owner import Authenticated, Owner
from app.utils.response import success

router = APIRouter()


def _order_data(order: Order) -> OrderResponse:
    return OrderResponse.model_validate(order)


@router.post(
    "/checkout",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Create new order",
    description="""
Creates an order from posted line items, or from the caller's cart when no
items are posted.

Process:
1. Validates every line before writing anything
2. Re-reads titles and prices from the catalogue (client prices are ignored)
3. Computes the total server-side
4. Creates the order and its items in one transaction
5. Issues an access code when the buyer is not signed in
6. Empties the cart when the cart was checked out
""",
    responses={
        200: {"description": "Order already exists for this idempotency key"},
        201: {"description": "Order created successfully"},
        400: {"description": "No items, bad quantity or unknown product"},
    },
    tags=["Orders"],
)
@limiter.limit("10/minute")
def checkout(
    request: Request,
    checkout_data: CheckoutRequest,
    owner: Optional[Owner] = Depends(get_optional_owner),
    db: Session = Depends(get_db),
    catalogue: CatalogueLookup = Depends(get_catalogue),
):
    """Place an order"""
    owner_id = owner.order_owner_id if owner else None

    if checkout_data.idempotency_key:
        existing_order = order_service.find_order_by_idempotency_key(
            db, checkout_data.idempotency_key, owner_id
        )
        if existing_order:
            return JSONResponse(
                status_code=status.HTTP_200_OK,
                content=success(data=_order_data(existing_order), message="Order already exists"),
            )

    if checkout_data.items is None:
        if owner is None:
            raise InvalidRequest("Cart is empty")
        order = order_service.checkout_cart(
            db,
            catalogue,
            owner,
            customer=checkout_data,
            client_total=checkout_data.total,
            idempotency_key=checkout_data.idempotency_key,
        )
    else:
        order = order_service.create_order(
            db,
            catalogue,
            owner_id=owner_id,
            items=checkout_data.items,
            customer=checkout_data,
            client_total=checkout_data.total,
            idempotency_key=checkout_data.idempotency_key,
        )

    return success(data=_order_data(order), message="Order created successfully")


@router.get("/", response_model=dict)
@limiter.limit("30/minute")
def get_owner_orders(
    request: Request,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
):
    """Get order history, newest first"""
    if isinstance(owner, Authenticated):
        orders = order_service.list_orders(db, owner.id)
    else:
        # Guest orders carry no owner; they are reachable by access code only.
        orders = []
    return success(data=[_order_data(order) for order in orders], message="Orders retrieved")


@router.get("/track", response_model=dict)
@limiter.limit("30/minute")
def track_order(
    request: Request,
    code: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    """Look up a guest order by its access code"""
    if not code:
        raise InvalidRequest("Missing code")
    order = order_service.get_order_by_access_code(db, code)
    return success(data=_order_data(order), message="Order retrieved")


@router.get("/track/history", response_model=dict)
@limiter.limit("30/minute")
def track_order_history(
    request: Request,
    code: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    """Status history of a guest order"""
    if not code:
        raise InvalidRequest("Missing code")
    tracking = OrderTrackingService.get_tracking_by_access_code(db, code)
    return success(data=tracking, message="Order tracking retrieved")


@router.post("/pay-with-code", response_model=dict)
@limiter.limit("10/minute")
def pay_with_code(
    request: Request,
    payment_data: PayWithCodeRequest,
    db: Session = Depends(get_db),
):
    """Record payment for a guest order. Repeating the call is harmless."""
    order = payment_service.confirm_payment_by_code(db, payment_data.access_code)
    return success(data=_order_data(order), message="Payment confirmed")


@router.get("/admin", response_model=dict)
@limiter.limit("60/minute")
def get_all_orders(
    request: Request,
    status_filter: Optional[OrderStatus] = Query(default=None, alias="status"),
    page: int = 1,
    limit: int = 20,
    admin: Authenticated = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Seller console: all orders, newest first"""
    orders, total = order_service.list_all_orders(db, status=status_filter, page=page, limit=limit)
    return success(
        data={
            "total": total,
            "page": page,
            "limit": limit,
            "orders": [_order_data(order) for order in orders],
        },
        message="Orders retrieved successfully",
    )


@router.get("/{order_id}", response_model=dict)
@limiter.limit("30/minute")
def get_order_detail(
    request: Request,
    order_id: int,
    owner: Authenticated = Depends(get_authenticated_owner),
    db: Session = Depends(get_db),
):
    """Get order details"""
    order = order_service.get_order_for_owner(db, owner.id, order_id)
    return success(data=_order_data(order), message="Order detail retrieved")


@router.post("/{order_id}/pay", response_model=dict)
@limiter.limit("10/minute")
def pay_order(
    request: Request,
    order_id: int,
    owner: Authenticated = Depends(get_authenticated_owner),
    db: Session = Depends(get_db),
):
    """Record payment for one of the caller's orders"""
    order = payment_service.confirm_payment_for_owner(db, owner.id, order_id)
    return success(data=_order_data(order), message="Payment confirmed")


@router.post("/{order_id}/cancel", response_model=dict)
@limiter.limit("10/minute")
def cancel_order(
    request: Request,
    order_id: int,
    owner: Authenticated = Depends(get_authenticated_owner),
    db: Session = Depends(get_db),
):
    """Cancel a pending order"""
    order = payment_service.cancel_order(db, owner.id, order_id)
    return success(data=_order_data(order), message="Order cancelled successfully")


@router.post("/{order_id}/received", response_model=dict)
@limiter.limit("10/minute")
def confirm_received(
    request: Request,
    order_id: int,
    owner: Authenticated = Depends(get_authenticated_owner),
    db: Session = Depends(get_db),
):
    """Buyer confirms delivery of a shipped order"""
    order = payment_service.confirm_delivery(db, owner.id, order_id)
    return success(data=_order_data(order), message="Order completed")


# Order Tracking Endpoints

@router.get("/{order_id}/tracking", response_model=dict)
@limiter.limit("30/minute")
def get_order_tracking(
    request: Request,
    order_id: int,
    owner: Authenticated = Depends(get_authenticated_owner),
    db: Session = Depends(get_db),
):
    """Get order tracking information."""
    tracking = OrderTrackingService.get_order_tracking(db, owner.id, order_id)
    return success(data=tracking, message="Order tracking retrieved")


@router.put("/{order_id}/status", response_model=dict)
@limiter.limit("20/minute")
def update_order_status(
    request: Request,
    order_id: int,
    status_update: OrderStatusUpdate,
    admin: Authenticated = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Update order status (admin only)."""
    order = payment_service.update_status(
        db,
        order_id,
        status_update.status,
        changed_by=admin.id,
        notes=status_update.notes,
    )
    return success(
        data={"order_id": order.id, "status": order.status.value},
        message="Order status updated",
    )
