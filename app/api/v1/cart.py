from decimal import Decimal

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_catalogue, get_owner
from app.db.session import get_db
from app.models.cart import Cart
from app.schemas.cart import CartItemCreate, CartItemResponse, CartLineResponse, CartResponse
from app.services.cart_service import CartService
from app.services.catalogue import CatalogueLookup
from app.services.owner import Owner
from app.utils.response import success

router = APIRouter()


def _cart_response(db: Session, cart: Cart, catalogue: CatalogueLookup) -> CartResponse:
    entries = catalogue.lookup(db, [item.product_id for item in cart.items])

    lines = []
    subtotal = Decimal("0")
    for item in cart.items:
        entry = entries.get(item.product_id)
        line = CartLineResponse(
            id=item.id,
            product_id=item.product_id,
            quantity=item.quantity,
            meta=item.meta,
            available=entry is not None,
        )
        if entry:
            line_total = entry.price * item.quantity
            subtotal += line_total
            line.title = entry.title
            line.unit_price = float(entry.price)
            line.line_total = float(line_total)
        lines.append(line)

    return CartResponse(
        id=cart.id,
        owner_id=cart.owner_id,
        items=lines,
        subtotal=float(subtotal),
        total_items=len(cart.items),
    )


@router.get("/", response_model=dict)
def get_cart(
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
    catalogue: CatalogueLookup = Depends(get_catalogue),
):
    """Get the owner's cart, creating it on first access"""
    cart = CartService.get_or_create_cart(db, owner.key)
    return success(data=_cart_response(db, cart, catalogue), message="Cart retrieved")


@router.post("/items", status_code=status.HTTP_201_CREATED)
def add_to_cart(
    cart_item: CartItemCreate,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
):
    """Add item to cart; repeated adds of a product merge into one line"""
    item = CartService.add_item(
        db,
        owner.key,
        cart_item.product_id,
        quantity=cart_item.quantity,
        meta=cart_item.meta,
    )
    return success(data=CartItemResponse.model_validate(item), message="Item added to cart")


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def remove_from_cart(
    item_id: int,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
):
    """Remove item from cart"""
    CartService.remove_item(db, item_id, owner.key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def clear_cart(
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
):
    """Clear entire cart"""
    CartService.clear_cart(db, owner.key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
