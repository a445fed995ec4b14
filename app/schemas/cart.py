from pydantic import BaseModel, Field
from typing import List, Optional


class CartItemCreate(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=64)
    # Range is checked by the cart store so that a bad quantity is reported as an invalid request.
    quantity: int = 1
    meta: Optional[str] = Field(default=None, max_length=500)


class CartItemResponse(BaseModel):
    id: int
    product_id: str
    quantity: int
    meta: Optional[str] = None

    class Config:
        from_attributes = True


class CartLineResponse(CartItemResponse):
    # Display-only values from the live catalogue; checkout re-reads prices.
    title: Optional[str] = None
    unit_price: Optional[float] = None
    line_total: Optional[float] = None
    available: bool = True


class CartResponse(BaseModel):
    id: int
    owner_id: str
    items: List[CartLineResponse]
    subtotal: float
    total_items: int
