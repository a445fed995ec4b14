from typing import List, Optional
from datetime import datetime
import re
import uuid

import bleach
from pydantic import BaseModel, EmailStr, Field, field_validator

from app.models.order import OrderStatus

PHONE_PATTERN = re.compile(r"^\+?[0-9 ()-]{6,20}$")


def _clean_text(value: Optional[str], max_length: int, field_name: str) -> Optional[str]:
    if value is None:
        return value
    sanitized = bleach.clean(value, tags=[], attributes={}, strip=True).strip()
    if len(sanitized) > max_length:
        raise ValueError(f"{field_name} too long (max {max_length} chars)")
    return sanitized or None


class OrderLine(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=64)
    # Range is checked by the ledger so that a bad quantity is reported as an invalid request.
    quantity: int = 1


class CustomerInfo(BaseModel):
    customer_name: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = None
    address: Optional[str] = None

    @field_validator("customer_name")
    @classmethod
    def validate_name(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value, 200, "Name")

    @field_validator("address")
    @classmethod
    def validate_address(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value, 1000, "Address")

    @field_validator("customer_phone")
    @classmethod
    def validate_phone(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        value = value.strip()
        if not PHONE_PATTERN.match(value):
            raise ValueError("Phone must contain 6-20 digits")
        return value


class CheckoutRequest(CustomerInfo):
    # Omitted items means "check out my cart"
    items: Optional[List[OrderLine]] = None
    # Advisory only; the persisted total is always recomputed from catalogue prices.
    total: Optional[float] = Field(default=None, ge=0, le=99999999.99, allow_inf_nan=False)
    idempotency_key: Optional[str] = Field(default=None, min_length=36, max_length=64)

    @field_validator("idempotency_key")
    @classmethod
    def validate_idempotency_key(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        parsed = uuid.UUID(value)
        return str(parsed)


class PayWithCodeRequest(BaseModel):
    access_code: str = Field(..., min_length=1, max_length=64)


class OrderItemResponse(BaseModel):
    id: int
    product_id: str
    title: str
    price: float
    quantity: int
    line_total: float

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    owner_id: Optional[str] = None
    status: OrderStatus
    total: float
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    address: Optional[str] = None
    access_code: Optional[str] = None
    items: List[OrderItemResponse]
    created_at: datetime

    class Config:
        from_attributes = True
