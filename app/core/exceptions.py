from fastapi import status
from typing import Any, List, Optional


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class InvalidRequest(APIError):
    """Malformed or missing input. Rejected before any write begins."""

    def __init__(self, message: str = "Invalid request", errors: Optional[List[Any]] = None):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, errors)


class NotFound(APIError):
    """Referenced cart item, order or access code is missing or not visible to the caller."""

    def __init__(self, message: str = "Not found", errors: Optional[List[Any]] = None):
        super().__init__(status.HTTP_404_NOT_FOUND, message, errors)


class Conflict(APIError):
    """Order status transition outside the allowed table."""

    def __init__(self, message: str = "Conflict", errors: Optional[List[Any]] = None):
        super().__init__(status.HTTP_409_CONFLICT, message, errors)


class InternalError(APIError):
    """Persistence failure. Nothing was applied, so the call is safe to retry."""

    def __init__(self, message: str = "Internal server error", errors: Optional[List[Any]] = None):
        super().__init__(status.HTTP_500_INTERNAL_SERVER_ERROR, message, errors)


class OrderNotFound(NotFound):
    def __init__(self):
        super().__init__("Order not found")


class CartItemNotFound(NotFound):
    def __init__(self):
        super().__init__("Cart item not found")


class CartChanged(Conflict):
    """A cart line consumed by checkout was modified before the order committed."""

    def __init__(self):
        super().__init__("Cart changed during checkout, please retry")
