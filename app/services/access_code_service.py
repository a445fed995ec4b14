import secrets

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import InternalError, NotFound
from app.models.order import Order

logger = structlog.get_logger()


def generate_access_code() -> str:
    """Mint a URL-safe token carrying ``ACCESS_CODE_BYTES`` bytes of randomness."""
    return secrets.token_urlsafe(settings.ACCESS_CODE_BYTES)


class AccessCodeService:
    """
    Issues and resolves guest order access codes.

    A code is a capability: whoever holds it can read and pay exactly one
    order. Uniqueness is enforced by the unique index on ``orders.access_code``;
    the existence check here only avoids a wasted insert.
    """

    @staticmethod
    def issue(db: Session) -> str:
        for attempt in range(1, settings.ACCESS_CODE_MAX_ATTEMPTS + 1):
            code = generate_access_code()
            taken = db.execute(
                select(Order.id).where(Order.access_code == code)
            ).first()
            if taken is None:
                return code
            logger.warning("access_code_collision", attempt=attempt)

        raise InternalError("Failed to generate unique access code")

    @staticmethod
    def resolve(db: Session, code: str) -> int:
        """Return the id of the order holding exactly ``code``."""
        if not isinstance(code, str) or not code:
            raise NotFound("Order not found")

        order_id = db.execute(
            select(Order.id).where(Order.access_code == code)
        ).scalar_one_or_none()
        if order_id is None:
            raise NotFound("Order not found")
        return order_id
