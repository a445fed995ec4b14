"""Owner identity: who a cart or an order is scoped to.

An owner is either an authenticated account or a guest session. Carts are
keyed by ``Owner.key``, which is prefixed per variant so a guest session key
can never name an account's cart. Orders record ``owner_id`` only for
authenticated owners; guest orders get an access code instead.
"""
from dataclasses import dataclass
from typing import Optional, Union

from app.core.exceptions import InvalidRequest


@dataclass(frozen=True)
class Authenticated:
    id: str

    @property
    def key(self) -> str:
        return f"user:{self.id}"

    @property
    def order_owner_id(self) -> Optional[str]:
        return self.id


@dataclass(frozen=True)
class Guest:
    session_key: str

    @property
    def key(self) -> str:
        return f"guest:{self.session_key}"

    @property
    def order_owner_id(self) -> Optional[str]:
        return None


Owner = Union[Authenticated, Guest]

# Width of carts.owner_id and orders.owner_id
MAX_OWNER_ID_LENGTH = 255


def require_owner_id(owner_id: Optional[str]) -> str:
    """Normalize an opaque owner id, rejecting blank values."""
    normalized = (owner_id or "").strip() if isinstance(owner_id, str) else ""
    if not normalized:
        raise InvalidRequest("ownerId required")
    if len(normalized) > MAX_OWNER_ID_LENGTH:
        raise InvalidRequest("ownerId too long")
    return normalized
