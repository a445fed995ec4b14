import structlog
from typing import Optional
from fastapi import Depends, Header, HTTPException, Query, Request, status

from app.core.config import settings
from app.core.exceptions import InvalidRequest
from app.core.security import decode_token
from app.services.catalogue import CatalogueLookup, SqlCatalogue
from app.services.owner import Authenticated, Guest, Owner, require_owner_id

logger = structlog.get_logger()

_catalogue = SqlCatalogue()


def get_catalogue() -> CatalogueLookup:
    """Catalogue dependency; tests override it with an in-memory fake."""
    return _catalogue


def _get_token(request: Request) -> Optional[str]:
    if request.cookies.get("access_token"):
        return request.cookies.get("access_token")

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return None


def get_token_payload(request: Request) -> Optional[dict]:
    """Decoded access token, or None for anonymous callers. A bad token is rejected, not ignored."""
    token = _get_token(request)
    if not token:
        return None

    payload = decode_token(token)
    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )
    return payload


def get_optional_owner(
    payload: Optional[dict] = Depends(get_token_payload),
    owner_id: Optional[str] = Query(default=None, alias="ownerId"),
    guest_session: Optional[str] = Header(default=None, alias="X-Guest-Session"),
) -> Optional[Owner]:
    """Resolve who the request acts for: an account from the token, else a guest session key."""
    if payload:
        return Authenticated(id=str(payload["sub"]))

    key = guest_session if guest_session is not None else owner_id
    if key is None:
        return None
    return Guest(session_key=require_owner_id(key))


def get_owner(owner: Optional[Owner] = Depends(get_optional_owner)) -> Owner:
    if owner is None:
        raise InvalidRequest("ownerId required")
    return owner


def get_authenticated_owner(
    payload: Optional[dict] = Depends(get_token_payload),
) -> Authenticated:
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return Authenticated(id=str(payload["sub"]))


def require_admin(
    request: Request,
    payload: Optional[dict] = Depends(get_token_payload),
) -> Authenticated:
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    action_name = f"{request.method} {request.url.path}"
    if payload.get("role") != settings.ADMIN_ROLE:
        logger.warning(
            "admin_access_denied",
            action=action_name,
            user_id=payload.get("sub"),
            client_ip=request.client.host if request.client else None,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )

    logger.info(
        "admin_action",
        action=action_name,
        admin_user_id=payload.get("sub"),
        client_ip=request.client.host if request.client else None,
    )
    return Authenticated(id=str(payload["sub"]))
