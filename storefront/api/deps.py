import structlog
from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.security import decode_token
from storefront.db.session import get_db
from storefront.services.cart_service import CartService
from storefront.services.order_service import OrderService

logger = structlog.get_logger()

ADMIN_ROLE = "admin"


@dataclass
class Principal:
    """Authenticated caller, taken from a verified access token."""
    user_id: str
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


@dataclass
class ShopperIdentity:
    """Whatever identifies the shopper on this request; either part may be missing."""
    user_id: Optional[str] = None
    session_id: Optional[str] = None


def _extract_token(request: Request) -> Optional[str]:
    if request.cookies.get("access_token"):
        return request.cookies.get("access_token")
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return None


def get_optional_principal(request: Request) -> Optional[Principal]:
    """Decode the bearer token if one was sent. Guests get None, bad tokens a 401."""
    token = _extract_token(request)
    if not token:
        return None

    payload = decode_token(token)
    return Principal(user_id=str(payload["sub"]), role=payload.get("role") or "customer")


def get_current_principal(
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> Principal:
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return principal


def get_shopper_identity(
    request: Request,
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> ShopperIdentity:
    session_id = request.headers.get(settings.SESSION_HEADER) or request.cookies.get(settings.SESSION_COOKIE)
    return ShopperIdentity(
        user_id=principal.user_id if principal else None,
        session_id=session_id.strip() if session_id else None,
    )


def require_admin(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    action_name = f"{request.method} {request.url.path}"
    if not principal.is_admin:
        logger.warning("admin_access_denied", action=action_name, user_id=principal.user_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )

    logger.info("admin_action", action=action_name, admin_user_id=principal.user_id)
    return principal


def get_cart_service(db: Session = Depends(get_db)) -> CartService:
    return CartService(db)


def get_order_service(db: Session = Depends(get_db)) -> OrderService:
    return OrderService(db)
