from fastapi import APIRouter, Depends, Request, status
from typing import Optional

from storefront.api.deps import (
    Principal,
    ShopperIdentity,
    get_optional_principal,
    get_order_service,
    get_shopper_identity,
)
from storefront.core.exceptions import OrderNotFound
from storefront.core.rate_limiter import limiter
from storefront.models.order import Order
from storefront.schemas.order import OrderCancel, OrderCreate, OrderResponse, OrderTotalsRequest
from storefront.schemas.order_tracking import OrderTrackingResponse
from storefront.services.order_service import OrderService
from storefront.utils.response import success


router = APIRouter()


def serialize_order(order: Order) -> dict:
    return OrderResponse.model_validate(order).model_dump()


def _ensure_visible(order: Order, identity: ShopperIdentity, principal: Optional[Principal]) -> None:
    """Shoppers only see their own orders; anything else looks like a missing order."""
    if principal and principal.is_admin:
        return
    if order.user_id and order.user_id == identity.user_id:
        return
    if not order.user_id and order.session_id and order.session_id == identity.session_id:
        return
    raise OrderNotFound()


@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    summary="Create order from a raw payload",
    description="""
Creates an order from an explicit list of items instead of the cart
(used by the bank transfer checkout).

Process:
1. Resolves missing names, slugs, images and prices from the catalog
2. Validates line quantities and totals
3. Inserts the order header, then every item, in one transaction
4. Decrements stock; any shortfall rolls the whole order back
""",
    responses={
        201: {"description": "Order created successfully"},
        400: {"description": "Invalid items or insufficient stock"},
        404: {"description": "Product not found"},
        500: {"description": "Order transaction failed"},
    },
    tags=["Orders"],
)
@limiter.limit("10/minute")
def create_order(
    request: Request,
    order_data: OrderCreate,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    service: OrderService = Depends(get_order_service),
):
    order = service.create_order(order_data, user_id=identity.user_id, session_id=identity.session_id)
    return success(data=serialize_order(order), message="Order created successfully")


@router.post("/calculate-totals")
@limiter.limit("60/minute")
def calculate_order_totals(
    request: Request,
    totals_request: OrderTotalsRequest,
    service: OrderService = Depends(get_order_service),
):
    """Quote order totals at current catalog prices"""
    totals = service.calculate_order_totals(totals_request.items, totals_request.promo_code)
    return success(data=totals, message="Order totals calculated")


@router.get("/number/{order_number}")
@limiter.limit("60/minute")
def get_order_by_number(
    request: Request,
    order_number: str,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    principal: Optional[Principal] = Depends(get_optional_principal),
    service: OrderService = Depends(get_order_service),
):
    order = service.get_order_by_number(order_number)
    _ensure_visible(order, identity, principal)
    return success(data=serialize_order(order), message="Order retrieved successfully")


@router.get("/{order_id}")
@limiter.limit("60/minute")
def get_order(
    request: Request,
    order_id: int,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    principal: Optional[Principal] = Depends(get_optional_principal),
    service: OrderService = Depends(get_order_service),
):
    order = service.get_order(order_id)
    _ensure_visible(order, identity, principal)
    return success(data=serialize_order(order), message="Order retrieved successfully")


@router.get("/{order_id}/tracking")
@limiter.limit("60/minute")
def get_order_tracking(
    request: Request,
    order_id: int,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    principal: Optional[Principal] = Depends(get_optional_principal),
    service: OrderService = Depends(get_order_service),
):
    """Current status plus the recorded status history"""
    _ensure_visible(service.get_order(order_id), identity, principal)
    tracking = OrderTrackingResponse(**service.get_order_tracking(order_id))
    return success(data=tracking.model_dump(), message="Order tracking retrieved")


@router.patch("/{order_id}/cancel")
@limiter.limit("10/minute")
def cancel_order(
    request: Request,
    order_id: int,
    cancel_data: Optional[OrderCancel] = None,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    principal: Optional[Principal] = Depends(get_optional_principal),
    service: OrderService = Depends(get_order_service),
):
    """Cancel a pending or confirmed order; deducted stock is returned to the catalog"""
    _ensure_visible(service.get_order(order_id), identity, principal)
    order = service.cancel_order(
        order_id,
        reason=cancel_data.reason if cancel_data else None,
        changed_by=principal.user_id if principal else None,
    )
    return success(data=serialize_order(order), message="Order cancelled successfully")
