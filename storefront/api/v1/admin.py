from datetime import datetime
from fastapi import APIRouter, Depends, Query, Request
from typing import Optional

from storefront.api.deps import Principal, get_order_service, require_admin
from storefront.api.v1.orders import serialize_order
from storefront.core.rate_limiter import limiter
from storefront.models.order import OrderStatus
from storefront.schemas.order import OrderStatusUpdate, PaymentStatusUpdate, TrackingNumberUpdate
from storefront.services.order_service import OrderService
from storefront.utils.response import paginated_response, success

router = APIRouter()


# ============= ORDER MANAGEMENT =============

@router.get("/orders")
@limiter.limit("60/minute")
def get_all_orders(
    request: Request,
    status: Optional[OrderStatus] = None,
    user_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    """Admin: List orders with optional filters"""
    orders, total = service.list_orders(
        status=status,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return paginated_response(
        [serialize_order(order) for order in orders],
        total=total,
        page=page,
        limit=limit,
        message="Orders retrieved successfully",
    )


@router.get("/orders/statistics")
@limiter.limit("30/minute")
def get_order_statistics(
    request: Request,
    days: int = Query(30, ge=1, le=365),
    current_admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    """Admin: Order count, revenue and status breakdown for the last N days"""
    return success(data=service.get_order_statistics(days), message="Order statistics retrieved")


@router.get("/orders/{order_id}")
@limiter.limit("60/minute")
def get_order_detail_admin(
    request: Request,
    order_id: int,
    current_admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    order = service.get_order(order_id)
    return success(data=serialize_order(order), message="Order details retrieved successfully")


@router.patch(
    "/orders/{order_id}/status",
    summary="Update order status (admin)",
    description="""
Moves an order through its lifecycle.

Behavior:
1. Rejects transitions the order state machine does not allow (409)
2. Cancelling restocks items whose stock was deducted
3. Refunding requires a paid order and marks the payment refunded
4. Records the change in the order's status history
""",
    responses={
        200: {"description": "Order status updated successfully"},
        403: {"description": "Admin access required"},
        404: {"description": "Order not found"},
        409: {"description": "Transition not allowed"},
    },
    tags=["Admin"],
)
@limiter.limit("30/minute")
def update_order_status(
    request: Request,
    order_id: int,
    status_update: OrderStatusUpdate,
    current_admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    order = service.update_status(
        order_id,
        status_update.status,
        notes=status_update.notes,
        changed_by=current_admin.user_id,
    )
    return success(data=serialize_order(order), message="Order status updated successfully")


@router.patch("/orders/{order_id}/payment-status")
@limiter.limit("30/minute")
def update_payment_status(
    request: Request,
    order_id: int,
    payment_update: PaymentStatusUpdate,
    current_admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    order = service.update_payment_status(order_id, payment_update.payment_status)
    return success(data=serialize_order(order), message="Payment status updated successfully")


@router.patch("/orders/{order_id}/tracking")
@limiter.limit("30/minute")
def add_tracking_number(
    request: Request,
    order_id: int,
    tracking_update: TrackingNumberUpdate,
    current_admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    """Admin: Attach a tracking number; processing orders are marked shipped"""
    order = service.add_tracking_number(
        order_id,
        tracking_update.tracking_number,
        carrier_name=tracking_update.carrier_name,
        changed_by=current_admin.user_id,
    )
    return success(data=serialize_order(order), message="Tracking number added successfully")


@router.delete("/orders/{order_id}")
@limiter.limit("20/minute")
def delete_order(
    request: Request,
    order_id: int,
    current_admin: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    service.delete_order(order_id)
    return success(message="Order deleted successfully")
