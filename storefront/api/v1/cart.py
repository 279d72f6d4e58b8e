from fastapi import APIRouter, Depends, HTTPException, Request, status

from storefront.api.deps import (
    Principal,
    ShopperIdentity,
    get_cart_service,
    get_current_principal,
    get_order_service,
    get_shopper_identity,
)
from storefront.api.v1.orders import serialize_order
from storefront.core.rate_limiter import limiter
from storefront.schemas.cart import CartItemCreate, CartItemUpdate, CartMergeRequest, PromoCodeApply
from storefront.schemas.order import CheckoutRequest
from storefront.services.cart_service import CartService
from storefront.services.order_service import OrderService
from storefront.utils.response import success

router = APIRouter()


def _cart_payload(service: CartService, cart) -> dict:
    return cart.to_dict(**service.summary_options)


@router.get("/")
@limiter.limit("120/minute")
def get_cart(
    request: Request,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    service: CartService = Depends(get_cart_service),
):
    """Get the shopper's cart, creating an empty one on first visit"""
    cart = service.get_or_create_cart(identity.user_id, identity.session_id)
    return success(data=_cart_payload(service, cart), message="Cart retrieved")


@router.get("/summary")
@limiter.limit("120/minute")
def get_cart_summary(
    request: Request,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    service: CartService = Depends(get_cart_service),
):
    summary = service.get_cart_summary(identity.user_id, identity.session_id)
    return success(data=summary.to_dict(), message="Cart summary retrieved")


@router.get("/validate")
@limiter.limit("60/minute")
def validate_cart(
    request: Request,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    service: CartService = Depends(get_cart_service),
):
    """Check the cart against the live catalog; price changes are corrected and reported as warnings"""
    result = service.validate_cart(identity.user_id, identity.session_id)
    return success(
        data=result.to_dict(),
        message="Cart is valid" if result.is_valid else "Cart has issues",
    )


@router.post("/items", status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
def add_to_cart(
    request: Request,
    cart_item: CartItemCreate,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    service: CartService = Depends(get_cart_service),
):
    """Add item to cart"""
    cart = service.add_item_to_cart(identity.user_id, identity.session_id, cart_item.product_id, cart_item.quantity)
    return success(data=_cart_payload(service, cart), message="Item added to cart")


@router.get("/items/{product_id}")
@limiter.limit("120/minute")
def get_cart_item(
    request: Request,
    product_id: int,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    service: CartService = Depends(get_cart_service),
):
    quantity = service.get_item_quantity(identity.user_id, identity.session_id, product_id)
    return success(
        data={"product_id": product_id, "in_cart": quantity > 0, "quantity": quantity},
        message="Cart item retrieved",
    )


@router.put("/items/{product_id}")
@limiter.limit("60/minute")
def update_cart_item(
    request: Request,
    product_id: int,
    update_data: CartItemUpdate,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    service: CartService = Depends(get_cart_service),
):
    """Set an item's quantity; 0 removes it"""
    cart = service.update_item_quantity(identity.user_id, identity.session_id, product_id, update_data.quantity)
    return success(data=_cart_payload(service, cart), message="Cart item updated")


@router.delete("/items/{product_id}")
@limiter.limit("60/minute")
def remove_from_cart(
    request: Request,
    product_id: int,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    service: CartService = Depends(get_cart_service),
):
    cart = service.remove_item_from_cart(identity.user_id, identity.session_id, product_id)
    return success(data=_cart_payload(service, cart), message="Item removed from cart")


@router.delete("/")
@limiter.limit("30/minute")
def clear_cart(
    request: Request,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    service: CartService = Depends(get_cart_service),
):
    cart = service.clear_cart(identity.user_id, identity.session_id)
    return success(data=_cart_payload(service, cart), message="Cart cleared")


@router.post("/shipping")
@limiter.limit("60/minute")
def get_shipping_options(
    request: Request,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    service: CartService = Depends(get_cart_service),
):
    options = service.calculate_shipping_options(identity.user_id, identity.session_id)
    return success(data=options, message="Shipping options calculated")


@router.post("/promo")
@limiter.limit("20/minute")
def apply_promo_code(
    request: Request,
    promo: PromoCodeApply,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    service: CartService = Depends(get_cart_service),
):
    """Quote a promo code against the cart. The discount is applied at checkout."""
    quote = service.apply_promo_code(identity.user_id, identity.session_id, promo.code)
    return success(data=quote.to_dict(), message="Promo code applied")


@router.post("/merge")
@limiter.limit("20/minute")
def merge_guest_cart(
    request: Request,
    merge_data: CartMergeRequest,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    principal: Principal = Depends(get_current_principal),
    service: CartService = Depends(get_cart_service),
):
    """Fold the guest cart into the logged-in user's cart"""
    guest_session_id = merge_data.guest_session_id or identity.session_id
    if not guest_session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Guest session id is required",
        )

    cart = service.merge_guest_cart_with_user_cart(guest_session_id, principal.user_id)
    if cart is None:
        return success(data=None, message="No guest cart to merge")
    return success(data=_cart_payload(service, cart), message="Guest cart merged")


@router.post("/checkout", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def checkout(
    request: Request,
    checkout_data: CheckoutRequest,
    identity: ShopperIdentity = Depends(get_shopper_identity),
    orders: OrderService = Depends(get_order_service),
):
    """Place an order from the cart.

    Validates the cart, applies an optional promo code, decrements stock and
    clears the cart in a single transaction.
    """
    order = orders.checkout(identity.user_id, identity.session_id, checkout_data)
    return success(data=serialize_order(order), message="Order placed successfully")
