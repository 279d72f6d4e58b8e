from fastapi import status
from typing import Any, List, Optional


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class IdentityRequired(APIError):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            message="A user id or session id is required"
        )


class ProductNotFound(APIError):
    def __init__(self, product_id: Any = None):
        message = "Product not found" if product_id is None else f"Product {product_id} not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            message=message
        )


class ProductInactive(APIError):
    def __init__(self, name: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            message=f"{name} is not available" if name else "Product is not available"
        )


class InsufficientStock(APIError):
    def __init__(self, available: int, name: Optional[str] = None):
        self.available = available
        prefix = f"Insufficient stock for {name}" if name else "Insufficient stock"
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            message=f"{prefix}. Available: {available}"
        )


class InvalidQuantity(APIError):
    def __init__(self, message: str = "Quantity must be a positive whole number"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            message=message
        )


class InvalidPromoCode(APIError):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            message="Invalid promo code"
        )


class MinimumOrderNotMet(APIError):
    def __init__(self, minimum):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            message=f"Minimum order amount of ${minimum} required for this promo code"
        )


class InvalidStatusTransition(APIError):
    def __init__(self, current: str, requested: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            message=f"Cannot change order status from {current} to {requested}"
        )


class InvalidPaymentStatusTransition(APIError):
    def __init__(self, current: str, requested: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            message=f"Cannot change payment status from {current} to {requested}"
        )


class CartEmpty(APIError):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            message="Cart is empty"
        )


class CartItemNotFound(APIError):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            message="Cart item not found"
        )


class CartValidationFailed(APIError):
    def __init__(self, errors: List[str]):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            message="Cart validation failed",
            errors=errors,
        )


class OrderNotFound(APIError):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            message="Order not found"
        )


class TransactionFailed(APIError):
    def __init__(self, message: str = "Failed to create order"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message=message
        )
