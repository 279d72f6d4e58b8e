from typing import List, Optional
from datetime import datetime
from decimal import Decimal

import bleach
from pydantic import BaseModel, EmailStr, Field, field_validator

from storefront.models.order import OrderStatus, PaymentStatus


def _clean_text(value: Optional[str], max_length: int) -> Optional[str]:
    if value is None:
        return value
    sanitized = bleach.clean(value, tags=[], attributes={}, strip=True).strip()
    if len(sanitized) > max_length:
        raise ValueError(f"Text too long (max {max_length} chars)")
    return sanitized or None


class Address(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=255)
    address_line1: str = Field(..., min_length=1, max_length=255)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=3, max_length=20)
    country: str = "US"
    phone: Optional[str] = None


class CustomerInfo(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(default="", max_length=100)
    email: EmailStr
    phone: Optional[str] = None


class CheckoutRequest(BaseModel):
    shipping_address: Address
    billing_address: Optional[Address] = None
    customer_info: Optional[CustomerInfo] = None
    payment_method: str = Field(default="card", max_length=50)
    promo_code: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value, 500)


class OrderItemCreate(BaseModel):
    product_id: Optional[int] = Field(default=None, gt=0)
    quantity: int = Field(..., ge=1, le=1000)
    # Missing price and display fields are filled in from the catalog
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    total_price: Optional[Decimal] = Field(default=None, ge=0)
    product_name: Optional[str] = Field(default=None, max_length=255)
    product_slug: Optional[str] = None
    product_sku: Optional[str] = None
    product_image_url: Optional[str] = None


class OrderCreate(BaseModel):
    """Raw order payload (e.g. bank transfer checkout) that bypasses the cart."""
    items: List[OrderItemCreate] = Field(..., min_length=1)
    shipping_address: Address
    billing_address: Optional[Address] = None
    customer_info: Optional[CustomerInfo] = None
    payment_method: str = Field(default="bank_transfer", max_length=50)
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0)
    shipping_amount: Decimal = Field(default=Decimal("0"), ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value, 500)


class TotalsItem(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., ge=1, le=1000)


class OrderTotalsRequest(BaseModel):
    items: List[TotalsItem] = Field(..., min_length=1)
    promo_code: Optional[str] = Field(default=None, max_length=50)


class OrderItemResponse(BaseModel):
    id: int
    product_id: Optional[int]
    product_name: str
    product_sku: Optional[str] = None
    product_slug: Optional[str] = None
    product_image_url: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: Optional[str] = None
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: Optional[str] = None
    subtotal: float
    tax_amount: float
    shipping_amount: float
    discount_amount: float
    total_amount: float
    currency: str
    promo_code: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier_name: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
    shipping_address: Optional[dict] = None
    billing_address: Optional[dict] = None
    customer_info: Optional[dict] = None
    notes: Optional[str] = None
    items: List[OrderItemResponse]
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value, 500)


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class TrackingNumberUpdate(BaseModel):
    tracking_number: str = Field(..., min_length=1, max_length=100)
    carrier_name: Optional[str] = Field(default=None, max_length=100)


class OrderCancel(BaseModel):
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value, 500)
