import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List

from storefront.core.exceptions import InvalidPromoCode, MinimumOrderNotMet
from storefront.domain.cart import CartSummary
from storefront.utils.money import Number, round_money, to_decimal


class PromoType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FREE_SHIPPING = "free_shipping"


@dataclass(frozen=True)
class PromoRule:
    type: PromoType
    value: Decimal
    min_amount: Decimal

    @property
    def description(self) -> str:
        if self.type == PromoType.PERCENTAGE:
            return f"{self.value.normalize():f}% off your order"
        if self.type == PromoType.FIXED:
            return f"${self.value.normalize():f} off your order"
        return "Free shipping on your order"


PROMO_CODES: Dict[str, PromoRule] = {
    "WELCOME10": PromoRule(PromoType.PERCENTAGE, Decimal("10"), Decimal("50")),
    "GRAD2024": PromoRule(PromoType.FIXED, Decimal("15"), Decimal("75")),
    "FREESHIP": PromoRule(PromoType.FREE_SHIPPING, Decimal("0"), Decimal("25")),
}


@dataclass
class PromoQuote:
    code: str
    type: PromoType
    discount: Decimal
    description: str
    is_valid: bool = True

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "code": self.code,
            "type": self.type.value,
            "discount": self.discount,
            "description": self.description,
        }


def quote_promo_code(code: str, subtotal: Number, shipping: Number) -> PromoQuote:
    """Price a promo code against a subtotal and shipping fee. Mutates nothing."""
    normalized = (code or "").strip().upper()
    rule = PROMO_CODES.get(normalized)
    if rule is None:
        raise InvalidPromoCode()

    subtotal = to_decimal(subtotal)
    if subtotal < rule.min_amount:
        raise MinimumOrderNotMet(f"{rule.min_amount:f}")

    if rule.type == PromoType.PERCENTAGE:
        discount = subtotal * rule.value / Decimal("100")
    elif rule.type == PromoType.FIXED:
        discount = min(rule.value, subtotal)
    else:
        discount = to_decimal(shipping)

    return PromoQuote(
        code=normalized,
        type=rule.type,
        discount=round_money(discount),
        description=rule.description,
    )


def quote_for_summary(code: str, summary: CartSummary) -> PromoQuote:
    return quote_promo_code(code, summary.subtotal, summary.shipping)


def shipping_options(subtotal: Number, free_threshold: Number, flat_fee: Number) -> List[dict]:
    subtotal = to_decimal(subtotal)
    return [
        {
            "id": "standard",
            "name": "Standard Shipping",
            "description": "5-7 business days",
            "price": Decimal("0.00") if subtotal >= to_decimal(free_threshold) else round_money(flat_fee),
            "estimated_days": 7,
        },
        {
            "id": "express",
            "name": "Express Shipping",
            "description": "2-3 business days",
            "price": Decimal("15.99") if subtotal >= Decimal("100") else Decimal("19.99"),
            "estimated_days": 3,
        },
        {
            "id": "overnight",
            "name": "Overnight Shipping",
            "description": "Next business day",
            "price": Decimal("29.99"),
            "estimated_days": 1,
        },
    ]
