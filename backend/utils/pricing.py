"""Price breakdown rules for checkout.

All amounts are major currency units held as ``Decimal``. Conversion to the
integer minor units the gateway expects happens only in ``to_minor_units``.
"""
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional, Union

Amount = Union[Decimal, int, float, str]

CENT = Decimal("0.01")

FREE_DELIVERY_THRESHOLD = Decimal("500")
DELIVERY_FEE = Decimal("50")
PLATFORM_RATE = Decimal("0.02")
TAX_RATE = Decimal("0.18")


@dataclass(frozen=True)
class CouponRule:
    percent_off: Decimal = Decimal("0")
    waive_fees: bool = False


# Exact, case-sensitive keys
COUPONS: Dict[str, CouponRule] = {
    "SAVE10": CouponRule(percent_off=Decimal("10")),
    "WELCOME20": CouponRule(percent_off=Decimal("20")),
    "NEW2025": CouponRule(waive_fees=True),
}


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    discount: Decimal
    coupon_discount: Decimal
    delivery_charge: Decimal
    platform_charge: Decimal
    tax: Decimal
    total: Decimal
    coupon_code: Optional[str] = None

    def as_json(self) -> dict:
        # Decimal as string keeps the snapshot exact inside JSON columns
        return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in asdict(self).items()}


def money(value: Amount) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Amount) -> int:
    return int((money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(units: int) -> Decimal:
    return money(Decimal(units) / 100)


def is_known_coupon(code: Optional[str]) -> bool:
    return code is not None and code in COUPONS


def calculate_price_breakdown(subtotal: Amount, coupon_code: Optional[str] = None) -> PriceBreakdown:
    """Itemise the charges for a cart subtotal.

    Unknown coupon codes apply no discount. Each component is rounded to the
    cent before it feeds the next one, so ``total`` is exactly the sum of the
    reported components.
    """
    subtotal = money(subtotal)
    rule = COUPONS.get(coupon_code) if coupon_code is not None else None
    waive = bool(rule and rule.waive_fees)

    discount = money(0)
    coupon_discount = money(subtotal * rule.percent_off / 100) if rule else money(0)

    if waive or subtotal >= FREE_DELIVERY_THRESHOLD:
        delivery_charge = money(0)
    else:
        delivery_charge = money(DELIVERY_FEE)

    platform_charge = money(0) if waive else money(subtotal * PLATFORM_RATE)

    before_tax = subtotal - discount - coupon_discount + delivery_charge + platform_charge
    tax = money(0) if waive else money(before_tax * TAX_RATE)

    return PriceBreakdown(
        subtotal=subtotal,
        discount=discount,
        coupon_discount=coupon_discount,
        delivery_charge=delivery_charge,
        platform_charge=platform_charge,
        tax=tax,
        total=before_tax + tax,
        coupon_code=coupon_code if rule else None,
    )
