"""
Tax calculator for purchase order lines.

Unit prices are entered tax-inclusive.  Inventory costing and tax reporting
need the tax-exclusive figure, so both are derived from the one stored value
(inclusive price + tax class) instead of being persisted separately.

Tax classes
-----------
  16%         standard VAT, rate 0.16
  zero_rated  taxable at 0%   (reported separately from exempt supplies)
  exempted    outside the tax net, rate 0

All arithmetic uses Decimal.  Nothing here rounds except to_money(), which
callers apply once when a value is persisted or displayed.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Literal, Union

from .errors import ValidationError

TaxClass = Literal["16%", "zero_rated", "exempted"]

TAX_STANDARD   = "16%"
TAX_ZERO_RATED = "zero_rated"
TAX_EXEMPTED   = "exempted"

TAX_RATES: dict[str, Decimal] = {
    TAX_STANDARD:   Decimal("0.16"),
    TAX_ZERO_RATED: Decimal("0"),
    TAX_EXEMPTED:   Decimal("0"),
}

CENT = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Coerce a number to Decimal (floats go through str to avoid binary noise)."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"Not a valid amount: {value!r}", value=str(value))


def to_money(value: Number) -> Decimal:
    """Round half-up to cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def rate_for(tax_class: str) -> Decimal:
    try:
        return TAX_RATES[tax_class]
    except KeyError:
        raise ValidationError(
            f"Unknown tax class {tax_class!r}. Must be one of {sorted(TAX_RATES)}",
            tax_class=tax_class,
        )


def exclusive_from_inclusive(inclusive_price: Number, tax_class: str) -> Decimal:
    price = _non_negative(inclusive_price, "price")
    return price / (1 + rate_for(tax_class))


def inclusive_from_exclusive(exclusive_price: Number, tax_class: str) -> Decimal:
    price = _non_negative(exclusive_price, "price")
    return price * (1 + rate_for(tax_class))


def tax_amount(inclusive_price: Number, quantity: Number, tax_class: str) -> Decimal:
    """Tax contained in *quantity* units bought at *inclusive_price*."""
    qty = _non_negative(quantity, "quantity")
    price = _non_negative(inclusive_price, "price")
    return (price - exclusive_from_inclusive(price, tax_class)) * qty


def line_total_inclusive(quantity: Number, inclusive_price: Number) -> Decimal:
    return _non_negative(quantity, "quantity") * _non_negative(inclusive_price, "price")


def _non_negative(value: Number, name: str) -> Decimal:
    d = to_decimal(value)
    if d < 0:
        raise ValidationError(f"{name.capitalize()} must not be negative: {d}", field=name)
    return d
