"""Retail pricing from wholesale cost.

The markup multiplier decays logarithmically from ``max_mult`` at the cheap
end of the curve to ``min_mult`` at the expensive end. Regular prices are
then rounded up to a ``.97`` ending; sale prices are rounded down to the
nearest ``.67``/``.77``/``.87``/``.97`` ending.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Optional, Tuple, Union

from catalog_import.config import PricingCurve, default_pricing_curve
from catalog_import.models import PriceQuote

__all__ = [
    "PricingCalculator",
    "price",
    "multiplier_for",
    "round_up_to_97",
    "round_down_to_seven",
]

CENT = Decimal("0.01")
SALE_ENDINGS = (67, 77, 87, 97)
SALE_FLOOR = Decimal("0.67")
SALE_GUARD_STEP = Decimal("0.10")

Number = Union[Decimal, int, str]


def _split(amount: Decimal) -> Tuple[int, Decimal]:
    """Split an amount into whole dollars and (fractional) cents."""
    dollars = int(amount.to_integral_value(rounding=ROUND_FLOOR))
    return dollars, (amount - dollars) * 100


def _amount(dollars: int, cents: int) -> Decimal:
    return (Decimal(dollars) + Decimal(cents) / 100).quantize(CENT)


def round_up_to_97(amount: Decimal) -> Decimal:
    """Round up to the next price ending in .97 (an existing .97 is kept)."""
    dollars, cents = _split(amount)
    if cents > 97:
        return _amount(dollars + 1, 97)
    return _amount(dollars, 97)


def round_down_to_seven(amount: Decimal) -> Decimal:
    """Round down to the closest .67/.77/.87/.97 ending at or below ``amount``.

    Falls back to the previous dollar's .97, never going below $0.67.
    """
    dollars, cents = _split(amount)
    fitting = [ending for ending in SALE_ENDINGS if ending <= cents]
    if fitting:
        return _amount(dollars, fitting[-1])
    if dollars - 1 < 0:
        return SALE_FLOOR
    return _amount(dollars - 1, 97)


def multiplier_for(wholesale: Number, curve: Optional[PricingCurve] = None) -> Decimal:
    """Markup multiplier for a wholesale price, rounded to two decimals."""
    curve = curve or default_pricing_curve()
    wholesale = Decimal(wholesale)
    if wholesale <= curve.min_price:
        return curve.max_mult
    if wholesale >= curve.max_price:
        return curve.min_mult

    t = (wholesale / curve.min_price).ln() / (curve.max_price / curve.min_price).ln()
    multiplier = curve.max_mult - (curve.max_mult - curve.min_mult) * t
    return multiplier.quantize(CENT, rounding=ROUND_HALF_UP)


class PricingCalculator:
    """Turns wholesale costs into rounded regular/sale price quotes."""

    def __init__(self, curve: Optional[PricingCurve] = None):
        self.curve = curve or default_pricing_curve()
        self._keep = (Decimal(100) - self.curve.discount_pct) / Decimal(100)

    def price(self, wholesale: Number) -> PriceQuote:
        wholesale = Decimal(wholesale)
        if wholesale < 0:
            raise ValueError(f"Wholesale price cannot be negative: {wholesale}")

        multiplier = multiplier_for(wholesale, self.curve)
        raw_regular = wholesale * multiplier
        regular = round_up_to_97(raw_regular)
        # Sale is discounted from the unrounded regular price
        sale = round_down_to_seven(raw_regular * self._keep)
        if sale >= regular:
            sale = round_down_to_seven(regular - SALE_GUARD_STEP)

        return PriceQuote(regular_price=regular, sale_price=sale, multiplier=multiplier)


def price(wholesale: Number, curve: Optional[PricingCurve] = None) -> PriceQuote:
    """Compute a :class:`PriceQuote` for one wholesale price."""
    return PricingCalculator(curve).price(wholesale)
