"""
Precision helpers for Bybit lot/tick conformance.

Quantities are floored to ``qtyStep``; prices are rounded to the nearest
``tickSize``. All arithmetic goes through ``Decimal`` so steps like 0.001
never drift.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

from bb_core.errors import SizingError
from bb_core.models import InstrumentFilters


def to_decimal(value: float | str | Decimal) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def decimal_places(step: Decimal) -> int:
    """Number of fractional digits a step size implies (0.01 -> 2)."""

    exponent = step.normalize().as_tuple().exponent
    return max(0, -int(exponent))


def conform_qty(
    symbol: str, raw_qty: float, filters: InstrumentFilters, *, round_up_to_min: bool = False
) -> Decimal:
    """
    Floor ``raw_qty`` to the venue qty step.

    With ``round_up_to_min`` a positive quantity below ``min_order_qty`` is
    sent as ``min_order_qty`` instead; reduce-only orders use this so a dust
    residual can still be closed.

    Raises:
        SizingError: the floored quantity is below ``min_order_qty``.
    """
    step = filters.qty_step
    units = (to_decimal(raw_qty) / step).to_integral_value(rounding=ROUND_DOWN)
    qty = (units * step).quantize(step)
    if qty < filters.min_order_qty:
        if round_up_to_min and raw_qty > 0:
            return filters.min_order_qty.quantize(step)
        raise SizingError(symbol, float(qty), float(filters.min_order_qty))
    return qty



def conform_price(raw_price: float, price_step: Decimal) -> Decimal:
    """Round ``raw_price`` to the nearest tick."""

    units = (to_decimal(raw_price) / price_step).to_integral_value(rounding=ROUND_HALF_UP)
    return (units * price_step).quantize(price_step)


def format_decimal(value: Decimal, step: Decimal) -> str:
    """Render ``value`` with exactly the precision ``step`` implies."""

    return f"{value:.{decimal_places(step)}f}"


__all__ = ["to_decimal", "decimal_places", "conform_qty", "conform_price", "format_decimal"]
