"""
Weighted average costing.

All arithmetic is Decimal.  The average is rounded half-even to a fixed
number of places after every receipt, so repeated receipts do not drift.
"""

from decimal import ROUND_HALF_EVEN, Decimal

DEFAULT_COST_PLACES = 2


def to_decimal(value) -> Decimal:
    """Coerce int/str/Decimal input to Decimal.  Floats go through str()."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_cost(value: Decimal, places: int = DEFAULT_COST_PLACES) -> Decimal:
    """Round half-even to ``places`` decimal places."""
    return to_decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_EVEN)


def weighted_average_cost(
    on_hand: int,
    average_cost: Decimal,
    quantity: int,
    unit_cost: Decimal,
    places: int = DEFAULT_COST_PLACES,
) -> Decimal:
    """
    Blend the current average with a receipt of ``quantity`` at ``unit_cost``.

    With nothing on hand the receipt cost simply becomes the average.

    >>> weighted_average_cost(50, Decimal("750"), 30, Decimal("740"))
    Decimal('746.25')
    """
    unit_cost = to_decimal(unit_cost)
    if on_hand <= 0:
        return round_cost(unit_cost, places)
    total_value = to_decimal(average_cost) * on_hand + unit_cost * quantity
    return round_cost(total_value / (on_hand + quantity), places)


def extended_cost(quantity: int, unit_cost: Decimal | None, places: int = DEFAULT_COST_PLACES) -> Decimal | None:
    """|quantity| x unit_cost, rounded; None when no unit cost applies."""
    if unit_cost is None:
        return None
    return round_cost(to_decimal(unit_cost) * abs(quantity), places)
