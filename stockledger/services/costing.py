"""
Costing Engine - weighted-average (CUMP) unit cost

Pure functions on Decimal values; nothing here touches the database.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from stockledger.core.config import settings
from stockledger.core.errors import InvalidQuantity

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert to Decimal without passing through float"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_cost(value: Number, places: Optional[int] = None) -> Decimal:
    """Round a money amount half-up to the currency precision"""
    places = settings.COST_DECIMAL_PLACES if places is None else places
    return to_decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def quantize_quantity(value: Number, places: Optional[int] = None) -> Decimal:
    places = settings.QUANTITY_DECIMAL_PLACES if places is None else places
    return to_decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def recompute_weighted_average(
    existing_qty: Number,
    existing_cost: Number,
    incoming_qty: Number,
    incoming_unit_cost: Number,
) -> Decimal:
    """
    New weighted-average unit cost after receiving stock.

    newCost = (existing_qty * existing_cost + incoming_qty * incoming_unit_cost)
              / (existing_qty + incoming_qty)

    Rounded once, at the end. A negative existing quantity (uncorrected
    oversell) is blended arithmetically like any other position. When the
    incoming quantity exactly cancels the existing one the incoming cost is
    returned.
    """
    existing_qty = to_decimal(existing_qty)
    existing_cost = to_decimal(existing_cost)
    incoming_qty = to_decimal(incoming_qty)
    incoming_unit_cost = to_decimal(incoming_unit_cost)

    if incoming_qty <= 0:
        raise InvalidQuantity(
            f"Incoming quantity must be positive, got {incoming_qty}",
            quantity=incoming_qty,
        )

    new_qty = existing_qty + incoming_qty
    if new_qty == 0:
        return quantize_cost(incoming_unit_cost)

    total_value = existing_qty * existing_cost + incoming_qty * incoming_unit_cost
    return quantize_cost(total_value / new_qty)


def stock_value(quantity: Number, unit_cost: Number) -> Decimal:
    return quantize_cost(to_decimal(quantity) * to_decimal(unit_cost))
