"""
Build price calculation

Prices are computed with Decimal and rounded half-up to cents, then reported
as floats. Same configuration + same catalog snapshot gives the same output.
"""
from decimal import Decimal
from typing import Dict, List

from pydantic import BaseModel

from catalog import (
    ComponentRecord,
    Configuration,
    collect_component_ids,
    iter_refs,
    parse_configuration,
    round_money,
)


class PriceLine(BaseModel):
    component_key: str
    product_id: str
    product_name: str
    quantity: int = 1
    unit_price: float
    original_price: float
    discount_percentage: float
    total: float


class PriceBreakdown(BaseModel):
    subtotal: float
    total: float
    breakdown: List[PriceLine]


def calculate_price(configuration: Configuration, components: Dict[str, ComponentRecord]) -> PriceBreakdown:
    """One line per resolved reference, in slot order then list order.

    The same component listed twice gives two lines. Unresolved ids are left
    out of both the lines and the subtotal.
    """
    lines: List[PriceLine] = []
    subtotal = Decimal("0")

    for component_key, value in configuration.items():
        for ref in iter_refs(value):
            record = components.get(ref.id)
            if record is None:
                continue
            unit_price = record.discounted_price
            subtotal += unit_price
            lines.append(
                PriceLine(
                    component_key=component_key,
                    product_id=ref.id,
                    product_name=ref.name or record.name or "Unknown",
                    unit_price=float(unit_price),
                    original_price=float(record.price),
                    discount_percentage=float(record.discount_percentage),
                    total=float(unit_price),
                )
            )

    total = float(round_money(subtotal))
    return PriceBreakdown(subtotal=total, total=total, breakdown=lines)


def price_configuration(raw, catalog) -> PriceBreakdown:
    """CalculatePrice(configuration): parse, resolve, aggregate."""
    configuration = parse_configuration(raw)
    components = catalog.resolve(collect_component_ids(configuration))
    return calculate_price(configuration, components)
