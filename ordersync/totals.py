"""Money helpers shared by the WMS payload builder and the conversion event builder."""
from decimal import Decimal, InvalidOperation
from typing import List, Optional


def to_decimal(value, default: str = "0") -> Decimal:
    """Coerce stored numbers (Decimal, float, int, numeric strings, None) to Decimal."""
    if value is None or value == "":
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(default)


def upsell_quantity(upsell: dict) -> int:
    """Upsell quantity; missing or zero counts as one unit."""
    try:
        quantity = int(upsell.get("quantity") or 0)
    except (TypeError, ValueError):
        quantity = 0
    return quantity or 1


def upsells_total(upsells: Optional[List[dict]]) -> Decimal:
    return sum(
        (to_decimal(u.get("price")) * upsell_quantity(u) for u in (upsells or [])),
        Decimal("0"),
    )


def compute_order_total(order) -> Decimal:
    """
    Authoritative order total: subtotal + shipping + sum(upsell price x quantity).

    The stored ``order.total`` is deliberately ignored; it is written by the order
    form and may be stale after upsells are added.
    """
    return (
        to_decimal(order.subtotal)
        + to_decimal(order.shipping_cost)
        + upsells_total(order.upsells)
    )


def upsell_sku(upsell: dict) -> Optional[str]:
    return upsell.get("product_sku") or upsell.get("productSku") or upsell.get("sku")


def presale_upsells(upsells: Optional[List[dict]]) -> List[dict]:
    """Upsells accepted on the order form itself (already priced into the subtotal)."""
    return [u for u in (upsells or []) if u.get("type") == "presale"]
