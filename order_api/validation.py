"""Pure checks over order requests and inventory snapshots."""

from typing import Dict, List, Optional, Sequence, Tuple

from order_api.models import OrderLineRequest, Product


def has_lines(lines: Optional[Sequence[OrderLineRequest]]) -> bool:
    return bool(lines)


def is_positive_quantity(line: OrderLineRequest) -> bool:
    return isinstance(line.quantity, int) and line.quantity > 0


def has_shipping_address(address: Optional[str]) -> bool:
    return bool(address and address.strip())


def has_sufficient_stock(product: Optional[Product], quantity: int) -> bool:
    return product is not None and product.quantity >= quantity


def distinct_product_ids(lines: Sequence[OrderLineRequest]) -> List[str]:
    """Product ids in first-seen order."""
    return list(dict.fromkeys(line.product_id for line in lines))


def requested_quantities(lines: Sequence[OrderLineRequest]) -> Dict[str, int]:
    """Total quantity requested per product; repeated lines add up."""
    totals: Dict[str, int] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def validate_order(lines: Optional[Sequence[OrderLineRequest]], shipping_address: Optional[str]) -> Tuple[bool, str]:
    """Validate request shape before any collaborator is called."""
    if not has_lines(lines):
        return False, "Order must contain at least one product"

    for idx, line in enumerate(lines):
        if not line.product_id:
            return False, f"Item {idx} missing product_id"
        if not is_positive_quantity(line):
            return False, f"Item {idx} quantity must be greater than 0"

    if not has_shipping_address(shipping_address):
        return False, "Missing shipping address"

    return True, ""


def find_short_product(products: Dict[str, Product], lines: Sequence[OrderLineRequest]) -> Optional[str]:
    """First product id whose snapshot cannot cover the requested total, or None."""
    for product_id, quantity in requested_quantities(lines).items():
        if not has_sufficient_stock(products.get(product_id), quantity):
            return product_id
    return None
