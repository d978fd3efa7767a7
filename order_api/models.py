from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer


class Product(BaseModel):
    """Inventory-owned product snapshot; only quantity is ever rewritten here."""

    id: str
    name: str = ""
    description: str = ""
    price: Decimal
    quantity: int = Field(ge=0)

    @field_serializer("price", when_used="json")
    def _price_as_number(self, price: Decimal) -> float:
        return float(price)


class OrderLineRequest(BaseModel):
    product_id: str
    quantity: int


class OrderLine(BaseModel):
    product_id: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    @classmethod
    def from_snapshot(cls, product: Product, quantity: int) -> "OrderLine":
        # price is captured once; later price changes never touch the line
        return cls(
            product_id=product.id,
            quantity=quantity,
            unit_price=product.price,
            line_total=product.price * quantity,
        )


class Order(BaseModel):
    id: Optional[str] = None
    owner_id: str
    lines: List[OrderLine]
    total_amount: Decimal
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    shipping_address: str

    @classmethod
    def build(cls, owner_id: str, lines: List[OrderLine], shipping_address: str) -> "Order":
        return cls(
            owner_id=owner_id,
            lines=lines,
            total_amount=sum((line.line_total for line in lines), Decimal("0")),
            shipping_address=shipping_address,
        )

    def product_ids(self) -> List[str]:
        seen: List[str] = []
        for line in self.lines:
            if line.product_id not in seen:
                seen.append(line.product_id)
        return seen


@dataclass(frozen=True)
class CallerContext:
    """Authenticated caller: owner identity plus the bearer token to forward."""

    owner_id: str
    access_token: str
