from datetime import datetime
from decimal import Decimal
from typing import List

from pydantic import BaseModel, Field

from order_api.models import Order, OrderLineRequest


class OrderItemIn(BaseModel):
    product_id: str = Field(min_length=1)
    quantity: int = Field(gt=0)


class PlaceOrderReq(BaseModel):
    products: List[OrderItemIn] = Field(min_length=1)
    shipping_address: str = Field(min_length=1)

    def line_requests(self) -> List[OrderLineRequest]:
        return [OrderLineRequest(product_id=p.product_id, quantity=p.quantity) for p in self.products]


class OrderItemOut(BaseModel):
    product_id: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderOut(BaseModel):
    id: str
    products: List[OrderItemOut]
    total_amount: Decimal
    created_at: datetime
    shipping_address: str

    @classmethod
    def from_order(cls, order: Order) -> "OrderOut":
        return cls(
            id=order.id,
            products=[OrderItemOut(**line.model_dump()) for line in order.lines],
            total_amount=order.total_amount,
            created_at=order.created_at,
            shipping_address=order.shipping_address,
        )
