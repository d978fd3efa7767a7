"""
Shared pytest fixtures for the order fulfillment tests.

The three collaborators are replaced by in-memory fakes that record every
call, so tests can assert both the outcome and which writes happened.
"""

from decimal import Decimal
from typing import Dict, List, Optional, Set

import pytest

from order_api.clients.inventory import InventoryGateway
from order_api.errors import InventoryConflict, InventoryError
from order_api.messaging.publisher import EventPublisher
from order_api.models import CallerContext, Order, OrderLineRequest, Product
from order_api.repository import OrderRepository
from order_api.saga.orchestrator import OrderFulfillmentOrchestrator


class FakeInventory(InventoryGateway):
    """Inventory held in a dict; failures are injected per product id."""

    def __init__(self, products: List[Product], conditional: bool = False):
        self.products: Dict[str, Product] = {p.id: p for p in products}
        self.supports_conditional_update = conditional
        self.fetch_calls: List[tuple] = []
        self.update_calls: List[tuple] = []
        self.writes: List[tuple] = []
        self.fail_fetch: Set[str] = set()
        self.reject_updates: Set[str] = set()
        self.raise_updates: Set[str] = set()
        self.conflict_updates: Set[str] = set()
        self.reject_update_call: Optional[int] = None

    def fetch(self, product_id: str, access_token: str) -> Optional[Product]:
        self.fetch_calls.append((product_id, access_token))
        if product_id in self.fail_fetch:
            raise InventoryError(f"HTTP 500 for {product_id}")
        product = self.products.get(product_id)
        return product.model_copy() if product else None

    def update(self, product: Product, access_token: str, expected_quantity: Optional[int] = None) -> bool:
        self.update_calls.append((product.id, product.quantity, access_token))
        if len(self.update_calls) == self.reject_update_call or product.id in self.reject_updates:
            return False
        if product.id in self.raise_updates:
            raise InventoryError("connection reset")
        if product.id in self.conflict_updates:
            raise InventoryConflict(product.id)
        if (
            self.supports_conditional_update
            and expected_quantity is not None
            and self.products[product.id].quantity != expected_quantity
        ):
            raise InventoryConflict(product.id)

        self.products[product.id] = product.model_copy()
        self.writes.append((product.id, product.quantity))
        return True

    def quantity(self, product_id: str) -> int:
        return self.products[product_id].quantity

    def clear_history(self):
        self.fetch_calls.clear()
        self.update_calls.clear()
        self.writes.clear()


class InMemoryOrderRepository(OrderRepository):
    def __init__(self):
        self.orders: Dict[str, Order] = {}
        self.writes: List[tuple] = []
        self.fail_insert = False
        self.fail_delete = False

    def insert(self, order: Order) -> None:
        if self.fail_insert:
            raise RuntimeError("database unavailable")
        self.orders[order.id] = order.model_copy(deep=True)
        self.writes.append(("insert", order.id))

    def find_by_owner(self, owner_id: str) -> List[Order]:
        return [o.model_copy(deep=True) for o in self.orders.values() if o.owner_id == owner_id]

    def find_one(self, order_id: str, owner_id: str) -> Optional[Order]:
        order = self.orders.get(order_id)
        if order is None or order.owner_id != owner_id:
            return None
        return order.model_copy(deep=True)

    def delete(self, order_id: str, owner_id: str) -> int:
        if self.fail_delete:
            raise RuntimeError("database unavailable")
        order = self.orders.get(order_id)
        if order is None or order.owner_id != owner_id:
            return 0
        del self.orders[order_id]
        self.writes.append(("delete", order_id))
        return 1


class RecordingPublisher(EventPublisher):
    def __init__(self):
        self.published: List[tuple] = []
        self.fail = False
        self.explode = False

    def publish(self, topic: str, payload: dict) -> bool:
        if self.explode:
            raise ConnectionError("broker gone")
        if self.fail:
            return False
        self.published.append((topic, payload))
        return True

    def operations(self) -> List[str]:
        return [payload["Operation"] for _, payload in self.published]


# =============================================================================
# Collaborators
# =============================================================================

@pytest.fixture
def inventory() -> FakeInventory:
    """p1: 10 in stock at 10.00, p2: 5 in stock at 4.50."""
    return FakeInventory([
        Product(id="p1", name="Router", description="Wireless router", price=Decimal("10.00"), quantity=10),
        Product(id="p2", name="Cable", description="Ethernet cable", price=Decimal("4.50"), quantity=5),
    ])


@pytest.fixture
def repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def orchestrator(inventory, repository, publisher) -> OrderFulfillmentOrchestrator:
    """Hardened orchestrator: compensates on failure."""
    return OrderFulfillmentOrchestrator(inventory, repository, publisher)


@pytest.fixture
def reference_orchestrator(inventory, repository, publisher) -> OrderFulfillmentOrchestrator:
    """Orchestrator that leaves earlier writes applied on failure."""
    return OrderFulfillmentOrchestrator(inventory, repository, publisher, compensate_on_failure=False)


# =============================================================================
# Callers & requests
# =============================================================================

@pytest.fixture
def alice() -> CallerContext:
    return CallerContext(owner_id="alice", access_token="token-alice")


@pytest.fixture
def bob() -> CallerContext:
    return CallerContext(owner_id="bob", access_token="token-bob")


@pytest.fixture
def two_line_request() -> List[OrderLineRequest]:
    """3 x p1 and 2 x p2."""
    return [
        OrderLineRequest(product_id="p1", quantity=3),
        OrderLineRequest(product_id="p2", quantity=2),
    ]
