"""
Tests for cancelling orders.
"""

from decimal import Decimal

import pytest

from conftest import FakeInventory
from order_api.errors import (
    CollaboratorFailure,
    InsufficientStock,
    InventoryUpdateFailed,
    PersistenceFailed,
    ProductNotFound,
    StockConflict,
)
from order_api.models import Product
from order_api.saga.orchestrator import OrderFulfillmentOrchestrator


@pytest.fixture
def placed(orchestrator, inventory, repository, publisher, alice, two_line_request):
    """An order by Alice for 3 x p1 and 2 x p2, with call history cleared."""
    order = orchestrator.place(two_line_request, "1 Main St", alice)
    inventory.clear_history()
    repository.writes.clear()
    publisher.published.clear()
    return order


class TestCancel:

    def test_restores_stock_and_removes_order(self, orchestrator, inventory, repository, alice, placed):
        assert orchestrator.cancel(placed.id, alice) is True

        assert inventory.quantity("p1") == 10
        assert inventory.quantity("p2") == 5
        assert placed.id not in repository.orders

    def test_publishes_delete_event(self, orchestrator, publisher, alice, placed):
        orchestrator.cancel(placed.id, alice)

        assert publisher.published == [("shipping", {"OrderId": placed.id, "Operation": "Delete"})]

    def test_second_cancel_returns_false(self, orchestrator, inventory, publisher, alice, placed):
        orchestrator.cancel(placed.id, alice)
        inventory.clear_history()
        publisher.published.clear()

        assert orchestrator.cancel(placed.id, alice) is False
        assert inventory.quantity("p1") == 10
        assert inventory.writes == []
        assert publisher.published == []

    def test_forwards_bearer_token(self, orchestrator, inventory, alice, placed):
        orchestrator.cancel(placed.id, alice)

        assert {token for _, token in inventory.fetch_calls} == {"token-alice"}
        assert {call[2] for call in inventory.update_calls} == {"token-alice"}


class TestCancelOwnership:

    def test_other_owner_sees_not_found(self, orchestrator, inventory, repository, publisher, bob, placed):
        assert orchestrator.cancel(placed.id, bob) is False

        assert inventory.fetch_calls == []
        assert inventory.writes == []
        assert repository.writes == []
        assert placed.id in repository.orders
        assert publisher.published == []

    def test_unknown_order(self, orchestrator, alice):
        assert orchestrator.cancel("no-such-order", alice) is False


class TestCancelFailures:

    def test_missing_product_aborts_before_delete(self, orchestrator, inventory, repository, alice, placed):
        del inventory.products["p2"]

        with pytest.raises(ProductNotFound):
            orchestrator.cancel(placed.id, alice)

        assert placed.id in repository.orders
        assert repository.writes == []
        assert inventory.writes == []

    def test_delete_failure_changes_nothing(self, orchestrator, inventory, repository, alice, placed):
        repository.fail_delete = True

        with pytest.raises(PersistenceFailed) as exc:
            orchestrator.cancel(placed.id, alice)

        assert exc.value.mutated is False
        assert inventory.writes == []
        assert placed.id in repository.orders

    def test_restore_failure_compensates(self, orchestrator, inventory, repository, publisher, alice, placed):
        inventory.reject_updates.add("p2")

        with pytest.raises(InventoryUpdateFailed) as exc:
            orchestrator.cancel(placed.id, alice)

        assert exc.value.product_id == "p2"
        assert exc.value.mutated is False
        # p1 restore taken back, order re-inserted
        assert inventory.quantity("p1") == 7
        assert inventory.quantity("p2") == 3
        assert placed.id in repository.orders
        assert publisher.published == []

    def test_reference_policy_leaves_partial_restore(self, reference_orchestrator, inventory, repository, alice, placed):
        inventory.reject_updates.add("p2")

        with pytest.raises(InventoryUpdateFailed) as exc:
            reference_orchestrator.cancel(placed.id, alice)

        assert exc.value.mutated is True
        assert inventory.quantity("p1") == 10
        assert inventory.quantity("p2") == 3
        assert placed.id not in repository.orders

    def test_failed_compensation_is_reported(self, orchestrator, inventory, repository, alice, placed):
        inventory.reject_updates.add("p2")
        repository.fail_insert = True

        with pytest.raises(InventoryUpdateFailed) as exc:
            orchestrator.cancel(placed.id, alice)

        assert exc.value.mutated is True
        assert exc.value.saga["status"] == "FAILED"
        # the stock compensation still ran
        assert inventory.quantity("p1") == 7
        assert placed.id not in repository.orders


class TestCancelLostRace:
    """Conditional inventory where the restore of p2 loses a race."""

    @pytest.fixture
    def conditional_inventory(self):
        return FakeInventory(
            [
                Product(id="p1", price=Decimal("10.00"), quantity=10),
                Product(id="p2", price=Decimal("4.50"), quantity=5),
            ],
            conditional=True,
        )

    def place_then_conflict(self, orchestrator, inventory, alice, two_line_request):
        order = orchestrator.place(two_line_request, "1 Main St", alice)
        inventory.conflict_updates.add("p2")
        return order

    def test_compensated_race_is_retryable(self, conditional_inventory, repository, publisher, alice, two_line_request):
        inventory = conditional_inventory
        orchestrator = OrderFulfillmentOrchestrator(inventory, repository, publisher)
        order = self.place_then_conflict(orchestrator, inventory, alice, two_line_request)

        with pytest.raises(StockConflict) as exc:
            orchestrator.cancel(order.id, alice)

        assert exc.value.retryable
        assert exc.value.mutated is False
        assert order.id in repository.orders
        assert inventory.quantity("p1") == 7
        assert inventory.quantity("p2") == 3

        inventory.conflict_updates.clear()
        assert orchestrator.cancel(order.id, alice) is True
        assert inventory.quantity("p1") == 10
        assert inventory.quantity("p2") == 5

    def test_race_with_writes_left_applied_is_collaborator_failure(
        self, conditional_inventory, repository, publisher, alice, two_line_request
    ):
        inventory = conditional_inventory
        orchestrator = OrderFulfillmentOrchestrator(inventory, repository, publisher, compensate_on_failure=False)
        order = self.place_then_conflict(orchestrator, inventory, alice, two_line_request)

        with pytest.raises(InventoryUpdateFailed) as exc:
            orchestrator.cancel(order.id, alice)

        assert not isinstance(exc.value, InsufficientStock)
        assert isinstance(exc.value, CollaboratorFailure)
        assert exc.value.product_id == "p2"
        assert exc.value.mutated is True
        assert exc.value.status_code == 502
        assert order.id not in repository.orders
        assert inventory.quantity("p1") == 10
        assert inventory.quantity("p2") == 3

    def test_race_after_failed_compensation_is_collaborator_failure(
        self, conditional_inventory, repository, publisher, alice, two_line_request
    ):
        inventory = conditional_inventory
        orchestrator = OrderFulfillmentOrchestrator(inventory, repository, publisher)
        order = self.place_then_conflict(orchestrator, inventory, alice, two_line_request)
        repository.fail_insert = True

        with pytest.raises(InventoryUpdateFailed) as exc:
            orchestrator.cancel(order.id, alice)

        assert exc.value.mutated is True
        assert exc.value.saga["status"] == "FAILED"
