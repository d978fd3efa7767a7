"""
Order fulfillment orchestrator

Places and cancels orders across three systems that share no transaction:

  place:  fetch products → check stock → decrement stock per line
          → insert order → publish "Create"
  cancel: load order → fetch products → delete order
          → restore stock per line → publish "Delete"

Everything before the first inventory write is side-effect free, so
validation, missing products and short stock reject the request cleanly.
After that every committed write is recorded in a SagaExecution. With
compensate_on_failure on, a failing write undoes the earlier ones in reverse
order before the error propagates; with it off, earlier writes stay applied.
Shipping events are fire-and-forget and never fail the operation.
"""

import logging
import threading
import uuid
import weakref
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterable, List, Optional, Sequence

from order_api.clients.inventory import InventoryGateway
from order_api.errors import (
    InsufficientStock,
    InventoryConflict,
    InventoryError,
    InventoryUpdateFailed,
    OrderValidationError,
    PersistenceFailed,
    ProductNotFound,
    StockConflict,
)
from order_api.messaging.publisher import EventPublisher, order_created_message, order_deleted_message
from order_api.models import CallerContext, Order, OrderLine, OrderLineRequest, Product
from order_api.repository import OrderRepository
from order_api.saga.execution import SagaExecution
from order_api.validation import distinct_product_ids, find_short_product, validate_order

logger = logging.getLogger(__name__)


def new_order_id() -> str:
    return str(uuid.uuid4())


class OrderFulfillmentOrchestrator:
    def __init__(
        self,
        inventory: InventoryGateway,
        repository: OrderRepository,
        publisher: EventPublisher,
        shipping_topic: str = "shipping",
        compensate_on_failure: bool = True,
        fetch_workers: int = 1,
    ):
        self.inventory = inventory
        self.repository = repository
        self.publisher = publisher
        self.shipping_topic = shipping_topic
        self.compensate_on_failure = compensate_on_failure
        self.fetch_workers = max(1, fetch_workers)

        # entries vanish once no request holds the lock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ---------------- Queries ----------------

    def list_orders(self, owner_id: str) -> List[Order]:
        return self.repository.find_by_owner(owner_id)

    def get_order(self, order_id: str, owner_id: str) -> Optional[Order]:
        return self.repository.find_one(order_id, owner_id)

    # ---------------- Place ----------------

    def place(self, lines: Sequence[OrderLineRequest], shipping_address: str, caller: CallerContext) -> Order:
        ok, msg = validate_order(lines, shipping_address)
        if not ok:
            logger.warning(f"Rejected order from {caller.owner_id}: {msg}")
            raise OrderValidationError(msg)

        product_ids = distinct_product_ids(lines)

        with self._hold_products(product_ids):
            products = self._fetch_products(product_ids, caller)

            short = find_short_product(products, lines)
            if short is not None:
                logger.warning(f"Rejected order from {caller.owner_id}: insufficient stock for product {short}")
                raise InsufficientStock(short)

            order = Order.build(
                owner_id=caller.owner_id,
                lines=[OrderLine.from_snapshot(products[line.product_id], line.quantity) for line in lines],
                shipping_address=shipping_address,
            )

            execution = SagaExecution("place")
            for line in lines:
                self._change_stock(execution, products[line.product_id], -line.quantity, caller)

            order.id = new_order_id()
            execution.order_id = order.id
            try:
                execution.run(
                    f"Persist order {order.id}",
                    lambda: self.repository.insert(order),
                )
            except Exception as e:
                mutated = self._abort(execution)
                logger.critical(
                    f"Order {order.id} for {caller.owner_id} was not persisted after inventory was "
                    f"decremented for {product_ids}; stock left decremented={mutated} "
                    f"(saga_id={execution.saga_id})"
                )
                raise PersistenceFailed(mutated=mutated, saga=execution.to_dict()) from e

            execution.complete()

        logger.info(f"✓ Order {order.id} placed for {caller.owner_id} total={order.total_amount}")
        self._publish(order_created_message(order.id, order.owner_id, order.shipping_address))
        return order

    # ---------------- Cancel ----------------

    def cancel(self, order_id: str, caller: CallerContext) -> bool:
        """
        Cancel an order owned by the caller.

        Returns False when the order does not exist, belongs to someone else,
        or was removed by a concurrent cancel; the caller cannot tell these
        apart.
        """
        order = self.repository.find_one(order_id, caller.owner_id)
        if order is None:
            logger.info(f"Cancel of order {order_id} by {caller.owner_id}: not found")
            return False

        product_ids = order.product_ids()

        with self._hold_products(product_ids):
            products = self._fetch_products(product_ids, caller)

            execution = SagaExecution("cancel", order_id)
            try:
                removed = execution.run(
                    f"Delete order {order_id}",
                    lambda: self.repository.delete(order_id, caller.owner_id),
                    compensation=lambda: self.repository.insert(order),
                )
            except Exception as e:
                execution.fail()
                logger.error(f"Failed to delete order {order_id}: {e}")
                raise PersistenceFailed("Failed to delete order.", saga=execution.to_dict()) from e

            if removed == 0:
                execution.fail()
                logger.warning(f"Order {order_id} already removed, stock not restored")
                return False

            for line in order.lines:
                self._change_stock(execution, products[line.product_id], line.quantity, caller)

            execution.complete()

        logger.info(f"✓ Order {order_id} cancelled for {caller.owner_id}")
        self._publish(order_deleted_message(order_id))
        return removed == 1

    # ---------------- Inventory ----------------

    def _fetch_one(self, product_id: str, caller: CallerContext) -> Product:
        try:
            product = self.inventory.fetch(product_id, caller.access_token)
        except InventoryError as e:
            logger.warning(f"Product {product_id} lookup failed: {e}")
            raise ProductNotFound(product_id) from e

        if product is None:
            logger.warning(f"Product {product_id} not found in inventory")
            raise ProductNotFound(product_id)
        return product

    def _fetch_products(self, product_ids: List[str], caller: CallerContext) -> Dict[str, Product]:
        """Fresh snapshots keyed by product id; first failure in request order wins."""
        if self.fetch_workers == 1 or len(product_ids) < 2:
            return {pid: self._fetch_one(pid, caller) for pid in product_ids}

        workers = min(self.fetch_workers, len(product_ids))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pid: pool.submit(self._fetch_one, pid, caller) for pid in product_ids}
            return {pid: future.result() for pid, future in futures.items()}

    def _change_stock(self, execution: SagaExecution, product: Product, delta: int, caller: CallerContext):
        """
        Apply delta to the in-memory snapshot and push it to inventory.

        The snapshot is shared by every line of the same product, so repeated
        lines build on each other. On failure the saga is aborted and the
        matching error raised.
        """
        before = product.quantity
        product.quantity = before + delta
        verb = "Reserve" if delta < 0 else "Restore"

        def push():
            if not self.inventory.update(product.model_copy(), caller.access_token, expected_quantity=before):
                raise InventoryError(f"Inventory rejected update of product {product.id}")

        try:
            execution.run(
                f"{verb} {abs(delta)} x {product.id}",
                push,
                compensation=lambda: self._revert_stock(product.id, delta, caller),
            )
        except InventoryConflict as e:
            product.quantity = before
            mutated = self._abort(execution)
            if not mutated:
                logger.warning(f"Lost inventory race on product {product.id}, nothing left applied")
                raise StockConflict(product.id, saga=execution.to_dict()) from e
            # a retry cannot repair writes that stay applied
            logger.error(
                f"Lost inventory race on product {product.id} during {execution.operation} "
                f"order={execution.order_id}; earlier changes left applied"
            )
            raise InventoryUpdateFailed(product.id, mutated=True, saga=execution.to_dict()) from e
        except Exception as e:
            product.quantity = before
            mutated = self._abort(execution)
            logger.error(
                f"Inventory update failed for product {product.id} during {execution.operation} "
                f"order={execution.order_id}; earlier changes left applied={mutated}"
            )
            raise InventoryUpdateFailed(product.id, mutated=mutated, saga=execution.to_dict()) from e

    def _revert_stock(self, product_id: str, delta: int, caller: CallerContext):
        # re-read so a compensation never overwrites writes made since the snapshot
        current = self.inventory.fetch(product_id, caller.access_token)
        if current is None:
            raise InventoryError(f"Product {product_id} vanished before compensation")

        before = current.quantity
        current.quantity = before - delta
        if current.quantity < 0:
            raise InventoryError(f"Cannot take back {delta} of product {product_id}: only {before} left")

        if not self.inventory.update(current, caller.access_token, expected_quantity=before):
            raise InventoryError(f"Inventory rejected compensation of product {product_id}")

    def _abort(self, execution: SagaExecution) -> bool:
        """Compensate per policy. Returns True if side effects were left applied."""
        if not self.compensate_on_failure:
            execution.fail()
            return bool(execution.committed_steps())
        return not execution.compensate()

    # ---------------- Locks & events ----------------

    def _lock_for(self, product_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(product_id)
            if lock is None:
                lock = self._locks[product_id] = threading.Lock()
            return lock

    @contextmanager
    def _hold_products(self, product_ids: Iterable[str]):
        # sorted acquisition keeps concurrent requests from deadlocking
        with ExitStack() as stack:
            for pid in sorted(set(product_ids)):
                stack.enter_context(self._lock_for(pid))
            yield

    def _publish(self, payload: dict):
        try:
            if not self.publisher.publish(self.shipping_topic, payload):
                logger.warning(f"Shipping event {payload.get('Operation')} for order {payload.get('OrderId')} not delivered")
        except Exception as e:
            logger.warning(f"Shipping event for order {payload.get('OrderId')} failed: {e}")
