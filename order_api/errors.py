"""
Order fulfillment errors.

Raised by the orchestrator and its collaborators. Errors raised before any
inventory or order write (validation, not found, insufficient stock) leave no
side effects behind. CollaboratorFailure and its subclasses are raised during
the mutation phase and may leave inventory and order storage out of step.
"""

from typing import Any, Dict, Optional


class OrderServiceError(Exception):
    """Base class for every error the order service raises on purpose."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class OrderValidationError(OrderServiceError):
    """Request shape is invalid (no lines, non-positive quantity, no address)."""

    status_code = 400


class NotFoundError(OrderServiceError):
    status_code = 404


class ProductNotFound(NotFoundError):
    """A product referenced by the request could not be loaded from inventory."""

    # the request body named a product that does not exist
    status_code = 400

    def __init__(self, product_id: str, message: Optional[str] = None):
        super().__init__(message or f"Product with id {product_id} not found.")
        self.product_id = product_id


class InsufficientStock(OrderServiceError):
    """Not enough stock to fulfil a line of the order."""

    status_code = 409
    retryable = False

    def __init__(self, product_id: str, message: Optional[str] = None):
        super().__init__(message or f"Product with id {product_id} does not have enough quantity.")
        self.product_id = product_id


class StockConflict(InsufficientStock):
    """
    A conditional inventory update lost a race against another writer.

    Only raised when no write of the request is left applied. The stock read
    at the start of the request is stale; the client may retry and the request
    will be validated again against fresh quantities.
    """

    retryable = True

    def __init__(self, product_id: str, mutated: bool = False, saga: Optional[Dict[str, Any]] = None):
        super().__init__(product_id, f"Stock of product {product_id} changed concurrently, retry the request.")
        self.mutated = mutated
        self.saga = saga


class CollaboratorFailure(OrderServiceError):
    """
    A collaborator call failed in the mutation phase.

    mutated tells whether side effects were left applied (no compensation ran,
    or a compensation failed). saga holds the execution log for diagnostics.
    """

    status_code = 502

    def __init__(self, message: str, mutated: bool = False, saga: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.mutated = mutated
        self.saga = saga


class InventoryUpdateFailed(CollaboratorFailure):
    def __init__(self, product_id: str, mutated: bool = False, saga: Optional[Dict[str, Any]] = None):
        super().__init__("Failed to update products in Inventory.", mutated=mutated, saga=saga)
        self.product_id = product_id


class PersistenceFailed(CollaboratorFailure):
    def __init__(self, message: str = "Failed to persist order.", mutated: bool = False, saga: Optional[Dict[str, Any]] = None):
        super().__init__(message, mutated=mutated, saga=saga)


# raised by gateways, never seen by HTTP callers


class InventoryError(Exception):
    """Transport or protocol error talking to the inventory service."""


class InventoryConflict(InventoryError):
    """Conditional update rejected: the product changed since it was read."""
