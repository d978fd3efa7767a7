"""
Inventory service client

The inventory service owns product stock. It exposes one product per
request (GET/PUT {base_url}/{product_id}) and has no atomic decrement, so the
order service rewrites quantities with read-modify-write. When conditional
updates are on, the last-read quantity travels in If-Match and a 409/412 reply
means another writer got there first.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests
from pydantic import ValidationError

from order_api.errors import InventoryConflict, InventoryError
from order_api.models import Product

logger = logging.getLogger(__name__)


class InventoryGateway(ABC):
    """Abstract inventory client"""

    supports_conditional_update = False

    @abstractmethod
    def fetch(self, product_id: str, access_token: str) -> Optional[Product]:
        """Return the product, or None when inventory does not know it."""
        pass

    @abstractmethod
    def update(self, product: Product, access_token: str, expected_quantity: Optional[int] = None) -> bool:
        """
        Push a full product representation back to inventory

        Args:
            product: Product with the new quantity
            access_token: Caller's bearer token, forwarded unmodified
            expected_quantity: Last-read quantity; when given and supported,
                the write only applies if inventory still holds this value

        Returns:
            True if inventory accepted the update, False otherwise

        Raises:
            InventoryConflict: the conditional update lost a race
            InventoryError: transport failure
        """
        pass

    def close(self):
        pass

class HttpInventoryGateway(InventoryGateway):
    """Inventory REST API client"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5,
        conditional_updates: bool = False,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.supports_conditional_update = conditional_updates
        self.session = session or requests.Session()

    def _headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    def fetch(self, product_id: str, access_token: str) -> Optional[Product]:
        url = f"{self.base_url}/{product_id}"
        try:
            r = self.session.get(url, headers=self._headers(access_token), timeout=self.timeout)
        except requests.RequestException as e:
            raise InventoryError(f"Failed to fetch product with id '{product_id}' from Inventory: {e}") from e

        if r.status_code == 404:
            return None
        if not r.ok:
            raise InventoryError(
                f"Failed to fetch product with id '{product_id}' from Inventory: HTTP {r.status_code}"
            )

        try:
            body = r.json()
        except ValueError as e:
            raise InventoryError(f"Inventory returned invalid JSON for product '{product_id}'") from e
        if not body:
            return None

        try:
            return Product.model_validate(body)
        except ValidationError as e:
            raise InventoryError(f"Inventory returned an invalid product '{product_id}': {e}") from e

    def update(self, product: Product, access_token: str, expected_quantity: Optional[int] = None) -> bool:
        url = f"{self.base_url}/{product.id}"
        headers = self._headers(access_token)
        if self.supports_conditional_update and expected_quantity is not None:
            headers["If-Match"] = f'"{expected_quantity}"'

        try:
            r = self.session.put(
                url,
                json=product.model_dump(mode="json"),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise InventoryError(f"Failed to update product '{product.id}' in Inventory: {e}") from e

        if r.status_code in (409, 412) and self.supports_conditional_update:
            raise InventoryConflict(f"Product '{product.id}' changed since it was read")

        if not r.ok:
            logger.error(f"Inventory rejected update of product {product.id}: HTTP {r.status_code}")
            return False
        return True

    def close(self):
        self.session.close()
