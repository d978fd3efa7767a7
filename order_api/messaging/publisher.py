"""
RabbitMQ shipping event publisher

Shipping events go to a durable fanout exchange with a durable queue of the
same name bound to it. Delivery is at-most-once: a publish that fails is
logged and dropped, the caller only gets False back.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import pika

logger = logging.getLogger(__name__)

OPERATION_CREATE = "Create"
OPERATION_DELETE = "Delete"


def order_created_message(order_id: str, owner_id: str, shipping_address: str) -> Dict[str, Any]:
    return {
        "OrderId": order_id,
        "UserId": owner_id,
        "ShippingAddress": shipping_address,
        "Operation": OPERATION_CREATE,
    }


def order_deleted_message(order_id: str) -> Dict[str, Any]:
    return {"OrderId": order_id, "Operation": OPERATION_DELETE}


class EventPublisher(ABC):
    """Fire-and-forget event channel"""

    @abstractmethod
    def publish(self, topic: str, payload: Dict[str, Any]) -> bool:
        """Publish payload to topic; True if handed to the broker."""
        pass

    def close(self):
        pass


class RabbitMQPublisher(EventPublisher):
    """
    Publisher over a single blocking connection.

    BlockingConnection is not thread safe, and FastAPI runs sync endpoints in
    a thread pool, so every channel operation holds the lock.
    """

    def __init__(self, url: str, exchange: str = "shipping"):
        self.url = url
        self.exchange = exchange

        self.connection: Optional[pika.BlockingConnection] = None
        self.channel = None
        self.metrics = {
            'published': 0,
            'failed': 0,
        }
        self._lock = threading.Lock()

        self.connect()

    def connect(self):
        """Establish connection and declare the shipping topology"""
        try:
            params = pika.URLParameters(self.url)
            params.heartbeat = 30
            params.blocked_connection_timeout = 30

            self.connection = pika.BlockingConnection(params)
            self.channel = self.connection.channel()
            self._declare_resources()

            logger.info(f"Connected to RabbitMQ, exchange '{self.exchange}' ready")

        except Exception as e:
            logger.error(f"RabbitMQ connection failed: {e}")
            self.connection = None
            self.channel = None

    def _declare_resources(self):
        self.channel.exchange_declare(
            exchange=self.exchange,
            exchange_type='fanout',
            durable=True,
        )
        self.channel.queue_declare(queue=self.exchange, durable=True)
        self.channel.queue_bind(exchange=self.exchange, queue=self.exchange, routing_key='')

    def publish(self, topic: str, payload: Dict[str, Any]) -> bool:
        with self._lock:
            try:
                if not self.connection or self.connection.is_closed:
                    logger.warning("Reconnecting to RabbitMQ...")
                    self.connect()

                if not self.channel:
                    self.metrics['failed'] += 1
                    logger.error(f"Dropped {topic} event for order {payload.get('OrderId')}: broker unavailable")
                    return False

                self.channel.basic_publish(
                    exchange=topic,
                    routing_key='',
                    body=json.dumps(payload).encode('utf-8'),
                    properties=pika.BasicProperties(
                        content_type='application/json',
                        delivery_mode=2,  # persistent
                        timestamp=int(time.time()),
                        correlation_id=payload.get('OrderId'),
                    ),
                )

                self.metrics['published'] += 1
                logger.info(
                    f"Event published - Topic: {topic}, "
                    f"Operation: {payload.get('Operation')}, "
                    f"OrderID: {payload.get('OrderId')}"
                )
                return True

            except pika.exceptions.AMQPError as e:
                self.metrics['failed'] += 1
                logger.error(f"Failed to publish {topic} event for order {payload.get('OrderId')}: {e}")
                # drop the broken connection, the next publish reconnects
                self._close_quietly()
                return False

    def get_metrics(self) -> Dict[str, int]:
        return self.metrics.copy()

    def _close_quietly(self):
        try:
            if self.connection and not self.connection.is_closed:
                self.connection.close()
        except pika.exceptions.AMQPError as e:
            logger.warning(f"Error closing RabbitMQ connection: {e}")
        self.connection = None
        self.channel = None

    def close(self):
        with self._lock:
            self._close_quietly()
        logger.info("Publisher connection closed")
