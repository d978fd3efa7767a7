import json
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from psycopg2 import sql

from order_api.config import ORDERS_TABLE
from order_api.db import db_conn
from order_api.models import Order, OrderLine

logger = logging.getLogger(__name__)


class OrderRepository(ABC):
    """Single-document order storage; no multi-document transactions."""

    @abstractmethod
    def insert(self, order: Order) -> None:
        pass

    @abstractmethod
    def find_by_owner(self, owner_id: str) -> List[Order]:
        pass

    @abstractmethod
    def find_one(self, order_id: str, owner_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    def delete(self, order_id: str, owner_id: str) -> int:
        """Delete an order scoped to its owner and return the removed count."""
        pass


class PostgresOrderRepository(OrderRepository):
    """
    Orders stored as one row each in PostgreSQL

    Lines are kept in a JSONB column so an order is read and written as a
    single document.
    """

    def __init__(self, connect: Callable = db_conn, table: str = ORDERS_TABLE):
        self._connect = connect
        self._table = sql.Identifier(table)

    def init_schema(self):
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    sql.SQL(
                        """
                        CREATE TABLE IF NOT EXISTS {} (
                            id TEXT PRIMARY KEY,
                            owner_id TEXT NOT NULL,
                            lines JSONB NOT NULL,
                            total_amount NUMERIC NOT NULL,
                            created_at TIMESTAMPTZ NOT NULL,
                            shipping_address TEXT NOT NULL
                        );
                        """
                    ).format(self._table)
                )
                cur.execute(
                    sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} (owner_id);").format(
                        sql.Identifier(f"{self._table.string}_owner_idx"), self._table
                    )
                )
            conn.commit()
        logger.info(f"Order table {self._table.string} ready")

    def insert(self, order: Order) -> None:
        if not order.id:
            raise ValueError("Order must have an id before insert")

        lines = [line.model_dump(mode="json") for line in order.lines]
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    sql.SQL(
                        """
                        INSERT INTO {} (id, owner_id, lines, total_amount, created_at, shipping_address)
                        VALUES (%s, %s, %s::jsonb, %s, %s, %s)
                        """
                    ).format(self._table),
                    (
                        order.id,
                        order.owner_id,
                        json.dumps(lines),
                        order.total_amount,
                        order.created_at,
                        order.shipping_address,
                    ),
                )
            conn.commit()

    def find_by_owner(self, owner_id: str) -> List[Order]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    sql.SQL(
                        """
                        SELECT id, owner_id, lines, total_amount, created_at, shipping_address
                        FROM {}
                        WHERE owner_id=%s
                        ORDER BY created_at DESC
                        """
                    ).format(self._table),
                    (owner_id,),
                )
                rows = cur.fetchall()
        return [self._to_order(r) for r in rows]

    def find_one(self, order_id: str, owner_id: str) -> Optional[Order]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    sql.SQL(
                        """
                        SELECT id, owner_id, lines, total_amount, created_at, shipping_address
                        FROM {}
                        WHERE id=%s AND owner_id=%s
                        """
                    ).format(self._table),
                    (order_id, owner_id),
                )
                row = cur.fetchone()
        return self._to_order(row) if row else None

    def delete(self, order_id: str, owner_id: str) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    sql.SQL("DELETE FROM {} WHERE id=%s AND owner_id=%s").format(self._table),
                    (order_id, owner_id),
                )
                removed = cur.rowcount
            conn.commit()
        return removed

    @staticmethod
    def _to_order(row) -> Order:
        lines = row[2]
        if isinstance(lines, str):
            lines = json.loads(lines)
        return Order(
            id=row[0],
            owner_id=row[1],
            lines=[OrderLine.model_validate(line) for line in lines],
            total_amount=row[3],
            created_at=row[4],
            shipping_address=row[5],
        )
