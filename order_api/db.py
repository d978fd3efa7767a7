from contextlib import contextmanager

import psycopg2

from order_api.config import DATABASE_URL


@contextmanager
def db_conn(dsn: str | None = None):
    dsn = dsn or DATABASE_URL
    if not dsn:
        raise RuntimeError("DATABASE_URL not set")

    conn = psycopg2.connect(dsn)
    try:
        yield conn
    finally:
        conn.close()
