import logging
from contextlib import contextmanager

import psycopg2
from psycopg2.pool import ThreadedConnectionPool

from orderstream.errors import StoreError

logger = logging.getLogger(__name__)


def connect_pool(dsn: str, minconn: int = 1, maxconn: int = 10) -> ThreadedConnectionPool:
    """Open a pool and make sure the database answers"""
    if not dsn:
        raise StoreError("connect", "DATABASE_URL not set")

    pool = ThreadedConnectionPool(minconn, maxconn, dsn)
    try:
        with pooled_conn(pool) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
            conn.rollback()
    except psycopg2.Error:
        pool.closeall()
        raise
    logger.info(f"database pool ready (min={minconn}, max={maxconn})")
    return pool


@contextmanager
def pooled_conn(pool):
    """Borrow a connection, discarding it on return if it was closed underneath us"""
    conn = pool.getconn()
    try:
        yield conn
    finally:
        pool.putconn(conn, close=bool(conn.closed))
