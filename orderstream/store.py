"""
PostgreSQL-backed order store.

save_order writes the whole aggregate in one transaction and re-runs the
entire transaction on transient failures (heavy retry policy). Reads use the
default policy. A missing order is OrderNotFound, which is never retried.
"""

import logging
import threading
import time
from typing import List, Optional, Sequence, Tuple

import psycopg2

from orderstream import queries
from orderstream import retry
from orderstream.db import pooled_conn
from orderstream.errors import OrderNotFound, StoreError
from orderstream.interfaces import OrderReader, OrderWriter
from orderstream.metrics import MetricsRegistry, NullMetrics
from orderstream.models import Delivery, Item, Order, Payment

logger = logging.getLogger(__name__)


def is_transient(exc: BaseException) -> bool:
    """Connection drops, timeouts, deadlocks and serialization failures"""
    return isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError))


def _end_read(conn) -> None:
    # a dropped connection has nothing to roll back
    if not conn.closed:
        conn.rollback()


def _order_params(order: Order) -> Tuple:
    return (
        order.order_uid, order.track_number, order.entry, order.locale, order.internal_signature,
        order.customer_id, order.delivery_service, order.shardkey, order.sm_id,
        order.date_created, order.oof_shard,
    )


def _delivery_params(order: Order) -> Tuple:
    d = order.delivery
    return (order.order_uid, d.name, d.phone, d.zip, d.city, d.address, d.region, d.email)


def _payment_params(order: Order) -> Tuple:
    p = order.payment
    return (
        order.order_uid, p.transaction, p.request_id, p.currency, p.provider, p.amount,
        p.payment_dt, p.bank, p.delivery_cost, p.goods_total, p.custom_fee,
    )


def _item_params(order_uid: str, it: Item) -> Tuple:
    return (
        order_uid, it.chrt_id, it.track_number, it.price, it.rid, it.name, it.sale, it.size,
        it.total_price, it.nm_id, it.brand, it.status,
    )


def _row_to_order(row: Sequence) -> Order:
    return Order(
        order_uid=row[0],
        track_number=row[1],
        entry=row[2],
        locale=row[3],
        internal_signature=row[4] or "",
        customer_id=row[5],
        delivery_service=row[6],
        shardkey=row[7],
        sm_id=row[8],
        date_created=row[9],
        oof_shard=row[10],
        delivery=Delivery(
            name=row[11], phone=row[12], zip=row[13], city=row[14],
            address=row[15], region=row[16], email=row[17],
        ),
        payment=Payment(
            transaction=row[18], request_id=row[19] or "", currency=row[20], provider=row[21],
            amount=row[22], payment_dt=row[23], bank=row[24], delivery_cost=row[25],
            goods_total=row[26], custom_fee=row[27],
        ),
    )


def _row_to_item(row: Sequence) -> Item:
    return Item(
        chrt_id=row[0], track_number=row[1], price=row[2], rid=row[3], name=row[4],
        sale=row[5], size=row[6], total_price=row[7], nm_id=row[8], brand=row[9], status=row[10],
    )


class PostgresOrderStore(OrderReader, OrderWriter):
    def __init__(
        self,
        pool,
        metrics: Optional[MetricsRegistry] = None,
        cancel: Optional[threading.Event] = None,
        write_policy: Optional[retry.RetryPolicy] = None,
        read_policy: Optional[retry.RetryPolicy] = None,
        migrations: Sequence[Tuple[str, str]] = queries.MIGRATIONS,
    ):
        self._pool = pool
        self._metrics = metrics or NullMetrics()
        self._cancel = cancel
        self._write_policy = write_policy or retry.heavy_policy()
        self._read_policy = read_policy or retry.default_policy()
        self._migrations = list(migrations)
        self._closed = False
        self._close_lock = threading.Lock()

    # ---------------- helpers ----------------
    def _exec(self, cur, name: str, sql: str, params: Optional[Tuple] = None) -> None:
        start = time.monotonic()
        try:
            cur.execute(sql, params)
        except psycopg2.Error:
            self._metrics.inc("db_query_errors_total", query=name)
            raise
        finally:
            self._metrics.observe("db_query_duration_seconds", time.monotonic() - start, query=name)

    def _retry(self, policy: retry.RetryPolicy, fn, operation: str):
        return retry.run(
            policy,
            fn,
            cancel=self._cancel,
            retryable=is_transient,
            operation=operation,
            metrics=self._metrics,
        )

    def _load_items(self, cur, order_uid: str) -> List[Item]:
        self._exec(cur, "get_items", queries.GET_ITEMS, (order_uid,))
        return [_row_to_item(r) for r in cur.fetchall()]

    # ---------------- schema ----------------
    def init(self) -> None:
        """Create tables idempotently and apply pending migrations"""
        start = time.monotonic()

        def attempt():
            with pooled_conn(self._pool) as conn:
                try:
                    with conn.cursor() as cur:
                        for name, sql in queries.SCHEMA:
                            self._exec(cur, f"init_{name}", sql)
                        for mig_id, sql in self._migrations:
                            self._exec(cur, "init_check_migration", queries.MIGRATION_APPLIED, (mig_id,))
                            if cur.fetchone()[0]:
                                continue
                            self._exec(cur, "init_apply_migration", sql)
                            self._exec(cur, "init_record_migration", queries.RECORD_MIGRATION, (mig_id,))
                            logger.info(f"applied migration {mig_id}")
                    conn.commit()
                except Exception:
                    _end_read(conn)
                    raise

        try:
            self._retry(self._write_policy, attempt, "db_init")
        except psycopg2.Error as e:
            self._metrics.inc("db_init_failures_total")
            raise StoreError("init", str(e)) from e
        self._metrics.observe("db_init_duration_seconds", time.monotonic() - start)
        logger.info("database schema initialised")

    # ---------------- writes ----------------
    def _save_once(self, order: Order) -> None:
        with pooled_conn(self._pool) as conn:
            committed = False
            try:
                with conn.cursor() as cur:
                    self._exec(cur, "save_order", queries.SAVE_ORDER, _order_params(order))
                    self._exec(cur, "save_delivery", queries.SAVE_DELIVERY, _delivery_params(order))
                    self._exec(cur, "save_payment", queries.SAVE_PAYMENT, _payment_params(order))
                    self._exec(cur, "delete_items", queries.DELETE_ITEMS, (order.order_uid,))
                    for item in order.items:
                        self._exec(cur, "save_item", queries.SAVE_ITEM, _item_params(order.order_uid, item))
                conn.commit()
                committed = True
            finally:
                if not committed:
                    try:
                        conn.rollback()
                    except psycopg2.Error as e:
                        logger.error(f"rollback failed order={order.order_uid} err={e}")

    def save_order(self, order: Order) -> None:
        start = time.monotonic()
        try:
            self._retry(self._write_policy, lambda: self._save_once(order), "save_order")
        except psycopg2.Error as e:
            self._metrics.inc("db_saves_failed_total")
            raise StoreError("save_order", str(e), order.order_uid) from e
        except Exception:
            self._metrics.inc("db_saves_failed_total")
            raise
        self._metrics.inc("db_saves_total")
        self._metrics.observe("db_save_duration_seconds", time.monotonic() - start)

    # ---------------- reads ----------------
    def _get_once(self, order_uid: str) -> Order:
        with pooled_conn(self._pool) as conn:
            try:
                with conn.cursor() as cur:
                    self._exec(cur, "get_order", queries.GET_ORDER, (order_uid,))
                    row = cur.fetchone()
                    if row is None:
                        raise OrderNotFound(order_uid)
                    order = _row_to_order(row)
                    order.items = self._load_items(cur, order_uid)
                return order
            finally:
                _end_read(conn)

    def get_order(self, order_uid: str) -> Order:
        start = time.monotonic()
        try:
            order = self._retry(self._read_policy, lambda: self._get_once(order_uid), "get_order")
        except OrderNotFound:
            self._metrics.inc("db_gets_not_found_total")
            raise
        except psycopg2.Error as e:
            self._metrics.inc("db_gets_failed_total")
            raise StoreError("get_order", str(e), order_uid) from e
        self._metrics.inc("db_gets_total")
        self._metrics.observe("db_get_duration_seconds", time.monotonic() - start)
        return order

    def _get_all_once(self) -> List[Order]:
        with pooled_conn(self._pool) as conn:
            try:
                with conn.cursor() as cur:
                    self._exec(cur, "get_all_orders", queries.GET_ALL_ORDERS)
                    orders = [_row_to_order(r) for r in cur.fetchall()]
                    # one items query per order; only runs at warm-up
                    for order in orders:
                        order.items = self._load_items(cur, order.order_uid)
                return orders
            finally:
                _end_read(conn)

    def get_all_orders(self) -> List[Order]:
        start = time.monotonic()
        try:
            orders = self._retry(self._read_policy, self._get_all_once, "get_all_orders")
        except psycopg2.Error as e:
            self._metrics.inc("db_get_all_failed_total")
            raise StoreError("get_all_orders", str(e)) from e
        self._metrics.inc("db_get_all_total")
        self._metrics.observe("db_get_all_duration_seconds", time.monotonic() - start)
        return orders

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._pool.closeall()
        logger.info("database pool closed")
