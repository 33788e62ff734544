# ---------------- Schema ----------------
CREATE_ORDERS_TABLE = """
CREATE TABLE IF NOT EXISTS orders (
    order_uid TEXT PRIMARY KEY,
    track_number TEXT NOT NULL,
    entry TEXT NOT NULL,
    locale TEXT NOT NULL,
    internal_signature TEXT,
    customer_id TEXT NOT NULL,
    delivery_service TEXT NOT NULL,
    shardkey TEXT NOT NULL,
    sm_id INTEGER NOT NULL,
    date_created TIMESTAMPTZ NOT NULL,
    oof_shard TEXT NOT NULL
)
"""

CREATE_DELIVERY_TABLE = """
CREATE TABLE IF NOT EXISTS delivery (
    order_uid TEXT PRIMARY KEY REFERENCES orders(order_uid) ON DELETE CASCADE,
    name TEXT NOT NULL,
    phone TEXT NOT NULL,
    zip TEXT NOT NULL,
    city TEXT NOT NULL,
    address TEXT NOT NULL,
    region TEXT NOT NULL,
    email TEXT NOT NULL
)
"""

CREATE_PAYMENT_TABLE = """
CREATE TABLE IF NOT EXISTS payment (
    order_uid TEXT PRIMARY KEY REFERENCES orders(order_uid) ON DELETE CASCADE,
    transaction TEXT NOT NULL,
    request_id TEXT,
    currency TEXT NOT NULL,
    provider TEXT NOT NULL,
    amount BIGINT NOT NULL,
    payment_dt BIGINT NOT NULL,
    bank TEXT NOT NULL,
    delivery_cost BIGINT NOT NULL,
    goods_total BIGINT NOT NULL,
    custom_fee BIGINT NOT NULL
)
"""

CREATE_ITEMS_TABLE = """
CREATE TABLE IF NOT EXISTS items (
    id BIGSERIAL PRIMARY KEY,
    order_uid TEXT NOT NULL REFERENCES orders(order_uid) ON DELETE CASCADE,
    chrt_id BIGINT NOT NULL,
    track_number TEXT NOT NULL,
    price BIGINT NOT NULL,
    rid TEXT NOT NULL,
    name TEXT NOT NULL,
    sale INTEGER NOT NULL,
    size TEXT NOT NULL,
    total_price BIGINT NOT NULL,
    nm_id BIGINT NOT NULL,
    brand TEXT NOT NULL,
    status INTEGER NOT NULL
)
"""

CREATE_MIGRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    id TEXT PRIMARY KEY,
    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""

SCHEMA = [
    ("create_orders", CREATE_ORDERS_TABLE),
    ("create_delivery", CREATE_DELIVERY_TABLE),
    ("create_payment", CREATE_PAYMENT_TABLE),
    ("create_items", CREATE_ITEMS_TABLE),
    ("create_items_index", "CREATE INDEX IF NOT EXISTS idx_items_order_uid ON items(order_uid)"),
    ("create_orders_index", "CREATE INDEX IF NOT EXISTS idx_orders_date_created ON orders(date_created)"),
    ("create_migrations", CREATE_MIGRATIONS_TABLE),
]

# (id, sql) pairs applied once each, in order, and recorded in schema_migrations.
MIGRATIONS = [
    (
        "0001_orders_track_number_index",
        "CREATE INDEX IF NOT EXISTS idx_orders_track_number ON orders(track_number)",
    ),
]

MIGRATION_APPLIED = "SELECT EXISTS(SELECT 1 FROM schema_migrations WHERE id=%s)"
RECORD_MIGRATION = "INSERT INTO schema_migrations (id) VALUES (%s) ON CONFLICT (id) DO NOTHING"

# ---------------- Writes ----------------
SAVE_ORDER = """
INSERT INTO orders (order_uid, track_number, entry, locale, internal_signature,
                    customer_id, delivery_service, shardkey, sm_id, date_created, oof_shard)
VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (order_uid) DO UPDATE SET
    track_number = EXCLUDED.track_number,
    entry = EXCLUDED.entry,
    locale = EXCLUDED.locale,
    internal_signature = EXCLUDED.internal_signature,
    customer_id = EXCLUDED.customer_id,
    delivery_service = EXCLUDED.delivery_service,
    shardkey = EXCLUDED.shardkey,
    sm_id = EXCLUDED.sm_id,
    date_created = EXCLUDED.date_created,
    oof_shard = EXCLUDED.oof_shard
"""

SAVE_DELIVERY = """
INSERT INTO delivery (order_uid, name, phone, zip, city, address, region, email)
VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (order_uid) DO UPDATE SET
    name = EXCLUDED.name,
    phone = EXCLUDED.phone,
    zip = EXCLUDED.zip,
    city = EXCLUDED.city,
    address = EXCLUDED.address,
    region = EXCLUDED.region,
    email = EXCLUDED.email
"""

SAVE_PAYMENT = """
INSERT INTO payment (order_uid, transaction, request_id, currency, provider,
                     amount, payment_dt, bank, delivery_cost, goods_total, custom_fee)
VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (order_uid) DO UPDATE SET
    transaction = EXCLUDED.transaction,
    request_id = EXCLUDED.request_id,
    currency = EXCLUDED.currency,
    provider = EXCLUDED.provider,
    amount = EXCLUDED.amount,
    payment_dt = EXCLUDED.payment_dt,
    bank = EXCLUDED.bank,
    delivery_cost = EXCLUDED.delivery_cost,
    goods_total = EXCLUDED.goods_total,
    custom_fee = EXCLUDED.custom_fee
"""

DELETE_ITEMS = "DELETE FROM items WHERE order_uid=%s"

SAVE_ITEM = """
INSERT INTO items (order_uid, chrt_id, track_number, price, rid, name, sale, size,
                   total_price, nm_id, brand, status)
VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
"""

# ---------------- Reads ----------------
_ORDER_COLUMNS = """
    o.order_uid, o.track_number, o.entry, o.locale, o.internal_signature,
    o.customer_id, o.delivery_service, o.shardkey, o.sm_id, o.date_created, o.oof_shard,
    d.name, d.phone, d.zip, d.city, d.address, d.region, d.email,
    p.transaction, p.request_id, p.currency, p.provider, p.amount, p.payment_dt,
    p.bank, p.delivery_cost, p.goods_total, p.custom_fee
"""

GET_ORDER = f"""
SELECT {_ORDER_COLUMNS}
FROM orders o
JOIN delivery d ON o.order_uid = d.order_uid
JOIN payment p ON o.order_uid = p.order_uid
WHERE o.order_uid = %s
"""

GET_ALL_ORDERS = f"""
SELECT {_ORDER_COLUMNS}
FROM orders o
JOIN delivery d ON o.order_uid = d.order_uid
JOIN payment p ON o.order_uid = p.order_uid
ORDER BY o.date_created DESC
"""

GET_ITEMS = """
SELECT chrt_id, track_number, price, rid, name, sale, size, total_price, nm_id, brand, status
FROM items
WHERE order_uid = %s
ORDER BY id
"""
