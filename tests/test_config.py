import pytest

from orderstream.config import Settings, load_settings
from orderstream.errors import ConfigError

ENV_VARS = [
    "SERVER_HOST", "SERVER_PORT", "DATABASE_URL", "DB_POOL_MIN", "DB_POOL_MAX", "RABBIT_URL",
    "ORDERS_QUEUE", "CACHE_TTL_SECONDS", "CACHE_CLEANUP_SECONDS", "ORDER_UID_STRICT",
    "ORDER_UID_LENGTH", "PROCESS_FAILURE_POLICY", "SHUTDOWN_TIMEOUT_SECONDS", "DEMO_PRODUCER",
    "DEMO_PRODUCER_INTERVAL", "STATIC_DIR", "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = load_settings()
    assert cfg == Settings()
    assert cfg.server_port == 8081
    assert cfg.cache_ttl_seconds == 1800
    assert cfg.cache_cleanup_seconds == 600
    assert cfg.process_failure_policy == "dead_letter"
    assert cfg.order_uid_strict is False


def test_overrides(monkeypatch):
    monkeypatch.setenv("SERVER_PORT", "9000")
    monkeypatch.setenv("ORDERS_QUEUE", "orders-test")
    monkeypatch.setenv("CACHE_TTL_SECONDS", "2.5")
    monkeypatch.setenv("ORDER_UID_STRICT", "true")
    monkeypatch.setenv("PROCESS_FAILURE_POLICY", "BLOCK")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    cfg = load_settings()
    assert cfg.server_port == 9000
    assert cfg.orders_queue == "orders-test"
    assert cfg.cache_ttl_seconds == 2.5
    assert cfg.order_uid_strict is True
    assert cfg.process_failure_policy == "block"
    assert cfg.log_level == "DEBUG"


def test_blank_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("RABBIT_URL", "   ")
    assert load_settings().rabbit_url == Settings.rabbit_url


@pytest.mark.parametrize(
    "name, value",
    [
        ("SERVER_PORT", "eighty"),
        ("CACHE_TTL_SECONDS", "0"),
        ("CACHE_CLEANUP_SECONDS", "-1"),
        ("PROCESS_FAILURE_POLICY", "retry_forever"),
        ("DB_POOL_MIN", "0"),
        ("ORDER_UID_LENGTH", "0"),
    ],
)
def test_invalid_values_raise(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigError):
        load_settings()


def test_pool_max_below_min(monkeypatch):
    monkeypatch.setenv("DB_POOL_MIN", "5")
    monkeypatch.setenv("DB_POOL_MAX", "2")
    with pytest.raises(ConfigError):
        load_settings()
