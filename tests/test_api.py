import pytest
from fastapi.testclient import TestClient

from orderstream.api import create_app
from orderstream.cache import TTLCache
from orderstream.errors import StoreError
from orderstream.service import OrderService

from conftest import FakeStore, make_order


@pytest.fixture()
def service(metrics):
    store = FakeStore([make_order()])
    svc = OrderService(store, store, TTLCache(ttl=60), metrics=metrics, cleanup_interval=3600)
    yield svc
    svc.close()


@pytest.fixture()
def client(service, metrics):
    return TestClient(create_app(service, metrics=metrics))


def test_get_order(client):
    response = client.get("/order/b563feb7b2b84b6test")
    assert response.status_code == 200
    data = response.json()
    assert data["order_uid"] == "b563feb7b2b84b6test"
    assert data["items"][0]["price"] == 453
    assert data["delivery"]["email"] == "test@gmail.com"


def test_missing_order_is_404(client):
    response = client.get("/order/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {"detail": "order not found"}


def test_store_error_is_500(client, service):
    def broken(uid):
        raise StoreError("get_order", "db down", uid)

    service.reader.get_order = broken
    response = client.get("/order/other")
    assert response.status_code == 500
    assert response.json() == {"detail": "internal error"}


def test_health(client):
    data = client.get("/health").json()
    assert data["status"] == "healthy"
    assert data["timestamp"]


def test_stats_reflect_requests(client):
    client.get("/order/b563feb7b2b84b6test")
    data = client.get("/stats").json()
    assert data["cache_size"] == 1
    assert data["last_request_time"] is not None


def test_metrics_snapshot(client):
    client.get("/order/b563feb7b2b84b6test")
    data = client.get("/metrics").json()
    assert data["counters"]['http_requests_total{route="/order"}'] == 1
    assert "cache_misses_total" in data["counters"]


def test_static_files_served_when_present(service, tmp_path):
    (tmp_path / "index.html").write_text("<h1>orders</h1>")
    client = TestClient(create_app(service, static_dir=str(tmp_path)))

    assert "orders" in client.get("/").text
    assert client.get("/health").status_code == 200


def test_missing_static_dir_is_ignored(service, tmp_path):
    client = TestClient(create_app(service, static_dir=str(tmp_path / "nope")))
    assert client.get("/health").status_code == 200
