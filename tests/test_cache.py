import threading

import pytest

from orderstream.cache import ReadWriteLock, TTLCache

from conftest import make_order


@pytest.fixture()
def cache(clock):
    return TTLCache(ttl=60, clock=clock)


class TestTTLCache:
    def test_get_miss(self, cache):
        assert cache.get("missing") == (None, False)

    def test_set_then_get(self, cache, order):
        cache.set(order)
        got, found = cache.get(order.order_uid)
        assert found
        assert got == order

    def test_entries_are_isolated_from_callers(self, cache):
        original = make_order(price=100)
        cache.set(original)
        original.items[0].price = 1

        got, _ = cache.get("b563feb7b2b84b6test")
        assert got.items[0].price == 100
        got.items[0].price = 2
        cache.get_all()[0].items[0].price = 3

        bulk = make_order(uid="bulk", price=100)
        cache.load_from_slice([bulk])
        bulk.items[0].price = 4

        assert cache.get("b563feb7b2b84b6test")[0].items[0].price == 100
        assert cache.get("bulk")[0].items[0].price == 100

    def test_set_overwrites_and_refreshes_expiry(self, cache, clock):
        cache.set(make_order(price=1))
        clock.advance(50)
        cache.set(make_order(price=2))
        clock.advance(50)
        got, found = cache.get("b563feb7b2b84b6test")
        assert found
        assert got.items[0].price == 2

    def test_expired_entry_is_absent_before_cleanup(self, cache, clock, order):
        cache.set(order)
        clock.advance(61)
        assert cache.get(order.order_uid) == (None, False)
        assert cache.size() == 0
        assert cache.get_all() == []
        # lazy: still held until swept
        assert len(cache) == 1

    def test_cleanup_removes_expired_only(self, cache, clock):
        cache.set(make_order(uid="old"))
        clock.advance(40)
        cache.set(make_order(uid="new"))
        clock.advance(30)

        size_before = cache.size()
        assert cache.cleanup() == 1
        assert cache.size() == size_before == 1
        assert len(cache) == 1
        assert cache.get("new")[1]

    def test_entry_valid_at_exact_expiry(self, cache, clock, order):
        cache.set(order)
        clock.advance(60)
        assert cache.get(order.order_uid)[1]

    def test_load_from_slice(self, cache):
        cache.load_from_slice([make_order(uid=f"uid{i}") for i in range(100)])
        assert cache.size() == 100
        assert {o.order_uid for o in cache.get_all()} == {f"uid{i}" for i in range(100)}

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            TTLCache(ttl=0)

    def test_concurrent_readers_and_writers(self):
        cache = TTLCache(ttl=60)
        errors = []

        def writer(n):
            try:
                for i in range(200):
                    cache.set(make_order(uid=f"w{n}-{i}"))
            except Exception as e:
                errors.append(e)

        def reader():
            try:
                for _ in range(200):
                    cache.get_all()
                    cache.size()
                    cache.get("w0-0")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        threads += [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert not errors
        assert cache.size() == 800


class TestReadWriteLock:
    def test_readers_share(self):
        lock = ReadWriteLock()
        inside = threading.Barrier(2, timeout=5)

        def read():
            with lock.read():
                inside.wait()

        threads = [threading.Thread(target=read) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        assert not inside.broken

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        acquired = threading.Event()

        lock.acquire_write()
        t = threading.Thread(target=lambda: (lock.acquire_read(), acquired.set(), lock.release_read()))
        t.start()
        assert not acquired.wait(0.1)
        lock.release_write()
        assert acquired.wait(5)
        t.join(5)
