"""
Tests for the item state cache.
"""
import math
import threading

from buspoll.services.binding.bindings import UNDEF
from buspoll.services.binding.cache import PropertyCache


class TestPutIfChanged:

    def test_first_value_is_stored(self):
        cache = PropertyCache()
        assert cache.put_if_changed("temp1", 21.5) is True
        assert cache.get("temp1") == 21.5

    def test_unchanged_value_is_suppressed(self):
        cache = PropertyCache()
        cache.put_if_changed("temp1", 21.5)
        assert cache.put_if_changed("temp1", 21.5) is False

    def test_changed_value_replaces_cached_state(self):
        cache = PropertyCache()
        cache.put_if_changed("temp1", 21.5)
        assert cache.put_if_changed("temp1", 22.0) is True
        assert cache.get("temp1") == 22.0

    def test_suppression_disabled_always_stores(self):
        cache = PropertyCache(post_only_changed_values=False)
        cache.put_if_changed("temp1", 21.5)
        assert cache.put_if_changed("temp1", 21.5) is True

    def test_custom_equality(self):
        cache = PropertyCache()
        cache.put_if_changed("temp1", 21.5)
        close = lambda a, b: math.isclose(a, b, abs_tol=0.1)

        assert cache.put_if_changed("temp1", 21.55, equals=close) is False
        assert cache.put_if_changed("temp1", 22.0, equals=close) is True

    def test_items_are_independent(self):
        cache = PropertyCache()
        cache.put_if_changed("a", 1)
        assert cache.put_if_changed("b", 1) is True


class TestPutAndRemove:

    def test_put_overwrites_without_comparison(self):
        cache = PropertyCache()
        cache.put("temp1", UNDEF)
        cache.put("temp1", UNDEF)
        assert cache.get("temp1") is UNDEF

    def test_undef_then_value_is_a_change(self):
        cache = PropertyCache()
        cache.put("temp1", UNDEF)
        assert cache.put_if_changed("temp1", 21.5) is True

    def test_remove_forgets_state(self):
        cache = PropertyCache()
        cache.put_if_changed("temp1", 21.5)
        cache.remove("temp1")

        assert "temp1" not in cache
        assert cache.put_if_changed("temp1", 21.5) is True

    def test_remove_missing_item_is_noop(self):
        cache = PropertyCache()
        cache.remove("nothing")
        assert len(cache) == 0

    def test_clear(self):
        cache = PropertyCache()
        cache.put("a", 1)
        cache.put("b", 2)
        cache.clear()

        assert len(cache) == 0
        assert cache.get("a", "missing") == "missing"


class TestConcurrency:

    def test_concurrent_identical_updates_store_once(self):
        cache = PropertyCache()
        results: list[bool] = []
        lock = threading.Lock()
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            stored = cache.put_if_changed("temp1", 42)
            with lock:
                results.append(stored)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert cache.get("temp1") == 42

    def test_concurrent_updates_while_removing(self):
        cache = PropertyCache()
        barrier = threading.Barrier(4)

        def writer():
            barrier.wait()
            for i in range(200):
                cache.put_if_changed("temp1", i)

        def remover():
            barrier.wait()
            for _ in range(200):
                cache.remove("temp1")

        threads = [threading.Thread(target=writer) for _ in range(3)]
        threads.append(threading.Thread(target=remover))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        cache.remove("temp1")
        assert "temp1" not in cache
        assert cache._item_locks == {}


class TestLockPruning:

    def test_remove_drops_item_lock(self):
        cache = PropertyCache()
        for i in range(100):
            cache.put_if_changed(f"ghost{i}", i)
        for i in range(100):
            cache.remove(f"ghost{i}")

        assert cache._item_locks == {}

    def test_clear_drops_item_locks(self):
        cache = PropertyCache()
        cache.put("a", 1)
        cache.put("b", UNDEF)
        cache.clear()

        assert cache._item_locks == {}

    def test_item_usable_after_its_lock_was_dropped(self):
        cache = PropertyCache()
        cache.put_if_changed("temp1", 1)
        cache.remove("temp1")

        assert cache.put_if_changed("temp1", 1) is True
        assert cache.put_if_changed("temp1", 1) is False
