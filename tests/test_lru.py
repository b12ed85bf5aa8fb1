"""Tests for the LRU cache."""

import threading

from arxivcache.utils.lru import DEFAULT_CAPACITY, LRUCache


def test_evicts_least_recently_inserted():
    cache = LRUCache(3)
    for key in "ABCD":
        cache.put(key, key.lower())

    assert cache.get("A") == (None, False)
    assert len(cache) == 3


def test_get_promotes_entry():
    cache = LRUCache(3)
    for key in "ABCD":
        cache.put(key, key)

    assert cache.get("B") == ("B", True)
    cache.put("E", "E")

    assert "C" not in cache
    assert "B" in cache
    assert "D" in cache
    assert "E" in cache


def test_put_existing_key_refreshes_without_eviction():
    cache = LRUCache(2)
    cache.put("A", 1)
    cache.put("B", 2)
    cache.put("A", 3)
    cache.put("C", 4)

    assert cache.get("A") == (3, True)
    assert cache.get("B") == (None, False)


def test_none_value_is_a_hit():
    cache = LRUCache(2)
    cache.put("A", None)
    assert cache.get("A") == (None, True)


def test_delete_and_clear():
    cache = LRUCache(5)
    cache.put("A", 1)
    cache.put("B", 2)
    cache.delete("A")
    cache.delete("missing")
    assert cache.size() == 1
    cache.clear()
    assert cache.size() == 0


def test_non_positive_capacity_uses_default():
    assert LRUCache(0).capacity == DEFAULT_CAPACITY


def test_concurrent_puts_respect_capacity():
    cache = LRUCache(50)

    def worker(offset):
        for i in range(200):
            cache.put(offset * 1000 + i, i)
            cache.get(offset * 1000 + i // 2)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache) == 50
