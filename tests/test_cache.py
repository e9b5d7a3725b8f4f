import pytest

from obscura.core.cache import ResultCache, make_cache_key


def test_capacity_evicts_oldest_insertion():
    cache = ResultCache(capacity=2)
    cache.put("first", 1)
    cache.put("second", 2)
    cache.put("third", 3)

    assert "first" not in cache
    assert cache.get("first") is None
    assert cache.get("second") == 2
    assert cache.get("third") == 3
    assert len(cache) == 2


def test_get_returns_the_stored_object():
    cache = ResultCache()
    value = {"code": "x"}
    cache.put("key", value)
    assert cache.get("key") is value


def test_reinserting_a_key_does_not_evict():
    cache = ResultCache(capacity=2)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.put("a", 10)
    assert cache.get("a") == 10
    assert cache.get("b") == 2


def test_stats_and_clear():
    cache = ResultCache(capacity=3)
    cache.put("a", 1)
    cache.get("a")
    cache.get("missing")
    assert cache.stats() == {"size": 1, "capacity": 3, "hits": 1, "misses": 1}

    cache.clear()
    assert len(cache) == 0
    assert cache.stats()["hits"] == 0


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        ResultCache(capacity=0)


def test_cache_key_depends_on_code_and_options():
    base = make_cache_key("var a;", {"auto": True})
    assert base == make_cache_key("var a;", {"auto": True})
    assert base != make_cache_key("var b;", {"auto": True})
    assert base != make_cache_key("var a;", {"auto": False})
