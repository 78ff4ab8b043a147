from __future__ import annotations

import unittest
from unittest.mock import patch

from backend.cache_manager import ReadingCache, reading_cache_key
from backend.chart_models import BirthDetails


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestReadingCache(unittest.TestCase):
    def test_ttl_expiry(self) -> None:
        clock = _Clock()
        cache = ReadingCache(max_items=10, default_ttl=60, clock=clock)
        cache.set("k", "v", ttl=1)
        self.assertEqual(cache.get("k"), "v")
        clock.now += 1.5
        self.assertIsNone(cache.get("k"))

    def test_default_ttl_applies(self) -> None:
        clock = _Clock()
        cache = ReadingCache(max_items=10, default_ttl=30, clock=clock)
        cache.set("k", "v")
        clock.now += 29
        self.assertEqual(cache.get("k"), "v")
        clock.now += 2
        self.assertIsNone(cache.get("k"))

    def test_non_positive_ttl_is_not_stored(self) -> None:
        cache = ReadingCache(max_items=10, default_ttl=30)
        cache.set("k", "v", ttl=0)
        self.assertEqual(len(cache), 0)

    def test_lru_eviction_when_capacity_exceeded(self) -> None:
        cache = ReadingCache(max_items=2, default_ttl=60)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        self.assertIsNone(cache.get("a"))
        self.assertEqual(cache.get("b"), 2)
        self.assertEqual(cache.get("c"), 3)

    def test_get_refreshes_lru_order(self) -> None:
        cache = ReadingCache(max_items=2, default_ttl=60)
        cache.set("a", 1)
        cache.set("b", 2)
        _ = cache.get("a")
        cache.set("c", 3)
        self.assertEqual(cache.get("a"), 1)
        self.assertIsNone(cache.get("b"))

    def test_stats_and_clear(self) -> None:
        cache = ReadingCache(max_items=4, default_ttl=60)
        cache.set("a", 1)
        cache.get("a")
        cache.get("missing")
        self.assertEqual(cache.stats(), {"items": 1, "max_items": 4, "hits": 1, "misses": 1})
        cache.clear()
        self.assertEqual(cache.stats()["items"], 0)
        self.assertEqual(cache.hits, 0)

    def test_max_items_from_env(self) -> None:
        with patch.dict("os.environ", {"ORACLE_CACHE_MAX_ITEMS": "7"}):
            self.assertEqual(ReadingCache().max_items, 7)
        with patch.dict("os.environ", {"ORACLE_CACHE_MAX_ITEMS": "not-a-number"}):
            self.assertEqual(ReadingCache().max_items, 512)


class TestReadingCacheKey(unittest.TestCase):
    def test_key_ignores_case_and_whitespace(self) -> None:
        a = BirthDetails(name="Asha", birth_date="1990-01-01", birth_time="06:30", birth_place="Pune, India")
        b = BirthDetails(name="  asha ", birth_date="1990-01-01", birth_time="06:30", birth_place="PUNE, India")
        self.assertEqual(reading_cache_key(a), reading_cache_key(b))

    def test_question_changes_key(self) -> None:
        base = dict(name="Asha", birth_date="1990-01-01", birth_time="06:30", birth_place="Pune")
        self.assertNotEqual(
            reading_cache_key(BirthDetails(**base)),
            reading_cache_key(BirthDetails(**base, question="Career?")),
        )
        self.assertTrue(reading_cache_key(BirthDetails(**base)).startswith("kundli:"))


if __name__ == "__main__":
    unittest.main()
