from __future__ import annotations

import hashlib
import json
import os
import threading
import time
from collections import OrderedDict
from typing import Any, Callable

from backend.chart_models import BirthDetails


def _env_positive_int(name: str, default: int) -> int:
    try:
        return max(1, int(os.getenv(name, str(default))))
    except (TypeError, ValueError):
        return default


def reading_cache_key(birth: BirthDetails) -> str:
    """Stable key for a kundli request; whitespace and case in names do not split entries."""
    material = {
        "name": birth.name.casefold(),
        "date": birth.birth_date,
        "time": birth.birth_time,
        "place": birth.birth_place.casefold(),
        "question": (birth.question or "").strip(),
    }
    digest = hashlib.sha256(
        json.dumps(material, ensure_ascii=False, sort_keys=True, separators=(",", ":")).encode("utf-8")
    ).hexdigest()
    return f"kundli:{digest}"


class ReadingCache:
    """Bounded LRU of oracle answers with a per-entry TTL.

    Readings are expensive remote calls; a repeated request for the same
    birth details is answered from memory until the entry expires or is evicted.
    """

    def __init__(
        self,
        max_items: int | None = None,
        default_ttl: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._max_items = max(1, max_items) if max_items is not None else _env_positive_int("ORACLE_CACHE_MAX_ITEMS", 512)
        self._default_ttl = default_ttl if default_ttl is not None else _env_positive_int("AI_CACHE_TTL", 1800)
        self._clock = clock
        self._entries: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    @property
    def max_items(self) -> int:
        return self._max_items

    def _drop_expired_unlocked(self) -> None:
        now = self._clock()
        for key in [k for k, (_v, expires_at) in self._entries.items() if expires_at <= now]:
            del self._entries[key]

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[1] <= self._clock():
                self._entries.pop(key, None)
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return entry[0]

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        seconds = self._default_ttl if ttl is None else ttl
        if seconds <= 0:
            return
        with self._lock:
            self._drop_expired_unlocked()
            self._entries[key] = (value, self._clock() + float(seconds))
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_items:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> dict[str, int]:
        with self._lock:
            self._drop_expired_unlocked()
            return {
                "items": len(self._entries),
                "max_items": self._max_items,
                "hits": self.hits,
                "misses": self.misses,
            }

    def __len__(self) -> int:
        with self._lock:
            self._drop_expired_unlocked()
            return len(self._entries)


cache = ReadingCache()
