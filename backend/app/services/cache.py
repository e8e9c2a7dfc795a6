import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Generic, TypeVar

V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    expires_at: float
    value: V


class TTLCache(Generic[V]):
    """LRU cache with a per-entry time to live.

    The crawler keeps about-page profiles here so that a channel surfacing in
    several searches within the TTL is only profiled once.
    """

    def __init__(self, *, max_items: int = 5000, ttl_s: float = 3600) -> None:
        self._max_items = max(1, int(max_items or 1))
        self._ttl_s = max(1.0, float(ttl_s or 1))
        self._items: "OrderedDict[str, _Entry[V]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> V | None:
        entry = self._items.get(key)
        if entry is None or entry.expires_at <= time.monotonic():
            if entry is not None:
                del self._items[key]
            self.misses += 1
            return None
        self._items.move_to_end(key)
        self.hits += 1
        return entry.value

    def set(self, key: str, value: V) -> None:
        if key in self._items:
            del self._items[key]
        while len(self._items) >= self._max_items:
            self._items.popitem(last=False)
        self._items[key] = _Entry(expires_at=time.monotonic() + self._ttl_s, value=value)

    def __len__(self) -> int:
        return len(self._items)
