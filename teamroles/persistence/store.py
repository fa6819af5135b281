"""
In-memory keyed store. One instance per entity kind, owned by Stores.
Insertion order is preserved, so list() returns records in creation order.
"""
from __future__ import annotations

import threading
from typing import Callable, Generic, Iterator, TypeVar

T = TypeVar("T")


class InMemoryStore(Generic[T]):
    """Dict-backed store. No durability; contents live as long as the process."""

    def __init__(self) -> None:
        self._items: dict[str, T] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> T | None:
        with self._lock:
            return self._items.get(key)

    def put(self, key: str, item: T) -> T:
        with self._lock:
            self._items[key] = item
            return item

    def list(self, predicate: Callable[[T], bool] | None = None) -> list[T]:
        with self._lock:
            items = list(self._items.values())
        if predicate is None:
            return items
        return [i for i in items if predicate(i)]

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())
