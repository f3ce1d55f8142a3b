"""
MNEMOS Memo Store

The ordered key/value store the policy engine drives. Entries live in two
parallel lists, most recently used first; lookups are linear scans through
the configured comparison, which is what allows keys to be compared by
deep, shallow or custom equality instead of by hash.

Lifecycle handlers are ordered lists invoked synchronously:

    on_add      after a miss inserted a new entry
    on_hit      after a lookup found an entry (entry already at the front)
    on_change   after any change to key order or membership
    on_evict    listeners told about every (key, value) leaving the store,
                except on clear()

Each handler receives a CacheEvent carrying the affected key, the staged
KeyAccess of the call, and removal-by-index as its only mutating action.
A failing handler is reported through on_error and never interrupts the
remaining handlers or the call.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Tuple

from mnemos.equality import IsEqual, IsMatchingKey, keys_match, same_value_zero
from mnemos.keys import Key
from mnemos.observability import MnemosLayer, get_logger

if TYPE_CHECKING:
    from mnemos.eviction import KeyAccess

logger = get_logger("store", MnemosLayer.STORE)


@dataclass(frozen=True)
class CacheSnapshot:
    """Immutable view of the store contents."""
    keys: Tuple[Key, ...]
    values: Tuple[Any, ...]

    @property
    def size(self) -> int:
        return len(self.keys)


@dataclass(frozen=True)
class CacheEvent:
    """What a lifecycle handler sees."""
    store: "MemoStore"
    key: Optional[Key] = None
    value: Any = None
    access: Optional["KeyAccess"] = None
    memoized: Any = None

    def snapshot(self) -> CacheSnapshot:
        """Current contents (taken at call time, not at event creation)."""
        return self.store.snapshot()

    def remove_at(self, index: int) -> Tuple[Key, Any]:
        """Remove the entry at index; the only mutation handlers may request."""
        return self.store.remove_at(index, memoized=self.memoized)


CacheHandler = Callable[[CacheEvent], None]
EvictListener = Callable[[Key, Any], None]
ErrorHandler = Callable[[Exception, str], None]


@dataclass
class StoreHandlers:
    """Ordered handler lists for one store."""
    on_add: List[CacheHandler] = field(default_factory=list)
    on_hit: List[CacheHandler] = field(default_factory=list)
    on_change: List[CacheHandler] = field(default_factory=list)
    on_evict: List[EvictListener] = field(default_factory=list)


class MemoStore:
    """
    Ordered, capacity-bounded store with pluggable key comparison.

    Example:
        store = MemoStore(max_size=2)
        store.insert(("a",), 1)
        store.insert(("b",), 2)
        store.insert(("c",), 3)      # ("a",) falls off the end
        store.keys                   # (("c",), ("b",))
    """

    def __init__(
        self,
        is_equal: IsEqual = same_value_zero,
        is_matching_key: Optional[IsMatchingKey] = None,
        max_size: float = 1,
        handlers: Optional[StoreHandlers] = None,
        on_error: Optional[ErrorHandler] = None,
    ):
        self._keys: List[Key] = []
        self._values: List[Any] = []
        self._is_equal = is_equal
        self._is_matching_key = is_matching_key
        self._max_size = max_size
        self.handlers = handlers or StoreHandlers()
        self._on_error = on_error

    @property
    def max_size(self) -> float:
        return self._max_size

    @property
    def keys(self) -> Tuple[Key, ...]:
        return tuple(self._keys)

    @property
    def values(self) -> Tuple[Any, ...]:
        return tuple(self._values)

    def __len__(self) -> int:
        return len(self._keys)

    def snapshot(self) -> CacheSnapshot:
        return CacheSnapshot(keys=tuple(self._keys), values=tuple(self._values))

    def find_index(self, key: Key) -> int:
        """Index of the entry matching key, or -1."""
        for index, cache_key in enumerate(self._keys):
            if keys_match(cache_key, key, self._is_equal, self._is_matching_key):
                return index
        return -1

    def has(self, key: Key) -> bool:
        return self.find_index(key) != -1

    def peek(self, key: Key) -> Tuple[bool, Any]:
        """Look up without reordering or firing handlers."""
        index = self.find_index(key)
        if index == -1:
            return False, None
        return True, self._values[index]

    def lookup(
        self,
        key: Key,
        access: Optional["KeyAccess"] = None,
        memoized: Any = None,
    ) -> Tuple[bool, Any]:
        """
        Look up a key as a call would.

        A hit moves the entry to the front and fires on_hit, then
        on_change if the order actually changed.
        """
        index = self.find_index(key)
        if index == -1:
            return False, None

        moved = index > 0
        if moved:
            self._move_to_front(index)

        hit_key, value = self._keys[0], self._values[0]
        event = CacheEvent(store=self, key=hit_key, value=value, access=access, memoized=memoized)
        self._fire(self.handlers.on_hit, event, "on_hit")
        if moved:
            self._fire(self.handlers.on_change, event, "on_change")

        return True, value

    def insert(
        self,
        key: Key,
        value: Any,
        access: Optional["KeyAccess"] = None,
        memoized: Any = None,
    ) -> None:
        """Insert a new entry at the front, then truncate to max_size."""
        self._keys.insert(0, key)
        self._values.insert(0, value)
        self._truncate()

        event = CacheEvent(store=self, key=key, value=value, access=access, memoized=memoized)
        self._fire(self.handlers.on_add, event, "on_add")
        self._fire(self.handlers.on_change, event, "on_change")

    def restore(self, key: Key, value: Any, memoized: Any = None) -> None:
        """Put a removed entry back at the front without firing on_add."""
        self._keys.insert(0, key)
        self._values.insert(0, value)
        self._truncate()

        event = CacheEvent(store=self, key=key, value=value, memoized=memoized)
        self._fire(self.handlers.on_change, event, "on_change")

    def update_at(self, index: int, value: Any, memoized: Any = None) -> None:
        """Replace the value at index and move the entry to the front."""
        self._values[index] = value
        if index > 0:
            self._move_to_front(index)

        event = CacheEvent(store=self, key=self._keys[0], value=value, memoized=memoized)
        self._fire(self.handlers.on_change, event, "on_change")

    def remove_at(self, index: int, memoized: Any = None) -> Tuple[Key, Any]:
        """Remove the entry at index; fires on_change and on_evict."""
        key = self._keys.pop(index)
        value = self._values.pop(index)

        event = CacheEvent(store=self, key=key, value=value, memoized=memoized)
        self._fire(self.handlers.on_change, event, "on_change")
        self._notify_evicted(key, value)

        return key, value

    def clear(self, memoized: Any = None) -> None:
        """Drop every entry. Evict listeners are not told."""
        had_entries = bool(self._keys)
        self._keys.clear()
        self._values.clear()

        if had_entries:
            self._fire(self.handlers.on_change, CacheEvent(store=self, memoized=memoized), "on_change")

    def _truncate(self) -> None:
        truncated: List[Tuple[Key, Any]] = []
        while self._keys and len(self._keys) > self._max_size:
            truncated.append((self._keys.pop(), self._values.pop()))
        for removed_key, removed_value in truncated:
            self._notify_evicted(removed_key, removed_value)

    def _move_to_front(self, index: int) -> None:
        self._keys.insert(0, self._keys.pop(index))
        self._values.insert(0, self._values.pop(index))

    def _notify_evicted(self, key: Key, value: Any) -> None:
        for listener in self.handlers.on_evict:
            try:
                listener(key, value)
            except Exception as e:
                self._report(e, "on_evict")

    def _fire(self, handlers: List[CacheHandler], event: CacheEvent, phase: str) -> None:
        for handler in list(handlers):
            try:
                handler(event)
            except Exception as e:
                self._report(e, phase)

    def _report(self, error: Exception, phase: str) -> None:
        logger.error(
            f"Cache handler failed during {phase}",
            error_code="HANDLER_FAILED",
            exc_info=True,
            operation=phase,
            error=repr(error),
        )
        if self._on_error is not None:
            try:
                self._on_error(error, phase)
            except Exception:
                logger.error("on_error callback failed", operation=phase, exc_info=True)

