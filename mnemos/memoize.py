"""
MNEMOS Memoize

The entry point. A Memoizer carries a set of options and turns functions
into Memoized wrappers; presets return new Memoizers with more options
layered on, so they chain:

    from mnemos import memoize

    @memoize
    def area(w, h): ...

    @memoize.deep.max_size(10)
    def summarize(records): ...

    @memoize.key_field("id").max_size(2).max_age(5000, update_expire=True)
    def load(users, region): ...

A Memoized call goes through these steps:

    args ──▶ normalize_call ──▶ key pipeline ──▶ normalized key
                                                     │
                               stage KeyAccess ◀─────┘
                                     │
                 store.lookup ───────┴──────── miss ──▶ fn(*args) ──▶ store.insert
                      │                                                   │
                     hit                                                  ▼
                      ▼                                         on_add handlers:
            on_hit handlers:                                      user on_cache_add
              user on_cache_hit                                   expiration schedule
              expiration renew                                    key field evict
              key field recency                                   stats (call)
              stats (call + hit)

The wrapped function runs outside the instance lock; everything touching
the store, the handlers or the timers runs inside it.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import functools
import math
import threading
import types
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from mnemos.equality import get_is_equal, get_is_matching_key, keys_match
from mnemos.eviction import KeyAccess, KeyFieldEvictionPolicy
from mnemos.expiration import Expiration, ExpirationManager, OnExpire
from mnemos.keys import Key, KeyField, Serializer, get_transform_key, normalize_call
from mnemos.observability import MnemosLayer, get_logger
from mnemos.options import DEFAULT_OPTIONS, MemoizeOptions
from mnemos.stats import StatsCollector, StatsRegistry, get_stats_registry
from mnemos.store import CacheSnapshot, MemoStore, StoreHandlers

logger = get_logger("memoize", MnemosLayer.MEMOIZE)


def is_memoized(fn: Any) -> bool:
    """Is fn a Memoized wrapper."""
    return callable(fn) and getattr(fn, "is_memoized", False) is True


class Memoized:
    """
    A memoized function.

    Besides being called, it exposes its cache:

        fn.has(args) / fn.get(args) / fn.peek(args)
        fn.add(args, value) / fn.set(args, value) / fn.update(args, value)
        fn.remove(args) / fn.clear()
        fn.keys() / fn.values() / fn.size
        fn.expirations / fn.cache_snapshot
        fn.stats() / fn.clear_stats()

    `args` is the sequence of positional arguments of the call; keyword
    arguments go in the optional `kwargs` mapping.
    """

    is_memoized = True

    def __init__(self, fn: Callable[..., Any], options: Optional[MemoizeOptions] = None):
        functools.update_wrapper(self, fn)

        self.original_function = fn
        self.options = options or DEFAULT_OPTIONS
        self.coalesced_options = coalesced = self.options.coalesce()

        self._lock = threading.RLock()
        self._transform_key = get_transform_key(coalesced)
        self._is_equal = get_is_equal(coalesced)
        self._is_matching_key = get_is_matching_key(coalesced)
        self._update_cache_for_key = coalesced.update_cache_for_key

        self._eviction: Optional[KeyFieldEvictionPolicy] = None
        if coalesced.key_field is not None:
            self._eviction = KeyFieldEvictionPolicy(coalesced.max_size)

        self._store = MemoStore(
            is_equal=self._is_equal,
            is_matching_key=self._is_matching_key,
            max_size=math.inf if self._eviction is not None else coalesced.max_size,
            on_error=coalesced.on_error,
        )

        self._expirations = ExpirationManager(
            self._store,
            max_age=coalesced.max_age,
            on_expire=coalesced.on_expire,
            update_expire=bool(coalesced.update_expire),
            matches=self._keys_match,
            timer_factory=coalesced.timer_factory,
            lock=self._lock,
            on_error=coalesced.on_error,
            memoized=self,
        )

        self._stats_registry = coalesced.stats_registry or get_stats_registry()
        self.profile_name = coalesced.profile_name or self._stats_registry.default_profile_name(fn)
        self._stats = StatsCollector(self._stats_registry, self.profile_name)

        self._wire_handlers(coalesced)

        logger.debug(
            "Memoized function created",
            operation="memoize",
            profile=self.profile_name,
            max_size=coalesced.max_size,
            max_age=coalesced.max_age,
            key_field=coalesced.key_field is not None,
        )

    def _wire_handlers(self, options: MemoizeOptions) -> None:
        handlers: StoreHandlers = self._store.handlers

        if options.on_cache_add is not None:
            handlers.on_add.append(options.on_cache_add)
        if options.on_cache_hit is not None:
            handlers.on_hit.append(options.on_cache_hit)
        if options.on_cache_change is not None:
            handlers.on_change.append(options.on_cache_change)

        if self._expirations.enabled:
            handlers.on_add.append(self._expirations.on_add)
            handlers.on_hit.append(self._expirations.on_hit)
            handlers.on_evict.append(self._expirations.on_evict)

        if self._eviction is not None:
            handlers.on_add.append(self._eviction.on_add)
            handlers.on_hit.append(self._eviction.on_hit)

        handlers.on_add.append(self._stats.on_add)
        handlers.on_hit.append(self._stats.on_hit)

    def _keys_match(self, cache_key: Key, key: Key) -> bool:
        return keys_match(cache_key, key, self._is_equal, self._is_matching_key)

    def __repr__(self) -> str:
        return f"<Memoized {self.profile_name}>"

    def __get__(self, instance: Any, owner: Any = None) -> Any:
        if instance is None:
            return self
        return types.MethodType(self, instance)

    # ── calls ─────────────────────────────────────────────────────────────

    def _key_for(self, args: Sequence[Any], kwargs: Optional[Mapping[str, Any]] = None) -> Tuple[Key, Key]:
        raw = normalize_call(args, kwargs)
        key = self._transform_key(raw) if self._transform_key is not None else raw
        return raw, key

    def _stage(self, key: Key) -> Optional[KeyAccess]:
        return self._eviction.stage(key) if self._eviction is not None else None

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        raw, key = self._key_for(args, kwargs)

        if self._update_cache_for_key is not None and self._update_cache_for_key(raw):
            value = self.original_function(*args, **kwargs)
            with self._lock:
                if self._upsert(key, value):
                    self._stats_registry.record_call(self.profile_name)
            return value

        with self._lock:
            hit, value = self._store.lookup(key, access=self._stage(key), memoized=self)
        if hit:
            return value

        value = self.original_function(*args, **kwargs)

        with self._lock:
            # Another thread may have filled the key while fn ran.
            if self._store.find_index(key) == -1:
                self._store.insert(key, value, access=self._stage(key), memoized=self)
        return value

    def _upsert(self, key: Key, value: Any) -> bool:
        """Insert or replace; True when an existing entry was replaced."""
        index = self._store.find_index(key)
        if index == -1:
            self._store.insert(key, value, access=self._stage(key), memoized=self)
            return False

        self._store.update_at(index, value, memoized=self)
        if self._eviction is not None:
            self._eviction.refresh(self._store.keys[0])
        return True

    # ── cache methods ─────────────────────────────────────────────────────

    def has(self, args: Sequence[Any], kwargs: Optional[Mapping[str, Any]] = None) -> bool:
        """Whether the call is cached."""
        _, key = self._key_for(args, kwargs)
        with self._lock:
            return self._store.has(key)

    def get(self, args: Sequence[Any], kwargs: Optional[Mapping[str, Any]] = None) -> Any:
        """Cached value for the call, or None. Counts as a hit."""
        _, key = self._key_for(args, kwargs)
        with self._lock:
            _, value = self._store.lookup(key, access=self._stage(key), memoized=self)
            return value

    def peek(self, args: Sequence[Any], kwargs: Optional[Mapping[str, Any]] = None) -> Any:
        """Cached value for the call, or None. No reordering, no handlers."""
        _, key = self._key_for(args, kwargs)
        with self._lock:
            _, value = self._store.peek(key)
            return value

    def add(self, args: Sequence[Any], value: Any, kwargs: Optional[Mapping[str, Any]] = None) -> bool:
        """Cache value for the call unless it is already cached."""
        _, key = self._key_for(args, kwargs)
        with self._lock:
            if self._store.has(key):
                return False
            self._store.insert(key, value, access=self._stage(key), memoized=self)
            return True

    def set(self, args: Sequence[Any], value: Any, kwargs: Optional[Mapping[str, Any]] = None) -> None:
        """Cache value for the call, replacing any cached value."""
        _, key = self._key_for(args, kwargs)
        with self._lock:
            self._upsert(key, value)

    def update(self, args: Sequence[Any], value: Any, kwargs: Optional[Mapping[str, Any]] = None) -> bool:
        """Replace the cached value for the call, only if it is cached."""
        _, key = self._key_for(args, kwargs)
        with self._lock:
            index = self._store.find_index(key)
            if index == -1:
                return False
            self._store.update_at(index, value, memoized=self)
            return True

    def remove(self, args: Sequence[Any], kwargs: Optional[Mapping[str, Any]] = None) -> bool:
        """Drop the cached entry for the call; its expiration is cancelled."""
        _, key = self._key_for(args, kwargs)
        with self._lock:
            index = self._store.find_index(key)
            if index == -1:
                return False
            self._store.remove_at(index, memoized=self)
            return True

    def clear(self) -> None:
        """Drop every entry, cancel every expiration and forget key field recency."""
        with self._lock:
            self._store.clear(memoized=self)
            self._expirations.clear()
            if self._eviction is not None:
                self._eviction.reset()

    # ── introspection ─────────────────────────────────────────────────────

    @property
    def size(self) -> int:
        return len(self._store)

    def __len__(self) -> int:
        return len(self._store)

    def keys(self) -> Tuple[Key, ...]:
        with self._lock:
            return self._store.keys

    def values(self) -> Tuple[Any, ...]:
        with self._lock:
            return self._store.values

    @property
    def cache_snapshot(self) -> CacheSnapshot:
        with self._lock:
            return self._store.snapshot()

    @property
    def expirations(self) -> List[Expiration]:
        with self._lock:
            return self._expirations.snapshot()

    @property
    def eviction(self) -> Optional[KeyFieldEvictionPolicy]:
        return self._eviction

    @property
    def stats_registry(self) -> StatsRegistry:
        return self._stats_registry

    def stats(self) -> Dict[str, Any]:
        return self._stats_registry.get_stats(self.profile_name)

    def clear_stats(self) -> None:
        self._stats_registry.clear(self.profile_name)

    @property
    def is_collecting_stats(self) -> bool:
        return self._stats_registry.is_collecting


class Memoizer:
    """
    Callable that memoizes functions with a fixed set of options.

    Calling forms:

        memoize(fn)                       -> Memoized
        memoize(fn, options)              -> Memoized
        memoize(fn, max_size=3)           -> Memoized
        memoize(options) / memoize(max_size=3) / memoize()
                                          -> Memoizer (use as decorator)
        memoize(memoized_fn, ...)         -> Memoized of the original
                                             function with merged options
    """

    def __init__(self, options: Optional[MemoizeOptions] = None):
        self.options = options or DEFAULT_OPTIONS

    def __repr__(self) -> str:
        return f"Memoizer({self.options.explicit()!r})"

    def __call__(
        self,
        fn: Any = None,
        options: Optional[MemoizeOptions] = None,
        **option_fields: Any,
    ) -> Any:
        if isinstance(fn, MemoizeOptions):
            fn, options = None, fn.merge(options)

        merged = self.options.merge(options)
        if option_fields:
            merged = merged.merge(MemoizeOptions(**option_fields))

        if fn is None:
            return Memoizer(merged)

        if is_memoized(fn):
            return Memoized(fn.original_function, fn.options.merge(merged))

        if not callable(fn):
            raise TypeError(f"memoize expects a callable or MemoizeOptions, got {type(fn).__name__}")

        return Memoized(fn, merged)

    def _with(self, **option_fields: Any) -> "Memoizer":
        return Memoizer(self.options.merge(MemoizeOptions(**option_fields)))

    # ── presets ───────────────────────────────────────────────────────────

    @property
    def deep(self) -> "Memoizer":
        return self._with(is_deep_equal=True)

    @property
    def shallow(self) -> "Memoizer":
        return self._with(is_shallow_equal=True)

    @property
    def infinite(self) -> "Memoizer":
        return self._with(max_size=math.inf)

    @property
    def serialize(self) -> "Memoizer":
        return self._with(is_serialized=True)

    def key_field(self, key_field: KeyField) -> "Memoizer":
        return self._with(key_field=key_field)

    def max_age(
        self,
        max_age: float,
        update_expire: Optional[bool] = None,
        on_expire: Optional[OnExpire] = None,
    ) -> "Memoizer":
        return self._with(max_age=max_age, update_expire=update_expire, on_expire=on_expire)

    def max_args(self, max_args: int) -> "Memoizer":
        return self._with(max_args=max_args)

    def max_size(self, max_size: float) -> "Memoizer":
        return self._with(max_size=max_size)

    def profile(self, profile_name: str) -> "Memoizer":
        return self._with(profile_name=profile_name)

    def serialize_with(self, serializer: Serializer) -> "Memoizer":
        return self._with(is_serialized=True, serializer=serializer)

    def matches_arg(self, matches_arg: Callable[[Any, Any], bool]) -> "Memoizer":
        return self._with(matches_arg=matches_arg)

    def matches_key(self, matches_key: Callable[[Key, Key], bool]) -> "Memoizer":
        return self._with(matches_key=matches_key)

    def transform_args(self, transform_args: Callable[[Key], Sequence[Any]]) -> "Memoizer":
        return self._with(transform_args=transform_args)

    def update_cache_for_key(self, update_cache_for_key: Callable[[Key], Any]) -> "Memoizer":
        return self._with(update_cache_for_key=update_cache_for_key)

    def compose(self, *memoizers: "Memoizer") -> "Memoizer":
        """Merge the options of several memoizers, left to right."""
        options = self.options
        for memoizer in memoizers:
            options = options.merge(memoizer.options)
        return Memoizer(options)

    # ── stats and helpers ─────────────────────────────────────────────────

    @staticmethod
    def is_memoized(fn: Any) -> bool:
        return is_memoized(fn)

    def _registry(self) -> StatsRegistry:
        return self.options.stats_registry or get_stats_registry()

    def collect_stats(self, enabled: bool = True) -> None:
        self._registry().collect(enabled)

    def clear_stats(self, profile_name: Optional[str] = None) -> None:
        self._registry().clear(profile_name)

    def get_stats(self, profile_name: Optional[str] = None) -> Dict[str, Any]:
        return self._registry().get_stats(profile_name)

    def is_collecting_stats(self) -> bool:
        return self._registry().is_collecting


memoize = Memoizer()
