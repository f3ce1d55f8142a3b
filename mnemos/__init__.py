"""
MNEMOS — Memoization Policy Engine

Decides, for every call of a memoized function, which cache key to use, how
two keys are judged equal, when an entry expires, and which entry to evict.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                            MEMOIZE                                       │
    │    memoize.py       Memoizer presets and the Memoized wrapper           │
    │    options.py       Layered options and their normalization             │
    │                                                                          │
    │  POLICIES                                                                │
    │    keys.py          Argument -> key pipeline, key field transform       │
    │    equality.py      Argument equality and whole-key matching            │
    │    expiration.py    Per-entry time-to-live timers                       │
    │    eviction.py      Key field recency and size bound                    │
    │    stats.py         Per-profile call and hit counters                   │
    │                                                                          │
    │  STORE                                                                   │
    │    store.py         Ordered key/value store with lifecycle handlers     │
    │                                                                          │
    │  AMBIENT                                                                 │
    │    config.py        YAML and environment configuration                  │
    │    observability.py Structured JSON logging                             │
    └─────────────────────────────────────────────────────────────────────────┘

Key Field Caches
────────────────

    A key field cache keys its first argument, a collection of records, by
    the set of record identities instead of by the collection itself:

        @memoize.key_field("id").max_size(2)
        def load(users): ...

        load([{"id": "a"}, {"id": "b"}])
        load([{"id": "b"}, {"id": "a"}])     # hit: same identities

    Recency is tracked per key hash, independent of store order, and the
    size bound evicts the least recently touched identity set.

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.1.0"

# Bound eagerly so the `memoize` name resolves to the Memoizer rather than
# to the mnemos.memoize submodule.
from mnemos.memoize import Memoized, Memoizer, is_memoized, memoize  # noqa: E402


# Lazy imports for everything else
def __getattr__(name):
    """Lazy import MNEMOS components on first access."""

    if name in ("MemoizeOptions", "DEFAULT_OPTIONS"):
        from mnemos import options
        return getattr(options, name)

    if name in ("StatsRegistry", "StatsCollector", "ProfileStats", "get_stats_registry",
                "collect_stats", "clear_stats", "get_stats", "is_collecting_stats"):
        from mnemos import stats
        return getattr(stats, name)

    if name in ("KWARGS_MARK", "normalize_call", "key_hash", "default_argument_serializer",
                "create_key_field_transform", "compare_identities", "get_transform_key"):
        from mnemos import keys
        return getattr(keys, name)

    if name in ("ArgEquality", "KeyMatching", "same_value_zero", "shallow_equal",
                "deep_equal", "get_is_equal", "get_is_matching_key"):
        from mnemos import equality
        return getattr(equality, name)

    if name in ("ExpirationManager", "ExpirationState", "Expiration",
                "ExpirationCallbackError"):
        from mnemos import expiration
        return getattr(expiration, name)

    if name in ("KeyFieldEvictionPolicy", "KeyAccess", "KeyFieldState"):
        from mnemos import eviction
        return getattr(eviction, name)

    if name in ("MemoStore", "CacheEvent", "CacheSnapshot", "StoreHandlers"):
        from mnemos import store
        return getattr(store, name)

    if name in ("MnemosError", "ConfigError", "ValidationError", "ConfigManager",
                "get_config", "get_config_manager"):
        from mnemos import config
        return getattr(config, name)

    if name in ("MnemosLogger", "MnemosLayer", "get_logger"):
        from mnemos import observability
        return getattr(observability, name)

    raise AttributeError(f"module 'mnemos' has no attribute {name!r}")


__all__ = [
    "__version__",
    "memoize",
    "Memoizer",
    "Memoized",
    "is_memoized",
    "MemoizeOptions",
    "StatsRegistry",
    "get_stats",
    "collect_stats",
    "clear_stats",
    "is_collecting_stats",
    "MnemosError",
    "ConfigError",
]
