"""
MNEMOS Key Field Eviction Policy

Size bound and recency tracking for key field caches. Once keys are sets of
element identities, the store's physical order says nothing useful about
recency, so the store is left unbounded and this policy enforces the bound
with its own bookkeeping:

    usage_counter   monotonically increasing, advanced on every hit/insert
    last_access     key hash -> usage_counter at the last touch

Each call stages a KeyAccess (hash of the normalized key plus whatever
last_access held for it) before the store acts, and hands it to the store
call; the hit/add handlers consume it from the event. Nothing is kept in a
shared slot between the two phases.

Eviction on insert, while the store is over the bound:

    - skip the entry just inserted
    - new key (no previous access):   evict the LOWEST last_access
    - known key (previous access):    evict the HIGHEST last_access
    - nothing eligible: stop

The second rule keeps a replayed insert of an old key from pushing out the
entries that were touched most recently before it.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Optional

from mnemos.keys import Key, key_hash
from mnemos.observability import MnemosLayer, get_logger
from mnemos.store import CacheEvent

logger = get_logger("eviction", MnemosLayer.EVICTION)


@dataclass(frozen=True)
class KeyAccess:
    """Hash of a normalized key and its recency before this call."""
    hash: str
    previous_access: Optional[int] = None

    @property
    def is_new(self) -> bool:
        return self.previous_access is None


@dataclass
class KeyFieldState:
    """Recency bookkeeping for one memoized function."""
    enabled: bool = True
    max_size: Optional[int] = None
    usage_counter: int = 0
    last_access: Dict[str, int] = field(default_factory=dict)

    @property
    def max_size_defined(self) -> bool:
        return self.max_size is not None


def should_replace_candidate(
    previous_access: Optional[int],
    access: int,
    candidate_access: int,
) -> bool:
    """Asymmetric tie-break: LRU for new keys, MRU for re-inserted keys."""
    if previous_access is None:
        return access < candidate_access
    return access > candidate_access


class KeyFieldEvictionPolicy:
    """
    Key field recency tracking and size enforcement.

    Example:
        policy = KeyFieldEvictionPolicy(max_size=2)
        access = policy.stage(key)       # before the store acts
        ... store.lookup(key, access) / store.insert(key, value, access)
    """

    def __init__(self, max_size: Optional[float] = None):
        bound = int(max_size) if max_size is not None and math.isfinite(max_size) else None
        self.state = KeyFieldState(max_size=bound)

    @property
    def max_size(self) -> Optional[int]:
        return self.state.max_size

    def stage(self, key: Key) -> KeyAccess:
        """Compute the access record for a key about to be looked up."""
        hashed = key_hash(key)
        return KeyAccess(hash=hashed, previous_access=self.state.last_access.get(hashed))

    def last_access(self, key: Key) -> Optional[int]:
        return self.state.last_access.get(key_hash(key))

    def _touch(self, hashed: str) -> None:
        self.state.usage_counter += 1
        self.state.last_access[hashed] = self.state.usage_counter

    def refresh(self, stored_key: Key) -> None:
        """Mark a stored key as just used (value replaced in place)."""
        self._touch(key_hash(stored_key))

    def on_hit(self, event: CacheEvent) -> None:
        if event.access is None:
            return
        # Recency belongs to the stored key, which may differ in form from the caller's.
        self._touch(key_hash(event.key))

    def on_add(self, event: CacheEvent) -> None:
        if event.access is None:
            return
        self._touch(event.access.hash)

        # A bound of 0 means "not enforced", as does no bound at all.
        if not self.state.max_size_defined or not self.state.max_size:
            return

        self._enforce_max_size(event, event.access, self.state.max_size)

    def _enforce_max_size(self, event: CacheEvent, access: KeyAccess, bound: int) -> None:
        while True:
            snapshot = event.snapshot()
            if snapshot.size <= bound:
                return

            candidate_index = -1
            candidate_access = 0

            for index, cache_key in enumerate(snapshot.keys):
                if cache_key is event.key:
                    continue

                entry_access = self.state.last_access.get(key_hash(cache_key), 0)

                if candidate_index == -1 or should_replace_candidate(
                    access.previous_access, entry_access, candidate_access
                ):
                    candidate_index = index
                    candidate_access = entry_access

            if candidate_index == -1:
                return

            event.remove_at(candidate_index)
            logger.debug(
                "Evicted key field entry",
                operation="evict",
                recency=candidate_access,
                new_key=access.is_new,
                size=snapshot.size - 1,
                bound=bound,
            )

    def reset(self) -> None:
        """Forget all recency (cache-wide clear)."""
        self.state.usage_counter = 0
        self.state.last_access.clear()
