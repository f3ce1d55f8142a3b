"""
MNEMOS Expiration Manager

Time-to-live for memoized entries. Every entry inserted while a finite
max_age is configured gets one Expiration, driven by a timer:

    NO_EXPIRATION ──insert──▶ SCHEDULED ──timer──▶ FIRED
                                  │
                                  └──removal / clear──▶ CANCELLED

    update_expire=True    every hit on the key restarts its timer (sliding)
    update_expire=False   the timer runs once from insertion (fixed)

A renewal replaces the timer; a callback from a replaced timer that was
already waiting for the lock does nothing.

When a timer fires, the entry is removed from the store first and on_expire
is called with its key afterwards. A truthy return keeps the entry: it is
put back at the front of the store and a fresh timer is started. An
exception from on_expire is reported and the removal stands.

Any other removal (truncation, key field eviction, manual remove) reaches
cancel() synchronously through the store's evict listeners, so a stale
timer can never remove a later entry that happens to reuse the same key.

Timers fire on their own threads; the fire path takes the owning memoized
function's lock before touching the store.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import math
import threading
from contextlib import nullcontext
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ContextManager, List, Optional, Protocol

from mnemos.config import MnemosError
from mnemos.keys import Key
from mnemos.observability import MnemosLayer, get_logger
from mnemos.store import CacheEvent, ErrorHandler, MemoStore

logger = get_logger("expiration", MnemosLayer.EXPIRATION)

OnExpire = Callable[[Key], Any]
KeyMatcher = Callable[[Key, Key], bool]


class TimerHandle(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def thread_timer(interval_seconds: float, callback: Callable[[], None]) -> TimerHandle:
    """Daemon threading.Timer; the default timer factory."""
    timer = threading.Timer(interval_seconds, callback)
    timer.daemon = True
    return timer


class ExpirationState(Enum):
    """Lifecycle of one entry's expiration."""
    NO_EXPIRATION = "no_expiration"
    SCHEDULED = "scheduled"
    FIRED = "fired"
    CANCELLED = "cancelled"


class ExpirationCallbackError(MnemosError):
    """An on_expire callback raised."""
    def __init__(self, key: Key, cause: Exception):
        self.key = key
        self.cause = cause
        super().__init__(f"on_expire failed for key {key!r}: {cause!r}")


@dataclass
class Expiration:
    """Live expiration for one stored key."""
    key: Key
    max_age: float
    on_expire: Optional[OnExpire] = None
    update_expire: bool = False
    timer: Optional[TimerHandle] = field(default=None, repr=False)
    generation: int = field(default=0, repr=False)
    state: ExpirationState = ExpirationState.SCHEDULED

    def stop(self, state: ExpirationState) -> None:
        if self.timer is not None:
            self.timer.cancel()
        self.state = state


class ExpirationManager:
    """
    Schedules, renews and cancels entry expirations for one store.

    Example:
        manager = ExpirationManager(store, max_age=5000)
        store.handlers.on_add.append(manager.on_add)
        store.handlers.on_hit.append(manager.on_hit)
        store.handlers.on_evict.append(manager.on_evict)
    """

    def __init__(
        self,
        store: MemoStore,
        max_age: float,
        on_expire: Optional[OnExpire] = None,
        update_expire: bool = False,
        matches: Optional[KeyMatcher] = None,
        timer_factory: Optional[TimerFactory] = None,
        lock: Optional[ContextManager[Any]] = None,
        on_error: Optional[ErrorHandler] = None,
        memoized: Any = None,
    ):
        self._store = store
        self._max_age = max_age
        self._on_expire = on_expire
        self._update_expire = update_expire
        self._matches = matches
        self._timer_factory = timer_factory or thread_timer
        self._lock = lock if lock is not None else nullcontext()
        self._on_error = on_error
        self._memoized = memoized
        self._expirations: List[Expiration] = []

    @property
    def enabled(self) -> bool:
        return math.isfinite(self._max_age)

    def __len__(self) -> int:
        return len(self._expirations)

    def find(self, key: Key) -> Optional[Expiration]:
        for expiration in self._expirations:
            if expiration.key is key:
                return expiration
        if self._matches is not None:
            for expiration in self._expirations:
                if self._matches(expiration.key, key):
                    return expiration
        return None

    def state_of(self, key: Key) -> ExpirationState:
        expiration = self.find(key)
        return expiration.state if expiration else ExpirationState.NO_EXPIRATION

    def snapshot(self) -> List[Expiration]:
        return list(self._expirations)

    # ── handlers ──────────────────────────────────────────────────────────

    def on_add(self, event: CacheEvent) -> None:
        if not self.enabled or event.key is None:
            return
        if self.find(event.key) is None:
            self.schedule(event.key)

    def on_hit(self, event: CacheEvent) -> None:
        if not self._update_expire or event.key is None:
            return
        expiration = self.find(event.key)
        if expiration is not None:
            self._restart(expiration)

    def on_evict(self, key: Key, value: Any) -> None:
        self.cancel(key)

    # ── lifecycle ─────────────────────────────────────────────────────────

    def schedule(self, key: Key) -> Expiration:
        expiration = Expiration(
            key=key,
            max_age=self._max_age,
            on_expire=self._on_expire,
            update_expire=self._update_expire,
        )
        expiration.timer = self._new_timer(expiration)
        self._expirations.append(expiration)
        expiration.timer.start()
        return expiration

    def _new_timer(self, expiration: Expiration) -> TimerHandle:
        generation = expiration.generation
        return self._timer_factory(self._max_age / 1000.0, lambda: self._fire(expiration, generation))

    def _restart(self, expiration: Expiration) -> None:
        if expiration.timer is not None:
            expiration.timer.cancel()
        expiration.generation += 1
        expiration.timer = self._new_timer(expiration)
        expiration.timer.start()

    def cancel(self, key: Key) -> bool:
        """Cancel the expiration for key, if any. Synchronous."""
        expiration = self.find(key)
        if expiration is None:
            return False

        expiration.stop(ExpirationState.CANCELLED)
        self._expirations.remove(expiration)
        return True

    def clear(self) -> None:
        """Cancel every outstanding expiration."""
        for expiration in self._expirations:
            expiration.stop(ExpirationState.CANCELLED)
        self._expirations.clear()

    def _fire(self, expiration: Expiration, generation: int) -> None:
        with self._lock:
            # A renewal may have superseded this timer while it waited for the lock.
            if expiration.state is not ExpirationState.SCHEDULED or expiration.generation != generation:
                return

            expiration.state = ExpirationState.FIRED
            if expiration in self._expirations:
                self._expirations.remove(expiration)

            index = self._store.find_index(expiration.key)
            removed = index != -1
            value = None
            if removed:
                _, value = self._store.remove_at(index, memoized=self._memoized)

            logger.debug("Entry expired", operation="expire", removed=removed, max_age_ms=self._max_age)

            if self._on_expire is None:
                return

            try:
                keep = self._on_expire(expiration.key)
            except Exception as e:
                self._report(ExpirationCallbackError(expiration.key, e))
                return

            if keep and removed:
                self._store.restore(expiration.key, value, memoized=self._memoized)
                self.schedule(expiration.key)

    def _report(self, error: ExpirationCallbackError) -> None:
        logger.error(
            "on_expire callback failed; entry stays removed",
            error_code="ON_EXPIRE_FAILED",
            operation="expire",
            error=repr(error.cause),
        )
        if self._on_error is not None:
            try:
                self._on_error(error, "on_expire")
            except Exception:
                logger.error("on_error callback failed", operation="expire", exc_info=True)
