"""
MNEMOS Stats Collector

Per-profile call and hit counters for memoized functions.

    calls   every call of a memoized function (miss or hit)
    hits    calls answered from the cache

Profiles are keyed by name and live in a StatsRegistry. A memoized function
uses the registry passed in its options, or the process-wide default one.
Collection is switched on and off per registry; while it is off, nothing is
created or updated.

Example:
    registry = StatsRegistry()
    registry.collect()

    @memoize.profile("lookup")
    def lookup(x): ...

    registry.get_stats("lookup")
    # {"calls": 3, "hits": 2, "usage": "66.6667%"}

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from mnemos.config import get_config
from mnemos.observability import MnemosLayer, get_logger
from mnemos.store import CacheEvent

logger = get_logger("stats", MnemosLayer.STATS)


def format_usage(calls: int, hits: int) -> str:
    """Hit ratio as a percentage string with four decimals."""
    if not calls:
        return "0.0000%"
    return f"{hits / calls * 100:.4f}%"


@dataclass
class ProfileStats:
    """Counters for one profile name."""
    calls: int = 0
    hits: int = 0

    @property
    def usage(self) -> str:
        return format_usage(self.calls, self.hits)

    def to_dict(self) -> Dict[str, Any]:
        return {"calls": self.calls, "hits": self.hits, "usage": self.usage}


class StatsRegistry:
    """
    Registry of profile counters.

    Thread-safe; one registry may be shared by any number of memoized
    functions.
    """

    _instance: Optional["StatsRegistry"] = None
    _instance_lock = threading.Lock()

    def __init__(self, collecting: bool = False):
        self._profiles: Dict[str, ProfileStats] = {}
        self._collecting = collecting
        self._anonymous_counter = 0
        self._warned = False
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> "StatsRegistry":
        """Get the process-wide registry."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls(collecting=bool(get_config().stats.collect.get()))
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the process-wide registry (tests)."""
        with cls._instance_lock:
            cls._instance = None

    @property
    def is_collecting(self) -> bool:
        return self._collecting

    def collect(self, enabled: bool = True) -> None:
        """Switch collection on or off."""
        self._collecting = enabled
        logger.info("Stats collection toggled", operation="collect", enabled=enabled)

    def record_call(self, profile_name: str) -> None:
        if not self._collecting:
            return
        with self._lock:
            self._profile(profile_name).calls += 1

    def record_hit(self, profile_name: str) -> None:
        if not self._collecting:
            return
        with self._lock:
            self._profile(profile_name).hits += 1

    def _profile(self, profile_name: str) -> ProfileStats:
        profile = self._profiles.get(profile_name)
        if profile is None:
            profile = self._profiles[profile_name] = ProfileStats()
        return profile

    def get_stats(self, profile_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Stats for one profile, or totals across all of them.

        The totals form also carries a "profiles" mapping of per-profile
        stats.
        """
        if not self._collecting and not self._warned:
            self._warned = True
            logger.warning(
                "Stats are not being collected; call collect() to start",
                operation="get_stats",
            )

        with self._lock:
            if profile_name is not None:
                profile = self._profiles.get(profile_name) or ProfileStats()
                return profile.to_dict()

            calls = sum(p.calls for p in self._profiles.values())
            hits = sum(p.hits for p in self._profiles.values())
            return {
                "calls": calls,
                "hits": hits,
                "usage": format_usage(calls, hits),
                "profiles": {name: p.to_dict() for name, p in self._profiles.items()},
            }

    def clear(self, profile_name: Optional[str] = None) -> None:
        """Clear one profile's counters, or every profile."""
        with self._lock:
            if profile_name is None:
                self._profiles.clear()
            else:
                self._profiles.pop(profile_name, None)

    def default_profile_name(self, fn: Callable[..., Any]) -> str:
        """Derive a profile name from the function, or hand out an anonymous one."""
        name = getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None)
        if name and "<lambda>" not in name:
            module = getattr(fn, "__module__", None)
            return f"{module}.{name}" if module else name

        with self._lock:
            self._anonymous_counter += 1
            return f"Anonymous {self._anonymous_counter}"


class StatsCollector:
    """Store handlers counting calls and hits for one profile."""

    def __init__(self, registry: StatsRegistry, profile_name: str):
        self.registry = registry
        self.profile_name = profile_name

    def on_add(self, event: CacheEvent) -> None:
        self.registry.record_call(self.profile_name)

    def on_hit(self, event: CacheEvent) -> None:
        self.registry.record_call(self.profile_name)
        self.registry.record_hit(self.profile_name)


# ════════════════════════════════════════════════════════════════════════════
# CONVENIENCE FUNCTIONS
# ════════════════════════════════════════════════════════════════════════════


def get_stats_registry() -> StatsRegistry:
    """Get the process-wide stats registry."""
    return StatsRegistry.get_instance()


def collect_stats(enabled: bool = True) -> None:
    get_stats_registry().collect(enabled)


def clear_stats(profile_name: Optional[str] = None) -> None:
    get_stats_registry().clear(profile_name)


def get_stats(profile_name: Optional[str] = None) -> Dict[str, Any]:
    return get_stats_registry().get_stats(profile_name)


def is_collecting_stats() -> bool:
    return get_stats_registry().is_collecting
