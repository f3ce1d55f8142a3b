"""
MNEMOS Memoize Options

The per-function option set. Every field defaults to None, meaning "not
set", so that options can be layered: presets, composed memoizers and
re-memoization all merge option sets field by field, later explicit values
winning.

coalesce() turns a layered option set into the one a memoized function
actually runs with:

    max_age    negative or non-numeric   -> defaults.max_age  (infinite)
    max_args   negative or non-numeric   -> defaults.max_args (unlimited)
    max_size   negative or non-numeric   -> defaults.max_size (1)
    key_field set, max_size not given    -> max_size = inf (no bound)

Normalizations are logged as warnings and never raise. An environment
default that does not parse or validate is skipped the same way.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, fields, replace
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Sequence

from mnemos.config import ConfigValue, get_config
from mnemos.observability import MnemosLayer, get_logger

if TYPE_CHECKING:
    from mnemos.equality import IsEqual, IsMatchingKey
    from mnemos.expiration import OnExpire, TimerFactory
    from mnemos.keys import Key, KeyField, Serializer
    from mnemos.stats import StatsRegistry
    from mnemos.store import CacheHandler, ErrorHandler

logger = get_logger("options", MnemosLayer.MEMOIZE)


@dataclass(frozen=True)
class MemoizeOptions:
    """Options for one memoized function. None means "not set"."""

    # key derivation
    key_field: Optional["KeyField"] = None
    max_args: Optional[float] = None
    is_serialized: Optional[bool] = None
    serializer: Optional["Serializer"] = None
    transform_args: Optional[Callable[["Key"], Sequence[Any]]] = None

    # equality
    matches_arg: Optional["IsEqual"] = None
    matches_key: Optional["IsMatchingKey"] = None
    is_deep_equal: Optional[bool] = None
    is_shallow_equal: Optional[bool] = None

    # capacity and expiration
    max_size: Optional[float] = None
    max_age: Optional[float] = None
    update_expire: Optional[bool] = None
    on_expire: Optional["OnExpire"] = None
    timer_factory: Optional["TimerFactory"] = None

    # hooks
    on_cache_add: Optional["CacheHandler"] = None
    on_cache_hit: Optional["CacheHandler"] = None
    on_cache_change: Optional["CacheHandler"] = None
    update_cache_for_key: Optional[Callable[["Key"], Any]] = None
    on_error: Optional["ErrorHandler"] = None

    # stats
    profile_name: Optional[str] = None
    stats_registry: Optional["StatsRegistry"] = None

    _max_size_overridden: Optional[bool] = None

    def merge(self, other: Optional["MemoizeOptions"]) -> "MemoizeOptions":
        """Layer other on top of self; other's set fields win."""
        if other is None:
            return self
        updates = {
            f.name: getattr(other, f.name)
            for f in fields(other)
            if not f.name.startswith("_") and getattr(other, f.name) is not None
        }
        return replace(self, **updates)

    def explicit(self) -> Dict[str, Any]:
        """The fields that are set."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if not f.name.startswith("_") and getattr(self, f.name) is not None
        }

    @property
    def did_override_max_size(self) -> bool:
        """Whether the caller gave a usable max_size."""
        if self._max_size_overridden is not None:
            return self._max_size_overridden
        return _is_usable_number(self.max_size)

    def coalesce(self) -> "MemoizeOptions":
        """Fill numeric options from config defaults and apply the key field rule."""
        defaults = get_config().defaults

        max_age = _coalesce_number(
            "max_age", self.max_age, _configured_default("max_age", defaults.max_age))
        max_args = _coalesce_number(
            "max_args", self.max_args, _configured_default("max_args", defaults.max_args))
        max_size = _coalesce_number(
            "max_size", self.max_size, _configured_default("max_size", defaults.max_size))

        overridden = self.did_override_max_size
        if self.key_field is not None and not overridden:
            max_size = math.inf

        return replace(
            self,
            max_age=max_age,
            max_args=max_args,
            max_size=max_size,
            _max_size_overridden=overridden,
        )


def _is_usable_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value) and value >= 0


def _configured_default(name: str, value: ConfigValue) -> float:
    problem = value.env_error()
    if problem is not None:
        logger.warning(
            f"Ignoring environment default for {name}",
            operation="coalesce",
            option=name,
            error=problem,
        )
    return value.get()


def _coalesce_number(name: str, value: Any, default: float) -> float:
    if value is None:
        return default
    if _is_usable_number(value):
        return value
    logger.warning(
        f"Ignoring invalid {name}; using default",
        operation="coalesce",
        option=name,
        value=repr(value),
        default=default,
    )
    return default


DEFAULT_OPTIONS = MemoizeOptions()
