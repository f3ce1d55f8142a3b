"""
MNEMOS Equality & Matching Resolver

Decides how two transformed keys are compared. Two functions are resolved
from the options:

    is_equal          per-argument comparison (always present)
    is_matching_key   whole-key comparison (optional; overrides is_equal)

Resolution is done once, to a tagged enum, by strict precedence:

    ArgEquality                       KeyMatching
    ──────────────────────────────    ──────────────────────────────
    1. CUSTOM          matches_arg    1. CUSTOM          matches_key
    2. DEEP            is_deep_equal  2. SERIALIZED      is_serialized
    3. SHALLOW         is_shallow_eq  3. KEY_FIELD_DEEP  key_field
    4. KEY_FIELD_DEEP  key_field      4. NONE
    5. SAME_VALUE_ZERO

The key field rows exist because the key field stage produces nested
tuples, which identity comparison can never match.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import math
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Sequence

from mnemos.config import get_config
from mnemos.observability import LogLevel, MnemosLayer, get_logger

if TYPE_CHECKING:
    from mnemos.options import MemoizeOptions

IsEqual = Callable[[Any, Any], bool]
IsMatchingKey = Callable[[Sequence[Any], Sequence[Any]], bool]

logger = get_logger("equality", MnemosLayer.EQUALITY)

_PRIMITIVES = (str, bytes, int, float, complex, Decimal)


def _is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def same_value_zero(a: Any, b: Any) -> bool:
    """Identity, or value equality between primitives (NaN equals NaN)."""
    if a is b:
        return True
    if isinstance(a, bool) or isinstance(b, bool):
        return False
    if isinstance(a, _PRIMITIVES) and isinstance(b, _PRIMITIVES):
        if _is_nan(a) and _is_nan(b):
            return True
        return bool(a == b)
    return False


def shallow_equal(a: Any, b: Any) -> bool:
    """One level of structural comparison, same_value_zero below it."""
    if a is b:
        return True

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if len(a) != len(b):
            return False
        return all(k in b and same_value_zero(v, b[k]) for k, v in a.items())

    if isinstance(a, (list, tuple)) and type(a) is type(b):
        if len(a) != len(b):
            return False
        return all(same_value_zero(x, y) for x, y in zip(a, b))

    return same_value_zero(a, b)


def deep_equal(a: Any, b: Any) -> bool:
    """Recursive structural equality (NaN equals NaN)."""
    if a is b:
        return True

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if len(a) != len(b):
            return False
        return all(k in b and deep_equal(v, b[k]) for k, v in a.items())

    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        if type(a) is not type(b) or len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b))

    if isinstance(a, (set, frozenset)) and isinstance(b, (set, frozenset)):
        return a == b

    if _is_nan(a) and _is_nan(b):
        return True
    if isinstance(a, bool) != isinstance(b, bool):
        return False

    try:
        return bool(a == b)
    except Exception:
        return False


def is_serialized_key_equal(cache_key: Sequence[Any], key: Sequence[Any]) -> bool:
    """Serialized keys hold a single canonical value."""
    if not cache_key or not key:
        return not cache_key and not key
    return cache_key[0] == key[0]


class ArgEquality(Enum):
    """Per-argument comparison strategy."""
    CUSTOM = "custom"
    DEEP = "deep"
    SHALLOW = "shallow"
    KEY_FIELD_DEEP = "key_field_deep"
    SAME_VALUE_ZERO = "same_value_zero"


class KeyMatching(Enum):
    """Whole-key comparison strategy."""
    CUSTOM = "custom"
    SERIALIZED = "serialized"
    KEY_FIELD_DEEP = "key_field_deep"
    NONE = "none"


def resolve_arg_equality(options: "MemoizeOptions") -> ArgEquality:
    if options.matches_arg is not None:
        return ArgEquality.CUSTOM
    if options.is_deep_equal:
        return ArgEquality.DEEP
    if options.is_shallow_equal:
        return ArgEquality.SHALLOW
    if options.key_field is not None:
        return ArgEquality.KEY_FIELD_DEEP
    return ArgEquality.SAME_VALUE_ZERO


def resolve_key_matching(options: "MemoizeOptions") -> KeyMatching:
    if options.matches_key is not None:
        return KeyMatching.CUSTOM
    if options.is_serialized:
        return KeyMatching.SERIALIZED
    if options.key_field is not None:
        return KeyMatching.KEY_FIELD_DEEP
    return KeyMatching.NONE


def _key_field_matching_key(cache_key: Sequence[Any], key: Sequence[Any]) -> bool:
    if get_config().observability.debug_key_field.get() and logger.is_enabled_for(LogLevel.DEBUG):
        logger.debug(
            "key field compare",
            operation="is_matching_key",
            cache_key=repr(cache_key),
            key=repr(key),
        )
    return deep_equal(cache_key, key)


def get_is_equal(options: "MemoizeOptions") -> IsEqual:
    """Per-argument comparison function for the options."""
    strategy = resolve_arg_equality(options)

    if strategy is ArgEquality.CUSTOM:
        return options.matches_arg  # type: ignore[return-value]
    if strategy in (ArgEquality.DEEP, ArgEquality.KEY_FIELD_DEEP):
        return deep_equal
    if strategy is ArgEquality.SHALLOW:
        return shallow_equal
    return same_value_zero


def get_is_matching_key(options: "MemoizeOptions") -> Optional[IsMatchingKey]:
    """Whole-key comparison function for the options, if any."""
    strategy = resolve_key_matching(options)

    if strategy is KeyMatching.CUSTOM:
        return options.matches_key
    if strategy is KeyMatching.SERIALIZED:
        return is_serialized_key_equal
    if strategy is KeyMatching.KEY_FIELD_DEEP:
        return _key_field_matching_key
    return None


def keys_match(
    cache_key: Sequence[Any],
    key: Sequence[Any],
    is_equal: IsEqual,
    is_matching_key: Optional[IsMatchingKey] = None,
) -> bool:
    """Compare a stored key against an incoming key."""
    if is_matching_key is not None:
        return bool(is_matching_key(cache_key, key))

    if len(cache_key) != len(key):
        return False
    return all(is_equal(c, k) for c, k in zip(cache_key, key))
