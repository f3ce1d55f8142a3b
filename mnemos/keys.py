"""
MNEMOS Key Transform Pipeline

Turns the raw arguments of a call into the normalized key used for cache
lookup and storage. The pipeline is a left-to-right composition of optional
stages, always applied in this order:

    1. serializer       whole argument list -> single canonical string
    2. transform_args   user function, applied verbatim
    3. key field        first argument (a collection of elements) -> sorted
                        tuple of element identities
    4. max_args         keep only the first N arguments

A disabled stage is simply absent from the composition. No stage mutates
the caller's arguments; keys are always fresh tuples.

The key field stage is what lets a cache treat a collection argument as an
unordered set of element identities:

    >>> transform = create_key_field_transform("id")
    >>> transform(([{"id": "b"}, {"id": "a"}], 10))
    (('a', 'b'), 10)

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import functools
import hashlib
import json
import math
from decimal import Decimal
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from mnemos.config import get_config
from mnemos.observability import LogLevel, MnemosLayer, get_logger

if TYPE_CHECKING:
    from mnemos.options import MemoizeOptions

Key = Tuple[Any, ...]
TransformKey = Callable[[Key], Key]
KeyField = Union[str, Callable[[Any], Any]]
Serializer = Callable[[Key], Any]

logger = get_logger("keys", MnemosLayer.KEYS)

ELEMENT_COLLECTIONS = (list, tuple, set, frozenset)


class _KwargsMark:
    """Separates positional arguments from keyword pairs inside a key."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "<kwargs>"

    def __reduce__(self) -> str:
        return "KWARGS_MARK"


KWARGS_MARK = _KwargsMark()


def normalize_call(args: Sequence[Any], kwargs: Optional[Mapping[str, Any]] = None) -> Key:
    """
    Build the raw key for a call.

    Keyword arguments are appended after KWARGS_MARK as name/value pairs
    in name order, so f(a=1, b=2) and f(b=2, a=1) share a key.
    """
    if not kwargs:
        return tuple(args)

    key = list(args)
    key.append(KWARGS_MARK)
    for name in sorted(kwargs):
        key.append(name)
        key.append(kwargs[name])
    return tuple(key)


# ════════════════════════════════════════════════════════════════════════════
# SERIALIZATION AND HASHING
# ════════════════════════════════════════════════════════════════════════════


def _coerce_key_types(obj: Any, seen: Tuple[int, ...] = (), tagged: bool = False) -> Any:
    """
    Coerce a key into JSON types, deterministically.

    With tagged=True, tuples and sets are wrapped as {"__tuple__": [...]}
    and {"__set__": [...]} so that they stay distinct from lists.
    """
    if obj is None or isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            return repr(obj)
        return obj
    if isinstance(obj, Decimal):
        return str(obj)
    if callable(obj) and not isinstance(obj, type):
        return getattr(obj, "__qualname__", repr(obj))

    if isinstance(obj, (list, tuple, set, frozenset, dict)):
        if id(obj) in seen:
            return "[Circular]"
        seen = seen + (id(obj),)

        if isinstance(obj, dict):
            return {str(k): _coerce_key_types(v, seen, tagged) for k, v in obj.items()}
        if isinstance(obj, (set, frozenset)):
            items = [_coerce_key_types(x, seen, tagged) for x in obj]
            items = sorted(items, key=lambda x: json.dumps(x, sort_keys=True, default=repr))
            return {"__set__": items} if tagged else items
        items = [_coerce_key_types(x, seen, tagged) for x in obj]
        if tagged and isinstance(obj, tuple):
            return {"__tuple__": items}
        return items

    return repr(obj)


def default_argument_serializer(key: Key) -> Tuple[str]:
    """Serialize a key into a one-element key holding canonical JSON."""
    clean = _coerce_key_types(key)
    return (json.dumps(clean, sort_keys=True, separators=(",", ":"), ensure_ascii=False),)


def key_hash(key: Key) -> str:
    """SHA-256 of the canonical, container-tagged serialization of a key."""
    clean = _coerce_key_types(key, tagged=True)
    serialized = json.dumps(clean, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


# ════════════════════════════════════════════════════════════════════════════
# PIPELINE STAGES
# ════════════════════════════════════════════════════════════════════════════


def create_serializer_transform(serializer: Optional[Serializer] = None) -> TransformKey:
    """Stage 1: collapse the whole key into a single serialized value."""
    if serializer is None:
        return default_argument_serializer

    def serialize(key: Key) -> Key:
        return (serializer(key),)

    return serialize


def create_transform_args(transform_args: Callable[[Key], Sequence[Any]]) -> TransformKey:
    """Stage 2: user-supplied argument transform."""
    def transform(key: Key) -> Key:
        return tuple(transform_args(key))

    return transform


def _identity_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float, Decimal)):
        return "number"
    return type(value).__name__


def _compare_as_strings(a: Any, b: Any) -> int:
    a_str, b_str = str(a), str(b)
    if a_str < b_str:
        return -1
    if a_str > b_str:
        return 1
    return 0


def compare_identities(a: Any, b: Any) -> int:
    """
    Total order over element identities.

    None sorts first, same-kind values compare natively, and everything
    else (mixed kinds, unorderable values) compares by str().
    """
    if a is None and b is None:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1

    if _identity_kind(a) == _identity_kind(b):
        try:
            if a < b:
                return -1
            if a > b:
                return 1
            return 0
        except TypeError:
            return _compare_as_strings(a, b)

    return _compare_as_strings(a, b)


def _field_extractor(key_field: str) -> Callable[[Any], Any]:
    def extract(item: Any) -> Any:
        if isinstance(item, Mapping):
            return item.get(key_field)
        return getattr(item, key_field, None)

    return extract


def _extract_identity(extract: Callable[[Any], Any], item: Any) -> Any:
    try:
        return extract(item)
    except Exception as e:
        logger.debug(
            "Identity extractor failed; treating element identity as None",
            operation="key_field_extract",
            error=repr(e),
        )
        return None


def create_key_field_transform(key_field: KeyField) -> TransformKey:
    """
    Stage 3: replace a collection first argument by its sorted identities.

    Keys whose first argument is not a collection pass through untouched.
    """
    extract = _field_extractor(key_field) if isinstance(key_field, str) else key_field
    sort_key = functools.cmp_to_key(compare_identities)

    def transform(key: Key) -> Key:
        if not key or not isinstance(key[0], ELEMENT_COLLECTIONS):
            return key

        extracted = [_extract_identity(extract, item) for item in key[0]]
        sorted_ids = tuple(sorted(extracted, key=sort_key))

        if get_config().observability.debug_key_field.get() and logger.is_enabled_for(LogLevel.DEBUG):
            logger.debug(
                "key field transform",
                operation="key_field_transform",
                original_key=repr(key),
                extracted=repr(extracted),
                sorted=repr(sorted_ids),
            )

        return (sorted_ids,) + tuple(key[1:])

    return transform


def create_get_initial_args(size: int) -> TransformKey:
    """Stage 4: keep only the first `size` arguments."""
    def get_initial_args(key: Key) -> Key:
        return tuple(key[:size]) if len(key) > size else key

    return get_initial_args


def compose(*stages: Optional[TransformKey]) -> Optional[TransformKey]:
    """Compose enabled stages left to right; None when nothing is enabled."""
    enabled = [stage for stage in stages if stage]

    if not enabled:
        return None
    if len(enabled) == 1:
        return enabled[0]

    def composed(key: Key) -> Key:
        for stage in enabled:
            key = stage(key)
        return key

    return composed


def get_transform_key(options: "MemoizeOptions") -> Optional[TransformKey]:
    """Build the key pipeline for a set of (coalesced) options."""
    return compose(
        create_serializer_transform(options.serializer) if options.is_serialized else None,
        create_transform_args(options.transform_args) if callable(options.transform_args) else None,
        create_key_field_transform(options.key_field) if options.key_field is not None else None,
        create_get_initial_args(int(options.max_args)) if math.isfinite(options.max_args) else None,
    )

