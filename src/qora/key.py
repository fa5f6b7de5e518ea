"""Query key normalization and structural equality.

A query key is an ordered sequence of parts: ``None``, ``bool``, ``int``,
``float``, ``str``, ``bytes``, nested sequences, maps of ``str`` to value and
sets. Normalization deep-copies a key into an immutable canonical tuple:

    normalize_key(["users", {"page": 2, "sort": "name"}])
    # ('users', FrozenMap({'page': 2, 'sort': 'name'}))

Equality is structural and type-strict: sequences compare element-wise in
order, maps compare by content regardless of insertion order, and parts of
different types never compare equal (``1``, ``1.0`` and ``True`` are three
distinct parts). ``key_hash`` agrees with ``keys_equal``.

Custom value types may appear in keys if they are hashable. qora compares
them with their own ``__eq__`` and hashes them with their own ``__hash__``;
keeping the two consistent is the caller's responsibility.
"""

from __future__ import annotations

import copy
import json
import math
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from qora.exceptions import InvalidKeyError
from qora.types import NormalizedKey

_SCALARS = (str, bytes, int, float)


class FrozenMap(Mapping[str, Any]):
    """Immutable, hashable map used for map parts of a normalized key."""

    __slots__ = ("_data", "_hash")

    def __init__(self, items: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(items or {})
        self._hash: int | None = None

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FrozenMap):
            return NotImplemented
        return _parts_equal(self, other)

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = _part_hash(self)
        return self._hash

    def __repr__(self) -> str:
        body = ", ".join(f"{k!r}: {self._data[k]!r}" for k in sorted(self._data))
        return f"FrozenMap({{{body}}})"


@dataclass(frozen=True, slots=True, init=False)
class QueryKey:
    """A typed query key.

    Usage:
        key = QueryKey("users", 42)
        await client.fetch_once(key, fetch_user)
    """

    parts: tuple[Any, ...]

    def __init__(self, *parts: Any) -> None:
        object.__setattr__(self, "parts", parts)

    def __repr__(self) -> str:
        return f"QueryKey({', '.join(repr(p) for p in self.parts)})"


@dataclass(frozen=True, slots=True, eq=False)
class CanonicalKey:
    """A normalized key with its precomputed structural hash.

    The cache store is indexed by these, so two separately built keys with
    the same content land in the same slot.
    """

    parts: NormalizedKey
    _hash: int = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_hash", _part_hash(self.parts))

    def __hash__(self) -> int:
        return self._hash

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CanonicalKey):
            return NotImplemented
        return self._hash == other._hash and _parts_equal(self.parts, other.parts)


def normalize_key(key: Any) -> NormalizedKey:
    """Return the immutable canonical form of ``key``.

    Raises:
        InvalidKeyError: ``key`` is not a list, tuple or ``QueryKey``, or one
            of its parts cannot be normalized.
    """
    if isinstance(key, QueryKey):
        parts: Sequence[Any] = key.parts
    elif isinstance(key, (list, tuple)):
        parts = key
    else:
        raise InvalidKeyError(
            f"Query key must be a list, tuple or QueryKey, got {type(key).__name__}"
        )
    return tuple(_normalize_part(part) for part in parts)


def keys_equal(a: Any, b: Any) -> bool:
    """Structural, type-strict equality of two query keys."""
    return _parts_equal(normalize_key(a), normalize_key(b))


def key_hash(key: Any) -> int:
    """Hash of a query key, consistent with ``keys_equal``."""
    return _part_hash(normalize_key(key))


def stringify_key(key: NormalizedKey) -> str:
    """Deterministic string form of a normalized key.

    Map parts are written with sorted keys, so keys that are equal under
    ``keys_equal`` always produce the same string.
    """
    return json.dumps(list(key), sort_keys=True, default=_json_default)


def define_keys(
    definitions: dict[str, Callable[..., Sequence[Any]]],
) -> dict[str, Callable[..., QueryKey]]:
    """
    Define query key factories in a centralized location.

    Example:
        keys = define_keys({
            "user": lambda id: ("users", id),
            "user_posts": lambda id, page: ("users", id, "posts", {"page": page}),
        })

        keys["user"](42)           # QueryKey('users', 42)
        keys["user_posts"](42, 1)  # QueryKey('users', 42, 'posts', {'page': 1})
    """
    result: dict[str, Callable[..., QueryKey]] = {}
    for name, fn in definitions.items():

        def make_key(
            *args: Any, _fn: Callable[..., Sequence[Any]] = fn
        ) -> QueryKey:
            return QueryKey(*_fn(*args))

        result[name] = make_key
    return result


def _normalize_part(part: Any) -> Any:
    if part is None or isinstance(part, _SCALARS):
        return part
    if isinstance(part, QueryKey):
        return normalize_key(part)
    if isinstance(part, (list, tuple)):
        return tuple(_normalize_part(p) for p in part)
    if isinstance(part, Mapping):
        items: dict[str, Any] = {}
        for name, value in part.items():
            if not isinstance(name, str):
                raise InvalidKeyError(
                    f"Map keys inside a query key must be str, got {type(name).__name__}"
                )
            items[name] = _normalize_part(value)
        return FrozenMap(items)
    if isinstance(part, (set, frozenset)):
        return frozenset(_normalize_part(p) for p in part)
    try:
        hash(part)
    except TypeError as exc:
        raise InvalidKeyError(
            f"Unhashable value of type {type(part).__name__} in query key"
        ) from exc
    return copy.deepcopy(part)


def _parts_equal(a: Any, b: Any) -> bool:
    if type(a) is not type(b):
        return False
    if isinstance(a, tuple):
        return len(a) == len(b) and all(_parts_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, FrozenMap):
        if len(a) != len(b):
            return False
        return all(name in b and _parts_equal(value, b[name]) for name, value in a.items())
    if isinstance(a, float) and math.isnan(a):
        return math.isnan(b)
    return bool(a == b)


def _part_hash(part: Any) -> int:
    if isinstance(part, tuple):
        return hash((tuple, *(_part_hash(p) for p in part)))
    if isinstance(part, FrozenMap):
        # frozenset makes the hash independent of insertion order
        return hash((FrozenMap, frozenset((k, _part_hash(v)) for k, v in part.items())))
    if isinstance(part, float) and math.isnan(part):
        return hash((float, "nan"))
    return hash((type(part), part))


def _json_default(part: Any) -> Any:
    if isinstance(part, FrozenMap):
        return dict(part)
    if isinstance(part, frozenset):
        return {"$set": sorted(stringify_key((p,)) for p in part)}
    if isinstance(part, bytes):
        return {"$bytes": part.hex()}
    return {f"${type(part).__qualname__}": repr(part)}


__all__ = [
    "CanonicalKey",
    "FrozenMap",
    "QueryKey",
    "define_keys",
    "key_hash",
    "keys_equal",
    "normalize_key",
    "stringify_key",
]
