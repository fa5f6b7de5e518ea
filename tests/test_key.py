"""Tests for query key normalization and structural equality."""

from __future__ import annotations

import copy
from typing import Any

import pytest
from hypothesis import given
from hypothesis import strategies as st

from qora import (
    FrozenMap,
    InvalidKeyError,
    QueryKey,
    define_keys,
    key_hash,
    keys_equal,
    normalize_key,
    stringify_key,
)
from qora.key import CanonicalKey

scalars = (
    st.none()
    | st.booleans()
    | st.integers()
    | st.floats(allow_nan=False)
    | st.text(max_size=5)
)
parts = st.recursive(
    scalars,
    lambda children: st.lists(children, max_size=3)
    | st.dictionaries(st.text(max_size=3), children, max_size=3),
    max_leaves=10,
)
keys = st.lists(parts, max_size=4)


def reorder(part: Any) -> Any:
    """Rebuild every dict with its insertion order reversed."""
    if isinstance(part, dict):
        return {name: reorder(part[name]) for name in reversed(list(part))}
    if isinstance(part, list):
        return [reorder(p) for p in part]
    return part


class TestNormalizeKey:
    """Tests for normalize_key."""

    def test_lists_and_tuples_become_tuples(self) -> None:
        assert normalize_key(["users", [1, 2]]) == ("users", (1, 2))
        assert normalize_key(("users", (1, 2))) == ("users", (1, 2))

    def test_maps_become_frozen_maps(self) -> None:
        normalized = normalize_key(["users", {"page": 2}])
        assert isinstance(normalized[1], FrozenMap)
        assert normalized[1]["page"] == 2

    def test_query_key_is_unwrapped(self) -> None:
        assert normalize_key(QueryKey("users", 42)) == ("users", 42)

    def test_normalized_key_is_a_snapshot(self) -> None:
        """Mutating the original after normalization changes nothing."""
        original: list[Any] = ["todos", {"filter": ["open"]}]
        normalized = normalize_key(original)

        original[1]["filter"].append("closed")
        original.append("extra")

        assert normalized == ("todos", FrozenMap({"filter": ("open",)}))

    def test_sets_become_frozensets(self) -> None:
        assert normalize_key(["tags", {"a", "b"}]) == ("tags", frozenset({"a", "b"}))

    @pytest.mark.parametrize("bad_root", ["users", 42, None, {"a": 1}])
    def test_rejects_non_sequence_roots(self, bad_root: Any) -> None:
        with pytest.raises(InvalidKeyError):
            normalize_key(bad_root)

    def test_rejects_non_string_map_keys(self) -> None:
        with pytest.raises(InvalidKeyError, match="must be str"):
            normalize_key(["users", {1: "a"}])

    def test_rejects_unhashable_custom_parts(self) -> None:
        class Unhashable:
            __hash__ = None  # type: ignore[assignment]

        with pytest.raises(InvalidKeyError, match="Unhashable"):
            normalize_key(["x", Unhashable()])

    def test_invalid_key_error_is_a_type_error(self) -> None:
        with pytest.raises(TypeError):
            normalize_key("users")


class TestKeyEquality:
    """Tests for keys_equal and key_hash."""

    def test_scenario_from_docs(self) -> None:
        """Two separately built keys with equal content are one key."""
        a = ["todos", {"filter": "done", "page": 1}]
        b = ["todos", {"page": 1, "filter": "done"}]
        assert keys_equal(a, b)
        assert key_hash(a) == key_hash(b)

    def test_order_matters_in_sequences(self) -> None:
        assert not keys_equal(["a", "b"], ["b", "a"])

    def test_types_are_strict(self) -> None:
        assert not keys_equal([1], [1.0])
        assert not keys_equal([1], [True])
        assert not keys_equal([0], [False])
        assert not keys_equal(["1"], [1])

    def test_nan_equals_nan(self) -> None:
        assert keys_equal([float("nan")], [float("nan")])
        assert key_hash([float("nan")]) == key_hash([float("nan")])

    def test_nested_lengths_differ(self) -> None:
        assert not keys_equal(["a", [1, 2]], ["a", [1, 2, 3]])
        assert not keys_equal(["a", {"x": 1}], ["a", {"x": 1, "y": 2}])

    def test_canonical_key_indexes_by_content(self) -> None:
        index = {CanonicalKey(normalize_key(["u", {"b": 2, "a": 1}])): "hit"}
        assert index[CanonicalKey(normalize_key(["u", {"a": 1, "b": 2}]))] == "hit"

    @given(keys)
    def test_deep_copy_is_equal(self, key: list[Any]) -> None:
        duplicate = copy.deepcopy(key)
        assert keys_equal(key, duplicate)
        assert key_hash(key) == key_hash(duplicate)

    @given(keys)
    def test_map_order_is_irrelevant(self, key: list[Any]) -> None:
        shuffled = reorder(key)
        assert keys_equal(key, shuffled)
        assert key_hash(key) == key_hash(shuffled)
        assert stringify_key(normalize_key(key)) == stringify_key(normalize_key(shuffled))

    @given(keys)
    def test_normalization_is_idempotent(self, key: list[Any]) -> None:
        once = normalize_key(key)
        assert keys_equal(once, normalize_key(once))

    @given(keys, keys)
    def test_equal_keys_hash_equal(self, a: list[Any], b: list[Any]) -> None:
        if keys_equal(a, b):
            assert key_hash(a) == key_hash(b)


class TestStringifyKey:
    """Tests for stringify_key."""

    def test_json_form(self) -> None:
        assert stringify_key(normalize_key(["user", 42])) == '["user", 42]'

    def test_map_keys_sorted(self) -> None:
        key = normalize_key(["todos", {"page": 1, "filter": "done"}])
        assert stringify_key(key) == '["todos", {"filter": "done", "page": 1}]'

    def test_distinguishes_types(self) -> None:
        strings = {
            stringify_key(normalize_key([1])),
            stringify_key(normalize_key([1.0])),
            stringify_key(normalize_key([True])),
            stringify_key(normalize_key(["1"])),
        }
        assert len(strings) == 4

    def test_non_json_parts(self) -> None:
        assert "$bytes" in stringify_key(normalize_key([b"\x00\x01"]))
        assert "$set" in stringify_key(normalize_key([{1, 2}]))


class TestDefineKeys:
    """Tests for define_keys."""

    def test_factories_build_query_keys(self) -> None:
        keys_ = define_keys(
            {
                "user": lambda id: ("users", id),
                "user_posts": lambda id, page: ("users", id, "posts", {"page": page}),
            }
        )

        assert keys_["user"](42) == QueryKey("users", 42)
        assert keys_equal(
            keys_["user_posts"](1, 2), ["users", 1, "posts", {"page": 2}]
        )
