"""
Tests for key field memoization.

A key field cache keys its first argument, a list of records, by the set
of record identities. These cases follow the behaviour expected of the
feature end to end: string and callable fields, option-object syntax,
combination with other options, the LRU bound and edge cases.
"""

import pytest


def process_items(items):
    return ",".join(sorted(item["id"] for item in items))


def sum_items(items):
    return sum(item["value"] for item in items)


class _Counted:
    """Wraps a function and counts its invocations."""

    def __init__(self, fn):
        self.fn = fn
        self.calls = 0
        self.__name__ = fn.__name__
        self.__qualname__ = fn.__qualname__
        self.__module__ = fn.__module__

    def __call__(self, *args, **kwargs):
        self.calls += 1
        return self.fn(*args, **kwargs)


@pytest.fixture
def processed():
    return _Counted(process_items)


@pytest.fixture
def summed():
    return _Counted(sum_items)


A = {"id": "a", "name": "Item A", "value": 1}
B = {"id": "b", "name": "Item B", "value": 2}
C = {"id": "c", "name": "Item C", "value": 3}
D = {"id": "d", "name": "Item D", "value": 4}


# ════════════════════════════════════════════════════════════════════════════
# STRING FIELD
# ════════════════════════════════════════════════════════════════════════════


class TestStringKeyField:
    """Tests for a field name as key field."""

    def test_identity_not_list_reference(self, processed):
        """Two distinct lists with the same records share an entry."""
        from mnemos import memoize

        fn = memoize.key_field("id")(processed)

        first = fn([dict(A), dict(B)])
        second = fn([dict(A), dict(B)])

        assert first == second
        assert processed.calls == 1

    def test_order_does_not_matter(self, processed):
        """The same records in another order hit the same entry."""
        from mnemos import memoize

        fn = memoize.key_field("id")(processed)

        assert fn([A, B]) == fn([B, A])
        assert processed.calls == 1

    def test_different_records_miss(self, processed):
        """Different identities are different entries."""
        from mnemos import memoize

        fn = memoize.key_field("id")(processed)

        assert fn([A, B]) != fn([C, D])
        assert processed.calls == 2

    def test_non_key_fields_are_ignored(self, processed):
        """Only the identity field takes part in the key."""
        from mnemos import memoize

        fn = memoize.key_field("id")(processed)

        first = fn([A, B])
        second = fn([
            {"id": "a", "name": "Item A Modified", "value": 999},
            {"id": "b", "name": "Item B Changed", "value": 888},
        ])

        assert first == second
        assert processed.calls == 1

    def test_subsets_are_separate(self, processed):
        """{a,b} and {a,b,c} are cached separately, and both stay cached."""
        from mnemos import memoize

        fn = memoize.key_field("id")(processed)

        first = fn([A, B])
        second = fn([A, B, C])
        assert first != second
        assert processed.calls == 2

        assert fn([A, B]) == first
        assert fn([A, B, C]) == second
        assert processed.calls == 2


# ════════════════════════════════════════════════════════════════════════════
# CALLABLE FIELD
# ════════════════════════════════════════════════════════════════════════════


class TestCallableKeyField:
    """Tests for an extractor function as key field."""

    def test_extractor(self, processed):
        """The extractor result is the identity."""
        from mnemos import memoize

        fn = memoize.key_field(lambda item: item["id"])(processed)

        assert fn([A, B]) == fn([dict(A), dict(B)])
        assert processed.calls == 1

    def test_extractor_order_does_not_matter(self, processed):
        """Reordered records hit with an extractor too."""
        from mnemos import memoize

        fn = memoize.key_field(lambda item: item["id"])(processed)

        assert fn([A, B]) == fn([B, A])
        assert processed.calls == 1

    def test_composite_identity(self, summed):
        """An extractor may combine several fields."""
        from mnemos import memoize

        fn = memoize.key_field(lambda item: f"{item['id']}-{item['value']}")(summed)

        assert fn([A, B]) == fn([dict(A), dict(B)]) == 3
        assert summed.calls == 1

        fn([A, dict(B, value=5)])
        assert summed.calls == 2

    def test_extractor_ignores_other_fields(self, processed):
        """Fields the extractor does not read do not matter."""
        from mnemos import memoize

        fn = memoize.key_field(lambda item: item["id"])(processed)

        fn([A, B])
        fn([
            {"id": "a", "name": "Completely Different Name", "value": 999},
            {"id": "b", "name": "Another Different Name", "value": 888},
        ])

        assert processed.calls == 1


# ════════════════════════════════════════════════════════════════════════════
# OPTIONS OBJECT
# ════════════════════════════════════════════════════════════════════════════


class TestOptionsSyntax:
    """Tests for passing key_field through options."""

    def test_options_object(self, processed):
        """MemoizeOptions(key_field=...) works like the preset."""
        from mnemos import memoize
        from mnemos.options import MemoizeOptions

        fn = memoize(processed, MemoizeOptions(key_field="id"))

        assert fn([A, B]) == fn([B, A])
        assert processed.calls == 1

    def test_keyword_option(self, processed):
        """key_field may be given as a keyword."""
        from mnemos import memoize

        fn = memoize(processed, key_field=lambda item: item["id"])

        assert fn([A, B]) == fn([B, A])
        assert processed.calls == 1


# ════════════════════════════════════════════════════════════════════════════
# COMBINATIONS
# ════════════════════════════════════════════════════════════════════════════


class TestCombinations:
    """Tests for key field together with other options."""

    def test_with_deep_equal(self, processed):
        """Deep equality still hits on reordered records."""
        from mnemos import memoize

        fn = memoize(processed, key_field="id", is_deep_equal=True)

        assert fn([A, B]) == fn([B, A])
        assert processed.calls == 1

    def test_with_shallow_equal(self, processed):
        """Shallow equality still hits on reordered records."""
        from mnemos import memoize

        fn = memoize(processed, key_field="id", is_shallow_equal=True)

        assert fn([A, B]) == fn([B, A])
        assert processed.calls == 1

    def test_with_transform_args(self, processed):
        """transform_args runs before the key field stage."""
        from mnemos import memoize

        fn = memoize(processed, key_field="id", transform_args=lambda args: args)

        assert fn([A, B]) == fn([B, A])
        assert processed.calls == 1

    def test_with_max_size(self, processed):
        """The bound evicts the least recently used identity set."""
        from mnemos import memoize

        fn = memoize(processed, key_field="id", max_size=2)

        fn([A])
        fn([B])
        assert processed.calls == 2

        fn([C])
        assert processed.calls == 3

        fn([A])
        assert processed.calls == 4

    def test_with_max_size_reinsert_keeps_older(self, processed):
        """Re-inserting an evicted set pushes out the most recent entry."""
        from mnemos import memoize

        fn = memoize(processed, key_field="id", max_size=2)

        fn([A])
        fn([B])
        fn([C])
        fn([A])

        fn([B])
        assert processed.calls == 4

    def test_with_extra_arguments(self, processed):
        """Arguments after the collection stay part of the key."""
        from mnemos import memoize

        calls = []

        @memoize.key_field("id")
        def tagged(items, tag):
            calls.append(tag)
            return tag

        tagged([A, B], "x")
        tagged([B, A], "x")
        tagged([B, A], "y")

        assert calls == ["x", "y"]

    def test_with_serialize(self):
        """Serialized keys take precedence over the key field matcher."""
        from mnemos import memoize

        calls = []
        fn = memoize.serialize.key_field("id")(lambda items: calls.append(1))

        fn([A, B])
        fn([dict(A), dict(B)])
        fn([B, A])

        # Serialization happens before the key field stage, so order matters.
        assert len(calls) == 2


# ════════════════════════════════════════════════════════════════════════════
# EDGE CASES
# ════════════════════════════════════════════════════════════════════════════


class TestEdgeCases:
    """Tests for empty, duplicate and single-element collections."""

    def test_empty_list(self, processed):
        """Empty lists share an entry."""
        from mnemos import memoize

        fn = memoize.key_field("id")(processed)

        assert fn([]) == fn([])
        assert processed.calls == 1

    def test_duplicate_identities(self, processed):
        """Repeated identities are cached consistently."""
        from mnemos import memoize

        fn = memoize.key_field("id")(processed)
        items = [A, {"id": "a", "name": "Item A Duplicate", "value": 2}]

        fn(items)
        fn(list(items))

        assert processed.calls == 1

    def test_duplicates_differ_from_single(self, processed):
        """[a, a] and [a] are different identity multisets."""
        from mnemos import memoize

        fn = memoize.key_field("id")(processed)

        fn([A, A])
        fn([A])

        assert processed.calls == 2

    def test_single_element(self, processed):
        """Single-element lists work."""
        from mnemos import memoize

        fn = memoize.key_field("id")(processed)

        fn([A])
        fn([dict(A)])

        assert processed.calls == 1

    def test_non_list_first_argument(self, processed):
        """A non-collection first argument falls back to plain keys."""
        from mnemos import memoize

        calls = []
        fn = memoize.key_field("id")(lambda value: calls.append(value))

        fn("plain")
        fn("plain")

        assert calls == ["plain"]

    def test_clear_twice(self, processed):
        """Clearing twice leaves an empty cache and raises nothing."""
        from mnemos import memoize

        fn = memoize.key_field("id")(processed)
        fn([A])

        fn.clear()
        fn.clear()

        assert len(fn) == 0
        fn([A])
        assert processed.calls == 2
