"""
Tests for MNEMOS option layering and normalization.
"""

import math

import pytest


class TestMerge:
    """Tests for layering option sets."""

    def test_set_fields_win(self):
        """Only fields that are set override."""
        from mnemos.options import MemoizeOptions

        base = MemoizeOptions(max_size=3, is_deep_equal=True)
        merged = base.merge(MemoizeOptions(max_size=5))

        assert merged.max_size == 5
        assert merged.is_deep_equal is True

    def test_explicit_false_overrides(self):
        """An explicit False is a set value."""
        from mnemos.options import MemoizeOptions

        merged = MemoizeOptions(is_deep_equal=True).merge(MemoizeOptions(is_deep_equal=False))
        assert merged.is_deep_equal is False

    def test_merge_none(self):
        """Merging nothing returns the same options."""
        from mnemos.options import MemoizeOptions

        options = MemoizeOptions(max_size=2)
        assert options.merge(None) is options

    def test_explicit(self):
        """explicit() lists only set fields."""
        from mnemos.options import MemoizeOptions

        assert MemoizeOptions(max_size=2, key_field="id").explicit() == {"max_size": 2, "key_field": "id"}


class TestCoalesce:
    """Tests for filling defaults and normalizing bad values."""

    def test_defaults(self):
        """Unset numbers come from config defaults."""
        from mnemos.options import MemoizeOptions

        options = MemoizeOptions().coalesce()

        assert options.max_size == 1
        assert options.max_args == math.inf
        assert options.max_age == math.inf
        assert not options.did_override_max_size

    def test_config_defaults_apply(self):
        """Changing the config default changes coalesced options."""
        from mnemos.config import get_config_manager
        from mnemos.options import MemoizeOptions

        get_config_manager().set("defaults.max_size", 10)

        assert MemoizeOptions().coalesce().max_size == 10

    @pytest.mark.parametrize("field", ["max_size", "max_args", "max_age"])
    def test_negative_values_fall_back(self, field, capture_logs):
        """Negative numbers are replaced by the default, with a warning."""
        from mnemos.config import get_config
        from mnemos.options import MemoizeOptions, logger

        records = capture_logs(logger)
        options = MemoizeOptions(**{field: -5}).coalesce()

        assert getattr(options, field) == getattr(get_config().defaults, field).get()
        assert any(r.levelname == "WARNING" for r in records)

    def test_non_numeric_values_fall_back(self):
        """Non-numbers, booleans and NaN are not sizes."""
        from mnemos.options import MemoizeOptions

        assert MemoizeOptions(max_size="big").coalesce().max_size == 1
        assert MemoizeOptions(max_size=True).coalesce().max_size == 1
        assert MemoizeOptions(max_age=math.nan).coalesce().max_age == math.inf

    def test_key_field_unbounded_without_max_size(self):
        """A key field with no max_size means no bound."""
        from mnemos.options import MemoizeOptions

        options = MemoizeOptions(key_field="id").coalesce()

        assert options.max_size == math.inf
        assert not options.did_override_max_size

    def test_key_field_keeps_explicit_max_size(self):
        """An explicit max_size survives the key field rule."""
        from mnemos.options import MemoizeOptions

        options = MemoizeOptions(key_field="id", max_size=2).coalesce()

        assert options.max_size == 2
        assert options.did_override_max_size

    def test_coalesce_is_stable(self):
        """Coalescing twice changes nothing."""
        from mnemos.options import MemoizeOptions

        once = MemoizeOptions(key_field="id").coalesce()
        assert once.coalesce() == once

    def test_invalid_options_never_break_calls(self):
        """A memoized function with bad options still works."""
        from mnemos import memoize

        fn = memoize(lambda x: x + 1, max_size=-1, max_age=-1, max_args=-3)

        assert fn(1) == 2
        assert fn(1) == 2
        assert fn.coalesced_options.max_size == 1
