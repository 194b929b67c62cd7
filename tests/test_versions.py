"""
Tests for the version matcher.
"""

import pytest

from offsetup.core.errors import InvalidVersionError
from offsetup.core.services.versions import (
    Operator,
    compare,
    first_match,
    matches,
    parse_constraint,
    parse_version,
)


class TestParse:
    def test_parse_version(self):
        assert parse_version("16.04.2") == (16, 4, 2)
        assert parse_version("10000") == (10000,)
        assert parse_version("v1.2") == (1, 2)

    @pytest.mark.parametrize("bad", ["", "abc", "1..2", "1.x", "1.2-beta"])
    def test_invalid_version(self, bad):
        with pytest.raises(InvalidVersionError):
            parse_version(bad)

    def test_operators(self):
        assert parse_constraint("14.04")[0].op is Operator.EXACT
        assert parse_constraint("==14.04")[0].op is Operator.EXACT
        assert parse_constraint("=14.04")[0].op is Operator.EXACT
        assert parse_constraint(">=10.14")[0].op is Operator.AT_LEAST
        assert parse_constraint(">16.04")[0].op is Operator.GREATER_THAN
        assert parse_constraint("<=2")[0].op is Operator.AT_MOST
        assert parse_constraint("< 2")[0].op is Operator.LESS_THAN

    def test_range(self):
        constraints = parse_constraint(">=1.2, <2")
        assert [c.op for c in constraints] == [Operator.AT_LEAST, Operator.LESS_THAN]

    @pytest.mark.parametrize("bad", ["", ">=", ">=abc", "1.2,"])
    def test_invalid_constraint(self, bad):
        with pytest.raises(InvalidVersionError):
            parse_constraint(bad)


class TestMatches:
    def test_numeric_not_lexicographic(self):
        assert compare((10, 0), (9, 9)) == 1
        assert matches(">9.6.4", "10.1")
        assert not matches("<9", "10")

    def test_missing_components_are_zero(self):
        assert compare((16, 4), (16, 4, 0)) == 0
        assert matches(">=16.04", "16.04.0")

    def test_greater_than(self):
        assert matches(">16.04", "16.04.2")
        assert not matches(">16.04", "16.04")
        assert matches(">16.04", "18.04")

    def test_at_least_is_reflexive(self):
        for version in ("1", "16.04", "10.14.6", "7600"):
            assert matches(f">={version}", version)

    def test_exact_prefix(self):
        assert matches("14.04", "14.04")
        assert matches("14.04", "14.04.5")
        assert not matches("14.04", "14.10")

    def test_exact_prefix_is_one_way(self):
        assert matches("14.04", "14.04.5")
        assert matches("==14.04", "14.04.5")
        assert not matches("14.04.5", "14.04")
        assert not matches("==14.04.5", "14.04")

    def test_range(self):
        assert matches(">=1.2, <2", "1.9.9")
        assert not matches(">=1.2, <2", "2.0")
        assert not matches(">=1.2, <2", "1.1")

    def test_invalid_candidate(self):
        with pytest.raises(InvalidVersionError):
            matches(">=1", "jammy")

    def test_first_match_in_order(self):
        assert first_match(["14.04", ">16.04"], "16.04.2") == ">16.04"
        assert first_match(["14.04", ">16.04"], "14.04.1") == "14.04"
        assert first_match(["14.04", ">16.04"], "15.10") is None

    def test_windows_build(self):
        assert matches(">=7600", "10000")
