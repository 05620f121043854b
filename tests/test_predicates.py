"""Tests for chart predicates."""

import pytest
from pydantic import TypeAdapter, ValidationError

from chart_converter.transform.predicates import PredicateSpec, compile_predicate, natural_key

adapter = TypeAdapter(PredicateSpec)


def predicate(document):
    return compile_predicate(adapter.validate_python(document))


class TestNaturalKey:
    """Tests for natural ordering."""

    def test_numbers_inside_text(self) -> None:
        """Test embedded numbers compare numerically."""
        assert natural_key("Hard 9") < natural_key("Hard 10")
        assert natural_key("Lv.2") < natural_key("Lv.12")

    def test_case_insensitive(self) -> None:
        """Test text compares without case."""
        assert natural_key("Insane") == natural_key("insane")

    def test_numbers(self) -> None:
        """Test ints and floats compare by value."""
        assert natural_key(7) == natural_key(7.0)
        assert natural_key(3) < natural_key(12)


class TestPredicates:
    """Tests for compiled predicates."""

    def test_allow(self, make_chart) -> None:
        """Test allow lists."""
        test = predicate({"property": "columnCount", "op": "allow", "values": [7, 8]})
        assert test(make_chart(columns=7))
        assert not test(make_chart(columns=4))

    def test_deny(self, make_chart) -> None:
        """Test deny lists ignore case."""
        test = predicate({"property": "version", "op": "deny", "values": ["hard"]})
        assert not test(make_chart(version="Hard"))
        assert test(make_chart(version="Easy"))

    def test_single_value_allow(self, make_chart) -> None:
        """Test allow with a single value."""
        test = predicate({"property": "title", "op": "allow", "value": "song"})
        assert test(make_chart())

    def test_ordering(self, make_chart) -> None:
        """Test less-than and greater-than use natural order."""
        below = predicate({"property": "version", "op": "lt", "value": "Lv 10"})
        above = predicate({"property": "noteCount", "op": "gt", "value": 2})

        assert below(make_chart(version="Lv 9"))
        assert not below(make_chart(version="Lv 11"))
        assert above(make_chart([(0, 0), (1, 0), (2, 0)]))
        assert not above(make_chart([(0, 0)]))

    def test_gamemode(self, make_chart) -> None:
        """Test the derived steps type is visible to predicates."""
        test = predicate({"property": "gamemode", "op": "allow", "values": ["kb7-single"]})
        assert test(make_chart(columns=7))

    def test_combinators(self, make_chart) -> None:
        """Test all, any and not."""
        test = predicate(
            {
                "all": [
                    {"property": "columnCount", "op": "allow", "values": [7]},
                    {
                        "any": [
                            {"property": "version", "op": "allow", "values": ["Hard"]},
                            {"not": {"property": "meter", "op": "lt", "value": 5}},
                        ]
                    },
                ]
            }
        )
        chart = make_chart(columns=7, version="Easy")
        assert not test(chart)
        chart.meter = 5
        assert test(chart)
        assert test(make_chart(columns=7, version="Hard"))
        assert not test(make_chart(columns=4, version="Hard"))

    def test_none_accepts_all(self, make_chart) -> None:
        """Test a missing predicate accepts every chart."""
        assert compile_predicate(None)(make_chart())

    def test_missing_operand(self) -> None:
        """Test comparisons need their operand."""
        with pytest.raises(ValidationError):
            adapter.validate_python({"property": "meter", "op": "lt"})
        with pytest.raises(ValidationError):
            adapter.validate_python({"property": "meter", "op": "allow"})

    def test_unknown_property(self) -> None:
        """Test unknown properties are rejected."""
        with pytest.raises(ValidationError):
            adapter.validate_python({"property": "bpm", "op": "lt", "value": 1})
