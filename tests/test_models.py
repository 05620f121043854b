"""Tests for core data models."""

from fractions import Fraction

import pytest

from chart_converter.errors import ChartInvariantError
from chart_converter.models.core import (
    Chart,
    Note,
    NoteKind,
    TimingPoint,
    format_fraction,
    gamemode_for_columns,
    parse_fraction,
)


class TestFractions:
    """Tests for exact beat serialization."""

    def test_format_integer(self) -> None:
        """Test whole beats are written without a denominator."""
        assert format_fraction(Fraction(3)) == "3"

    def test_format_and_parse(self) -> None:
        """Test fractional beats survive serialization exactly."""
        assert format_fraction(Fraction(1, 3)) == "1/3"
        assert parse_fraction("1/3") == Fraction(1, 3)

    def test_parse_float_uses_decimal_repr(self) -> None:
        """Test floats are parsed from their shortest decimal form."""
        assert parse_fraction(0.1) == Fraction(1, 10)


class TestNote:
    """Tests for Note."""

    def test_is_press(self) -> None:
        """Test taps and hold starts are presses, hold ends are not."""
        assert Note(Fraction(0), 0).is_press
        assert Note(Fraction(0), 0, NoteKind.HOLD_START, Fraction(1)).is_press
        assert not Note(Fraction(1), 0, NoteKind.HOLD_END).is_press

    def test_sort_key_puts_hold_ends_first(self) -> None:
        """Test hold ends sort before presses at the same time."""
        end = Note(Fraction(1), 3, NoteKind.HOLD_END)
        tap = Note(Fraction(1), 0)
        assert sorted([tap, end], key=lambda n: n.sort_key) == [end, tap]

    def test_to_dict(self) -> None:
        """Test conversion to dictionary."""
        d = Note(Fraction(1, 2), 2, NoteKind.HOLD_START, Fraction(3, 2)).to_dict()
        assert d == {"time": "1/2", "column": 2, "kind": "hold_start", "hold_length": "3/2"}


class TestTimingPoint:
    """Tests for TimingPoint."""

    def test_bpm(self) -> None:
        """Test BPM is derived from the beat duration."""
        assert TimingPoint(Fraction(0), 500.0).bpm == 120.0


class TestGamemode:
    """Tests for steps type lookup."""

    def test_known_column_counts(self) -> None:
        """Test default steps types."""
        assert gamemode_for_columns(4) == "dance-single"
        assert gamemode_for_columns(7) == "kb7-single"
        assert gamemode_for_columns(10) == "pump-double"

    def test_unknown_column_count(self) -> None:
        """Test column counts without a steps type."""
        assert gamemode_for_columns(12) is None


class TestChart:
    """Tests for Chart read and write operations."""

    def test_notes_sorted_on_creation(self, make_chart) -> None:
        """Test notes are put in canonical order."""
        chart = make_chart([(2, 0), (0, 3), (0, 1)])
        assert [(n.time, n.column) for n in chart.notes] == [(0, 1), (0, 3), (2, 0)]

    def test_note_count_ignores_hold_ends(self, make_chart) -> None:
        """Test note count only counts presses."""
        chart = make_chart([(0, 0)], holds=[(1, 1, 2)])
        assert len(chart.notes) == 3
        assert chart.note_count == 2

    def test_notes_in_range_half_open(self, make_chart) -> None:
        """Test range queries include the start and exclude the end."""
        chart = make_chart([(0, 0), (1, 0), (1, 1), (2, 0)])
        notes = chart.notes_in_range(Fraction(1), Fraction(2))
        assert [(n.time, n.column) for n in notes] == [(1, 0), (1, 1)]

    def test_active_count_includes_spanning_holds(self, make_chart) -> None:
        """Test holds count as active while held."""
        chart = make_chart([(1, 1), (1, 2)], holds=[(0, 0, 2)])
        assert chart.active_count_at(Fraction(1)) == 3
        assert chart.active_count_at(Fraction(0)) == 1
        assert chart.active_count_at(Fraction(2)) == 0

    def test_timing_point_at(self, make_chart) -> None:
        """Test timing point lookup, including times before the first point."""
        points = [TimingPoint(Fraction(0), 500.0), TimingPoint(Fraction(8), 250.0)]
        chart = make_chart(timing_points=points)
        assert chart.timing_point_at(Fraction(-1)) is points[0]
        assert chart.timing_point_at(Fraction(7)) is points[0]
        assert chart.timing_point_at(Fraction(8)) is points[1]
        assert chart.bpm_at(Fraction(10)) == 240.0

    def test_timing_point_at_without_points(self) -> None:
        """Test lookup fails when a chart has no timing points."""
        chart = Chart(chart_id="empty", column_count=4)
        with pytest.raises(ChartInvariantError):
            chart.timing_point_at(Fraction(0))

    def test_hold_pairs(self, make_chart) -> None:
        """Test hold starts pair with their ends."""
        chart = make_chart([(1, 0)], holds=[(0, 1, 2)])
        pairs = chart.hold_pairs()
        assert len(pairs) == 1
        start, end = pairs[0]
        assert chart.notes[start].kind == NoteKind.HOLD_START
        assert chart.notes[end].kind == NoteKind.HOLD_END
        assert chart.notes[start].column == chart.notes[end].column == 1

    def test_insert_note_keeps_order(self, make_chart) -> None:
        """Test inserted notes land in canonical order."""
        chart = make_chart([(0, 0), (2, 0)])
        chart.insert_note(Note(Fraction(1), 3))
        assert [n.time for n in chart.notes] == [0, 1, 2]

    def test_insert_note_rejects_bad_column(self, make_chart) -> None:
        """Test inserting outside the column range fails."""
        chart = make_chart([(0, 0)])
        with pytest.raises(ChartInvariantError):
            chart.insert_note(Note(Fraction(1), 4))

    def test_remove_note(self, make_chart) -> None:
        """Test removing a note."""
        chart = make_chart([(0, 0), (1, 1)])
        chart.remove_note(chart.notes[0])
        assert [(n.time, n.column) for n in chart.notes] == [(1, 1)]

    def test_set_timing_point_insert_and_replace(self, make_chart) -> None:
        """Test timing points are inserted in order or replaced at equal time."""
        chart = make_chart()
        chart.set_timing_point(TimingPoint(Fraction(8), 400.0))
        chart.set_timing_point(TimingPoint(Fraction(4), 300.0))
        chart.set_timing_point(TimingPoint(Fraction(4), 250.0))
        assert [tp.time for tp in chart.timing_points] == [0, 4, 8]
        assert chart.timing_points[1].beat_duration_ms == 250.0

    def test_validate_rejects_out_of_range_column(self) -> None:
        """Test validation catches notes outside the column range."""
        chart = Chart(
            chart_id="bad",
            column_count=4,
            notes=[Note(Fraction(0), 5)],
            timing_points=[TimingPoint(Fraction(0), 500.0)],
        )
        with pytest.raises(ChartInvariantError, match="column 5"):
            chart.validate()

    def test_validate_rejects_unordered_notes(self, make_chart) -> None:
        """Test validation catches notes out of time order."""
        chart = make_chart([(0, 0), (1, 0)])
        chart.notes.reverse()
        with pytest.raises(ChartInvariantError):
            chart.validate()

    def test_copy_is_independent(self, make_chart) -> None:
        """Test copies share no mutable state."""
        chart = make_chart([(0, 0)])
        clone = chart.copy()
        clone.notes[0].column = 3
        clone.metadata.title = "Other"
        assert chart.notes[0].column == 0
        assert chart.metadata.title == "Song"

    def test_label(self, make_chart) -> None:
        """Test report labels."""
        assert make_chart().label == "Artist - Song [Hard]"

    def test_effective_gamemode(self, make_chart) -> None:
        """Test explicit steps types override the column default."""
        chart = make_chart(columns=4)
        assert chart.effective_gamemode == "dance-single"
        chart.gamemode = "pump-single"
        assert chart.effective_gamemode == "pump-single"

    def test_to_dict(self, make_chart) -> None:
        """Test conversion to dictionary."""
        d = make_chart([(Fraction(1, 3), 2)]).to_dict()
        assert d["chart_id"] == "chart"
        assert d["column_count"] == 4
        assert d["notes"] == [{"time": "1/3", "column": 2, "kind": "tap"}]
        assert d["timing_points"][0]["beat_duration_ms"] == 500.0
