"""Conversion between beat positions and audio milliseconds."""

from __future__ import annotations

from bisect import bisect_right
from fractions import Fraction

from chart_converter.models.core import Chart, TimingPoint


def ms_fraction(value: float) -> Fraction:
    """Exact rational for a millisecond value parsed from text.

    Uses the shortest decimal representation so that ``333.333`` becomes
    ``333333/1000`` rather than a binary expansion.
    """
    return Fraction(repr(float(value)))


class TimingResolver:
    """Resolves beat positions to milliseconds and back for one chart."""

    def __init__(self, timing_points: list[TimingPoint], offset_ms: float = 0.0) -> None:
        """Initialize the timing resolver.

        Args:
            timing_points: Timing points ordered by time.
            offset_ms: Audio time of beat 0.
        """
        self.timing_points = timing_points
        self.offset_ms = offset_ms
        self._times = [tp.time for tp in timing_points]
        # Audio time at which each timing point starts
        self._starts: list[float] = []
        position = float(offset_ms)
        for index, tp in enumerate(timing_points):
            if index > 0:
                prev = timing_points[index - 1]
                position += float(tp.time - prev.time) * prev.beat_duration_ms
            elif tp.time != 0:
                position += float(tp.time) * tp.beat_duration_ms
            self._starts.append(position)

    @classmethod
    def for_chart(cls, chart: Chart) -> TimingResolver:
        """Create a resolver for a chart's timing points."""
        return cls(chart.timing_points, chart.offset_ms)

    def _index_at_beat(self, beat: Fraction) -> int:
        return max(bisect_right(self._times, beat) - 1, 0)

    def segment_start_ms(self, index: int) -> float:
        """Audio time at which a timing point starts."""
        return self._starts[index]

    def beat_to_ms(self, beat: Fraction) -> float:
        """Convert a beat position to milliseconds.

        Args:
            beat: Beat position.

        Returns:
            Audio time in milliseconds.
        """
        if not self.timing_points:
            return self.offset_ms
        index = self._index_at_beat(beat)
        tp = self.timing_points[index]
        return self._starts[index] + float(beat - tp.time) * tp.beat_duration_ms

    def ms_to_beat(self, ms: float) -> Fraction:
        """Convert milliseconds to an exact beat position.

        Args:
            ms: Audio time in milliseconds.

        Returns:
            Beat position relative to beat 0.
        """
        if not self.timing_points:
            return Fraction(0)
        index = max(bisect_right(self._starts, ms) - 1, 0)
        tp = self.timing_points[index]
        elapsed = ms_fraction(ms) - ms_fraction(self._starts[index])
        return tp.time + elapsed / ms_fraction(tp.beat_duration_ms)

    def bpm_at(self, beat: Fraction) -> float:
        """Get the tempo (BPM) at a beat position."""
        if not self.timing_points:
            return 120.0  # Default tempo
        return self.timing_points[self._index_at_beat(beat)].bpm
