"""Note removal transforms that make charts easier to play.

All three transforms only delete notes, never move them. A hold start is
always removed together with its end.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from fractions import Fraction

from chart_converter.ingest.timing import TimingResolver
from chart_converter.models.core import Chart, Note, NoteKind

logger = logging.getLogger(__name__)

# Slack subtracted from a BPM-derived minimum gap, in milliseconds
BPM_GAP_SLACK_MS = 10.0


def _drop_notes(chart: Chart, removed: set[int], reason: str) -> int:
    """Delete notes by index, along with the ends of removed hold starts."""
    if not removed:
        return 0
    for start, end in chart.hold_pairs():
        if start in removed:
            removed.add(end)
    presses = sum(1 for index in removed if chart.notes[index].is_press)
    chart.notes = [note for index, note in enumerate(chart.notes) if index not in removed]
    chart.diagnostics.append(f"removed {presses} note(s) {reason}")
    logger.debug(f"{chart.label}: removed {presses} note(s) {reason}")
    return presses


def limit_simultaneous(chart: Chart, max_keys: int) -> Chart:
    """Cap the number of keys down at the same time.

    At every row, held columns plus new presses may not exceed ``max_keys``.
    Excess presses are removed taps first, then from the highest column
    down, so the result does not depend on anything but the chart.

    Args:
        chart: Chart to modify in place.
        max_keys: Maximum simultaneous keys (at least 1).

    Returns:
        The same chart.
    """
    held: set[int] = set()
    removed: set[int] = set()
    index = 0
    notes = chart.notes
    while index < len(notes):
        time = notes[index].time
        row = []
        while index < len(notes) and notes[index].time == time:
            note = notes[index]
            if note.kind == NoteKind.HOLD_END:
                held.discard(note.column)
            else:
                row.append(index)
            index += 1

        excess = len(held) + len(row) - max_keys
        if excess > 0:
            by_preference = sorted(
                row, key=lambda i: (notes[i].kind == NoteKind.HOLD_START, -notes[i].column)
            )
            removed.update(by_preference[:excess])
        held.update(
            notes[i].column
            for i in row
            if i not in removed and notes[i].kind == NoteKind.HOLD_START
        )

    _drop_notes(chart, removed, f"above {max_keys} simultaneous keys")
    return chart


@dataclass
class SpacingOptions:
    """Minimum distance between consecutive rows.

    Exactly one of the two limits is set.

    Attributes:
        min_beats: Minimum gap in beats.
        max_bpm: Fastest stream allowed, as the BPM of one note per beat;
            the gap is ``60000 / max_bpm`` minus a 10ms slack.
    """

    min_beats: Fraction | None = None
    max_bpm: float | None = None

    def __post_init__(self) -> None:
        if (self.min_beats is None) == (self.max_bpm is None):
            raise ValueError("exactly one of min_beats and max_bpm must be set")

    @property
    def min_gap_ms(self) -> float | None:
        if self.max_bpm is None:
            return None
        return 60000.0 / self.max_bpm - BPM_GAP_SLACK_MS


def removal_order(notes: list[Note]) -> list[int]:
    """Indices of presses from most to least removable.

    Finer subdivisions go first (larger beat denominator), then later notes,
    then higher columns.
    """
    presses = [index for index, note in enumerate(notes) if note.is_press]
    return sorted(
        presses,
        key=lambda i: (-notes[i].time.denominator, -notes[i].time, -notes[i].column),
    )


def make_space(chart: Chart, options: SpacingOptions) -> Chart:
    """Remove presses until consecutive rows are far enough apart.

    Presses are visited in :func:`removal_order`; one is removed when the
    nearest remaining press at an earlier or later beat is too close. Presses
    sharing a row never constrain each other.

    Args:
        chart: Chart to modify in place.
        options: Minimum gap.

    Returns:
        The same chart.
    """
    notes = chart.notes
    resolver = TimingResolver.for_chart(chart)
    times_ms = [resolver.beat_to_ms(note.time) for note in notes]
    min_gap_ms = options.min_gap_ms

    def far_enough(earlier: int, later: int) -> bool:
        if min_gap_ms is not None:
            return times_ms[later] - times_ms[earlier] >= min_gap_ms
        return notes[later].time - notes[earlier].time >= options.min_beats

    removed: set[int] = set()

    def neighbour(index: int, step: int) -> int | None:
        time = notes[index].time
        other = index + step
        while 0 <= other < len(notes):
            note = notes[other]
            if note.is_press and other not in removed and note.time != time:
                return other
            other += step
        return None

    for index in removal_order(notes):
        following = neighbour(index, 1)
        keep = following is None or far_enough(index, following)
        if keep:
            preceding = neighbour(index, -1)
            keep = preceding is None or far_enough(preceding, index)
        if not keep:
            removed.add(index)

    limit = f"{options.min_beats} beat(s)" if options.min_beats is not None else f"{min_gap_ms:.0f}ms"
    _drop_notes(chart, removed, f"closer than {limit} to a neighbour")
    return chart


def align_notes(chart: Chart, to: Fraction = Fraction(1)) -> Chart:
    """Keep only presses on multiples of ``to`` beats.

    Hold ends follow their starts, wherever they fall.

    Args:
        chart: Chart to modify in place.
        to: Alignment in beats (positive).

    Returns:
        The same chart.
    """
    removed = {
        index
        for index, note in enumerate(chart.notes)
        if note.is_press and note.time % to != 0
    }
    _drop_notes(chart, removed, f"off the {to}-beat grid")
    return chart
