"""Timing normalization: snapping notes onto a rational beat grid.

Each timing-point segment is snapped independently, relative to its own
start. Rounding error is accumulated along the segment and fed back into a
later note once it grows past the drift limit, so a long run of notes that
all round the same way does not drift off the music.
"""

from __future__ import annotations

import logging
import math
from bisect import bisect_right
from dataclasses import dataclass, replace
from enum import Enum
from fractions import Fraction
from typing import Callable, Sequence

from chart_converter.errors import UnsnappableTimingError
from chart_converter.models.core import Chart, Note, NoteKind, TimingPoint

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATES = (1, 2, 3, 4, 6, 8, 12, 16, 24, 32, 48)

HALF = Fraction(1, 2)


class SnapMode(str, Enum):
    """Divisor selection mode."""

    FIXED = "fixed"
    SMART = "smart"


@dataclass
class NormalizeOptions:
    """Options for timing normalization.

    Attributes:
        mode: Fixed divisor or smart per-segment selection.
        divisor: Divisor for fixed mode (None uses each segment's own).
        candidates: Ranked divisors for smart mode, coarse to fine.
        tolerance_ms: Distance from a grid line still counted as on-grid.
        min_on_grid_ratio: Fraction of notes that must be on-grid for a
            smart-mode candidate to qualify.
        drift_limit: Accumulated error, in grid steps, that triggers a
            correction on the next note.
        best_effort: Fall back to the finest candidate instead of failing.
    """

    mode: SnapMode = SnapMode.FIXED
    divisor: int | None = None
    candidates: Sequence[int] = DEFAULT_CANDIDATES
    tolerance_ms: float = 2.0
    min_on_grid_ratio: float = 1.0
    drift_limit: float = 0.5
    best_effort: bool = False


@dataclass
class SnapResult:
    """Outcome of snapping one segment.

    Attributes:
        snapped: Snapped offsets, parallel to the input offsets.
        end: Snapped offset of the segment end (None for the last segment).
        carry: Rounding error left over (raw minus snapped, accumulated).
        corrections: Number of drift corrections applied.
    """

    snapped: list[Fraction]
    end: Fraction | None
    carry: Fraction
    corrections: int = 0


def snap_value(offset: Fraction, divisor: int) -> Fraction:
    """Round an offset to the nearest multiple of ``1/divisor``, halves up."""
    return Fraction(math.floor(offset * divisor + HALF), divisor)


def snap_offsets(
    offsets: Sequence[Fraction],
    divisor: int,
    drift_limit: float = 0.5,
    end: Fraction | None = None,
) -> SnapResult:
    """Snap ascending offsets within one segment.

    Args:
        offsets: Ascending note offsets in beats from the segment start.
        divisor: Grid subdivisions per beat.
        drift_limit: Accumulated error, in grid steps, before correction.
        end: Offset of the next timing point, if any.

    Returns:
        Snapped offsets, non-decreasing and not past the snapped end.
    """
    step = Fraction(1, divisor)
    limit = Fraction(repr(float(drift_limit))) * step
    snapped_end = None
    if end is not None:
        snapped_end = max(snap_value(end, divisor), step)

    carry = Fraction(0)
    corrections = 0
    previous: Fraction | None = None
    snapped: list[Fraction] = []
    for offset in offsets:
        target = offset
        if abs(carry) > limit:
            target = offset + carry
            corrections += 1
        value = snap_value(target, divisor)
        if previous is not None and value < previous:
            value = previous
        if snapped_end is not None and value > snapped_end:
            value = snapped_end
        carry += offset - value
        snapped.append(value)
        previous = value
    return SnapResult(snapped=snapped, end=snapped_end, carry=carry, corrections=corrections)


def is_on_grid(offset: Fraction, divisor: int) -> bool:
    """Whether an offset lies exactly on the grid."""
    return (offset * divisor).denominator == 1


def on_grid_ratio(
    offsets: Sequence[Fraction], divisor: int, beat_duration_ms: float, tolerance_ms: float
) -> float:
    """Share of offsets within ``tolerance_ms`` of a grid line."""
    if not offsets:
        return 1.0
    hits = 0
    for offset in offsets:
        error_ms = abs(float(offset - snap_value(offset, divisor))) * beat_duration_ms
        if error_ms <= tolerance_ms:
            hits += 1
    return hits / len(offsets)


def end_shift_ms(end: Fraction, divisor: int, beat_duration_ms: float) -> float:
    """How far snapping moves a segment end, in milliseconds."""
    snapped = max(snap_value(end, divisor), Fraction(1, divisor))
    return abs(float(snapped - end)) * beat_duration_ms


class TimingNormalizer:
    """Snaps notes and timing points onto a rational beat grid.

    The normalizer is idempotent: each segment records the coarsest
    candidate divisor that covers its snapped notes, and a second pass finds
    every note already on that grid.
    """

    def __init__(self, options: NormalizeOptions | None = None) -> None:
        """Initialize the normalizer.

        Args:
            options: Normalization options.
        """
        self.options = options or NormalizeOptions()
        if self.options.divisor is not None and self.options.divisor < 1:
            raise ValueError(f"divisor must be positive, got {self.options.divisor}")
        if any(d < 1 for d in self.options.candidates) or not self.options.candidates:
            raise ValueError("divisor candidates must be positive")

    def choose_divisor(
        self,
        offsets: Sequence[Fraction],
        end: Fraction | None,
        point: TimingPoint,
        chart_id: str | None = None,
    ) -> tuple[int, str | None]:
        """Pick the divisor for one segment.

        A candidate only qualifies on tolerance if the segment end also lies
        within tolerance, since moving it shifts every later segment.

        Returns:
            The divisor and an optional diagnostic message.

        Raises:
            UnsnappableTimingError: If no smart-mode candidate qualifies.
        """
        opts = self.options
        if opts.mode == SnapMode.FIXED:
            return (opts.divisor or point.snap_divisor), None

        points = list(offsets) + ([end] if end is not None else [])
        for divisor in opts.candidates:
            if all(is_on_grid(p, divisor) for p in points):
                return divisor, None
        for divisor in opts.candidates:
            if end is not None and end_shift_ms(end, divisor, point.beat_duration_ms) > opts.tolerance_ms:
                continue
            ratio = on_grid_ratio(offsets, divisor, point.beat_duration_ms, opts.tolerance_ms)
            if ratio >= opts.min_on_grid_ratio:
                return divisor, None

        finest = opts.candidates[-1]
        best = max(
            on_grid_ratio(offsets, d, point.beat_duration_ms, opts.tolerance_ms)
            for d in opts.candidates
        )
        message = (
            f"no divisor puts {opts.min_on_grid_ratio:.0%} of notes within "
            f"{opts.tolerance_ms}ms (best {best:.0%})"
        )
        if end is not None and all(
            end_shift_ms(end, d, point.beat_duration_ms) > opts.tolerance_ms for d in opts.candidates
        ):
            message = (
                f"next timing point at beat {point.time + end} is more than "
                f"{opts.tolerance_ms}ms off every grid"
            )
        if not opts.best_effort:
            raise UnsnappableTimingError(point.time, message, chart_id=chart_id)
        return finest, f"segment at beat {point.time}: {message}; snapped to 1/{finest}"

    def normalize(self, chart: Chart) -> Chart:
        """Snap a chart onto the beat grid.

        Args:
            chart: Chart to normalize.

        Returns:
            Normalized chart.

        Raises:
            UnsnappableTimingError: If a segment cannot be snapped.
        """
        if not chart.timing_points:
            raise UnsnappableTimingError(Fraction(0), "chart has no timing points", chart.chart_id)

        old_points = chart.timing_points
        old_starts = [tp.time for tp in old_points]
        times = sorted({note.time for note in chart.notes})
        mapping: dict[Fraction, Fraction] = {}
        new_points: list[TimingPoint] = []
        divisors: list[int] = []
        diagnostics: list[str] = []
        corrections = 0

        new_start = old_points[0].time
        cursor = 0
        for index, point in enumerate(old_points):
            end = old_starts[index + 1] - point.time if index + 1 < len(old_points) else None
            seg_times = []
            while cursor < len(times) and (end is None or times[cursor] < old_starts[index + 1]):
                seg_times.append(times[cursor])
                cursor += 1
            offsets = [t - point.time for t in seg_times]

            divisor, message = self.choose_divisor(offsets, end, point, chart.chart_id)
            if message:
                diagnostics.append(message)
            result = snap_offsets(offsets, divisor, self.options.drift_limit, end)
            corrections += result.corrections
            for raw, value in zip(seg_times, result.snapped):
                mapping[raw] = new_start + value

            new_points.append(replace(point, time=new_start, snap_divisor=divisor))
            divisors.append(divisor)
            if result.end is not None:
                shift_ms = end_shift_ms(end, divisor, point.beat_duration_ms)
                if shift_ms > self.options.tolerance_ms:
                    diagnostics.append(
                        f"timing point at beat {old_starts[index + 1]} moved {shift_ms:.1f}ms "
                        f"onto the 1/{divisor} grid"
                    )
                new_start += result.end

        def step_at(old_time: Fraction) -> Fraction:
            index = max(bisect_right(old_starts, old_time) - 1, 0)
            return Fraction(1, divisors[index])

        notes = self._rebuild_notes(chart, mapping, step_at, diagnostics)
        self._record_divisors(new_points, notes)

        if corrections:
            logger.debug(f"{chart.label}: applied {corrections} drift correction(s)")
        for message in diagnostics:
            logger.info(f"{chart.label}: {message}")
        return replace(
            chart,
            notes=notes,
            timing_points=new_points,
            diagnostics=chart.diagnostics + diagnostics,
        )

    def _rebuild_notes(
        self,
        chart: Chart,
        mapping: dict[Fraction, Fraction],
        step_at: Callable[[Fraction], Fraction],
        diagnostics: list[str],
    ) -> list[Note]:
        """Move notes to their snapped times and repair holds."""
        notes = [Note(mapping[n.time], n.column, n.kind, n.hold_length) for n in chart.notes]
        steps = [step_at(n.time) for n in chart.notes]

        # Drop presses that collapsed onto another press in the same column
        seen: set[tuple[Fraction, int]] = set()
        duplicates: set[int] = set()
        for index, note in enumerate(notes):
            if not note.is_press:
                continue
            key = (note.time, note.column)
            if key in seen:
                duplicates.add(index)
            seen.add(key)

        moved = 0
        for start, end in chart.hold_pairs():
            head, tail = notes[start], notes[end]
            if start in duplicates:
                duplicates.add(end)
                continue
            step = steps[start]
            if tail.time <= head.time:
                tail.time = head.time + step
                moved += 1
            if (tail.time, tail.column) in seen:
                tail.time -= step
                moved += 1
            if tail.time <= head.time:
                head.kind = NoteKind.TAP
                head.hold_length = None
                duplicates.add(end)
                diagnostics.append(f"hold at beat {head.time} in column {head.column} became a tap")
                continue
            head.hold_length = tail.time - head.time

        if moved:
            diagnostics.append(f"moved {moved} hold end(s) by one grid step")
        dropped = sum(1 for i in duplicates if notes[i].is_press)
        if dropped:
            diagnostics.append(f"dropped {dropped} duplicate note(s)")
        return [n for i, n in enumerate(notes) if i not in duplicates]

    def _record_divisors(self, points: list[TimingPoint], notes: list[Note]) -> None:
        """Store the coarsest covering divisor on each segment (smart mode)."""
        if self.options.mode != SnapMode.SMART:
            return
        starts = [tp.time for tp in points]
        by_segment: list[list[Fraction]] = [[] for _ in points]
        for note in notes:
            index = max(bisect_right(starts, note.time) - 1, 0)
            by_segment[index].append(note.time - starts[index])
        for index, point in enumerate(points):
            offsets = by_segment[index]
            if index + 1 < len(points):
                offsets.append(starts[index + 1] - point.time)
            for divisor in self.options.candidates:
                if all(is_on_grid(o, divisor) for o in offsets):
                    point.snap_divisor = divisor
                    break


def normalize_chart(chart: Chart, divisor: int | None = None) -> Chart:
    """Convenience function to snap a chart with a fixed divisor."""
    return TimingNormalizer(NormalizeOptions(divisor=divisor)).normalize(chart)
