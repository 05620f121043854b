"""Column remapping through intensity-driven pattern substitution.

Presses are partitioned into groups, each group gets an intensity bucket,
and a pattern from the library decides which target columns the group's
notes occupy. Note times are never changed; only columns are rewritten.
"""

from __future__ import annotations

import copy
import logging
from collections import Counter
from dataclasses import dataclass, replace
from enum import Enum
from fractions import Fraction
from typing import Sequence

from chart_converter.analysis.intensity import (
    GroupingPolicy,
    IntensityEstimator,
    IntensityMetric,
    NoteGroup,
    group_notes,
)
from chart_converter.errors import RemapOverflowError
from chart_converter.ingest.timing import TimingResolver
from chart_converter.models.core import Chart, Note
from chart_converter.models.patterns import Pattern
from chart_converter.patterns.library import PatternLibrary

logger = logging.getLogger(__name__)


class OverflowPolicy(str, Enum):
    """What to do when a group needs more columns than available."""

    STRICT = "strict"
    BEST_EFFORT = "bestEffort"


@dataclass
class RemapOptions:
    """Options for remapping a chart.

    Attributes:
        target_columns: Target column count.
        grouping: Grouping policy for presses.
        group_window: Window length in beats (window grouping only).
        metric: Intensity signal used to pick patterns.
        thresholds: Intensity bucket boundaries (None for the metric default).
        overflow: Overflow policy.
        column_priority: Column ranking used both to place notes that the
            pattern cannot place and to decide which notes survive an
            overflow (lowest ranked source columns are dropped first).
            Unlisted columns rank after listed ones in ascending order.
        preserve_when_equal: Leave charts untouched when the source column
            count already equals the target.
        gamemode: Destination steps type to stamp on remapped charts.
    """

    target_columns: int
    grouping: GroupingPolicy = GroupingPolicy.SIMULTANEOUS
    group_window: Fraction = Fraction(1, 16)
    metric: IntensityMetric = IntensityMetric.SIMULTANEOUS
    thresholds: Sequence[float] | None = None
    overflow: OverflowPolicy = OverflowPolicy.STRICT
    column_priority: Sequence[int] | None = None
    preserve_when_equal: bool = True
    gamemode: str | None = None


def _priority_rank(column_priority: Sequence[int] | None, column: int) -> tuple[int, int]:
    if column_priority is not None and column in column_priority:
        return (0, list(column_priority).index(column))
    return (1, column)


class Remapper:
    """Rewrites charts for a different column count.

    Example:
        remapper = Remapper(RemapOptions(target_columns=4), PatternLibrary.builtin())
        chart_4k = remapper.remap(chart_7k)
    """

    def __init__(self, options: RemapOptions, library: PatternLibrary | None = None) -> None:
        """Initialize the remapper.

        Args:
            options: Remap options.
            library: Pattern library (defaults to the built-in library).
        """
        if options.target_columns < 1:
            raise ValueError(f"target column count must be positive, got {options.target_columns}")
        self.options = options
        self.library = library if library is not None else PatternLibrary.builtin()
        self.estimator = IntensityEstimator(options.metric, options.thresholds)
        # Fallback placement order for target columns
        self.placement_order = sorted(
            range(options.target_columns),
            key=lambda c: _priority_rank(options.column_priority, c),
        )

    def remap(self, chart: Chart) -> Chart:
        """Remap a chart to the target column count.

        Args:
            chart: Source chart (ownership is taken; it may be returned as is).

        Returns:
            Remapped chart.

        Raises:
            RemapOverflowError: If a group does not fit under the strict policy.
        """
        target = self.options.target_columns
        if chart.column_count == target and self.options.preserve_when_equal:
            if self.options.gamemode is not None:
                chart.gamemode = self.options.gamemode
            return chart

        groups = group_notes(chart, self.options.grouping, self.options.group_window)
        buckets = self.estimator.buckets(chart, groups)
        end_of = dict(chart.hold_pairs())
        start_of = {end: start for start, end in end_of.items()}
        resolver = TimingResolver.for_chart(chart)

        assigned: dict[int, int] = {}
        # Target column -> time its hold is released
        held: dict[int, Fraction] = {}
        usage: Counter[str] = Counter()
        diagnostics: list[str] = []

        for group, bucket in zip(groups, buckets):
            for column in [c for c, end in held.items() if end <= group.time]:
                del held[column]

            members = sorted(zip(group.columns, group.indices))
            demand = group.size + len(held)
            if demand > target:
                members = self._resolve_overflow(chart, group, members, demand, resolver, diagnostics)
                if not members:
                    continue

            signature = tuple(sorted({column for column, _ in members}))
            pattern = self.library.select(target, bucket, signature, usage, group_size=len(members))
            usage[pattern.pattern_id] += 1

            busy = set(held)
            for source_column, index in members:
                column = self._place(source_column, pattern, busy)
                busy.add(column)
                assigned[index] = column
                if index in end_of:
                    held[column] = chart.notes[end_of[index]].time

        notes: list[Note] = []
        for index, note in enumerate(chart.notes):
            if note.is_press:
                if index not in assigned:
                    continue
                column = assigned[index]
            else:
                start = start_of.get(index)
                if start is None or start not in assigned:
                    continue
                column = assigned[start]
            notes.append(Note(note.time, column, note.kind, note.hold_length))

        if diagnostics:
            logger.warning(f"{chart.label}: {len(diagnostics)} overflowing group(s) trimmed")
        logger.debug(
            f"Remapped {chart.label} from {chart.column_count}K to {target}K "
            f"({len(groups)} groups, {len(usage)} patterns)"
        )
        return replace(
            chart,
            column_count=target,
            notes=notes,
            timing_points=[replace(tp) for tp in chart.timing_points],
            metadata=copy.deepcopy(chart.metadata),
            gamemode=self.options.gamemode,
            diagnostics=chart.diagnostics + diagnostics,
        )

    def _resolve_overflow(
        self,
        chart: Chart,
        group: NoteGroup,
        members: list[tuple[int, int]],
        demand: int,
        resolver: TimingResolver,
        diagnostics: list[str],
    ) -> list[tuple[int, int]]:
        """Apply the overflow policy to a group that does not fit."""
        target = self.options.target_columns
        time_ms = resolver.beat_to_ms(group.time)
        if self.options.overflow == OverflowPolicy.STRICT:
            raise RemapOverflowError(group.time, time_ms, demand, target, chart_id=chart.chart_id)

        ranked = sorted(
            members,
            key=lambda m: (_priority_rank(self.options.column_priority, m[0]), m[1]),
        )
        keep_count = max(len(members) - (demand - target), 0)
        kept = set(ranked[:keep_count])
        lost = ranked[keep_count:]
        diagnostics.append(
            f"dropped {len(lost)} note(s) in column(s) {sorted(c for c, _ in lost)} "
            f"at {time_ms:.1f}ms (beat {group.time}): {demand} needed, {target} available"
        )
        return [m for m in members if m in kept]

    def _place(self, source_column: int, pattern: Pattern, busy: set[int]) -> int:
        """Pick a free target column for one note."""
        if pattern.template is None:
            if source_column < self.options.target_columns and source_column not in busy:
                return source_column
        else:
            for column in pattern.template:
                if column not in busy:
                    return column
        for column in self.placement_order:
            if column not in busy:
                return column
        raise RuntimeError("no free column left after overflow resolution")


def remap_chart(chart: Chart, target_columns: int, library: PatternLibrary | None = None) -> Chart:
    """Convenience function to remap a chart with default options."""
    return Remapper(RemapOptions(target_columns=target_columns), library).remap(chart)


__all__ = ["OverflowPolicy", "RemapOptions", "Remapper", "remap_chart"]
