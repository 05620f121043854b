"""Difficulty selection.

A StepMania song holds at most one chart per difficulty name and steps type.
The selector keeps the best-spread subset of a song's rated charts and gives
each survivor a distinct difficulty name.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from chart_converter.errors import ChartError
from chart_converter.models.core import Chart

logger = logging.getLogger(__name__)

DIFFICULTY_NAMES = ("Beginner", "Easy", "Medium", "Hard", "Challenge", "Edit")


class DifficultyPreference(str, Enum):
    """Criterion used to evict charts once a group has too many."""

    SPREAD = "spread"  # keep the widest range of difficulties
    CLOSEST_MATCH = "closestMatch"  # stay close to a target set of ratings
    EASIER = "easier"
    HARDER = "harder"


@dataclass
class SelectOptions:
    """Options for selecting difficulties.

    Attributes:
        max_charts: Charts kept per group; capped by the number of names.
        difficulty_names: Names available to the kept charts, in order of
            increasing difficulty.
        prefer: Eviction criterion.
        targets: Ratings to stay close to (``closestMatch`` only).
        target_min: With ``target_max``, the rating range the targets are
            expressed in; targets are stretched onto the group's own range.
            Targets are used as-is when both are equal.
        target_max: Upper end of the target range.
        dedup_distance: Charts whose ratings are closer than this are
            collapsed into one before eviction (0 keeps all).
        dedup_bias: Which chart of a collapsed run survives, from 0 (the
            easiest) to 1 (the hardest).
        merge: Group charts by song audio and steps type; otherwise the
            whole bucket forms one group.
    """

    max_charts: int = 6
    difficulty_names: tuple[str, ...] = DIFFICULTY_NAMES
    prefer: DifficultyPreference = DifficultyPreference.SPREAD
    targets: tuple[float, ...] = ()
    target_min: float = 0.0
    target_max: float = 0.0
    dedup_distance: float = 0.0
    dedup_bias: float = 0.5
    merge: bool = True


@dataclass
class SelectResult:
    """Outcome of selecting one bucket.

    Attributes:
        selected: Kept charts, grouped by song in order of first appearance
            and sorted by rating within a song.
        dropped: Charts left out, with the reason.
    """

    selected: list[Chart] = field(default_factory=list)
    dropped: list[tuple[Chart, str]] = field(default_factory=list)


def _linear_map(value: float, low: float, high: float, out_low: float, out_high: float) -> float:
    return out_low + (value - low) * (out_high - out_low) / (high - low)


def _target_gap(rating: float, targets: Sequence[float]) -> float:
    """Distance from a rating to the nearest target."""
    gaps = [abs(rating - target) for target in targets]
    return min(gaps) if gaps else math.inf


def match_targets(ratings: list[float], targets: Sequence[float], keep: int) -> list[int]:
    """Evict until ``keep`` ratings remain, always dropping the worst-placed.

    Each round removes the rating farthest from its nearest target; among
    equally distant ratings the hardest goes first.

    Args:
        ratings: Ratings in ascending order.
        targets: Target ratings.
        keep: Number of ratings to keep.

    Returns:
        Indices into ``ratings`` of the kept entries, ascending.
    """
    kept = list(range(len(ratings)))
    while len(kept) > keep:
        worst = 0
        worst_gap = -math.inf
        for position, index in enumerate(kept):
            gap = _target_gap(ratings[index], targets)
            if gap >= worst_gap:
                worst, worst_gap = position, gap
        del kept[worst]
    return kept


def resolve_name_conflicts(indices: list[int], slots: int) -> list[int]:
    """Spread difficulty-name indices so that neighbours never share one.

    ``indices`` must be ascending by rating. Each conflict is solved by
    shifting the cheaper side (fewer charts to move) one name away, pushing
    further charts along as needed.

    Args:
        indices: Name index of each chart, in rating order.
        slots: Number of available names; at least ``len(indices)``.

    Returns:
        New name indices, strictly increasing.
    """
    indices = list(indices)

    def cost(start: int, step: int) -> float:
        position, occupied, moves = start, indices[start], 0
        while 0 <= occupied < slots and 0 <= position < len(indices):
            if (indices[position] - occupied) * step > 0:
                break
            position += step
            occupied += step
            moves += 1
        return moves if 0 <= occupied < slots else math.inf

    while True:
        conflict = next((i for i in range(len(indices) - 1) if indices[i] == indices[i + 1]), None)
        if conflict is None:
            return indices
        if cost(conflict, -1) < cost(conflict + 1, 1):
            position, step = conflict, -1
        else:
            position, step = conflict + 1, 1
        value = indices[position] + step
        while 0 <= position < len(indices) and (indices[position] - value) * step <= 0:
            indices[position] = min(max(value, 0), slots - 1)
            position += step
            value += step


class ChartSelector:
    """Keeps a limited, well-spread set of difficulties per song.

    Charts must be rated (see :class:`~chart_converter.transform.rate.ChartRater`).

    Example:
        selector = ChartSelector(SelectOptions(max_charts=4))
        result = selector.select(charts)
    """

    def __init__(self, options: SelectOptions | None = None) -> None:
        self.options = options or SelectOptions()

    def group_key(self, chart: Chart) -> tuple[str, str]:
        """Song identity: the audio file (resolved against the chart's
        folder when known) and the steps type."""
        audio = chart.metadata.audio or ""
        if audio and chart.source_path is not None:
            audio = str(chart.source_path.parent / audio)
        return (audio, chart.effective_gamemode or f"{chart.column_count}K")

    def select(self, charts: Sequence[Chart]) -> SelectResult:
        """Select charts group by group.

        Raises:
            ChartError: If a chart has no rating.
        """
        for chart in charts:
            if chart.rating is None:
                raise ChartError(
                    "chart has no difficulty rating (add a Rate node before Select)", chart.chart_id
                )

        groups: dict[tuple[str, str], list[Chart]] = {}
        if self.options.merge:
            for chart in charts:
                groups.setdefault(self.group_key(chart), []).append(chart)
        else:
            groups[("", "")] = list(charts)

        result = SelectResult()
        for group in groups.values():
            self._select_group(group, result)
        return result

    def _select_group(self, charts: list[Chart], result: SelectResult) -> None:
        opts = self.options
        names = opts.difficulty_names
        if not names or opts.max_charts <= 0:
            result.dropped.extend((chart, "no difficulty slots available") for chart in charts)
            return

        # sorted() is stable, so equal ratings keep bucket order
        ordered = sorted(charts, key=lambda c: c.rating)
        survivors = self._dedup(ordered, result)
        keep = min(opts.max_charts, len(names))
        kept_positions = self._evict([c.rating for c in survivors], keep)
        for position, chart in enumerate(survivors):
            if position not in kept_positions:
                result.dropped.append((chart, f"evicted by '{opts.prefer.value}' selection"))
        kept = [survivors[position] for position in kept_positions]

        fallback = len(names) - 1
        indices = [names.index(c.difficulty) if c.difficulty in names else fallback for c in kept]
        for chart, index in zip(kept, resolve_name_conflicts(indices, len(names))):
            if chart.difficulty != names[index]:
                logger.debug(f"Renamed {chart.label}: {chart.difficulty} -> {names[index]}")
            chart.difficulty = names[index]
        result.selected.extend(kept)

    def _dedup(self, ordered: list[Chart], result: SelectResult) -> list[Chart]:
        """Collapse runs of charts with ratings closer than the dedup distance."""
        opts = self.options
        survivors = []
        start = 0
        while start < len(ordered):
            low = ordered[start].rating
            end = start + 1
            while end < len(ordered) and ordered[end].rating - low < opts.dedup_distance:
                end += 1
            high = ordered[end - 1].rating
            pivot = low + (high - low) * opts.dedup_bias
            chosen = next((i for i in range(start, end) if ordered[i].rating >= pivot), end - 1)
            survivors.append(ordered[chosen])
            for i in range(start, end):
                if i != chosen:
                    result.dropped.append(
                        (ordered[i], f"rating within {opts.dedup_distance} of {ordered[chosen].label}")
                    )
            start = end
        return survivors

    def _evict(self, ratings: list[float], keep: int) -> list[int]:
        """Positions of the ratings kept by the preference."""
        opts = self.options
        if len(ratings) <= keep:
            return list(range(len(ratings)))
        if opts.prefer == DifficultyPreference.EASIER:
            return list(range(keep))
        if opts.prefer == DifficultyPreference.HARDER:
            return list(range(len(ratings) - keep, len(ratings)))

        low, high = ratings[0], ratings[-1]
        if opts.prefer == DifficultyPreference.SPREAD:
            if keep == 1:
                targets = [low + (high - low) / 2]
            else:
                targets = [low + (high - low) * i / (keep - 1) for i in range(keep)]
        elif opts.target_min == opts.target_max:
            targets = sorted(opts.targets)
        else:
            targets = sorted(
                _linear_map(t, opts.target_min, opts.target_max, low, high) for t in opts.targets
            )
        return match_targets(ratings, targets, keep)
