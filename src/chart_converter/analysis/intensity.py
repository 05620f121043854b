"""Note grouping and intensity estimation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import TYPE_CHECKING, Sequence

import numpy as np

if TYPE_CHECKING:
    from chart_converter.models.core import Chart


class GroupingPolicy(str, Enum):
    """How presses are partitioned into groups."""

    SIMULTANEOUS = "simultaneous"  # exactly equal times
    WINDOW = "window"  # within a window from the first note of the group


class IntensityMetric(str, Enum):
    """Signal used to bucket groups by intensity."""

    SIMULTANEOUS = "simultaneous"
    EFFECTIVE_BPM = "effectiveBpm"


# Bucket boundaries; a value v falls in bucket i when thresholds[i-1] <= v < thresholds[i]
DEFAULT_THRESHOLDS: dict[IntensityMetric, tuple[float, ...]] = {
    IntensityMetric.SIMULTANEOUS: (2, 3, 4),
    IntensityMetric.EFFECTIVE_BPM: (150.0, 225.0, 300.0, 400.0),
}

# Weight of the n-th simultaneous note; the last weight repeats
STACK_WEIGHTS = (1.0, 0.75, 0.5)

DEFAULT_DENSITY_WINDOW = Fraction(1)


@dataclass
class NoteGroup:
    """A set of presses treated as one unit by remapping.

    Attributes:
        time: Time of the earliest note in the group (beats).
        indices: Indices of the group's presses in ``chart.notes``.
        columns: Source columns of the presses, parallel to ``indices``.
    """

    time: Fraction
    indices: list[int]
    columns: list[int]

    @property
    def size(self) -> int:
        """Number of notes in the group."""
        return len(self.indices)

    @property
    def signature(self) -> tuple[int, ...]:
        """Sorted tuple of distinct active source columns."""
        return tuple(sorted(set(self.columns)))


def group_notes(
    chart: Chart,
    policy: GroupingPolicy = GroupingPolicy.SIMULTANEOUS,
    window: Fraction = Fraction(1, 16),
) -> list[NoteGroup]:
    """Partition a chart's presses into disjoint time-ordered groups.

    Hold ends are never grouped.

    Args:
        chart: Chart to partition.
        policy: Grouping policy.
        window: Window length in beats (window policy only).

    Returns:
        Groups in time order.
    """
    groups: list[NoteGroup] = []
    current: NoteGroup | None = None
    for index, note in enumerate(chart.notes):
        if not note.is_press:
            continue
        if current is not None:
            if policy == GroupingPolicy.SIMULTANEOUS:
                joins = note.time == current.time
            else:
                joins = note.time - current.time < window
            if joins:
                current.indices.append(index)
                current.columns.append(note.column)
                continue
        current = NoteGroup(note.time, [index], [note.column])
        groups.append(current)
    return groups


def stack_weight(size: int) -> float:
    """Combined weight of ``size`` simultaneous notes."""
    weights = [STACK_WEIGHTS[min(i, len(STACK_WEIGHTS) - 1)] for i in range(size)]
    return float(sum(weights))


def group_density(times: Sequence[Fraction], window: Fraction = DEFAULT_DENSITY_WINDOW) -> np.ndarray:
    """Groups per beat around each group time.

    Counts groups in ``[t - window, t + window)`` and divides by the window
    span.
    """
    values = np.array([float(t) for t in times], dtype=np.float64)
    if values.size == 0:
        return values
    w = float(window)
    lo = np.searchsorted(values, values - w, side="left")
    hi = np.searchsorted(values, values + w, side="left")
    return (hi - lo) / (2 * w)


def effective_bpm(
    chart: Chart,
    groups: list[NoteGroup],
    window: Fraction = DEFAULT_DENSITY_WINDOW,
) -> np.ndarray:
    """Effective BPM of each group.

    The nominal tempo is scaled by the local group density and by the stack
    weight of the group, so chained and stacked notes read as faster.
    """
    if not groups:
        return np.zeros(0, dtype=np.float64)
    bpms = np.array([chart.bpm_at(g.time) for g in groups], dtype=np.float64)
    stacks = np.array([stack_weight(g.size) for g in groups], dtype=np.float64)
    density = group_density([g.time for g in groups], window)
    return bpms * density * stacks


class IntensityEstimator:
    """Compute per-group intensity values and buckets."""

    def __init__(
        self,
        metric: IntensityMetric = IntensityMetric.SIMULTANEOUS,
        thresholds: Sequence[float] | None = None,
        density_window: Fraction = DEFAULT_DENSITY_WINDOW,
    ) -> None:
        """Initialize the estimator.

        Args:
            metric: Intensity signal.
            thresholds: Ascending bucket boundaries (defaults per metric).
            density_window: Half-width in beats of the density window.
        """
        self.metric = IntensityMetric(metric)
        self.thresholds = np.array(
            thresholds if thresholds is not None else DEFAULT_THRESHOLDS[self.metric],
            dtype=np.float64,
        )
        self.density_window = density_window

    @property
    def bucket_count(self) -> int:
        """Number of distinct buckets."""
        return len(self.thresholds) + 1

    def values(self, chart: Chart, groups: list[NoteGroup]) -> np.ndarray:
        """Raw intensity value per group."""
        if self.metric == IntensityMetric.SIMULTANEOUS:
            return np.array([chart.active_count_at(g.time) for g in groups], dtype=np.float64)
        return effective_bpm(chart, groups, self.density_window)

    def buckets(self, chart: Chart, groups: list[NoteGroup]) -> list[int]:
        """Intensity bucket per group."""
        values = self.values(chart, groups)
        return [int(b) for b in np.searchsorted(self.thresholds, values, side="right")]


def power_mean(values: np.ndarray, exponent: float = 2.0) -> float:
    """p-norm style mean that emphasises the hardest sections."""
    if values.size == 0:
        return 0.0
    return float(np.mean(values**exponent) ** (1.0 / exponent))
