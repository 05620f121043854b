"""Chart analysis: note grouping and intensity."""

from chart_converter.analysis.intensity import (
    GroupingPolicy,
    IntensityEstimator,
    IntensityMetric,
    NoteGroup,
    effective_bpm,
    group_notes,
    power_mean,
    stack_weight,
)

__all__ = [
    "GroupingPolicy",
    "IntensityEstimator",
    "IntensityMetric",
    "NoteGroup",
    "effective_bpm",
    "group_notes",
    "power_mean",
    "stack_weight",
]
