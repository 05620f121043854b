"""Difficulty rating from note density."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from fractions import Fraction

from chart_converter.analysis.intensity import (
    DEFAULT_DENSITY_WINDOW,
    GroupingPolicy,
    effective_bpm,
    group_notes,
    power_mean,
)
from chart_converter.models.core import Chart

logger = logging.getLogger(__name__)

# Lowest effective BPM for each difficulty name
DIFFICULTY_TABLE = (
    (60.0, "Beginner"),
    (100.0, "Easy"),
    (140.0, "Medium"),
    (180.0, "Hard"),
    (220.0, "Challenge"),
    (260.0, "Edit"),
)


@dataclass
class RateOptions:
    """Options for rating charts.

    Attributes:
        exponent: Power-mean exponent; higher values weigh peaks more.
        meter_scale: Meter per effective BPM.
        density_window: Half-width of the density window in beats.
        set_difficulty: Whether to also set the difficulty name.
    """

    exponent: float = 2.0
    meter_scale: float = 0.05
    density_window: Fraction = DEFAULT_DENSITY_WINDOW
    set_difficulty: bool = True


def difficulty_name(value: float) -> str:
    """Difficulty name for an effective BPM."""
    name = DIFFICULTY_TABLE[0][1]
    for threshold, candidate in DIFFICULTY_TABLE:
        if value >= threshold:
            name = candidate
    return name


class ChartRater:
    """Assigns a meter and difficulty name to charts."""

    def __init__(self, options: RateOptions | None = None) -> None:
        self.options = options or RateOptions()

    def rating(self, chart: Chart) -> float:
        """Effective BPM rating of a chart (power mean over note groups)."""
        groups = group_notes(chart, GroupingPolicy.SIMULTANEOUS)
        values = effective_bpm(chart, groups, self.options.density_window)
        return power_mean(values, self.options.exponent)

    def rate(self, chart: Chart) -> Chart:
        """Set the chart's rating, meter (and difficulty name) in place."""
        value = self.rating(chart)
        chart.rating = value
        chart.meter = max(1, round(value * self.options.meter_scale))
        if self.options.set_difficulty:
            chart.difficulty = difficulty_name(value)
        logger.debug(f"Rated {chart.label}: {value:.1f} effective BPM, meter {chart.meter}")
        return chart
