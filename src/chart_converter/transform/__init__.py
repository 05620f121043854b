"""Chart transforms: remapping, timing normalization, filtering, rating,
selection and note thinning."""

from chart_converter.transform.predicates import (
    ChartProperty,
    ComparisonOp,
    PredicateSpec,
    compile_predicate,
)
from chart_converter.transform.rate import ChartRater, RateOptions
from chart_converter.transform.remap import OverflowPolicy, RemapOptions, Remapper, remap_chart
from chart_converter.transform.select import ChartSelector, DifficultyPreference, SelectOptions
from chart_converter.transform.thinning import (
    SpacingOptions,
    align_notes,
    limit_simultaneous,
    make_space,
)
from chart_converter.transform.timing import (
    NormalizeOptions,
    SnapMode,
    TimingNormalizer,
    normalize_chart,
    snap_offsets,
)

__all__ = [
    "ChartProperty",
    "ChartRater",
    "ChartSelector",
    "ComparisonOp",
    "DifficultyPreference",
    "NormalizeOptions",
    "OverflowPolicy",
    "PredicateSpec",
    "RateOptions",
    "RemapOptions",
    "Remapper",
    "SelectOptions",
    "SnapMode",
    "SpacingOptions",
    "TimingNormalizer",
    "align_notes",
    "compile_predicate",
    "limit_simultaneous",
    "make_space",
    "normalize_chart",
    "remap_chart",
    "snap_offsets",
]
