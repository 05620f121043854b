"""Node kinds of the conversion pipeline.

Every kind implements the same contract, ``process(inputs, context)``, which
maps input buckets (ordered lists of charts, keyed by port name) to output
buckets. Kinds register themselves in :data:`NODE_KINDS`; adding a kind
needs no change to the graph builder or the scheduler.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Union

from pydantic import Field, field_validator, model_validator

from chart_converter.analysis.intensity import GroupingPolicy, IntensityMetric
from chart_converter.config import ConfigModel
from chart_converter.errors import ChartError, ChartProcessingError, ConfigError
from chart_converter.export import ChartWriter, ExportFormat, ExportOptions
from chart_converter.ingest.loader import SourceLoader
from chart_converter.models.core import Chart, parse_fraction
from chart_converter.patterns.library import PatternLibrary
from chart_converter.pipeline.report import ChartOutcome, ChartStatus
from chart_converter.transform.predicates import PredicateSpec, compile_predicate
from chart_converter.transform.rate import ChartRater, RateOptions
from chart_converter.transform.remap import OverflowPolicy, RemapOptions, Remapper
from chart_converter.transform.select import (
    DIFFICULTY_NAMES,
    ChartSelector,
    DifficultyPreference,
    SelectOptions,
)
from chart_converter.transform.thinning import (
    SpacingOptions,
    align_notes,
    limit_simultaneous,
    make_space,
)
from chart_converter.transform.timing import (
    DEFAULT_CANDIDATES,
    NormalizeOptions,
    SnapMode,
    TimingNormalizer,
)

logger = logging.getLogger(__name__)

CHARTS = "charts"
IN = "in"
OUT = "out"
REST = "rest"

Bucket = list[Chart]


@dataclass(frozen=True)
class PortSpec:
    """A named, typed node port.

    Attributes:
        name: Port name, unique per direction.
        data_type: Type of data carried; edges must join equal types.
        fan_in: Whether several edges may feed this (input) port.
    """

    name: str
    data_type: str = CHARTS
    fan_in: bool = False


@dataclass
class NodeContext:
    """Run-time information handed to a node.

    Attributes:
        node_id: Id of the node being executed.
        continue_on_error: Record per-chart errors and carry on, instead of
            failing the node.
    """

    node_id: str
    continue_on_error: bool = True


@dataclass
class NodeResult:
    """Output of one node execution.

    Attributes:
        outputs: Buckets by output port.
        outcomes: Per-chart outcomes to add to the batch report.
    """

    outputs: dict[str, Bucket] = field(default_factory=dict)
    outcomes: list[ChartOutcome] = field(default_factory=list)


class EmptyConfig(ConfigModel):
    """Configuration of kinds without options."""


NODE_KINDS: dict[str, type[NodeKind]] = {}


def register_kind(cls: type[NodeKind]) -> type[NodeKind]:
    """Class decorator adding a kind to the registry."""
    NODE_KINDS[cls.kind] = cls
    return cls


def create_node(kind: str, config: dict[str, Any]) -> NodeKind:
    """Instantiate a registered kind.

    Raises:
        KeyError: If the kind is unknown.
        pydantic.ValidationError: If the configuration is invalid.
    """
    cls = NODE_KINDS[kind]
    return cls(cls.config_model.model_validate(config or {}))


def copy_bucket(bucket: Bucket) -> Bucket:
    """Deep-copy every chart of a bucket, keeping order."""
    return [chart.copy() for chart in bucket]


class NodeKind:
    """Base class of node kinds.

    Attributes:
        kind: Registry name.
        config_model: Pydantic model validating the kind's configuration.
        read_only: The node never mutates the charts it receives, so fan-out
            may share charts with it instead of copying.
    """

    kind: ClassVar[str] = ""
    config_model: ClassVar[type[ConfigModel]] = EmptyConfig
    read_only: ClassVar[bool] = False

    def __init__(self, config: ConfigModel) -> None:
        self.config = config

    def input_ports(self) -> tuple[PortSpec, ...]:
        return (PortSpec(IN),)

    def output_ports(self) -> tuple[PortSpec, ...]:
        return (PortSpec(OUT),)

    def resources(self) -> tuple[str, ...]:
        """External resources needing exclusive access while the node runs."""
        return ()

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        raise NotImplementedError

    # Per-chart error boundary

    def _chart_failed(
        self,
        error: ChartError,
        chart_id: str,
        label: str,
        context: NodeContext,
        outcomes: list[ChartOutcome],
    ) -> None:
        """Record a per-chart error, or re-raise it when failing fast."""
        if error.chart_id is None:
            error.chart_id = chart_id
        if not context.continue_on_error:
            raise error
        logger.warning(f"[{context.node_id}] {label}: {error}")
        outcomes.append(
            ChartOutcome(
                chart_id=chart_id,
                label=label,
                status=ChartStatus.FAILED,
                node_id=context.node_id,
                reason=str(error),
                error_type=type(error).__name__,
            )
        )

    def _map_charts(
        self,
        charts: Bucket,
        context: NodeContext,
        transform: Callable[[Chart], Chart],
    ) -> NodeResult:
        """Apply a per-chart transform behind the error boundary."""
        result = NodeResult(outputs={OUT: []})
        for chart in charts:
            try:
                result.outputs[OUT].append(transform(chart))
            except ChartError as e:
                self._chart_failed(e, chart.chart_id, chart.label, context, result.outcomes)
            except Exception as e:
                raise ChartProcessingError(chart.chart_id, e) from e
        return result


# Sources and sinks


class LoadConfig(ConfigModel):
    path: Path
    recursive: bool = True
    column_counts: list[int] | None = None
    offset_ms: float = 0.0


@register_kind
class LoadNode(NodeKind):
    """Loads every chart file under a path (source node)."""

    kind = "Load"
    config_model = LoadConfig
    config: LoadConfig

    def input_ports(self) -> tuple[PortSpec, ...]:
        return ()

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        loader = SourceLoader(offset_ms=self.config.offset_ms)
        paths = loader.scan(self.config.path, self.config.recursive)
        wanted = self.config.column_counts
        result = NodeResult(outputs={OUT: []})
        logger.info(f"[{context.node_id}] Found {len(paths)} chart file(s) in {self.config.path}")

        for path in paths:
            try:
                header = loader.read_header(path)
                reason = None
                if not header.is_mania:
                    reason = f"unsupported game mode '{header.mode_name}'"
                elif wanted is not None and header.column_count not in wanted:
                    reason = f"{header.column_count}K not in {wanted}"
                if reason is not None:
                    logger.debug(f"[{context.node_id}] Skipping {path.name}: {reason}")
                    result.outcomes.append(
                        ChartOutcome(
                            chart_id=str(path),
                            label=path.name,
                            status=ChartStatus.SKIPPED,
                            node_id=context.node_id,
                            reason=reason,
                        )
                    )
                    continue
                result.outputs[OUT].append(loader.load(path))
            except ChartError as e:
                self._chart_failed(e, str(path), path.name, context, result.outcomes)
            except Exception as e:
                raise ChartProcessingError(str(path), e) from e
        return result


class WriteConfig(ConfigModel):
    path: Path | None = None
    in_place: bool = False
    format: ExportFormat = ExportFormat.SIMFILE
    link_assets: bool = True

    @model_validator(mode="after")
    def _check_path(self) -> WriteConfig:
        if self.path is None and not self.in_place:
            raise ValueError("'path' is required unless 'inPlace' is set")
        return self


@register_kind
class WriteNode(NodeKind):
    """Writes charts to disk (sink node)."""

    kind = "Write"
    config_model = WriteConfig
    read_only = True
    config: WriteConfig

    def output_ports(self) -> tuple[PortSpec, ...]:
        return ()

    def resources(self) -> tuple[str, ...]:
        if self.config.in_place:
            return ("in-place",)
        if self.config.path is None:
            raise ConfigError("'path' is required unless 'inPlace' is set")
        return (str(self.config.path.resolve()),)

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        writer = ChartWriter(
            ExportOptions(
                output_dir=self.config.path,
                in_place=self.config.in_place,
                format=self.config.format,
                link_assets=self.config.link_assets,
            )
        )
        result = NodeResult()
        for written in writer.write(inputs[IN]):
            chart = written.chart
            if written.error is not None:
                self._chart_failed(written.error, chart.chart_id, chart.label, context, result.outcomes)
                continue
            result.outcomes.append(
                ChartOutcome(
                    chart_id=chart.chart_id,
                    label=chart.label,
                    status=ChartStatus.SUCCEEDED,
                    node_id=context.node_id,
                    output_path=written.path,
                    diagnostics=list(chart.diagnostics),
                )
            )
        return result


# Transforms


class RemapConfig(ConfigModel):
    target_column_count: int = Field(ge=1)
    grouping_policy: GroupingPolicy = GroupingPolicy.SIMULTANEOUS
    group_window: Union[str, float] = "1/16"
    intensity_metric: IntensityMetric = IntensityMetric.SIMULTANEOUS
    intensity_thresholds: list[float] | None = None
    overflow_policy: OverflowPolicy = OverflowPolicy.STRICT
    column_priority: list[int] | None = None
    preserve_when_equal: bool = True
    pattern_library: Path | None = None
    gamemode: str | None = None

    @field_validator("group_window")
    @classmethod
    def _positive_window(cls, value: str | float) -> str | float:
        try:
            window = parse_fraction(value)
        except ZeroDivisionError as e:
            raise ValueError(str(e)) from e
        if window <= 0:
            raise ValueError("must be positive")
        return value


@register_kind
class RemapNode(NodeKind):
    """Rewrites charts for a different column count."""

    kind = "Remap"
    config_model = RemapConfig
    config: RemapConfig

    def __init__(self, config: RemapConfig) -> None:
        super().__init__(config)
        library = (
            PatternLibrary.load(config.pattern_library)
            if config.pattern_library is not None
            else PatternLibrary.builtin()
        )
        self.remapper = Remapper(
            RemapOptions(
                target_columns=config.target_column_count,
                grouping=config.grouping_policy,
                group_window=parse_fraction(config.group_window),
                metric=config.intensity_metric,
                thresholds=config.intensity_thresholds,
                overflow=config.overflow_policy,
                column_priority=config.column_priority,
                preserve_when_equal=config.preserve_when_equal,
                gamemode=config.gamemode,
            ),
            library,
        )

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        return self._map_charts(inputs[IN], context, self.remapper.remap)


class TimingNormalizeConfig(ConfigModel):
    mode: SnapMode = SnapMode.FIXED
    divisor: int | None = Field(default=None, ge=1)
    divisor_candidates: list[int] = Field(default_factory=lambda: list(DEFAULT_CANDIDATES), min_length=1)
    tolerance: float = Field(default=2.0, ge=0)
    min_on_grid_ratio: float = Field(default=1.0, gt=0, le=1)
    drift_limit: float = Field(default=0.5, gt=0)
    best_effort: bool = False

    @field_validator("divisor_candidates")
    @classmethod
    def _positive(cls, value: list[int]) -> list[int]:
        if any(d < 1 for d in value):
            raise ValueError("divisors must be positive")
        return value


@register_kind
class TimingNormalizeNode(NodeKind):
    """Snaps notes onto a rational beat grid."""

    kind = "TimingNormalize"
    config_model = TimingNormalizeConfig
    config: TimingNormalizeConfig

    def __init__(self, config: TimingNormalizeConfig) -> None:
        super().__init__(config)
        self.normalizer = TimingNormalizer(
            NormalizeOptions(
                mode=config.mode,
                divisor=config.divisor,
                candidates=tuple(config.divisor_candidates),
                tolerance_ms=config.tolerance,
                min_on_grid_ratio=config.min_on_grid_ratio,
                drift_limit=config.drift_limit,
                best_effort=config.best_effort,
            )
        )

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        return self._map_charts(inputs[IN], context, self.normalizer.normalize)


class RateConfig(ConfigModel):
    exponent: float = Field(default=2.0, gt=0)
    meter_scale: float = Field(default=0.05, gt=0)
    set_difficulty: bool = True


@register_kind
class RateNode(NodeKind):
    """Assigns a meter and difficulty name from note density."""

    kind = "Rate"
    config_model = RateConfig
    config: RateConfig

    def __init__(self, config: RateConfig) -> None:
        super().__init__(config)
        self.rater = ChartRater(
            RateOptions(
                exponent=config.exponent,
                meter_scale=config.meter_scale,
                set_difficulty=config.set_difficulty,
            )
        )

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        return self._map_charts(inputs[IN], context, self.rater.rate)


class SelectConfig(ConfigModel):
    merge: bool = True
    max_charts: int = Field(default=6, ge=0)
    diff_names: list[str] = Field(default_factory=lambda: list(DIFFICULTY_NAMES))
    prefer: DifficultyPreference = DifficultyPreference.SPREAD
    targets: list[float] = Field(default_factory=list)
    target_min: float = 0.0
    target_max: float = 0.0
    dedup_dist: float = Field(default=0.0, ge=0)
    dedup_bias: float = Field(default=0.5, ge=0, le=1)

    @field_validator("diff_names")
    @classmethod
    def _known_names(cls, value: list[str]) -> list[str]:
        unknown = [name for name in value if name not in DIFFICULTY_NAMES]
        if unknown:
            raise ValueError(f"unknown difficulty names {unknown}")
        if len(set(value)) != len(value):
            raise ValueError("difficulty names must be unique")
        return value

    @model_validator(mode="after")
    def _check_targets(self) -> SelectConfig:
        if self.prefer == DifficultyPreference.CLOSEST_MATCH and not self.targets:
            raise ValueError("'targets' is required when preferring 'closestMatch'")
        return self


@register_kind
class SelectNode(NodeKind):
    """Keeps a spread of rated charts per song; the rest are reported as skipped."""

    kind = "Select"
    config_model = SelectConfig
    config: SelectConfig

    def __init__(self, config: SelectConfig) -> None:
        super().__init__(config)
        self.selector = ChartSelector(
            SelectOptions(
                max_charts=config.max_charts,
                difficulty_names=tuple(config.diff_names),
                prefer=config.prefer,
                targets=tuple(config.targets),
                target_min=config.target_min,
                target_max=config.target_max,
                dedup_distance=config.dedup_dist,
                dedup_bias=config.dedup_bias,
                merge=config.merge,
            )
        )

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        result = NodeResult(outputs={OUT: []})
        rated = []
        for chart in inputs[IN]:
            if chart.rating is None:
                error = ChartError("chart has no difficulty rating (add a Rate node before Select)")
                self._chart_failed(error, chart.chart_id, chart.label, context, result.outcomes)
            else:
                rated.append(chart)

        selection = self.selector.select(rated)
        result.outputs[OUT] = selection.selected
        for chart, reason in selection.dropped:
            result.outcomes.append(
                ChartOutcome(
                    chart_id=chart.chart_id,
                    label=chart.label,
                    status=ChartStatus.SKIPPED,
                    node_id=context.node_id,
                    reason=reason,
                )
            )
        logger.info(
            f"[{context.node_id}] Selected {len(selection.selected)} of {len(rated)} rated chart(s)"
        )
        return result


class SimultaneousConfig(ConfigModel):
    max_keys: int = Field(ge=1)


@register_kind
class SimultaneousNode(NodeKind):
    """Limits how many keys are down at once."""

    kind = "Simultaneous"
    config_model = SimultaneousConfig
    config: SimultaneousConfig

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        return self._map_charts(
            inputs[IN], context, lambda chart: limit_simultaneous(chart, self.config.max_keys)
        )


class SpaceConfig(ConfigModel):
    min_beats: Union[str, float, None] = None
    max_bpm: float | None = Field(default=None, gt=0)

    @field_validator("min_beats")
    @classmethod
    def _positive_beats(cls, value: str | float | None) -> str | float | None:
        if value is None:
            return value
        try:
            beats = parse_fraction(value)
        except ZeroDivisionError as e:
            raise ValueError(str(e)) from e
        if beats <= 0:
            raise ValueError("must be positive")
        return value

    @model_validator(mode="after")
    def _one_limit(self) -> SpaceConfig:
        if (self.min_beats is None) == (self.max_bpm is None):
            raise ValueError("exactly one of 'minBeats' and 'maxBpm' is required")
        return self


@register_kind
class SpaceNode(NodeKind):
    """Removes notes too close to their neighbours, finest subdivisions first."""

    kind = "Space"
    config_model = SpaceConfig
    config: SpaceConfig

    def __init__(self, config: SpaceConfig) -> None:
        super().__init__(config)
        self.options = SpacingOptions(
            min_beats=parse_fraction(config.min_beats) if config.min_beats is not None else None,
            max_bpm=config.max_bpm,
        )

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        return self._map_charts(inputs[IN], context, lambda chart: make_space(chart, self.options))


class AlignConfig(ConfigModel):
    to: Union[str, float] = 1

    @field_validator("to")
    @classmethod
    def _positive(cls, value: str | float) -> str | float:
        try:
            beats = parse_fraction(value)
        except ZeroDivisionError as e:
            raise ValueError(str(e)) from e
        if beats <= 0:
            raise ValueError("must be positive")
        return value


@register_kind
class AlignNode(NodeKind):
    """Keeps only notes on a coarser beat grid."""

    kind = "Align"
    config_model = AlignConfig
    config: AlignConfig

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        to = parse_fraction(self.config.to)
        return self._map_charts(inputs[IN], context, lambda chart: align_notes(chart, to))


# Routing


class FilterConfig(ConfigModel):
    predicate: PredicateSpec


@register_kind
class FilterNode(NodeKind):
    """Keeps charts matching a predicate; the rest are reported as skipped."""

    kind = "Filter"
    config_model = FilterConfig
    config: FilterConfig

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        test = compile_predicate(self.config.predicate)
        result = NodeResult(outputs={OUT: []})
        for chart in inputs[IN]:
            if test(chart):
                result.outputs[OUT].append(chart)
            else:
                result.outcomes.append(
                    ChartOutcome(
                        chart_id=chart.chart_id,
                        label=chart.label,
                        status=ChartStatus.SKIPPED,
                        node_id=context.node_id,
                        reason="filtered out",
                    )
                )
        return result


class SplitCase(ConfigModel):
    name: str = Field(min_length=1)
    predicate: PredicateSpec


class SplitConfig(ConfigModel):
    cases: list[SplitCase] = Field(min_length=1)

    @field_validator("cases")
    @classmethod
    def _unique_names(cls, value: list[SplitCase]) -> list[SplitCase]:
        names = [case.name for case in value]
        if len(set(names)) != len(names):
            raise ValueError("case names must be unique")
        if REST in names:
            raise ValueError(f"'{REST}' is reserved for unmatched charts")
        return value


@register_kind
class SplitNode(NodeKind):
    """Routes each chart to the first matching case, or to ``rest``."""

    kind = "Split"
    config_model = SplitConfig
    config: SplitConfig

    def output_ports(self) -> tuple[PortSpec, ...]:
        return tuple(PortSpec(case.name) for case in self.config.cases) + (PortSpec(REST),)

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        tests = [(case.name, compile_predicate(case.predicate)) for case in self.config.cases]
        outputs: dict[str, Bucket] = {port.name: [] for port in self.output_ports()}
        for chart in inputs[IN]:
            port = next((name for name, test in tests if test(chart)), REST)
            outputs[port].append(chart)
        return NodeResult(outputs=outputs)


@register_kind
class MergeNode(NodeKind):
    """Concatenates every incoming bucket (in edge declaration order)."""

    kind = "Merge"

    def input_ports(self) -> tuple[PortSpec, ...]:
        return (PortSpec(IN, fan_in=True),)

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        return NodeResult(outputs={OUT: list(inputs[IN])})


@register_kind
class PassThroughNode(NodeKind):
    """Forwards its input unchanged."""

    kind = "PassThrough"

    def process(self, inputs: dict[str, Bucket], context: NodeContext) -> NodeResult:
        return NodeResult(outputs={OUT: list(inputs[IN])})


__all__ = [
    "Bucket",
    "NODE_KINDS",
    "NodeContext",
    "NodeKind",
    "NodeResult",
    "PortSpec",
    "copy_bucket",
    "create_node",
    "register_kind",
]
