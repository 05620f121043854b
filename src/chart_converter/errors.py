"""Exception hierarchy for chart conversion.

Errors fall into three groups:

- ``ConfigError`` is raised while building a pipeline and aborts the run
  before any chart is processed.
- ``ChartError`` subclasses concern a single chart. Nodes catch them at the
  chart boundary, record them in the batch report and carry on with the
  remaining charts (unless the run is configured to fail fast).
- ``PipelineError`` and ``RunCancelled`` end a run that has already started.
"""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chart_converter.pipeline.report import BatchReport


class ConverterError(Exception):
    """Base class for all chart conversion errors."""


class ConfigError(ConverterError):
    """Invalid pipeline configuration.

    Attributes:
        node_id: Offending node, if the problem is local to one node.
        edge: Offending edge as ``"from -> to"``, if any.
    """

    def __init__(self, message: str, node_id: str | None = None, edge: str | None = None) -> None:
        self.node_id = node_id
        self.edge = edge
        location = []
        if node_id is not None:
            location.append(f"node '{node_id}'")
        if edge is not None:
            location.append(f"edge '{edge}'")
        prefix = f"{', '.join(location)}: " if location else ""
        super().__init__(f"{prefix}{message}")


class ChartError(ConverterError):
    """Failure confined to a single chart.

    Attributes:
        chart_id: Identifier of the chart being processed.
    """

    def __init__(self, message: str, chart_id: str | None = None) -> None:
        self.chart_id = chart_id
        super().__init__(message)


class ParseError(ChartError):
    """A source file could not be parsed into a chart."""

    def __init__(self, message: str, path: Path | str, chart_id: str | None = None) -> None:
        self.path = Path(path)
        super().__init__(f"{self.path}: {message}", chart_id=chart_id or str(path))


class RemapOverflowError(ChartError):
    """A note group needs more simultaneous columns than the target provides.

    Attributes:
        time: Group time in beats.
        time_ms: Group time in milliseconds.
        demand: Columns required (group size plus held columns).
        capacity: Target column count.
    """

    def __init__(
        self,
        time: Fraction,
        time_ms: float,
        demand: int,
        capacity: int,
        chart_id: str | None = None,
    ) -> None:
        self.time = time
        self.time_ms = time_ms
        self.demand = demand
        self.capacity = capacity
        super().__init__(
            f"{demand} simultaneous notes at {time_ms:.1f}ms (beat {time}) "
            f"exceed {capacity} columns",
            chart_id=chart_id,
        )


class UnsnappableTimingError(ChartError):
    """No snap divisor places enough notes of a segment within tolerance."""

    def __init__(self, segment_time: Fraction, message: str, chart_id: str | None = None) -> None:
        self.segment_time = segment_time
        super().__init__(f"segment at beat {segment_time}: {message}", chart_id=chart_id)


class WriteError(ChartError):
    """A chart could not be serialized to its destination."""

    def __init__(self, message: str, path: Path | str | None = None, chart_id: str | None = None) -> None:
        self.path = Path(path) if path is not None else None
        text = f"{self.path}: {message}" if self.path is not None else message
        super().__init__(text, chart_id=chart_id)


class ChartInvariantError(ConverterError):
    """A chart violates the column-range or time-ordering invariant."""

    def __init__(self, message: str, chart_id: str | None = None) -> None:
        self.chart_id = chart_id
        super().__init__(f"chart '{chart_id}': {message}" if chart_id else message)


class ChartProcessingError(ConverterError):
    """An unexpected exception raised while a node handled one chart.

    Not a per-chart error: it still fails the node. It only carries the
    chart so the failure report can name it.

    Attributes:
        chart_id: Chart being processed.
        cause: The original exception.
    """

    def __init__(self, chart_id: str, cause: Exception) -> None:
        self.chart_id = chart_id
        self.cause = cause
        super().__init__(str(cause))


@dataclass(frozen=True)
class NodeFailure:
    """Structured description of the failure that aborted a run.

    Attributes:
        node_id: Node that failed.
        kind: Kind of the failing node.
        chart_id: Chart being processed when the node failed, if any.
        cause: The underlying exception.
    """

    node_id: str
    kind: str
    chart_id: str | None
    cause: BaseException

    def describe(self) -> str:
        """Human-readable one-line description."""
        chart = f" on chart '{self.chart_id}'" if self.chart_id else ""
        return f"{self.kind} node '{self.node_id}' failed{chart}: {self.cause}"


class PipelineError(ConverterError):
    """A node failed and the run was aborted."""

    def __init__(self, failure: NodeFailure, report: BatchReport) -> None:
        self.failure = failure
        self.report = report
        super().__init__(failure.describe())


class RunCancelled(ConverterError):
    """The run was cancelled between node executions."""

    def __init__(self, report: BatchReport) -> None:
        self.report = report
        super().__init__("pipeline run cancelled")
