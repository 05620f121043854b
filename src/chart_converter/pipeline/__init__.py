"""Configurable graph of chart transforms."""

from __future__ import annotations

from pathlib import Path

from chart_converter.pipeline.config import EdgeSpec, NodeSpec, PipelineConfig, load_config
from chart_converter.pipeline.graph import GraphEdge, GraphNode, PipelineGraph, build_graph
from chart_converter.pipeline.nodes import NODE_KINDS, NodeContext, NodeKind, NodeResult, PortSpec, register_kind
from chart_converter.pipeline.report import BatchReport, ChartOutcome, ChartStatus
from chart_converter.pipeline.scheduler import CancellationToken, RunOptions, RunResult, Scheduler


def run_pipeline(
    config_path: Path | str,
    options: RunOptions | None = None,
    token: CancellationToken | None = None,
) -> RunResult:
    """Load, validate and run a pipeline file.

    Args:
        config_path: YAML or JSON pipeline document.
        options: Run options (default: the document's ``options``).
        token: Cancellation token.

    Returns:
        The run result.

    Raises:
        ConfigError: If the pipeline is invalid.
        PipelineError: If a node failed.
        RunCancelled: If the run was cancelled.
    """
    graph = build_graph(load_config(config_path))
    return Scheduler(graph, options, token).run()


__all__ = [
    "BatchReport",
    "CancellationToken",
    "ChartOutcome",
    "ChartStatus",
    "EdgeSpec",
    "GraphEdge",
    "GraphNode",
    "NODE_KINDS",
    "NodeContext",
    "NodeKind",
    "NodeResult",
    "NodeSpec",
    "PipelineConfig",
    "PipelineGraph",
    "PortSpec",
    "RunOptions",
    "RunResult",
    "Scheduler",
    "build_graph",
    "load_config",
    "register_kind",
    "run_pipeline",
]
