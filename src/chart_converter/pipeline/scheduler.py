"""Execution of a pipeline graph.

Nodes run as soon as every incoming edge has delivered its bucket.
Independent branches run concurrently on a bounded thread pool; nodes that
write to the same location are serialized by per-resource locks.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import ExitStack
from dataclasses import dataclass, field

from chart_converter.errors import (
    ChartError,
    ChartInvariantError,
    ChartProcessingError,
    NodeFailure,
    PipelineError,
    RunCancelled,
)
from chart_converter.pipeline.graph import GraphNode, PipelineGraph
from chart_converter.pipeline.nodes import Bucket, NodeContext, NodeResult, copy_bucket
from chart_converter.pipeline.report import BatchReport

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    """Options for a pipeline run.

    Attributes:
        workers: Maximum nodes running at once (default: CPU count).
        continue_on_error: Record per-chart errors and carry on; when False
            the first per-chart error fails its node and aborts the run.
    """

    workers: int | None = None
    continue_on_error: bool = True

    def __post_init__(self) -> None:
        if self.workers is None:
            self.workers = os.cpu_count() or 1
        if self.workers < 1:
            raise ValueError(f"workers must be positive, got {self.workers}")


class CancellationToken:
    """Cooperative cancellation flag, checked between node executions."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class RunResult:
    """Result of a completed run.

    Attributes:
        report: Per-chart outcomes.
        outputs: Buckets of output ports without consumers, keyed by
            ``(node_id, port)``.
    """

    report: BatchReport
    outputs: dict[tuple[str, str], Bucket] = field(default_factory=dict)


class _NodeRunError(Exception):
    """Internal wrapper carrying the chart being processed at failure."""

    def __init__(self, cause: BaseException, chart_id: str | None) -> None:
        super().__init__(str(cause))
        self.cause = cause
        self.chart_id = chart_id


class Scheduler:
    """Runs a validated pipeline graph.

    Example:
        graph = build_graph(load_config("pipeline.yaml"))
        result = Scheduler(graph, RunOptions(workers=4)).run()
        print(result.report.summary())
    """

    def __init__(
        self,
        graph: PipelineGraph,
        options: RunOptions | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        self.graph = graph
        self.options = options or RunOptions(
            workers=graph.workers, continue_on_error=graph.continue_on_error
        )
        self.token = token or CancellationToken()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, resource: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(resource, threading.Lock())

    def run(self) -> RunResult:
        """Execute every node.

        Returns:
            The run result.

        Raises:
            PipelineError: If a node failed (the partial report is attached).
            RunCancelled: If the token was cancelled before completion.
        """
        graph = self.graph
        report = BatchReport(node_order=list(graph.order))
        result = RunResult(report=report)
        # Delivered buckets by (target node, edge index)
        inbox: dict[str, dict[int, Bucket]] = {node_id: {} for node_id in graph.order}
        waiting = {node_id: len(graph.incoming(node_id)) for node_id in graph.order}
        ready = [node_id for node_id in graph.order if waiting[node_id] == 0]
        running: dict[Future[NodeResult], str] = {}
        completed = 0
        failure: NodeFailure | None = None
        started = time.perf_counter()

        logger.info(f"Running pipeline with {len(graph.order)} node(s), {self.options.workers} worker(s)")
        with ThreadPoolExecutor(max_workers=self.options.workers) as executor:
            while ready or running:
                if failure is None and not self.token.cancelled:
                    for node_id in ready:
                        inputs = self._gather(node_id, inbox.pop(node_id))
                        future = executor.submit(self._execute, graph.nodes[node_id], inputs)
                        running[future] = node_id
                    ready = []
                elif not running:
                    break

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: graph.order.index(running[f])):
                    node_id = running.pop(future)
                    node = graph.nodes[node_id]
                    try:
                        node_result = future.result()
                    except _NodeRunError as e:
                        if failure is None:
                            failure = NodeFailure(node_id, node.kind, e.chart_id, e.cause)
                            logger.error(f"Pipeline aborted: {failure.describe()}")
                        continue
                    completed += 1
                    report.add(node_id, node_result.outcomes)
                    for target in self._deliver(node_id, node_result, inbox, result):
                        waiting[target] -= 1
                        if waiting[target] == 0:
                            ready.append(target)
                ready.sort(key=graph.order.index)

        report.elapsed_ms = (time.perf_counter() - started) * 1000
        if failure is not None:
            report.failure = failure
            raise PipelineError(failure, report)
        if completed < len(graph.order):
            report.cancelled = True
            logger.warning("Pipeline run cancelled")
            raise RunCancelled(report)
        logger.info(f"Pipeline finished in {report.elapsed_ms:.0f}ms: {report.summary()}")
        return result

    def _gather(self, node_id: str, delivered: dict[int, Bucket]) -> dict[str, Bucket]:
        """Assemble input buckets, concatenating fan-in edges in declaration order."""
        inputs: dict[str, Bucket] = {port.name: [] for port in self.graph.nodes[node_id].impl.input_ports()}
        for edge in self.graph.incoming(node_id):
            inputs[edge.target_port].extend(delivered[edge.index])
        return inputs

    def _deliver(
        self,
        node_id: str,
        node_result: NodeResult,
        inbox: dict[str, dict[int, Bucket]],
        result: RunResult,
    ) -> list[str]:
        """Route a node's outputs to its consumers; return the consumers."""
        targets = []
        for port in self.graph.nodes[node_id].impl.output_ports():
            bucket = node_result.outputs.get(port.name, [])
            edges = self.graph.outgoing(node_id, port.name)
            if not edges:
                result.outputs[(node_id, port.name)] = bucket
                continue
            for edge in edges:
                consumer = self.graph.nodes[edge.target].impl
                if len(edges) == 1 or consumer.read_only:
                    inbox[edge.target][edge.index] = bucket
                else:
                    inbox[edge.target][edge.index] = copy_bucket(bucket)
                targets.append(edge.target)
        return targets

    def _execute(self, node: GraphNode, inputs: dict[str, Bucket]) -> NodeResult:
        """Run one node in a worker thread, under its resource locks."""
        context = NodeContext(node.node_id, continue_on_error=self.options.continue_on_error)
        chart_id = None
        logger.debug(f"Starting node '{node.node_id}' ({node.kind})")
        try:
            with ExitStack() as stack:
                for resource in sorted(node.impl.resources()):
                    stack.enter_context(self._lock_for(resource))
                node_result = node.impl.process(inputs, context)
            for bucket in node_result.outputs.values():
                for chart in bucket:
                    chart_id = chart.chart_id
                    chart.validate()
        except ChartError as e:
            raise _NodeRunError(e, e.chart_id) from e
        except ChartInvariantError as e:
            raise _NodeRunError(e, e.chart_id or chart_id) from e
        except ChartProcessingError as e:
            logger.exception(f"Node '{node.node_id}' raised an unexpected error on chart '{e.chart_id}'")
            raise _NodeRunError(e.cause, e.chart_id) from e.cause
        except Exception as e:
            logger.exception(f"Node '{node.node_id}' raised an unexpected error")
            raise _NodeRunError(e, None) from e
        logger.debug(f"Finished node '{node.node_id}'")
        return node_result
