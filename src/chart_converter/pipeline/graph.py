"""Validation of pipeline configurations into executable graphs."""

from __future__ import annotations

import heapq
import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from pydantic import ValidationError

from chart_converter.config import format_validation_error
from chart_converter.errors import ConfigError
from chart_converter.pipeline.config import EdgeSpec, PipelineConfig
from chart_converter.pipeline.nodes import NODE_KINDS, NodeKind, PortSpec, create_node

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GraphNode:
    """A validated node.

    Attributes:
        node_id: Unique node id.
        kind: Registry name of the node kind.
        impl: Configured node instance.
        index: Declaration index in the configuration.
    """

    node_id: str
    kind: str
    impl: NodeKind
    index: int


@dataclass(frozen=True)
class GraphEdge:
    """A validated edge between two resolved ports.

    Attributes:
        source: Producing node id.
        source_port: Output port name.
        target: Consuming node id.
        target_port: Input port name.
        index: Declaration index, which orders fan-in concatenation.
    """

    source: str
    source_port: str
    target: str
    target_port: str
    index: int

    @property
    def label(self) -> str:
        return f"{self.source}.{self.source_port} -> {self.target}.{self.target_port}"


@dataclass(frozen=True)
class PipelineGraph:
    """An immutable, validated pipeline.

    Attributes:
        nodes: Nodes by id.
        edges: Edges in declaration order.
        order: Node ids in topological order (ties by declaration order).
        warnings: Non-fatal problems found while building.
        continue_on_error: Run setting from the configuration.
        workers: Run setting from the configuration (None for default).
    """

    nodes: Mapping[str, GraphNode]
    edges: tuple[GraphEdge, ...]
    order: tuple[str, ...]
    warnings: tuple[str, ...] = ()
    continue_on_error: bool = True
    workers: int | None = None

    def incoming(self, node_id: str) -> list[GraphEdge]:
        """Edges into a node, in declaration order."""
        return [e for e in self.edges if e.target == node_id]

    def outgoing(self, node_id: str, port: str | None = None) -> list[GraphEdge]:
        """Edges out of a node (optionally one port), in declaration order."""
        return [
            e for e in self.edges if e.source == node_id and (port is None or e.source_port == port)
        ]


def _resolve_port(
    node: GraphNode,
    name: str | None,
    ports: tuple[PortSpec, ...],
    direction: str,
    edge: EdgeSpec,
) -> PortSpec:
    if name is None:
        if len(ports) != 1:
            available = ", ".join(p.name for p in ports) or "none"
            raise ConfigError(
                f"node '{node.node_id}' has {len(ports)} {direction} ports ({available}); "
                "name one explicitly",
                edge=edge.label,
            )
        return ports[0]
    for port in ports:
        if port.name == name:
            return port
    raise ConfigError(f"node '{node.node_id}' has no {direction} port '{name}'", edge=edge.label)


def _split_endpoint(endpoint: str) -> tuple[str, str | None]:
    node_id, _, port = endpoint.partition(".")
    return node_id, port or None


def _build_nodes(config: PipelineConfig) -> dict[str, GraphNode]:
    nodes: dict[str, GraphNode] = {}
    for index, spec in enumerate(config.nodes):
        if spec.id in nodes:
            raise ConfigError("duplicate node id", node_id=spec.id)
        if spec.kind not in NODE_KINDS:
            known = ", ".join(sorted(NODE_KINDS))
            raise ConfigError(f"unknown kind '{spec.kind}' (known: {known})", node_id=spec.id)
        try:
            impl = create_node(spec.kind, spec.config)
        except ValidationError as e:
            raise ConfigError(f"invalid config: {format_validation_error(e)}", node_id=spec.id) from e
        except ConfigError as e:
            raise ConfigError(str(e), node_id=spec.id) from e
        nodes[spec.id] = GraphNode(spec.id, spec.kind, impl, index)
    return nodes


def _find_cycle(nodes: dict[str, GraphNode], successors: dict[str, list[str]]) -> list[str]:
    """Return the nodes of one cycle (in traversal order)."""
    color = dict.fromkeys(nodes, 0)
    stack: list[str] = []

    def visit(node_id: str) -> list[str] | None:
        color[node_id] = 1
        stack.append(node_id)
        for nxt in successors[node_id]:
            if color[nxt] == 1:
                return stack[stack.index(nxt):]
            if color[nxt] == 0:
                found = visit(nxt)
                if found:
                    return found
        stack.pop()
        color[node_id] = 2
        return None

    for node_id in sorted(nodes, key=lambda n: nodes[n].index):
        if color[node_id] == 0:
            found = visit(node_id)
            if found:
                return found
    return []


def _reachable(starts: list[str], links: dict[str, list[str]]) -> set[str]:
    seen = set(starts)
    pending = list(starts)
    while pending:
        for nxt in links[pending.pop()]:
            if nxt not in seen:
                seen.add(nxt)
                pending.append(nxt)
    return seen


def build_graph(config: PipelineConfig) -> PipelineGraph:
    """Validate a configuration and order its nodes for execution.

    Args:
        config: Parsed pipeline configuration.

    Returns:
        The validated graph.

    Raises:
        ConfigError: On the first problem found, naming the node or edge.
    """
    nodes = _build_nodes(config)

    edges: list[GraphEdge] = []
    for index, spec in enumerate(config.edges):
        source_id, source_port = _split_endpoint(spec.source)
        target_id, target_port = _split_endpoint(spec.target)
        for node_id in (source_id, target_id):
            if node_id not in nodes:
                raise ConfigError(f"unknown node '{node_id}'", edge=spec.label)
        source = nodes[source_id]
        target = nodes[target_id]
        out_port = _resolve_port(source, source_port, source.impl.output_ports(), "output", spec)
        in_port = _resolve_port(target, target_port, target.impl.input_ports(), "input", spec)
        if out_port.data_type != in_port.data_type:
            raise ConfigError(
                f"type mismatch: {out_port.data_type} cannot feed {in_port.data_type}",
                edge=spec.label,
            )
        edges.append(GraphEdge(source_id, out_port.name, target_id, in_port.name, index))

    fed: dict[tuple[str, str], int] = defaultdict(int)
    for edge in edges:
        fed[(edge.target, edge.target_port)] += 1
    for node in nodes.values():
        for port in node.impl.input_ports():
            count = fed[(node.node_id, port.name)]
            if count == 0:
                raise ConfigError(f"input port '{port.name}' is not connected", node_id=node.node_id)
            if count > 1 and not port.fan_in:
                raise ConfigError(
                    f"input port '{port.name}' has {count} incoming edges; use a Merge node",
                    node_id=node.node_id,
                )

    successors: dict[str, list[str]] = {n: [] for n in nodes}
    predecessors: dict[str, list[str]] = {n: [] for n in nodes}
    for edge in edges:
        successors[edge.source].append(edge.target)
        predecessors[edge.target].append(edge.source)

    # Kahn's algorithm; the heap yields ready nodes in declaration order
    pending = {n: len(predecessors[n]) for n in nodes}
    ready = [(node.index, node.node_id) for node in nodes.values() if pending[node.node_id] == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        _, node_id = heapq.heappop(ready)
        order.append(node_id)
        for nxt in successors[node_id]:
            pending[nxt] -= 1
            if pending[nxt] == 0:
                heapq.heappush(ready, (nodes[nxt].index, nxt))
    if len(order) != len(nodes):
        cycle = _find_cycle(nodes, successors)
        raise ConfigError(f"cycle detected: {' -> '.join(cycle + cycle[:1])}")

    warnings = []
    sources = [n for n, node in nodes.items() if not node.impl.input_ports()]
    sinks = [n for n, node in nodes.items() if not node.impl.output_ports()]
    from_source = _reachable(sources, successors)
    to_sink = _reachable(sinks, predecessors)
    for node_id in order:
        if node_id not in from_source:
            warnings.append(f"node '{node_id}' is not reachable from any source")
        elif node_id not in to_sink:
            warnings.append(f"output of node '{node_id}' never reaches a sink")
    for warning in warnings:
        logger.warning(warning)

    return PipelineGraph(
        nodes=MappingProxyType(nodes),
        edges=tuple(edges),
        order=tuple(order),
        warnings=tuple(warnings),
        continue_on_error=config.options.continue_on_error,
        workers=config.options.workers,
    )
