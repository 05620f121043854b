"""Batch report of per-chart outcomes."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from chart_converter.errors import NodeFailure


class ChartStatus(str, Enum):
    """Final state of a chart in a run."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ChartOutcome:
    """Outcome of one chart at one node.

    Attributes:
        chart_id: Chart identifier (the file path if parsing failed).
        label: Human-readable chart name.
        status: Succeeded, skipped or failed.
        node_id: Node that produced the outcome.
        reason: Why the chart was skipped or failed.
        error_type: Exception class name for failures.
        output_path: Written file (successes at Write nodes).
        diagnostics: Degradations recorded by transforms.
    """

    chart_id: str
    label: str
    status: ChartStatus
    node_id: str
    reason: str | None = None
    error_type: str | None = None
    output_path: Path | None = None
    diagnostics: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "chartId": self.chart_id,
            "label": self.label,
            "status": self.status.value,
            "node": self.node_id,
            "reason": self.reason,
            "errorType": self.error_type,
            "outputPath": str(self.output_path) if self.output_path else None,
            "diagnostics": list(self.diagnostics),
        }


@dataclass
class BatchReport:
    """Collected outcomes of a pipeline run.

    Outcomes are stored per node and listed in node execution order, so the
    report does not depend on how branches were scheduled.

    Attributes:
        node_order: Node ids in topological order.
        outcomes: Outcomes by node id.
        failure: The failure that aborted the run, if any.
        cancelled: Whether the run was cancelled.
        elapsed_ms: Run time in milliseconds.
    """

    node_order: list[str] = field(default_factory=list)
    outcomes: dict[str, list[ChartOutcome]] = field(default_factory=dict)
    failure: NodeFailure | None = None
    cancelled: bool = False
    elapsed_ms: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add(self, node_id: str, outcomes: list[ChartOutcome]) -> None:
        """Record the outcomes produced by a node."""
        with self._lock:
            self.outcomes.setdefault(node_id, []).extend(outcomes)

    @property
    def entries(self) -> list[ChartOutcome]:
        """All outcomes in node order."""
        ordered = [n for n in self.node_order if n in self.outcomes]
        ordered += sorted(n for n in self.outcomes if n not in self.node_order)
        return [o for node_id in ordered for o in self.outcomes[node_id]]

    def by_status(self, status: ChartStatus) -> list[ChartOutcome]:
        """Outcomes with a given status."""
        return [o for o in self.entries if o.status == status]

    @property
    def succeeded(self) -> list[ChartOutcome]:
        return self.by_status(ChartStatus.SUCCEEDED)

    @property
    def skipped(self) -> list[ChartOutcome]:
        return self.by_status(ChartStatus.SKIPPED)

    @property
    def failed(self) -> list[ChartOutcome]:
        return self.by_status(ChartStatus.FAILED)

    @property
    def ok(self) -> bool:
        """Whether the run completed with no failed chart."""
        return self.failure is None and not self.cancelled and not self.failed

    def summary(self) -> dict[str, int]:
        """Counts per status."""
        return {status.value: len(self.by_status(status)) for status in ChartStatus}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "summary": self.summary(),
            "cancelled": self.cancelled,
            "failure": (
                {
                    "node": self.failure.node_id,
                    "kind": self.failure.kind,
                    "chartId": self.failure.chart_id,
                    "cause": str(self.failure.cause),
                    "errorType": type(self.failure.cause).__name__,
                }
                if self.failure
                else None
            ),
            "elapsedMs": round(self.elapsed_ms, 1),
            "charts": [o.to_dict() for o in self.entries],
        }

    def save(self, path: Path) -> None:
        """Write the report as JSON."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2) + "\n", encoding="utf-8")
