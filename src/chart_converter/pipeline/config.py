"""Pipeline configuration documents (YAML or JSON).

Example:
    nodes:
      - id: load
        kind: Load
        config: {path: songs/, columnCounts: [7]}
      - id: remap
        kind: Remap
        config: {targetColumnCount: 4}
      - id: write
        kind: Write
        config: {path: out/}
    edges:
      - {from: load, to: remap}
      - {from: remap, to: write}
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError

from chart_converter.config import ConfigModel, format_validation_error, read_document
from chart_converter.errors import ConfigError


class NodeSpec(ConfigModel):
    """A node declaration; ``config`` is validated by the node kind."""

    id: str = Field(min_length=1)
    kind: str
    config: dict[str, Any] = Field(default_factory=dict)


class EdgeSpec(ConfigModel):
    """An edge between ``node`` or ``node.port`` endpoints."""

    source: str = Field(alias="from")
    target: str = Field(alias="to")

    @property
    def label(self) -> str:
        return f"{self.source} -> {self.target}"


class RunSettings(ConfigModel):
    continue_on_error: bool = True
    workers: int | None = Field(default=None, ge=1)


class PipelineConfig(ConfigModel):
    """A whole pipeline: nodes, edges and run settings."""

    nodes: list[NodeSpec] = Field(min_length=1)
    edges: list[EdgeSpec] = Field(default_factory=list)
    options: RunSettings = Field(default_factory=RunSettings)

    @classmethod
    def from_dict(cls, data: Any) -> PipelineConfig:
        """Validate a parsed document.

        Raises:
            ConfigError: If the document does not describe a pipeline.
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(format_validation_error(e)) from e


def load_config(path: Path | str) -> PipelineConfig:
    """Read and validate a pipeline file.

    Raises:
        ConfigError: If the file cannot be read or is invalid.
    """
    data = read_document(path)
    try:
        return PipelineConfig.from_dict(data)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}") from e
