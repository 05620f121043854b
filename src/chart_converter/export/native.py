"""Writer for the canonical JSON chart format."""

from __future__ import annotations

import json
from pathlib import Path

from chart_converter.errors import WriteError
from chart_converter.ingest.native import FORMAT_NAME, FORMAT_VERSION
from chart_converter.models.core import Chart


def chart_to_json(chart: Chart) -> str:
    """Serialize a chart deterministically (sorted keys, exact fractions)."""
    document = {
        "format": FORMAT_NAME,
        "version": FORMAT_VERSION,
        "chart": chart.to_dict(),
    }
    return json.dumps(document, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def write_chart_json(chart: Chart, output_path: Path | str) -> Path:
    """Write a chart as a ``.chart.json`` document.

    Raises:
        WriteError: If the file cannot be written.
    """
    output_path = Path(output_path)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(chart_to_json(chart), encoding="utf-8")
    except OSError as e:
        raise WriteError(f"cannot write chart: {e}", output_path, chart.chart_id) from e
    return output_path
