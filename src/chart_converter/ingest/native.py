"""Reader for the canonical JSON chart format."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from chart_converter.errors import ParseError
from chart_converter.models.core import (
    Chart,
    ChartMetadata,
    Note,
    NoteKind,
    TimingPoint,
    parse_fraction,
)

FORMAT_NAME = "chart-converter"
FORMAT_VERSION = 1
SUFFIX = ".chart.json"


def chart_from_dict(data: dict[str, Any], source_path: Path | None = None) -> Chart:
    """Build a chart from its dictionary form (see :meth:`Chart.to_dict`).

    Raises:
        KeyError, ValueError: If required fields are missing or malformed.
    """
    meta = data.get("metadata", {})
    notes = [
        Note(
            time=parse_fraction(n["time"]),
            column=int(n["column"]),
            kind=NoteKind(n.get("kind", NoteKind.TAP.value)),
            hold_length=parse_fraction(n["hold_length"]) if n.get("hold_length") is not None else None,
        )
        for n in data.get("notes", [])
    ]
    timing_points = [
        TimingPoint(
            time=parse_fraction(tp["time"]),
            beat_duration_ms=float(tp["beat_duration_ms"]),
            meter=int(tp.get("meter", 4)),
            snap_divisor=int(tp.get("snap_divisor", 4)),
        )
        for tp in data.get("timing_points", [])
    ]
    return Chart(
        chart_id=str(data["chart_id"]),
        column_count=int(data["column_count"]),
        notes=notes,
        timing_points=timing_points,
        offset_ms=float(data.get("offset_ms", 0.0)),
        source_path=source_path,
        metadata=ChartMetadata(
            title=meta.get("title", ""),
            artist=meta.get("artist", ""),
            creator=meta.get("creator", ""),
            version=meta.get("version", ""),
            source=meta.get("source", ""),
            tags=list(meta.get("tags", [])),
            audio=meta.get("audio"),
            background=meta.get("background"),
            preview_ms=meta.get("preview_ms"),
        ),
        difficulty=data.get("difficulty", "Edit"),
        meter=int(data.get("meter", 1)),
        rating=data.get("rating"),
        gamemode=data.get("gamemode"),
        diagnostics=list(data.get("diagnostics", [])),
    )


def read_column_count(file_path: Path | str) -> int:
    """Read the column count of a JSON chart.

    Raises:
        ParseError: If the document cannot be read.
    """
    data = _read_document(Path(file_path))
    try:
        return int(data["chart"]["column_count"])
    except (KeyError, TypeError, ValueError) as e:
        raise ParseError(f"missing column count: {e}", file_path) from e


def load_chart_json(file_path: Path | str) -> Chart:
    """Load a chart written by the JSON writer.

    Args:
        file_path: Path to the ``.chart.json`` file.

    Returns:
        Loaded chart, with ``source_path`` set to the file.

    Raises:
        ParseError: If the file is missing or malformed.
    """
    file_path = Path(file_path)
    data = _read_document(file_path)
    try:
        return chart_from_dict(data["chart"], source_path=file_path)
    except (KeyError, TypeError, ValueError, ZeroDivisionError) as e:
        raise ParseError(f"invalid chart document: {e}", file_path) from e


def _read_document(file_path: Path) -> dict[str, Any]:
    if not file_path.exists():
        raise ParseError("chart file not found", file_path)
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ParseError(f"cannot read chart: {e}", file_path) from e
    if not isinstance(data, dict) or data.get("format") != FORMAT_NAME:
        raise ParseError(f"not a {FORMAT_NAME} document", file_path)
    if data.get("version") != FORMAT_VERSION:
        raise ParseError(f"unsupported format version {data.get('version')}", file_path)
    return data
