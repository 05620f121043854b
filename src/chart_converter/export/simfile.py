"""StepMania simfile (.sm) writer."""

from __future__ import annotations

import logging
from fractions import Fraction
from pathlib import Path
from typing import Sequence

from chart_converter.errors import WriteError
from chart_converter.models.core import Chart, Note, NoteKind

logger = logging.getLogger(__name__)

BEATS_PER_MEASURE = 4
# Row counts StepMania understands, smallest first
ROWS_PER_MEASURE = (4, 8, 12, 16, 24, 32, 48, 64, 96, 192)
DEFAULT_SAMPLE_LENGTH = 10.0
NOTE_CHARS = {
    NoteKind.TAP: "1",
    NoteKind.HOLD_START: "2",
    NoteKind.HOLD_END: "3",
}


def _num(value: float, digits: int = 6) -> str:
    """Format a number without trailing zeros."""
    text = f"{value:.{digits}f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def _escape(value: str) -> str:
    """Strip characters that terminate simfile tags."""
    return value.replace(";", "").replace(":", "").replace("#", "").strip()


def timing_signature(chart: Chart) -> tuple[str, str]:
    """The ``#OFFSET`` and ``#BPMS`` values of a chart."""
    offset = _num(-chart.offset_ms / 1000)
    bpms = ",".join(f"{_num(float(tp.time))}={_num(tp.bpm)}" for tp in chart.timing_points)
    return offset, bpms


def _rows_for(offsets: list[Fraction]) -> int | None:
    """Smallest row count placing every offset (in measures) on a row."""
    for rows in ROWS_PER_MEASURE:
        if all((offset * rows).denominator == 1 for offset in offsets):
            return rows
    return None


def render_notes(chart: Chart, path: Path | None = None) -> str:
    """Render a chart's note data as comma-separated measures.

    Raises:
        WriteError: If a note is off the supported row grid, precedes beat 0
            or shares a cell with another note.
    """
    width = chart.column_count
    measures: dict[int, list[Note]] = {}
    for note in chart.notes:
        if note.time < 0:
            raise WriteError(f"note at beat {note.time} precedes beat 0", path, chart.chart_id)
        index = int(note.time // BEATS_PER_MEASURE)
        measures.setdefault(index, []).append(note)
    count = max(measures) + 1 if measures else 1

    blocks = []
    for index in range(count):
        notes = measures.get(index, [])
        start = index * BEATS_PER_MEASURE
        offsets = [(n.time - start) / BEATS_PER_MEASURE for n in notes]
        rows = _rows_for(offsets)
        if rows is None:
            raise WriteError(
                f"measure {index} has notes off the {ROWS_PER_MEASURE[-1]}-row grid; "
                "normalize timing first",
                path,
                chart.chart_id,
            )
        grid = [["0"] * width for _ in range(rows)]
        for note, offset in zip(notes, offsets):
            row = int(offset * rows)
            if grid[row][note.column] != "0":
                raise WriteError(
                    f"two notes at beat {note.time} in column {note.column}", path, chart.chart_id
                )
            grid[row][note.column] = NOTE_CHARS[note.kind]
        lines = [f"  // measure {index}"] + ["".join(row) for row in grid]
        blocks.append("\n".join(lines))
    return "\n,\n".join(blocks)


def render_simfile(charts: Sequence[Chart], path: Path | None = None) -> str:
    """Render charts of one song as a simfile.

    The header (metadata and timing) comes from the first chart; every chart
    must share its timing.

    Args:
        charts: Charts of the same song.
        path: Destination, used in error messages.

    Returns:
        Simfile text.

    Raises:
        WriteError: If charts disagree on timing or cannot be rendered.
    """
    if not charts:
        raise WriteError("no charts to write", path)
    main = charts[0]
    offset, bpms = timing_signature(main)
    for chart in charts[1:]:
        if timing_signature(chart) != (offset, bpms):
            raise WriteError(
                f"chart '{chart.label}' has different timing than '{main.label}'", path, chart.chart_id
            )

    meta = main.metadata
    sample_start = _num(meta.preview_ms / 1000) if meta.preview_ms is not None else ""
    header = [
        f"#TITLE:{_escape(meta.title)};",
        "#SUBTITLE:;",
        f"#ARTIST:{_escape(meta.artist)};",
        "#TITLETRANSLIT:;",
        "#SUBTITLETRANSLIT:;",
        "#ARTISTTRANSLIT:;",
        "#GENRE:;",
        f"#CREDIT:{_escape(meta.creator)};",
        "#BANNER:;",
        f"#BACKGROUND:{meta.background or ''};",
        "#LYRICSPATH:;",
        "#CDTITLE:;",
        f"#MUSIC:{meta.audio or ''};",
        f"#OFFSET:{offset};",
        f"#SAMPLESTART:{sample_start};",
        f"#SAMPLELENGTH:{_num(DEFAULT_SAMPLE_LENGTH)};",
        "#SELECTABLE:YES;",
        f"#BPMS:{bpms};",
        "#STOPS:;",
        "#BGCHANGES:;",
        "#KEYSOUNDS:;",
        "#ATTACKS:;",
    ]

    parts = ["\n".join(header)]
    for chart in charts:
        gamemode = chart.effective_gamemode
        if gamemode is None:
            raise WriteError(f"no steps type for {chart.column_count} columns", path, chart.chart_id)
        parts.append(
            "\n".join(
                [
                    "#NOTES:",
                    f"    {gamemode}:",
                    f"    {_escape(chart.metadata.version)}:",
                    f"    {chart.difficulty}:",
                    f"    {chart.meter}:",
                    "    0,0,0,0,0:",
                    render_notes(chart, path),
                    ";",
                ]
            )
        )
    return "\n\n".join(parts) + "\n"


def write_simfile(charts: Sequence[Chart], output_path: Path | str) -> Path:
    """Write charts of one song to a .sm file.

    Args:
        charts: Charts of the same song.
        output_path: Path for the output file.

    Returns:
        Path to the created file.

    Raises:
        WriteError: If the charts cannot be rendered or written.
    """
    output_path = Path(output_path)
    text = render_simfile(charts, output_path)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise WriteError(f"cannot write simfile: {e}", output_path, charts[0].chart_id) from e
    logger.info(f"Wrote {len(charts)} chart(s) to {output_path}")
    return output_path
