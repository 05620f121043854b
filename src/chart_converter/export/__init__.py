"""Chart export: StepMania simfiles, canonical JSON and MIDI previews."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from chart_converter.errors import ChartProcessingError, WriteError
from chart_converter.export.linking import link_asset, link_song_assets
from chart_converter.export.midi import export_midi_preview
from chart_converter.export.native import chart_to_json, write_chart_json
from chart_converter.export.simfile import render_notes, render_simfile, timing_signature, write_simfile

if TYPE_CHECKING:
    from collections.abc import Sequence

    from chart_converter.models.core import Chart

logger = logging.getLogger(__name__)

_UNSAFE_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


class ExportFormat(str, Enum):
    """Destination file format."""

    SIMFILE = "sm"
    JSON = "json"
    MIDI = "midi"


SUFFIXES = {
    ExportFormat.SIMFILE: ".sm",
    ExportFormat.JSON: ".chart.json",
    ExportFormat.MIDI: ".mid",
}


@dataclass
class ExportOptions:
    """Options for chart export.

    Attributes:
        output_dir: Root folder for converted songs (ignored in place).
        in_place: Write next to the source file, reusing its media.
        format: Destination format.
        link_assets: Link audio and background into new song folders.
    """

    output_dir: Path | None = None
    in_place: bool = False
    format: ExportFormat = ExportFormat.SIMFILE
    link_assets: bool = True


@dataclass
class WrittenChart:
    """Result of writing one chart.

    Attributes:
        chart: The chart.
        path: File the chart was written to (if successful).
        error: Failure, if the chart could not be written.
    """

    chart: Chart
    path: Path | None = None
    error: WriteError | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def safe_name(name: str, fallback: str = "chart") -> str:
    """Make a string usable as a file name."""
    cleaned = _UNSAFE_RE.sub("_", name).strip(" .")
    return cleaned or fallback


class ChartWriter:
    """Writes buckets of charts to their destination folders.

    Example:
        writer = ChartWriter(ExportOptions(output_dir=Path("out")))
        for result in writer.write(charts):
            print(result.path, result.error)
    """

    def __init__(self, options: ExportOptions) -> None:
        if not options.in_place and options.output_dir is None:
            raise ValueError("output_dir is required unless writing in place")
        self.options = options

    def destination_dir(self, chart: Chart) -> Path:
        """Folder a chart is written to."""
        source = chart.source_path
        if self.options.in_place:
            if source is None:
                raise WriteError("chart has no source folder to write into", chart_id=chart.chart_id)
            return source.parent
        output_dir = self.options.output_dir
        if output_dir is None:
            raise ValueError("output_dir is required unless writing in place")
        if source is None:
            return output_dir
        return output_dir / source.parent.name

    def write(self, charts: Sequence[Chart]) -> list[WrittenChart]:
        """Write charts, collecting a result per chart.

        Charts that fail do not prevent the others from being written.

        Returns:
            Results in input order.
        """
        if self.options.format == ExportFormat.SIMFILE:
            results = self._write_simfiles(charts)
        else:
            results = self._write_individual(charts)
        if self.options.link_assets and not self.options.in_place:
            self._link_assets([r for r in results if r.success])
        return results

    def _write_individual(self, charts: Sequence[Chart]) -> list[WrittenChart]:
        results = []
        used: set[Path] = set()
        suffix = SUFFIXES[self.options.format]
        for chart in charts:
            try:
                folder = self.destination_dir(chart)
                base = safe_name(f"{chart.label} {chart.column_count}K", chart.chart_id)
                path = _unique(folder, base, suffix, used)
                if self.options.format == ExportFormat.JSON:
                    write_chart_json(chart, path)
                else:
                    export_midi_preview(chart, path)
                results.append(WrittenChart(chart, path=path))
            except WriteError as e:
                e.chart_id = e.chart_id or chart.chart_id
                results.append(WrittenChart(chart, error=e))
            except Exception as e:
                raise ChartProcessingError(chart.chart_id, e) from e
        return results

    def _write_simfiles(self, charts: Sequence[Chart]) -> list[WrittenChart]:
        by_chart: dict[int, WrittenChart] = {}
        # Charts of one song (same folder, metadata and timing) share a file
        groups: dict[tuple, list[Chart]] = {}
        for chart in charts:
            try:
                folder = self.destination_dir(chart)
                render_notes(chart)
            except WriteError as e:
                e.chart_id = e.chart_id or chart.chart_id
                by_chart[id(chart)] = WrittenChart(chart, error=e)
                continue
            except Exception as e:
                raise ChartProcessingError(chart.chart_id, e) from e
            meta = chart.metadata
            key = (folder, meta.title, meta.artist, meta.audio, timing_signature(chart))
            groups.setdefault(key, []).append(chart)

        used: set[Path] = set()
        for (folder, title, *_), members in groups.items():
            base = safe_name(title or (members[0].source_path.stem if members[0].source_path else ""))
            path = _unique(folder, base, SUFFIXES[ExportFormat.SIMFILE], used)
            try:
                write_simfile(members, path)
                for chart in members:
                    by_chart[id(chart)] = WrittenChart(chart, path=path)
            except WriteError as e:
                for chart in members:
                    by_chart[id(chart)] = WrittenChart(chart, error=WriteError(str(e), chart_id=chart.chart_id))
        return [by_chart[id(chart)] for chart in charts]

    def _link_assets(self, results: list[WrittenChart]) -> None:
        """Link song assets once per output folder.

        A folder whose assets cannot be linked fails every chart written
        into it; other folders are unaffected.
        """
        by_folder: dict[tuple[Path, Path], list[WrittenChart]] = {}
        for result in results:
            chart, path = result.chart, result.path
            if chart.source_path is None or path is None:
                continue
            by_folder.setdefault((chart.source_path.parent, path.parent), []).append(result)

        for (source_dir, target_dir), members in by_folder.items():
            names = [n for r in members for n in (r.chart.metadata.audio, r.chart.metadata.background)]
            try:
                link_song_assets(source_dir, target_dir, names)
            except WriteError as e:
                logger.warning(f"Linking assets into {target_dir} failed: {e}")
                for result in members:
                    result.error = WriteError(str(e), chart_id=result.chart.chart_id)


def _unique(folder: Path, base: str, suffix: str, used: set[Path]) -> Path:
    """First unused path ``folder/base suffix``, numbering duplicates."""
    path = folder / f"{base}{suffix}"
    counter = 2
    while path in used:
        path = folder / f"{base} ({counter}){suffix}"
        counter += 1
    used.add(path)
    return path


__all__ = [
    "ChartWriter",
    "ExportFormat",
    "ExportOptions",
    "WrittenChart",
    "chart_to_json",
    "export_midi_preview",
    "link_asset",
    "render_simfile",
    "safe_name",
    "write_chart_json",
    "write_simfile",
]
