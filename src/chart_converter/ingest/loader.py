"""Source loader dispatching on file type."""

from __future__ import annotations

import logging
from pathlib import Path

from chart_converter.errors import ParseError
from chart_converter.ingest.native import SUFFIX as NATIVE_SUFFIX
from chart_converter.ingest.native import load_chart_json, read_column_count
from chart_converter.ingest.osu import MODE_MANIA, ChartHeader, OsuParser
from chart_converter.models.core import Chart

logger = logging.getLogger(__name__)

OSU_SUFFIX = ".osu"


def is_chart_file(path: Path) -> bool:
    """Check whether a path has a loadable chart extension."""
    name = path.name.lower()
    return name.endswith(OSU_SUFFIX) or name.endswith(NATIVE_SUFFIX)


class SourceLoader:
    """Loads charts from .osu beatmaps and canonical JSON charts.

    Example:
        loader = SourceLoader()
        for path in loader.scan(Path("songs/")):
            header = loader.read_header(path)
            if header.is_mania:
                chart = loader.load(path)
    """

    def __init__(self, offset_ms: float = 0.0) -> None:
        """Initialize the loader.

        Args:
            offset_ms: Global offset added to beatmap timestamps.
        """
        self.osu = OsuParser(offset_ms=offset_ms)

    def scan(self, path: Path, recursive: bool = True) -> list[Path]:
        """List loadable chart files in sorted order.

        Args:
            path: A chart file or a directory.
            recursive: Whether to descend into subdirectories.

        Returns:
            Sorted list of chart files.
        """
        if path.is_file():
            return [path]
        if not path.is_dir():
            raise FileNotFoundError(f"Chart source not found: {path}")
        candidates = path.rglob("*") if recursive else path.glob("*")
        return sorted(p for p in candidates if p.is_file() and is_chart_file(p))

    def read_header(self, path: Path) -> ChartHeader:
        """Report game mode and column count before full parsing."""
        if path.name.lower().endswith(NATIVE_SUFFIX):
            return ChartHeader(path=path, mode=MODE_MANIA, column_count=read_column_count(path))
        if path.suffix.lower() == OSU_SUFFIX:
            return self.osu.read_header(path)
        raise ParseError("unsupported chart format", path)

    def load(self, path: Path) -> Chart:
        """Fully parse a chart file.

        Raises:
            ParseError: If the file cannot be parsed.
        """
        if path.name.lower().endswith(NATIVE_SUFFIX):
            return load_chart_json(path)
        if path.suffix.lower() == OSU_SUFFIX:
            return self.osu.parse_file(path)
        raise ParseError("unsupported chart format", path)
