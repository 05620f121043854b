"""Chart file ingestion."""

from pathlib import Path

from chart_converter.ingest.loader import SourceLoader, is_chart_file
from chart_converter.ingest.native import chart_from_dict, load_chart_json
from chart_converter.ingest.osu import ChartHeader, OsuParser
from chart_converter.ingest.timing import TimingResolver
from chart_converter.models.core import Chart


def load_chart(file_path: Path | str) -> Chart:
    """Convenience function to load a chart file.

    Args:
        file_path: Path to a .osu or .chart.json file.

    Returns:
        Parsed Chart object.
    """
    return SourceLoader().load(Path(file_path))


__all__ = [
    "ChartHeader",
    "OsuParser",
    "SourceLoader",
    "TimingResolver",
    "chart_from_dict",
    "is_chart_file",
    "load_chart",
    "load_chart_json",
]
