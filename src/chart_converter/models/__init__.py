"""Data models for note charts."""

from chart_converter.models.core import (
    GAMEMODE_COLUMNS,
    Chart,
    ChartMetadata,
    Note,
    NoteKind,
    TimingPoint,
    format_fraction,
    gamemode_for_columns,
    parse_fraction,
)
from chart_converter.models.patterns import Pattern

__all__ = [
    "GAMEMODE_COLUMNS",
    "Chart",
    "ChartMetadata",
    "Note",
    "NoteKind",
    "TimingPoint",
    "Pattern",
    "format_fraction",
    "gamemode_for_columns",
    "parse_fraction",
]
