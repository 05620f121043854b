"""Shared fixtures for chart converter tests."""

from __future__ import annotations

from fractions import Fraction
from pathlib import Path
from typing import Callable

import pytest

from chart_converter.models.core import Chart, ChartMetadata, Note, NoteKind, TimingPoint

OSU_TEMPLATE = """osu file format v14

[General]
AudioFilename: audio.mp3
PreviewTime: 1500
Mode: {mode}

[Metadata]
Title:{title}
Artist:Test Artist
Creator:Mapper
Version:{version}
Source:
Tags:test chart

[Difficulty]
CircleSize:{keys}
OverallDifficulty:8

[Events]
0,0,"bg.jpg",0,0

[TimingPoints]
{timing}

[HitObjects]
{hit_objects}
"""


def column_x(column: int, keys: int) -> int:
    """x coordinate placing a hit object in a column."""
    return int((column + 0.5) * 512 / keys)


def osu_hit(column: int, time_ms: int, keys: int = 4) -> str:
    return f"{column_x(column, keys)},192,{time_ms},1,0,0:0:0:0:"


def osu_hold(column: int, time_ms: int, end_ms: int, keys: int = 4) -> str:
    return f"{column_x(column, keys)},192,{time_ms},128,0,{end_ms}:0:0:0:0:"


@pytest.fixture
def write_osu(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a beatmap into a song folder under ``tmp_path``."""

    def _write(
        hit_objects: list[str],
        keys: int = 4,
        mode: int = 3,
        title: str = "Test Song",
        version: str = "Hard",
        folder: str = "song",
        name: str | None = None,
        timing: list[str] | None = None,
    ) -> Path:
        song_dir = tmp_path / "songs" / folder
        song_dir.mkdir(parents=True, exist_ok=True)
        (song_dir / "audio.mp3").write_bytes(b"audio")
        (song_dir / "bg.jpg").write_bytes(b"image")
        path = song_dir / (name or f"{title} [{version}].osu")
        path.write_text(
            OSU_TEMPLATE.format(
                mode=mode,
                title=title,
                version=version,
                keys=keys,
                timing="\n".join(timing or ["0,500,4,1,0,100,1,0"]),
                hit_objects="\n".join(hit_objects),
            ),
            encoding="utf-8",
        )
        return path

    return _write


@pytest.fixture
def make_chart() -> Callable[..., Chart]:
    """Factory building charts from ``(beat, column)`` taps."""

    def _make(
        taps: list[tuple[Fraction | int, int]] = (),
        columns: int = 4,
        holds: list[tuple[Fraction | int, int, Fraction | int]] = (),
        beat_ms: float = 500.0,
        chart_id: str = "chart",
        title: str = "Song",
        version: str = "Hard",
        timing_points: list[TimingPoint] | None = None,
    ) -> Chart:
        notes = [Note(Fraction(t), c) for t, c in taps]
        for start, column, length in holds:
            start, length = Fraction(start), Fraction(length)
            notes.append(Note(start, column, NoteKind.HOLD_START, length))
            notes.append(Note(start + length, column, NoteKind.HOLD_END))
        return Chart(
            chart_id=chart_id,
            column_count=columns,
            notes=notes,
            timing_points=timing_points or [TimingPoint(Fraction(0), beat_ms)],
            metadata=ChartMetadata(title=title, artist="Artist", version=version),
        )

    return _make
