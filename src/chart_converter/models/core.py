"""Core data models for note charts."""

from __future__ import annotations

import copy
from bisect import bisect_left, bisect_right, insort
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from pathlib import Path
from typing import Any

from chart_converter.errors import ChartInvariantError

DEFAULT_DIFFICULTY = "Edit"

# StepMania steps type for each column count
GAMEMODE_COLUMNS = {
    "dance-threepanel": 3,
    "dance-single": 4,
    "pump-single": 5,
    "dance-solo": 6,
    "kb7-single": 7,
    "dance-double": 8,
    "pnm-nine": 9,
    "pump-double": 10,
}


def gamemode_for_columns(column_count: int) -> str | None:
    """Get the default steps type for a column count."""
    for gamemode, columns in GAMEMODE_COLUMNS.items():
        if columns == column_count:
            return gamemode
    return None


class NoteKind(str, Enum):
    """Kind of a playable note event."""

    TAP = "tap"
    HOLD_START = "hold_start"
    HOLD_END = "hold_end"


def format_fraction(value: Fraction) -> str:
    """Serialize an exact beat position as ``"n"`` or ``"n/d"``."""
    return str(Fraction(value))


def parse_fraction(value: str | int | float) -> Fraction:
    """Parse a beat position written by :func:`format_fraction`."""
    if isinstance(value, float):
        return Fraction(repr(value))
    return Fraction(value)


@dataclass
class Note:
    """A single timed note.

    Attributes:
        time: Position in beats from beat 0 (exact).
        column: Column index (0-based).
        kind: Tap, hold start or hold end.
        hold_length: Length in beats (hold starts only).
    """

    time: Fraction
    column: int
    kind: NoteKind = NoteKind.TAP
    hold_length: Fraction | None = None

    @property
    def is_press(self) -> bool:
        """Whether the note starts a key press (tap or hold start)."""
        return self.kind != NoteKind.HOLD_END

    @property
    def sort_key(self) -> tuple[Fraction, int, int]:
        """Canonical order: time, then hold ends before presses, then column."""
        return (self.time, 0 if self.kind == NoteKind.HOLD_END else 1, self.column)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "time": format_fraction(self.time),
            "column": self.column,
            "kind": self.kind.value,
        }
        if self.hold_length is not None:
            result["hold_length"] = format_fraction(self.hold_length)
        return result


@dataclass
class TimingPoint:
    """Tempo and meter declaration effective from a beat position.

    Attributes:
        time: Position in beats from beat 0.
        beat_duration_ms: Length of one beat in milliseconds.
        meter: Beats per measure.
        snap_divisor: Grid subdivisions per beat.
    """

    time: Fraction
    beat_duration_ms: float
    meter: int = 4
    snap_divisor: int = 4

    @property
    def bpm(self) -> float:
        """Tempo in beats per minute."""
        return 60000.0 / self.beat_duration_ms

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "time": format_fraction(self.time),
            "beat_duration_ms": self.beat_duration_ms,
            "meter": self.meter,
            "snap_divisor": self.snap_divisor,
        }


@dataclass
class ChartMetadata:
    """Descriptive metadata carried along with a chart.

    Attributes:
        title: Song title.
        artist: Song artist.
        creator: Chart author.
        version: Difficulty name given by the author.
        source: Source media (game, anime, ...).
        tags: Free-form search tags.
        audio: Audio file name, relative to the song folder.
        background: Background image file name, relative to the song folder.
        preview_ms: Song preview start in milliseconds.
    """

    title: str = ""
    artist: str = ""
    creator: str = ""
    version: str = ""
    source: str = ""
    tags: list[str] = field(default_factory=list)
    audio: str | None = None
    background: str | None = None
    preview_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "title": self.title,
            "artist": self.artist,
            "creator": self.creator,
            "version": self.version,
            "source": self.source,
            "tags": list(self.tags),
            "audio": self.audio,
            "background": self.background,
            "preview_ms": self.preview_ms,
        }


@dataclass
class Chart:
    """Canonical in-memory representation of one playable difficulty.

    Notes are kept sorted by :attr:`Note.sort_key` and timing points by time.
    Every transform in the pipeline reads and writes this model only.

    Attributes:
        chart_id: Unique identifier (hash of the source file plus difficulty).
        source_path: File the chart was loaded from.
        column_count: Number of columns (keys).
        notes: Notes in canonical order.
        timing_points: Timing points ordered by time.
        offset_ms: Audio time of beat 0 in milliseconds.
        metadata: Descriptive metadata.
        difficulty: Destination difficulty name (Beginner ... Edit).
        meter: Numeric difficulty shown to players.
        rating: Continuous difficulty estimate, None until rated.
        gamemode: Explicit destination steps type, derived from the
            column count when unset.
        diagnostics: Messages recorded by transforms that degraded the chart.
    """

    chart_id: str
    column_count: int
    notes: list[Note] = field(default_factory=list)
    timing_points: list[TimingPoint] = field(default_factory=list)
    offset_ms: float = 0.0
    source_path: Path | None = None
    metadata: ChartMetadata = field(default_factory=ChartMetadata)
    difficulty: str = DEFAULT_DIFFICULTY
    meter: int = 1
    rating: float | None = None
    gamemode: str | None = None
    diagnostics: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.notes.sort(key=lambda n: n.sort_key)
        self.timing_points.sort(key=lambda tp: tp.time)

    @property
    def note_count(self) -> int:
        """Number of presses (taps and hold starts)."""
        return sum(1 for n in self.notes if n.is_press)

    @property
    def effective_gamemode(self) -> str | None:
        """Explicit steps type, or the default for the column count."""
        return self.gamemode or gamemode_for_columns(self.column_count)

    @property
    def label(self) -> str:
        """Short human-readable name for reports."""
        meta = self.metadata
        name = f"{meta.artist} - {meta.title}" if meta.artist else meta.title or self.chart_id
        return f"{name} [{meta.version}]" if meta.version else name

    # Read operations

    def notes_in_range(self, start: Fraction, end: Fraction) -> list[Note]:
        """Get notes with ``start <= time < end``.

        Args:
            start: Range start in beats (inclusive).
            end: Range end in beats (exclusive).

        Returns:
            Notes in canonical order.
        """
        times = [n.time for n in self.notes]
        lo = bisect_left(times, start)
        hi = bisect_left(times, end, lo=lo)
        return self.notes[lo:hi]

    def active_count_at(self, time: Fraction) -> int:
        """Count notes simultaneously active at a time.

        A note is active if it is pressed exactly at ``time`` or if it is a
        hold that started earlier and has not been released yet.
        """
        count = 0
        for note in self.notes:
            if note.time > time:
                break
            if not note.is_press:
                continue
            if note.time == time:
                count += 1
            elif note.hold_length is not None and note.time + note.hold_length > time:
                count += 1
        return count

    def timing_point_index(self, time: Fraction) -> int:
        """Index of the timing point in effect at ``time``.

        Times before the first timing point resolve to the first one.
        """
        if not self.timing_points:
            raise ChartInvariantError("chart has no timing points", self.chart_id)
        times = [tp.time for tp in self.timing_points]
        return max(bisect_right(times, time) - 1, 0)

    def timing_point_at(self, time: Fraction) -> TimingPoint:
        """Get the timing point in effect at ``time``."""
        return self.timing_points[self.timing_point_index(time)]

    def bpm_at(self, time: Fraction) -> float:
        """Get the tempo (BPM) at a beat position."""
        return self.timing_point_at(time).bpm

    def hold_pairs(self) -> list[tuple[int, int]]:
        """Pair hold starts with their ends.

        Each end pairs with the most recent unmatched start in its column.

        Returns:
            List of ``(start_index, end_index)`` into :attr:`notes`.
        """
        open_holds: dict[int, int] = {}
        pairs = []
        for index, note in enumerate(self.notes):
            if note.kind == NoteKind.HOLD_START:
                open_holds[note.column] = index
            elif note.kind == NoteKind.HOLD_END and note.column in open_holds:
                pairs.append((open_holds.pop(note.column), index))
        return pairs

    # Write operations

    def insert_note(self, note: Note) -> None:
        """Insert a note, keeping canonical order."""
        if not 0 <= note.column < self.column_count:
            raise ChartInvariantError(
                f"column {note.column} outside [0, {self.column_count})", self.chart_id
            )
        insort(self.notes, note, key=lambda n: n.sort_key)

    def remove_note(self, note: Note) -> None:
        """Remove a note (by identity, falling back to equality)."""
        for index, existing in enumerate(self.notes):
            if existing is note:
                del self.notes[index]
                return
        self.notes.remove(note)

    def set_timing_point(self, point: TimingPoint) -> None:
        """Append, insert or replace a timing point.

        A timing point at the same time as an existing one replaces it.
        """
        times = [tp.time for tp in self.timing_points]
        index = bisect_left(times, point.time)
        if index < len(times) and times[index] == point.time:
            self.timing_points[index] = point
        else:
            self.timing_points.insert(index, point)

    # Validation and conversion

    def validate(self) -> None:
        """Check the column-range and time-ordering invariants.

        Raises:
            ChartInvariantError: If an invariant does not hold.
        """
        if self.column_count < 1:
            raise ChartInvariantError(f"invalid column count {self.column_count}", self.chart_id)
        previous: Fraction | None = None
        for note in self.notes:
            if not 0 <= note.column < self.column_count:
                raise ChartInvariantError(
                    f"note at beat {note.time} in column {note.column} "
                    f"outside [0, {self.column_count})",
                    self.chart_id,
                )
            if previous is not None and note.time < previous:
                raise ChartInvariantError(
                    f"note at beat {note.time} precedes beat {previous}", self.chart_id
                )
            previous = note.time
        for prev_tp, tp in zip(self.timing_points, self.timing_points[1:]):
            if tp.time <= prev_tp.time:
                raise ChartInvariantError(
                    f"timing points out of order at beat {tp.time}", self.chart_id
                )
        for tp in self.timing_points:
            if tp.beat_duration_ms <= 0:
                raise ChartInvariantError(
                    f"non-positive beat duration at beat {tp.time}", self.chart_id
                )

    def copy(self) -> Chart:
        """Create an independent deep copy."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "chart_id": self.chart_id,
            "source_path": str(self.source_path) if self.source_path else None,
            "column_count": self.column_count,
            "offset_ms": self.offset_ms,
            "difficulty": self.difficulty,
            "meter": self.meter,
            "rating": self.rating,
            "gamemode": self.gamemode,
            "metadata": self.metadata.to_dict(),
            "timing_points": [tp.to_dict() for tp in self.timing_points],
            "notes": [n.to_dict() for n in self.notes],
            "diagnostics": list(self.diagnostics),
        }
