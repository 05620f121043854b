"""osu!mania beatmap (.osu) parser."""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path

from chart_converter.errors import ParseError
from chart_converter.ingest.timing import ms_fraction
from chart_converter.models.core import Chart, ChartMetadata, Note, NoteKind, TimingPoint

logger = logging.getLogger(__name__)

MODE_STANDARD = 0
MODE_TAIKO = 1
MODE_CATCH = 2
MODE_MANIA = 3

MODE_NAMES = {
    MODE_STANDARD: "osu",
    MODE_TAIKO: "taiko",
    MODE_CATCH: "catch",
    MODE_MANIA: "mania",
}

# Hit object type bits
TYPE_HIT = 1
TYPE_LONG = 128

# osu! playfield width used to place mania columns
PLAYFIELD_WIDTH = 512

# Beat granularities tried (coarse to fine) when placing timing points on beats
TIMING_ROUNDINGS = (
    Fraction(4),
    Fraction(1),
    Fraction(1, 2),
    Fraction(1, 4),
    Fraction(1, 8),
    Fraction(1, 48),
)

# Gaps tried when inserting a tempo correction before a timing point
CORRECTION_GAPS = (
    Fraction(1),
    Fraction(1, 2),
    Fraction(1, 4),
    Fraction(1, 8),
    Fraction(1, 16),
    Fraction(1, 48),
)

# Accumulated timing error (ms) that triggers a tempo correction
MAX_TIMING_ERROR_MS = 4


@dataclass
class ChartHeader:
    """Header information read before full parsing.

    Attributes:
        path: Beatmap file.
        mode: osu! game mode number.
        column_count: Key count (mania only).
    """

    path: Path
    mode: int
    column_count: int | None

    @property
    def mode_name(self) -> str:
        """Readable game mode name."""
        return MODE_NAMES.get(self.mode, f"mode {self.mode}")

    @property
    def is_mania(self) -> bool:
        """Whether the beatmap is an osu!mania chart."""
        return self.mode == MODE_MANIA


@dataclass
class _RawTimingPoint:
    time: Fraction
    beat_len: Fraction
    meter: int

    @property
    def uninherited(self) -> bool:
        return self.beat_len > 0


@dataclass
class _RawHitObject:
    x: float
    time: Fraction
    type: int
    extras: str


@dataclass
class _Beatmap:
    mode: int = MODE_STANDARD
    circle_size: float = 0.0
    audio: str = ""
    preview_ms: float = -1.0
    title: str = ""
    artist: str = ""
    creator: str = ""
    version: str = ""
    source: str = ""
    tags: str = ""
    background: str = ""
    timing_points: list[_RawTimingPoint] = field(default_factory=list)
    hit_objects: list[_RawHitObject] = field(default_factory=list)


def _strip_line(line: str) -> str:
    if "//" in line:
        line = line[: line.index("//")]
    return line.strip()


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


class OsuParser:
    """Parser for osu! beatmap files.

    Only osu!mania beatmaps can be converted into charts, but any mode can be    inspected so that other modes are skipped before full parsing.
    """

    def __init__(self, offset_ms: float = 0.0) -> None:
        """Initialize the parser.

        Args:
            offset_ms: Global offset added to every timestamp.
        """
        self.offset_ms = ms_fraction(offset_ms)

    def read_header(self, file_path: Path | str) -> ChartHeader:
        """Read the game mode and key count without parsing hit objects.

        Args:
            file_path: Path to the .osu file.

        Returns:
            Header fields.

        Raises:
            ParseError: If the file cannot be read.
        """
        file_path = Path(file_path)
        mode = MODE_STANDARD
        circle_size: float | None = None
        try:
            with file_path.open(encoding="utf-8-sig", errors="replace") as f:
                section = ""
                for raw_line in f:
                    line = _strip_line(raw_line)
                    if line.startswith("[") and line.endswith("]"):
                        section = line[1:-1]
                        # Header sections always come first
                        if section in ("Events", "TimingPoints", "HitObjects"):
                            break
                        continue
                    key, sep, value = line.partition(":")
                    if not sep:
                        continue
                    if section == "General" and key.strip() == "Mode":
                        mode = int(value.strip())
                    elif section == "Difficulty" and key.strip() == "CircleSize":
                        circle_size = float(value.strip())
        except OSError as e:
            raise ParseError(f"cannot read beatmap: {e}", file_path) from e
        except ValueError as e:
            raise ParseError(f"invalid header value: {e}", file_path) from e

        column_count = None
        if mode == MODE_MANIA and circle_size is not None:
            column_count = round(circle_size)
        return ChartHeader(path=file_path, mode=mode, column_count=column_count)

    def parse_file(self, file_path: Path | str) -> Chart:
        """Parse an osu!mania beatmap into a chart.

        Args:
            file_path: Path to the .osu file.

        Returns:
            Parsed chart.

        Raises:
            ParseError: If the file is missing, malformed or not a mania map.
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise ParseError("beatmap file not found", file_path)

        try:
            text = file_path.read_text(encoding="utf-8-sig", errors="replace")
        except OSError as e:
            raise ParseError(f"cannot read beatmap: {e}", file_path) from e

        beatmap = self._parse_text(text, file_path)
        if beatmap.mode != MODE_MANIA:
            raise ParseError(
                f"unsupported game mode {MODE_NAMES.get(beatmap.mode, beatmap.mode)}", file_path
            )
        return self._convert(beatmap, file_path)

    def _generate_chart_id(self, file_path: Path) -> str:
        """Generate a unique chart ID from the file path."""
        path_str = str(file_path.resolve())
        return hashlib.md5(path_str.encode()).hexdigest()[:12]

    def _parse_text(self, text: str, file_path: Path) -> _Beatmap:
        """Split a beatmap into its sections.

        Malformed lines are logged and skipped, matching how the game itself
        tolerates slightly broken beatmaps.
        """
        bm = _Beatmap()
        section = ""
        warnings = 0
        for line_num, raw_line in enumerate(text.splitlines(), start=1):
            line = _strip_line(raw_line)
            if not line or line.startswith("osu file format"):
                continue
            if line.startswith("[") and line.endswith("]"):
                section = line[1:-1]
                continue
            try:
                self._parse_line(bm, section, line)
            except (ValueError, IndexError) as e:
                warnings += 1
                logger.debug(f"{file_path}:{line_num}: skipping line {line!r}: {e}")
        if warnings:
            logger.warning(f"{file_path}: skipped {warnings} malformed line(s)")
        bm.hit_objects.sort(key=lambda obj: obj.time)
        return bm

    def _parse_line(self, bm: _Beatmap, section: str, line: str) -> None:
        if section in ("General", "Metadata", "Difficulty"):
            key, sep, value = line.partition(":")
            if not sep:
                return
            key, value = key.strip(), value.strip()
            if section == "General":
                if key == "AudioFilename":
                    bm.audio = _unquote(value)
                elif key == "PreviewTime":
                    bm.preview_ms = float(value)
                elif key == "Mode":
                    bm.mode = int(value)
            elif section == "Metadata":
                if key in ("Title", "Artist", "Creator", "Version", "Source", "Tags"):
                    setattr(bm, key.lower(), value)
            elif key == "CircleSize":
                bm.circle_size = float(value)
        elif section == "Events":
            parts = line.split(",")
            if parts[0].strip() == "0" and len(parts) >= 3:
                bm.background = _unquote(parts[2])
        elif section == "TimingPoints":
            parts = line.split(",")
            meter = 4
            if len(parts) > 2 and parts[2].strip():
                meter = int(parts[2]) or 4
            bm.timing_points.append(
                _RawTimingPoint(
                    time=ms_fraction(float(parts[0])) + self.offset_ms,
                    beat_len=ms_fraction(float(parts[1])),
                    meter=meter,
                )
            )
        elif section == "HitObjects":
            parts = line.split(",", 5)
            bm.hit_objects.append(
                _RawHitObject(
                    x=float(parts[0]),
                    time=ms_fraction(float(parts[2])) + self.offset_ms,
                    type=int(parts[3]),
                    extras=parts[5].strip() if len(parts) > 5 else "",
                )
            )

    def _convert(self, bm: _Beatmap, file_path: Path) -> Chart:
        """Convert parsed beatmap sections into a chart."""
        column_count = round(bm.circle_size)
        if not 1 <= column_count < 128:
            raise ParseError(f"invalid key count {bm.circle_size}", file_path)

        timing = _BeatClock.create(bm, file_path)
        notes: list[Note] = []
        # Hold tails waiting for their time, as (end_time, column, head note)
        pending: list[tuple[Fraction, int, Note]] = []

        def flush_tails(until: Fraction | None) -> None:
            while pending and (until is None or pending[0][0] <= until):
                end_time, column, head = pending.pop(0)
                end_beat = timing.beat_at(end_time)
                if end_beat <= head.time:
                    head.kind = NoteKind.TAP
                    continue
                head.hold_length = end_beat - head.time
                notes.append(Note(end_beat, column, NoteKind.HOLD_END))

        for obj in bm.hit_objects:
            flush_tails(obj.time)
            column = math.floor(obj.x * column_count / PLAYFIELD_WIDTH)
            if not 0 <= column < column_count:
                raise ParseError(f"hit object x={obj.x} maps to invalid column {column}", file_path)
            beat = timing.beat_at(obj.time)
            if obj.type & TYPE_LONG:
                try:
                    end_time = ms_fraction(float(obj.extras.split(":")[0])) + self.offset_ms
                except ValueError as e:
                    raise ParseError(f"invalid hold note extras {obj.extras!r}", file_path) from e
                head = Note(beat, column, NoteKind.HOLD_START)
                notes.append(head)
                pending.append((end_time, column, head))
                pending.sort(key=lambda item: item[0])
            elif obj.type & TYPE_HIT:
                notes.append(Note(beat, column, NoteKind.TAP))
        flush_tails(None)

        tags = bm.tags.split()
        metadata = ChartMetadata(
            title=bm.title,
            artist=bm.artist,
            creator=bm.creator,
            version=bm.version,
            source=bm.source,
            tags=tags,
            audio=bm.audio or None,
            background=bm.background or None,
            preview_ms=bm.preview_ms if bm.preview_ms >= 0 else None,
        )
        chart = Chart(
            chart_id=self._generate_chart_id(file_path),
            source_path=file_path,
            column_count=column_count,
            notes=notes,
            timing_points=timing.points,
            offset_ms=float(timing.offset_ms),
            metadata=metadata,
        )
        logger.debug(
            f"Parsed {file_path.name}: {column_count}K, {chart.note_count} notes, "
            f"{len(chart.timing_points)} timing points"
        )
        return chart


class _BeatClock:
    """Converts beatmap milliseconds into beats while placing timing points.

    Uninherited timing points are put on a beat grid coarse enough not to
    merge distinct points. The rounding shifts them slightly in time; once
    the accumulated shift reaches ``MAX_TIMING_ERROR_MS`` a correction
    tempo is inserted shortly before the point to absorb it.
    """

    def __init__(
        self,
        rest: list[_RawTimingPoint],
        first: _RawTimingPoint,
        rounding: Fraction,
    ) -> None:
        self.rest = rest
        self.current = first
        self.current_beat = Fraction(0)
        # Output time of the current timing point (error accumulator)
        self.current_time = first.time
        self.offset_ms = first.time
        self.rounding = rounding
        self.points = [TimingPoint(Fraction(0), float(first.beat_len), first.meter)]
        self.last_beat = Fraction(0)

    @classmethod
    def create(cls, bm: _Beatmap, file_path: Path) -> _BeatClock:
        uninherited = [tp for tp in bm.timing_points if tp.uninherited]
        if not uninherited:
            raise ParseError("no uninherited timing points", file_path)
        first_hit = bm.hit_objects[0].time if bm.hit_objects else uninherited[0].time

        first = uninherited[0]
        for tp in uninherited:
            if tp.time <= first_hit:
                first = tp
        index = uninherited.index(first)

        # Move the first timing point by whole measures up to the first hit
        measure = first.beat_len * first.meter
        shift = math.floor((first_hit - first.time) / measure) * measure
        first = _RawTimingPoint(first.time + shift, first.beat_len, first.meter)
        rest = uninherited[index + 1:]

        rounding = TIMING_ROUNDINGS[-1]
        for candidate in TIMING_ROUNDINGS:
            if not cls._aliases(first, rest, candidate):
                rounding = candidate
                break
        return cls(rest, first, rounding)

    @staticmethod
    def _aliases(first: _RawTimingPoint, rest: list[_RawTimingPoint], rounding: Fraction) -> bool:
        """Check whether rounding would merge two distinct timing points."""
        current = first
        for tp in rest:
            advance = round((tp.time - current.time) / current.beat_len / rounding) * rounding
            if tp.time != current.time and advance <= 0:
                return True
            current = tp
        return False

    def beat_at(self, time: Fraction) -> Fraction:
        """Beat position of a timestamp; timestamps must not decrease much."""
        while self.rest and time >= self.rest[0].time:
            self._advance(self.rest.pop(0))
        beat = self.current_beat + (time - self.current.time) / self.current.beat_len
        self.last_beat = max(self.last_beat, beat)
        return beat

    def _advance(self, tp: _RawTimingPoint) -> None:
        raw_advance = (tp.time - self.current_time) / self.current.beat_len
        advance = max(round(raw_advance / self.rounding), 1) * self.rounding
        tp_beat = self.current_beat + advance
        tp_time = self.current_time + advance * self.current.beat_len

        if abs(tp_time - tp.time) >= MAX_TIMING_ERROR_MS:
            pivot = self._correction_pivot(tp_beat)
            if pivot is not None:
                to_pivot = (pivot - self.current_beat) * self.current.beat_len
                beat_len = (tp.time - self.current_time - to_pivot) / (tp_beat - pivot)
                if beat_len > 0:
                    self.points.append(TimingPoint(pivot, float(beat_len), self.current.meter))
                    tp_time = tp.time
                    logger.debug(f"Inserted {float(beat_len):.3f}ms/beat correction at beat {pivot}")

        self.current_beat = tp_beat
        self.current_time = tp_time
        self.current = tp
        self.points.append(TimingPoint(tp_beat, float(tp.beat_len), tp.meter))

    def _correction_pivot(self, tp_beat: Fraction) -> Fraction | None:
        floor_beat = max(self.last_beat, self.current_beat)
        for gap in CORRECTION_GAPS:
            pivot = tp_beat - gap
            if pivot > floor_beat:
                return pivot
        return None
