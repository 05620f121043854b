"""Tests for chart ingest modules."""

from fractions import Fraction
from pathlib import Path

import pytest

from chart_converter.errors import ParseError
from chart_converter.export.native import write_chart_json
from chart_converter.ingest import SourceLoader, load_chart
from chart_converter.ingest.native import load_chart_json, read_column_count
from chart_converter.ingest.osu import MODE_MANIA, OsuParser
from chart_converter.ingest.timing import TimingResolver, ms_fraction
from chart_converter.models.core import NoteKind, TimingPoint
from conftest import osu_hit, osu_hold


class TestOsuParser:
    """Tests for the osu!mania parser."""

    @pytest.fixture
    def beatmap(self, write_osu) -> Path:
        """A 4K beatmap with two taps and a hold at 120 BPM."""
        return write_osu(
            [
                osu_hit(0, 0),
                osu_hit(1, 500),
                osu_hold(2, 1000, 2000),
            ]
        )

    def test_parse_notes(self, beatmap: Path) -> None:
        """Test hit objects become notes on beats."""
        chart = OsuParser().parse_file(beatmap)

        assert chart.column_count == 4
        presses = [(n.time, n.column, n.kind) for n in chart.notes]
        assert presses == [
            (0, 0, NoteKind.TAP),
            (1, 1, NoteKind.TAP),
            (2, 2, NoteKind.HOLD_START),
            (4, 2, NoteKind.HOLD_END),
        ]
        assert chart.notes[2].hold_length == 2

    def test_parse_timing(self, beatmap: Path) -> None:
        """Test the timing point and offset."""
        chart = OsuParser().parse_file(beatmap)

        assert chart.offset_ms == 0.0
        assert len(chart.timing_points) == 1
        assert chart.timing_points[0].time == 0
        assert chart.timing_points[0].bpm == 120.0

    def test_parse_metadata(self, beatmap: Path) -> None:
        """Test metadata extraction."""
        chart = OsuParser().parse_file(beatmap)
        meta = chart.metadata

        assert meta.title == "Test Song"
        assert meta.artist == "Test Artist"
        assert meta.creator == "Mapper"
        assert meta.version == "Hard"
        assert meta.tags == ["test", "chart"]
        assert meta.audio == "audio.mp3"
        assert meta.background == "bg.jpg"
        assert meta.preview_ms == 1500.0
        assert chart.source_path == beatmap

    def test_chart_id_is_stable(self, beatmap: Path) -> None:
        """Test chart ids depend only on the file path."""
        assert OsuParser().parse_file(beatmap).chart_id == OsuParser().parse_file(beatmap).chart_id

    def test_tempo_change(self, write_osu) -> None:
        """Test beats after a tempo change use the new beat length."""
        path = write_osu(
            [osu_hit(0, 0), osu_hit(1, 4250)],
            timing=["0,500,4,1,0,100,1,0", "2000,-100,4,1,0,100,0,0", "4000,250,4,1,0,100,1,0"],
        )
        chart = OsuParser().parse_file(path)

        assert [tp.time for tp in chart.timing_points] == [0, 8]
        assert chart.timing_points[1].bpm == 240.0
        assert chart.notes[1].time == 9

    def test_zero_length_hold_becomes_tap(self, write_osu) -> None:
        """Test holds ending where they start are read as taps."""
        chart = OsuParser().parse_file(write_osu([osu_hold(0, 500, 500)]))
        assert [n.kind for n in chart.notes] == [NoteKind.TAP]

    def test_malformed_lines_skipped(self, write_osu) -> None:
        """Test broken hit object lines are ignored."""
        chart = OsuParser().parse_file(write_osu([osu_hit(0, 0), "garbage", osu_hit(1, 500)]))
        assert chart.note_count == 2

    def test_parse_nonexistent_file(self) -> None:
        """Test that parsing a nonexistent file raises ParseError."""
        with pytest.raises(ParseError):
            OsuParser().parse_file("/nonexistent/file.osu")

    def test_parse_other_mode(self, write_osu) -> None:
        """Test non-mania beatmaps are rejected."""
        with pytest.raises(ParseError, match="unsupported game mode"):
            OsuParser().parse_file(write_osu([osu_hit(0, 0)], mode=0))

    def test_missing_timing_points(self, write_osu) -> None:
        """Test beatmaps without uninherited timing points are rejected."""
        path = write_osu([osu_hit(0, 0)], timing=["0,-100,4,1,0,100,0,0"])
        with pytest.raises(ParseError, match="timing points"):
            OsuParser().parse_file(path)

    def test_header_mania(self, beatmap: Path) -> None:
        """Test the header reads mode and key count."""
        header = OsuParser().read_header(beatmap)
        assert header.mode == MODE_MANIA
        assert header.is_mania
        assert header.column_count == 4

    def test_header_other_mode(self, write_osu) -> None:
        """Test the header of a standard-mode beatmap."""
        header = OsuParser().read_header(write_osu([osu_hit(0, 0)], mode=0))
        assert not header.is_mania
        assert header.mode_name == "osu"
        assert header.column_count is None


class TestNativeFormat:
    """Tests for the JSON chart format."""

    def test_write_and_load(self, make_chart, tmp_path: Path) -> None:
        """Test a written chart loads back with exact times."""
        chart = make_chart([(Fraction(1, 3), 0), (2, 3)], holds=[(1, 1, Fraction(3, 4))])
        path = write_chart_json(chart, tmp_path / "a.chart.json")

        loaded = load_chart_json(path)
        assert loaded.to_dict()["notes"] == chart.to_dict()["notes"]
        assert loaded.timing_points == chart.timing_points
        assert loaded.source_path == path
        assert read_column_count(path) == 4

    def test_load_wrong_format(self, tmp_path: Path) -> None:
        """Test foreign JSON documents are rejected."""
        path = tmp_path / "other.chart.json"
        path.write_text('{"format": "something-else"}')
        with pytest.raises(ParseError):
            load_chart_json(path)

    def test_load_invalid_json(self, tmp_path: Path) -> None:
        """Test unparseable files are rejected."""
        path = tmp_path / "broken.chart.json"
        path.write_text("{not json")
        with pytest.raises(ParseError):
            load_chart_json(path)


class TestSourceLoader:
    """Tests for the source loader."""

    def test_scan_sorted_and_filtered(self, write_osu, tmp_path: Path) -> None:
        """Test scanning finds chart files only, in sorted order."""
        write_osu([osu_hit(0, 0)], folder="b")
        write_osu([osu_hit(0, 0)], folder="a")
        files = SourceLoader().scan(tmp_path / "songs")

        assert [f.parent.name for f in files] == ["a", "b"]
        assert all(f.suffix == ".osu" for f in files)

    def test_scan_non_recursive(self, write_osu, tmp_path: Path) -> None:
        """Test non-recursive scans ignore subfolders."""
        write_osu([osu_hit(0, 0)])
        assert SourceLoader().scan(tmp_path / "songs", recursive=False) == []

    def test_scan_missing_path(self, tmp_path: Path) -> None:
        """Test scanning a missing path fails."""
        with pytest.raises(FileNotFoundError):
            SourceLoader().scan(tmp_path / "missing")

    def test_load_dispatches_on_suffix(self, write_osu, make_chart, tmp_path: Path) -> None:
        """Test both formats load through the same entry point."""
        osu_path = write_osu([osu_hit(0, 0)])
        json_path = write_chart_json(make_chart([(0, 0)], columns=7), tmp_path / "x.chart.json")
        loader = SourceLoader()

        assert loader.load(osu_path).column_count == 4
        assert loader.load(json_path).column_count == 7
        assert loader.read_header(json_path).column_count == 7
        assert load_chart(osu_path).note_count == 1

    def test_offset(self, write_osu) -> None:
        """Test the global offset moves beat 0."""
        chart = SourceLoader(offset_ms=25).load(write_osu([osu_hit(0, 0)]))
        assert chart.offset_ms == 25.0
        assert chart.notes[0].time == 0


class TestTimingResolver:
    """Tests for beat/millisecond conversion."""

    @pytest.fixture
    def resolver(self) -> TimingResolver:
        """120 BPM for 8 beats, then 240 BPM, with beat 0 at 100ms."""
        points = [TimingPoint(Fraction(0), 500.0), TimingPoint(Fraction(8), 250.0)]
        return TimingResolver(points, offset_ms=100.0)

    def test_beat_to_ms(self, resolver: TimingResolver) -> None:
        """Test converting beats to milliseconds across segments."""
        assert resolver.beat_to_ms(Fraction(0)) == 100.0
        assert resolver.beat_to_ms(Fraction(2)) == 1100.0
        assert resolver.beat_to_ms(Fraction(10)) == 4600.0

    def test_ms_to_beat(self, resolver: TimingResolver) -> None:
        """Test converting milliseconds to beats across segments."""
        assert resolver.ms_to_beat(1100.0) == 2
        assert resolver.ms_to_beat(4600.0) == 10

    def test_ms_fraction(self) -> None:
        """Test float milliseconds become exact decimals."""
        assert ms_fraction(0.1) == Fraction(1, 10)
