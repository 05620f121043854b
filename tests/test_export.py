"""Tests for chart export."""

import json
import os
import shutil
from fractions import Fraction
from pathlib import Path

import mido
import pytest

from chart_converter.errors import WriteError
from chart_converter.export import ChartWriter, ExportFormat, ExportOptions, safe_name
from chart_converter.export.linking import link_asset, link_song_assets
from chart_converter.export.midi import export_midi_preview
from chart_converter.export.native import chart_to_json
from chart_converter.export.simfile import render_notes, render_simfile
from chart_converter.ingest.osu import OsuParser
from chart_converter.models.core import Chart, Note, TimingPoint
from conftest import osu_hit, osu_hold


class TestSimfile:
    """Tests for the .sm writer."""

    def test_render_notes(self, make_chart) -> None:
        """Test notes become rows of the smallest fitting grid."""
        chart = make_chart([(0, 0), (Fraction(1, 2), 2), (1, 1)], holds=[(2, 3, 1)])

        assert render_notes(chart) == "\n".join(
            [
                "  // measure 0",
                "1000",
                "0010",
                "0100",
                "0000",
                "0002",
                "0000",
                "0003",
                "0000",
            ]
        )

    def test_measures(self, make_chart) -> None:
        """Test empty measures are written as four blank rows."""
        text = render_notes(make_chart([(0, 0), (8, 3)]))
        blocks = text.split("\n,\n")

        assert len(blocks) == 3
        assert blocks[1] == "\n".join(["  // measure 1", "0000", "0000", "0000", "0000"])
        assert blocks[2].splitlines()[1] == "0001"

    def test_header(self, make_chart) -> None:
        """Test metadata and timing tags."""
        points = [TimingPoint(Fraction(0), 500.0), TimingPoint(Fraction(8), 250.0)]
        chart = make_chart([(0, 0)], timing_points=points)
        chart.offset_ms = 120.0
        chart.metadata.audio = "song.ogg"
        text = render_simfile([chart])

        assert "#TITLE:Song;" in text
        assert "#ARTIST:Artist;" in text
        assert "#MUSIC:song.ogg;" in text
        assert "#OFFSET:-0.12;" in text
        assert "#BPMS:0=120,8=240;" in text
        assert "    dance-single:\n    Hard:\n    Edit:\n    1:" in text
        assert text.endswith(";\n")

    def test_several_charts(self, make_chart) -> None:
        """Test charts of one song share a file."""
        charts = [make_chart([(0, 0)]), make_chart([(0, 6)], columns=7, version="Hard 7K")]
        text = render_simfile(charts)

        assert text.count("#NOTES:") == 2
        assert "    kb7-single:\n    Hard 7K:" in text

    def test_timing_mismatch(self, make_chart) -> None:
        """Test charts with different timing cannot share a file."""
        with pytest.raises(WriteError, match="different timing"):
            render_simfile([make_chart([(0, 0)]), make_chart([(0, 0)], beat_ms=400.0)])

    def test_collision(self) -> None:
        """Test two notes in one cell are rejected."""
        chart = Chart(
            chart_id="dup",
            column_count=4,
            notes=[Note(Fraction(0), 1), Note(Fraction(0), 1)],
            timing_points=[TimingPoint(Fraction(0), 500.0)],
        )
        with pytest.raises(WriteError, match="two notes"):
            render_notes(chart)

    def test_off_grid(self, make_chart) -> None:
        """Test notes off the finest grid are rejected."""
        with pytest.raises(WriteError, match="normalize timing"):
            render_notes(make_chart([(Fraction(1, 7), 0)]))

    def test_before_beat_zero(self, make_chart) -> None:
        """Test notes before beat 0 are rejected."""
        with pytest.raises(WriteError, match="precedes beat 0"):
            render_notes(make_chart([(-1, 0)]))

    def test_no_steps_type(self, make_chart) -> None:
        """Test column counts without a steps type need an explicit one."""
        with pytest.raises(WriteError, match="steps type"):
            render_simfile([make_chart([(0, 0)], columns=11)])


class TestJson:
    """Tests for the JSON writer."""

    def test_deterministic(self, make_chart) -> None:
        """Test identical charts serialize identically."""
        chart = make_chart([(Fraction(1, 3), 0)])
        text = chart_to_json(chart)

        assert text == chart_to_json(chart.copy())
        assert json.loads(text)["chart"]["notes"][0]["time"] == "1/3"


class TestMidiPreview:
    """Tests for the MIDI preview writer."""

    def test_export(self, make_chart, tmp_path: Path) -> None:
        """Test columns become pitches and holds keep their length."""
        chart = make_chart([(0, 0), (1, 1)], holds=[(2, 3, 1)])
        path = export_midi_preview(chart, tmp_path / "preview.mid")
        midi = mido.MidiFile(path)

        assert midi.ticks_per_beat == 480
        tick = 0
        note_on, note_off, tempos = [], {}, []
        for message in midi.tracks[0]:
            tick += message.time
            if message.type == "note_on":
                note_on.append((tick, message.note))
            elif message.type == "note_off":
                note_off[message.note] = tick
            elif message.type == "set_tempo":
                tempos.append(message.tempo)

        assert note_on == [(0, 60), (480, 61), (960, 63)]
        assert note_off[63] == 1440
        assert note_off[60] == 120
        assert tempos == [500000]

    def test_too_many_columns(self, make_chart, tmp_path: Path) -> None:
        """Test pitches must stay in the MIDI range."""
        with pytest.raises(WriteError):
            export_midi_preview(make_chart([(0, 0)]), tmp_path / "x.mid", base_pitch=126)


class TestChartWriter:
    """Tests for the ChartWriter."""

    @pytest.fixture
    def charts(self, write_osu) -> list:
        """Two difficulties of one song."""
        parser = OsuParser()
        return [
            parser.parse_file(write_osu([osu_hit(0, 0), osu_hold(1, 500, 1000)], version="Easy")),
            parser.parse_file(write_osu([osu_hit(3, 0)], version="Hard")),
        ]

    def test_simfile_groups_song(self, charts, tmp_path: Path) -> None:
        """Test difficulties of one song end up in one simfile."""
        out = tmp_path / "out"
        results = ChartWriter(ExportOptions(output_dir=out)).write(charts)

        assert all(r.success for r in results)
        assert results[0].path == results[1].path == out / "song" / "Test Song.sm"
        text = results[0].path.read_text(encoding="utf-8")
        assert text.count("#NOTES:") == 2
        assert "#MUSIC:audio.mp3;" in text

    def test_assets_linked(self, charts, tmp_path: Path) -> None:
        """Test audio and background are made available next to the output."""
        out = tmp_path / "out"
        ChartWriter(ExportOptions(output_dir=out)).write(charts)

        assert (out / "song" / "audio.mp3").read_bytes() == b"audio"
        assert (out / "song" / "bg.jpg").exists()

    def test_no_linking(self, charts, tmp_path: Path) -> None:
        """Test linking can be turned off."""
        out = tmp_path / "out"
        ChartWriter(ExportOptions(output_dir=out, link_assets=False)).write(charts)

        assert not (out / "song" / "audio.mp3").exists()

    def test_in_place(self, charts, tmp_path: Path) -> None:
        """Test in-place output goes next to the source file."""
        results = ChartWriter(ExportOptions(in_place=True)).write(charts)

        assert results[0].path == tmp_path / "songs" / "song" / "Test Song.sm"
        assert results[0].path.exists()

    def test_json_names(self, make_chart, tmp_path: Path) -> None:
        """Test individual files get unique names."""
        writer = ChartWriter(ExportOptions(output_dir=tmp_path, format=ExportFormat.JSON))
        results = writer.write([make_chart([(0, 0)]), make_chart([(1, 0)])])

        assert [r.path.name for r in results] == [
            "Artist - Song [Hard] 4K.chart.json",
            "Artist - Song [Hard] 4K (2).chart.json",
        ]
        assert all(r.path.exists() for r in results)

    def test_midi_format(self, make_chart, tmp_path: Path) -> None:
        """Test writing MIDI previews."""
        writer = ChartWriter(ExportOptions(output_dir=tmp_path, format=ExportFormat.MIDI))
        (result,) = writer.write([make_chart([(0, 0)])])

        assert result.path.suffix == ".mid"
        assert mido.MidiFile(result.path).tracks

    def test_bad_chart_does_not_block_others(self, charts, make_chart, tmp_path: Path) -> None:
        """Test a chart that cannot be written is reported on its own."""
        bad = make_chart([(Fraction(1, 7), 0)], chart_id="bad")
        results = ChartWriter(ExportOptions(output_dir=tmp_path / "out")).write([bad] + charts)

        assert not results[0].success
        assert results[0].error.chart_id == "bad"
        assert results[1].success and results[2].success

    def test_link_failure_fails_song(self, charts, tmp_path: Path, monkeypatch) -> None:
        """Test assets that cannot be linked fail the charts of that song only."""

        def refuse(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(os, "symlink", refuse)
        monkeypatch.setattr(os, "link", refuse)
        monkeypatch.setattr(shutil, "copy2", refuse)
        results = ChartWriter(ExportOptions(output_dir=tmp_path / "out")).write(charts)

        assert not any(r.success for r in results)
        assert [r.error.chart_id for r in results] == [c.chart_id for c in charts]
        assert all("cannot copy asset: disk full" in str(r.error) for r in results)
        assert (tmp_path / "out" / "song" / "Test Song.sm").exists()

    def test_requires_destination(self) -> None:
        """Test an output folder is needed unless writing in place."""
        with pytest.raises(ValueError):
            ChartWriter(ExportOptions())

    def test_destination_needs_output_dir(self, make_chart) -> None:
        """Test options changed after construction are still checked."""
        writer = ChartWriter(ExportOptions(in_place=True))
        writer.options.in_place = False
        with pytest.raises(ValueError, match="output_dir is required"):
            writer.destination_dir(make_chart([(0, 0)]))

    def test_safe_name(self) -> None:
        """Test unsafe characters are replaced."""
        assert safe_name('a/b:c?"d') == "a_b_c__d"
        assert safe_name("...") == "chart"


class TestLinking:
    """Tests for asset linking."""

    def test_missing_source(self, tmp_path: Path) -> None:
        """Test missing assets are skipped."""
        assert link_asset(tmp_path / "nope.mp3", tmp_path / "out" / "nope.mp3") is None

    def test_existing_destination_kept(self, tmp_path: Path) -> None:
        """Test existing files are not replaced."""
        source = tmp_path / "a.mp3"
        source.write_bytes(b"new")
        destination = tmp_path / "b.mp3"
        destination.write_bytes(b"old")

        assert link_asset(source, destination) == destination
        assert destination.read_bytes() == b"old"

    def test_same_folder(self, tmp_path: Path) -> None:
        """Test linking a folder into itself does nothing."""
        (tmp_path / "a.mp3").write_bytes(b"x")
        assert link_song_assets(tmp_path, tmp_path, ["a.mp3"]) == []

    def test_unwritable_folder(self, tmp_path: Path) -> None:
        """Test a folder that cannot be created is reported as a write error."""
        source = tmp_path / "a.mp3"
        source.write_bytes(b"x")
        (tmp_path / "blocked").write_bytes(b"file in the way")

        with pytest.raises(WriteError, match="cannot create folder"):
            link_asset(source, tmp_path / "blocked" / "out" / "a.mp3")
