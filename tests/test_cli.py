"""Tests for CLI commands."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from chart_converter.cli.main import cli
from conftest import osu_hit, osu_hold


def write_pipeline(path: Path, songs: Path, out: Path, **remap) -> Path:
    remap_config = ", ".join(f"{k}: {v}" for k, v in {"targetColumnCount": 7, **remap}.items())
    path.write_text(
        "nodes:\n"
        f"  - {{id: load, kind: Load, config: {{path: '{songs}'}}}}\n"
        f"  - {{id: remap, kind: Remap, config: {{{remap_config}}}}}\n"
        f"  - {{id: write, kind: Write, config: {{path: '{out}'}}}}\n"
        "edges:\n"
        "  - {from: load, to: remap}\n"
        "  - {from: remap, to: write}\n"
    )
    return path


class TestCLI:
    """Tests for the CLI interface."""

    @pytest.fixture
    def beatmap(self, write_osu) -> Path:
        return write_osu([osu_hit(0, 0), osu_hit(1, 500), osu_hold(2, 1000, 2000)])

    @pytest.fixture
    def pipeline(self, beatmap: Path, tmp_path: Path) -> Path:
        return write_pipeline(tmp_path / "pipeline.yaml", tmp_path / "songs", tmp_path / "out")

    def test_version(self) -> None:
        """Test --version flag."""
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "chart-converter" in result.output
        assert "0.1.0" in result.output

    def test_help(self) -> None:
        """Test --help flag."""
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Chart Converter" in result.output
        for command in ("run", "validate", "inspect", "patterns"):
            assert command in result.output

    def test_run_help(self) -> None:
        """Test run --help."""
        runner = CliRunner()
        result = runner.invoke(cli, ["run", "--help"])
        assert result.exit_code == 0
        assert "--workers" in result.output
        assert "--fail-fast" in result.output
        assert "--report" in result.output

    def test_validate(self, pipeline: Path) -> None:
        """Test validating a pipeline prints its execution order."""
        runner = CliRunner()
        result = runner.invoke(cli, ["validate", str(pipeline)])
        assert result.exit_code == 0
        assert "pipeline.yaml is valid" in result.output
        assert "1. load" in result.output
        assert "3. write" in result.output

    def test_validate_invalid(self, tmp_path: Path) -> None:
        """Test invalid pipelines are reported."""
        path = tmp_path / "bad.yaml"
        path.write_text("nodes:\n  - {id: a, kind: Nope}\n")
        runner = CliRunner()
        result = runner.invoke(cli, ["validate", str(path)])
        assert result.exit_code == 1
        assert "Invalid pipeline" in result.output
        assert "unknown kind 'Nope'" in result.output

    def test_run(self, pipeline: Path, tmp_path: Path) -> None:
        """Test running a pipeline and saving the report."""
        report_path = tmp_path / "report.json"
        runner = CliRunner()
        result = runner.invoke(cli, ["run", str(pipeline), "-w", "2", "--report", str(report_path)])
        assert result.exit_code == 0, result.output
        assert "1 succeeded" in result.output

        report = json.loads(report_path.read_text())
        assert report["ok"] is True
        assert report["summary"]["succeeded"] == 1
        assert (tmp_path / "out" / "song" / "Test Song.sm").exists()

    def test_run_with_failed_chart(self, write_osu, tmp_path: Path) -> None:
        """Test a run with a failed chart exits with an error."""
        write_osu([osu_hit(c, 0) for c in range(3)])
        pipeline = write_pipeline(
            tmp_path / "pipeline.yaml", tmp_path / "songs", tmp_path / "out", targetColumnCount=2
        )
        runner = CliRunner()
        result = runner.invoke(cli, ["run", str(pipeline)])
        assert result.exit_code == 1
        assert "3 simultaneous notes" in result.output
        assert "1 failed" in result.output

    def test_run_fail_fast(self, write_osu, tmp_path: Path) -> None:
        """Test --fail-fast aborts the run."""
        write_osu([osu_hit(c, 0) for c in range(3)])
        pipeline = write_pipeline(
            tmp_path / "pipeline.yaml", tmp_path / "songs", tmp_path / "out", targetColumnCount=2
        )
        runner = CliRunner()
        result = runner.invoke(cli, ["run", str(pipeline), "--fail-fast"])
        assert result.exit_code == 1
        assert "Pipeline aborted" in result.output

    def test_run_nonexistent_config(self) -> None:
        """Test run with a nonexistent pipeline file."""
        runner = CliRunner()
        result = runner.invoke(cli, ["run", "/nonexistent/pipeline.yaml"])
        assert result.exit_code != 0

    def test_inspect_text(self, beatmap: Path) -> None:
        """Test inspecting a chart."""
        runner = CliRunner()
        result = runner.invoke(cli, ["inspect", str(beatmap)])
        assert result.exit_code == 0
        assert "Test Song" in result.output
        assert "Columns: 4K (dance-single)" in result.output
        assert "Notes: 3 (1 holds)" in result.output
        assert "120.00 BPM" in result.output

    def test_inspect_json(self, beatmap: Path) -> None:
        """Test inspecting a chart as JSON."""
        runner = CliRunner()
        result = runner.invoke(cli, ["inspect", str(beatmap), "-f", "json"])
        assert result.exit_code == 0

        data = json.loads(result.output)
        assert data["title"] == "Test Song"
        assert data["columnCount"] == 4
        assert data["noteCount"] == 3
        assert data["holdCount"] == 1
        assert data["timingPoints"][0]["beat_duration_ms"] == 500.0
        assert data["rating"] > 0

    def test_inspect_unsupported(self, write_osu) -> None:
        """Test inspecting a beatmap of another game mode."""
        path = write_osu([osu_hit(0, 0)], mode=0)
        runner = CliRunner()
        result = runner.invoke(cli, ["inspect", str(path)])
        assert result.exit_code == 1
        assert "Error loading" in result.output

    def test_patterns(self) -> None:
        """Test listing built-in patterns."""
        runner = CliRunner()
        result = runner.invoke(cli, ["patterns", "-k", "4"])
        assert result.exit_code == 0
        assert "builtin-4k-r0" in result.output
        assert "builtin-5k-r0" not in result.output

    def test_patterns_json(self) -> None:
        """Test listing patterns as JSON."""
        runner = CliRunner()
        result = runner.invoke(cli, ["patterns", "-k", "3", "-f", "json"])
        assert result.exit_code == 0
        assert [p["id"] for p in json.loads(result.output)] == [
            "builtin-3k-r0",
            "builtin-3k-r1",
            "builtin-3k-r2",
        ]

    def test_patterns_none(self) -> None:
        """Test an empty selection."""
        runner = CliRunner()
        result = runner.invoke(cli, ["patterns", "-k", "12"])
        assert result.exit_code == 0
        assert "No patterns found." in result.output
