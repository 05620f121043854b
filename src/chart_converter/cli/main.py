"""Main CLI entry point for Chart Converter."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import click

from chart_converter import __version__
from chart_converter.errors import ConfigError, ConverterError, PipelineError, RunCancelled

if TYPE_CHECKING:
    from chart_converter.pipeline.report import BatchReport


# ANSI color codes for terminal output
class Colors:
    """ANSI color codes for styled terminal output."""

    HEADER = "\033[95m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    END = "\033[0m"


def color(text: str, *codes: str) -> str:
    """Apply color codes to text."""
    return "".join(codes) + str(text) + Colors.END


STATUS_COLORS = {
    "succeeded": Colors.GREEN,
    "skipped": Colors.YELLOW,
    "failed": Colors.RED,
}


@click.group()
@click.version_option(version=__version__, prog_name="chart-converter")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Chart Converter - Batch-convert rhythm game charts through a pipeline."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _print_report(report: BatchReport, verbose: bool) -> None:
    """Print a batch report summary."""
    click.echo(f"\n{color('Batch Report', Colors.BOLD, Colors.HEADER)}")
    click.echo("=" * 50)
    for outcome in report.entries:
        if outcome.status.value == "succeeded" and not verbose:
            continue
        status = color(f"{outcome.status.value:<9}", STATUS_COLORS[outcome.status.value])
        detail = outcome.reason or (str(outcome.output_path) if outcome.output_path else "")
        click.echo(f"  {status} [{outcome.node_id}] {outcome.label}: {detail}")
        if verbose:
            for diagnostic in outcome.diagnostics:
                click.echo(f"            {color(diagnostic, Colors.DIM)}")

    summary = report.summary()
    parts = [
        color(f"{summary['succeeded']} succeeded", Colors.GREEN),
        color(f"{summary['skipped']} skipped", Colors.YELLOW),
        color(f"{summary['failed']} failed", Colors.RED),
    ]
    click.echo(f"\n{', '.join(parts)} in {report.elapsed_ms / 1000:.2f}s")


@cli.command()
@click.argument("config", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-w", "--workers", type=click.IntRange(min=1), help="Maximum nodes running at once.")
@click.option(
    "--continue-on-error/--fail-fast",
    default=None,
    help="Record per-chart errors and continue, or abort on the first one.",
)
@click.option("--report", "report_path", type=click.Path(path_type=Path), help="Write the batch report as JSON.")
@click.pass_context
def run(
    ctx: click.Context,
    config: Path,
    workers: int | None,
    continue_on_error: bool | None,
    report_path: Path | None,
) -> None:
    """Run a conversion pipeline.

    CONFIG is a YAML or JSON pipeline document.

    Example:
        chart-converter run pipeline.yaml --workers 4 --report report.json
    """
    from chart_converter.pipeline import RunOptions, Scheduler, build_graph, load_config

    verbose = ctx.obj.get("verbose", False)

    try:
        graph = build_graph(load_config(config))
    except ConfigError as e:
        click.echo(f"Invalid pipeline: {e}", err=True)
        raise SystemExit(1)

    for warning in graph.warnings:
        click.echo(color(f"Warning: {warning}", Colors.YELLOW), err=True)

    options = RunOptions(
        workers=workers or graph.workers,
        continue_on_error=graph.continue_on_error if continue_on_error is None else continue_on_error,
    )
    click.echo(f"Running {len(graph.order)} node(s) from {config.name}")

    try:
        report = Scheduler(graph, options).run().report
    except PipelineError as e:
        report = e.report
        click.echo(color(f"Pipeline aborted: {e}", Colors.RED), err=True)
    except RunCancelled as e:
        report = e.report
        click.echo(color("Pipeline cancelled", Colors.YELLOW), err=True)

    _print_report(report, verbose)
    if report_path is not None:
        report.save(report_path)
        click.echo(f"Report written to {report_path}")

    if not report.ok:
        raise SystemExit(1)


@cli.command()
@click.argument("config", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(config: Path) -> None:
    """Check a pipeline document without running it.

    Prints the execution order and any warnings.
    """
    from chart_converter.pipeline import build_graph, load_config

    try:
        graph = build_graph(load_config(config))
    except ConfigError as e:
        click.echo(f"Invalid pipeline: {e}", err=True)
        raise SystemExit(1)

    click.echo(color(f"{config.name} is valid", Colors.GREEN))
    click.echo(f"\n{color('Execution order:', Colors.BOLD)}")
    for i, node_id in enumerate(graph.order, 1):
        node = graph.nodes[node_id]
        click.echo(f"  {i}. {node_id} {color(f'({node.kind})', Colors.DIM)}")
    if graph.warnings:
        click.echo(f"\n{color('Warnings:', Colors.BOLD, Colors.YELLOW)}")
        for warning in graph.warnings:
            click.echo(f"  - {warning}")


@cli.command()
@click.argument("chart", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-f", "--format", "output_format", type=click.Choice(["text", "json"]), default="text")
def inspect(chart: Path, output_format: str) -> None:
    """Show a chart's timing, notes and estimated difficulty.

    Example:
        chart-converter inspect "songs/Artist - Title/Title [Hard].osu"
    """
    from chart_converter.analysis.intensity import IntensityEstimator, IntensityMetric, group_notes
    from chart_converter.ingest import load_chart
    from chart_converter.transform.rate import ChartRater, difficulty_name

    try:
        loaded = load_chart(chart)
    except ConverterError as e:
        click.echo(f"Error loading {chart}: {e}", err=True)
        raise SystemExit(1)

    rating = ChartRater().rating(loaded)
    groups = group_notes(loaded)
    densities = IntensityEstimator(IntensityMetric.EFFECTIVE_BPM).values(loaded, groups)
    peak = float(densities.max()) if densities.size else 0.0

    if output_format == "json":
        data = {
            "file": str(chart),
            "chartId": loaded.chart_id,
            "title": loaded.metadata.title,
            "artist": loaded.metadata.artist,
            "version": loaded.metadata.version,
            "columnCount": loaded.column_count,
            "gamemode": loaded.effective_gamemode,
            "noteCount": loaded.note_count,
            "holdCount": len(loaded.hold_pairs()),
            "timingPoints": [tp.to_dict() for tp in loaded.timing_points],
            "offsetMs": loaded.offset_ms,
            "rating": round(rating, 2),
            "peakEffectiveBpm": round(peak, 2),
            "suggestedDifficulty": difficulty_name(rating),
        }
        click.echo(json.dumps(data, indent=2))
        return

    meta = loaded.metadata
    click.echo(f"\n{color(meta.title or chart.name, Colors.BOLD, Colors.CYAN)}")
    click.echo("=" * 50)
    click.echo(f"Artist: {meta.artist}")
    click.echo(f"Version: {meta.version} (by {meta.creator})")
    click.echo(f"Columns: {loaded.column_count}K ({loaded.effective_gamemode or 'no steps type'})")
    click.echo(f"Notes: {loaded.note_count} ({len(loaded.hold_pairs())} holds)")
    click.echo(f"Offset: {loaded.offset_ms:.1f}ms")

    click.echo(f"\n{color('Timing points:', Colors.BOLD)}")
    for tp in loaded.timing_points[:10]:
        click.echo(f"  beat {tp.time}: {tp.bpm:.2f} BPM, {tp.meter}/4, 1/{tp.snap_divisor} grid")
    if len(loaded.timing_points) > 10:
        click.echo(f"  ... and {len(loaded.timing_points) - 10} more")

    click.echo(f"\n{color('Difficulty:', Colors.BOLD)}")
    click.echo(f"  Rating: {rating:.1f} ({difficulty_name(rating)})")
    click.echo(f"  Peak effective BPM: {peak:.1f}")
    for diagnostic in loaded.diagnostics:
        click.echo(color(f"  note: {diagnostic}", Colors.DIM))


@cli.command()
@click.option("-l", "--library", "library_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-k", "--columns", type=click.IntRange(min=1), help="Only patterns for this column count.")
@click.option("-f", "--format", "output_format", type=click.Choice(["text", "json"]), default="text")
def patterns(library_path: Path | None, columns: int | None, output_format: str) -> None:
    """List the patterns of a library (default: the built-in library)."""
    from chart_converter.patterns import PatternLibrary

    try:
        library = PatternLibrary.load(library_path) if library_path else PatternLibrary.builtin()
    except ConfigError as e:
        click.echo(f"Invalid pattern library: {e}", err=True)
        raise SystemExit(1)

    selected = list(library.for_columns(columns)) if columns else list(library)

    if output_format == "json":
        click.echo(json.dumps([p.to_dict() for p in selected], indent=2))
        return

    if not selected:
        click.echo("No patterns found.")
        return

    click.echo(f"\n{color('Patterns', Colors.BOLD, Colors.HEADER)} ({len(selected)})")
    click.echo("=" * 50)
    for pattern in selected:
        template = "identity" if pattern.template is None else ",".join(map(str, pattern.template))
        scope = []
        if pattern.source_signature is not None:
            scope.append(f"signature {','.join(map(str, pattern.source_signature))}")
        elif pattern.group_size is not None:
            scope.append(f"{pattern.group_size} note(s)")
        click.echo(
            f"  {color(pattern.pattern_id, Colors.CYAN)} {pattern.target_columns}K "
            f"intensity {pattern.min_intensity}-{pattern.max_intensity} "
            f"-> [{template}] {' '.join(scope)}"
        )


if __name__ == "__main__":
    cli()
