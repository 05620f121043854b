"""MIDI preview export: one pitch per column, for auditioning charts."""

from __future__ import annotations

from fractions import Fraction
from pathlib import Path

import mido

from chart_converter.errors import WriteError
from chart_converter.models.core import Chart, NoteKind

DEFAULT_TICKS_PER_BEAT = 480
BASE_PITCH = 60
TAP_LENGTH_BEATS = Fraction(1, 4)
PREVIEW_VELOCITY = 100


def export_midi_preview(
    chart: Chart,
    output_path: Path | str,
    *,
    ticks_per_beat: int = DEFAULT_TICKS_PER_BEAT,
    base_pitch: int = BASE_PITCH,
) -> Path:
    """Export a chart as a single-track MIDI file.

    Column ``c`` plays pitch ``base_pitch + c``. Taps last a sixteenth;
    holds last until their end.

    Args:
        chart: Chart to export.
        output_path: Path for the output MIDI file.
        ticks_per_beat: MIDI resolution (PPQ).
        base_pitch: Pitch of column 0.

    Returns:
        Path to the created file.

    Raises:
        WriteError: If the file cannot be written.
    """
    output_path = Path(output_path)
    if base_pitch + chart.column_count > 128:
        raise WriteError(f"{chart.column_count} columns do not fit above pitch {base_pitch}", output_path)

    midi = mido.MidiFile(ticks_per_beat=ticks_per_beat)
    midi_track = mido.MidiTrack()
    midi.tracks.append(midi_track)
    midi_track.append(mido.MetaMessage("track_name", name=chart.label, time=0))

    # Tempo map (beat 0 is the start of the file)
    events: list[tuple[int, int, mido.Message | mido.MetaMessage]] = []
    for tp in chart.timing_points:
        tick = max(round(tp.time * ticks_per_beat), 0)
        tempo = mido.bpm2tempo(tp.bpm)
        events.append((tick, 0, mido.MetaMessage("set_tempo", tempo=tempo, time=0)))

    for time, column, length in _note_spans(chart):
        start_tick = max(round(time * ticks_per_beat), 0)
        end_tick = max(round((time + length) * ticks_per_beat), start_tick + 1)
        pitch = base_pitch + column
        events.append(
            (start_tick, 2, mido.Message("note_on", note=pitch, velocity=PREVIEW_VELOCITY, time=0))
        )
        events.append((end_tick, 1, mido.Message("note_off", note=pitch, velocity=0, time=0)))

    events.sort(key=lambda e: (e[0], e[1]))
    last_tick = 0
    for tick, _, message in events:
        midi_track.append(message.copy(time=tick - last_tick))
        last_tick = tick
    midi_track.append(mido.MetaMessage("end_of_track", time=0))

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        midi.save(output_path)
    except OSError as e:
        raise WriteError(f"cannot write MIDI file: {e}", output_path, chart.chart_id) from e
    return output_path


def _note_spans(chart: Chart) -> list[tuple[Fraction, int, Fraction]]:
    """Start time, column and length in beats of every press."""
    spans = []
    for note in chart.notes:
        if note.kind == NoteKind.HOLD_END:
            continue
        length = note.hold_length if note.hold_length is not None else TAP_LENGTH_BEATS
        spans.append((note.time, note.column, length))
    return spans
