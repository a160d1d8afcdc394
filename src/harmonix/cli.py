"""
Command-line transcription.

Transcribes an audio file (or the microphone with ``--live``) and writes
the melody/harmony notation as ABC, or as a JSON manifest when the output
name ends in ``.json``.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from harmonix.config import TranscriptionConfig
from harmonix.core.source import AudioSourceError, MicrophoneSource
from harmonix.core.stream import LiveRecorder, LiveSnapshot, Session
from harmonix.io.notation import NotationExporter, TranscriptionResult
from harmonix.pipeline import TranscriptionPipeline


def _write(result: TranscriptionResult, output: Path, exporter: NotationExporter) -> Path:
    if output.suffix.lower() == ".json":
        return exporter.export_json(result, output)
    return exporter.export_abc(result, output)


def _print_live(snapshot: LiveSnapshot) -> None:
    note = snapshot.current_note or "--"
    tail = " ".join(snapshot.melody[-8:])
    line = f"\r{note:>4}  {snapshot.recent_harmony:<8}  {tail:60.60}"
    if sys.stdout.isatty():
        sys.stdout.write(line)
        sys.stdout.flush()


def transcribe_file(audio: Path, output: Path, config: TranscriptionConfig) -> TranscriptionResult:
    """Run the batch pipeline on *audio* and write the notation to *output*."""
    print(f"Processing audio: {audio}", flush=True)
    pipeline = TranscriptionPipeline(config)
    processed = pipeline.process(audio)
    result = processed["result"]

    print(
        f"Duration: {processed['duration']:.2f}s, key: {result.key}, notes: {result.n_notes}",
        flush=True,
    )
    _write(result, output, pipeline.exporter)
    print(f"Wrote {output}", flush=True)
    return result


def record_live(output: Path, config: TranscriptionConfig, seconds: Optional[float] = None) -> TranscriptionResult:
    """Record from the microphone until *seconds* pass or Ctrl+C."""
    source = MicrophoneSource(frame_size=config.frame_size)
    session = Session.from_config(source, config)
    recorder = LiveRecorder(session, frame_rate=config.frame_rate, snapshot_hz=config.snapshot_hz)

    print("Recording... press Ctrl+C to stop", flush=True)
    try:
        recorder.run(duration=seconds, on_snapshot=_print_live)
    except KeyboardInterrupt:
        pass
    print("", flush=True)

    result = session.result()
    if config.key is not None:
        result.key = config.key
    print(f"Key: {result.key}, notes: {result.n_notes}", flush=True)
    _write(result, output, NotationExporter())
    print(f"Wrote {output}", flush=True)
    return result


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Transcribe a melody into ABC notation with a harmony line"
    )

    parser.add_argument(
        "audio",
        type=Path,
        nargs="?",
        help="Input audio file (wav, mp3, flac); omit with --live",
    )

    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output file, .abc or .json (default: <audio>.abc)",
    )

    parser.add_argument(
        "-q", "--quantize",
        type=int,
        choices=(4, 8, 16),
        default=8,
        help="Grid resolution in cells per bar (default: 8)",
    )

    parser.add_argument(
        "-s", "--sensitivity",
        type=float,
        default=0.5,
        help="0.0 (strict, more rests) to 1.0 (loose, more notes) (default: 0.5)",
    )

    parser.add_argument(
        "-k", "--key",
        default=None,
        help="Force the key instead of detecting it (e.g. G, Bb)",
    )

    parser.add_argument(
        "-t", "--title",
        default="Melody",
        help="Title written to the header (default: Melody)",
    )

    parser.add_argument(
        "--live",
        action="store_true",
        help="Record from the microphone instead of reading a file",
    )

    parser.add_argument(
        "--seconds",
        type=float,
        default=None,
        help="Stop live recording after this many seconds",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log pipeline details to stderr",
    )

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    try:
        config = TranscriptionConfig(
            q_value=args.quantize,
            sensitivity=args.sensitivity,
            key=args.key,
            title=args.title,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.live:
        output = args.output or Path("live.abc")
        try:
            record_live(output, config, seconds=args.seconds)
        except (AudioSourceError, ImportError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        return

    if args.audio is None:
        parser.error("an audio file is required unless --live is given")

    if not args.audio.exists():
        print(f"Error: Audio file not found: {args.audio}", file=sys.stderr)
        sys.exit(1)

    output = args.output or args.audio.with_suffix(".abc")
    try:
        transcribe_file(args.audio, output, config)
    except AudioSourceError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
