"""
Notation encoding and export.

Turns pitch grids into ABC-style token sequences (melody plus a derived
bass-clef harmony line) and serializes finished transcriptions as ABC
documents or JSON manifests.

Token grammar::

    note   := ["^"] letter octave-marks duration
    letter := C D E F G A B        (octave 4, middle C = "C")
              c d e f g a b        (octave 5 and up, "'" per extra octave)
    marks  := "," per octave below 4
    rest   := "z" duration
    bar    := "|"

Durations are counted in grid units and written relative to the header's
``L:1/8`` base unit, so the string depends on the grid resolution.
"""

import json
import logging
import math
import numbers
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from harmonix.core.pitch import fold_pitch
from harmonix.core.theory import detect_chord

logger = logging.getLogger(__name__)

REST = "z"
BAR = "|"

ABC_NAMES = ["C", "^C", "D", "^D", "E", "F", "^F", "G", "^G", "A", "^A", "B"]
LETTER_SEMITONES = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}

# Bass-clef register for the harmony line
HARMONY_LOW = 36
HARMONY_HIGH = 55

MAX_OCTAVE_MARKS = 10

_NOTE_RE = re.compile(r"^(\^?)([A-Ga-g])([,']*)(.*)$")


# ---------------------------------------------------------------------------
# Pitch / duration text
# ---------------------------------------------------------------------------

def letter_for(pitch: Any) -> str:
    """
    ABC letter (with accidental and octave marks) for a pitch number.

    Anything that is not a finite number yields the rest symbol instead
    of malformed notation.  Values are rounded and clamped to 0..127.
    """
    if isinstance(pitch, bool) or not isinstance(pitch, numbers.Real):
        return REST
    if not math.isfinite(pitch):
        return REST

    p = max(0, min(127, int(math.floor(pitch + 0.5))))
    name = ABC_NAMES[p % 12]
    octave = p // 12 - 1

    if octave == 4:
        return name
    if octave < 4:
        return name + "," * min(MAX_OCTAVE_MARKS, 4 - octave)
    return name.lower() + "'" * min(MAX_OCTAVE_MARKS, octave - 5)


def duration_str(units: int, q_value: int) -> str:
    """
    Duration suffix for a run of *units* grid cells.

    q=8:  one unit is an eighth (the base), so 1 -> "", n -> "n".
    q=16: one unit is a sixteenth; even runs are written in eighths,
          odd runs as halves: 1 -> "/2", 3 -> "3/2", 2 -> "", 4 -> "2".
    q=4:  one unit is a quarter, i.e. two base eighths: n -> "2n".
    """
    if q_value == 8:
        return "" if units == 1 else str(units)
    if q_value == 16:
        if units % 2 == 0:
            eighths = units // 2
            return "" if eighths == 1 else str(eighths)
        return "/2" if units == 1 else f"{units}/2"
    if q_value == 4:
        return str(units * 2)
    return str(units)


def parse_duration(text: str, q_value: int) -> int:
    """
    Inverse of :func:`duration_str`; malformed text counts as one unit.
    """
    try:
        if q_value == 16:
            if text.endswith("/2"):
                head = text[:-2]
                units = int(head) if head else 1
            else:
                units = 2 * (int(text) if text else 1)
        elif q_value == 4:
            eighths = int(text)
            if eighths % 2:
                return 1
            units = eighths // 2
        else:
            units = int(text) if text else 1
    except ValueError:
        return 1
    return units if units >= 1 else 1


def harmony_pitch(pitch: int) -> int:
    """One octave down, folded into the bass register [36, 55]."""
    return fold_pitch(pitch - 12, HARMONY_LOW, HARMONY_HIGH)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

@dataclass
class Note:
    """A pitched token lasting ``duration`` grid units."""

    pitch: int
    duration: int = 1

    @property
    def letter(self) -> str:
        return letter_for(self.pitch)

    def render(self, q_value: int) -> str:
        return self.letter + duration_str(self.duration, q_value)


@dataclass
class Rest:
    duration: int = 1

    def render(self, q_value: int) -> str:
        return REST + duration_str(self.duration, q_value)


@dataclass
class BarMarker:
    def render(self, q_value: int) -> str:
        return BAR


Token = Union[Note, Rest, BarMarker]


def parse_token(text: str, q_value: int = 8) -> Token:
    """
    Parse one notation token back into a Note, Rest or BarMarker.

    Unrecognised pitch text is read as a rest so callers never see a
    failure from hand-edited or truncated input.
    """
    text = text.strip()
    if text == BAR:
        return BarMarker()
    if text.startswith(REST):
        return Rest(parse_duration(text[1:], q_value))

    match = _NOTE_RE.match(text)
    if match is None:
        return Rest(1)

    sharp, letter, marks, dur_text = match.groups()
    if letter.isupper():
        octave = 4 - marks.count(",")
    else:
        octave = 5 + marks.count("'")
    pitch = (octave + 1) * 12 + LETTER_SEMITONES[letter.upper()] + (1 if sharp else 0)
    return Note(pitch=pitch, duration=parse_duration(dur_text, q_value))


def render_tokens(tokens: Sequence[Token], q_value: int) -> list[str]:
    return [t.render(q_value) for t in tokens]


def describe_recent_harmony(tokens: Sequence[Union[str, Token]], q_value: int = 8) -> str:
    """Chord name for the last four non-bar melody tokens (rests ignored)."""
    parsed = [parse_token(t, q_value) if isinstance(t, str) else t for t in tokens]
    recent = [t for t in parsed if not isinstance(t, BarMarker)][-4:]
    return detect_chord(t.pitch for t in recent if isinstance(t, Note))


# ---------------------------------------------------------------------------
# Grid encoder
# ---------------------------------------------------------------------------

@dataclass
class EncodedScore:
    """Parallel melody / harmony token lists for one grid."""

    melody: list[Token] = field(default_factory=list)
    harmony: list[Token] = field(default_factory=list)

    def melody_text(self, q_value: int) -> list[str]:
        return render_tokens(self.melody, q_value)

    def harmony_text(self, q_value: int) -> list[str]:
        return render_tokens(self.harmony, q_value)


class NotationEncoder:
    """
    Run-length encodes a pitch grid with a bar every ``q_value`` cells.
    """

    def __init__(self, q_value: int = 8):
        self.q_value = q_value

    def _push(self, score: EncodedScore, pitch: Optional[int], units: int) -> None:
        if units == 0:
            return
        if pitch is None:
            score.melody.append(Rest(units))
            score.harmony.append(Rest(units))
        else:
            score.melody.append(Note(pitch, units))
            score.harmony.append(Note(harmony_pitch(pitch), units))

    def encode_grid(self, grid: Sequence[Optional[int]]) -> EncodedScore:
        """
        Encode *grid* into melody and harmony tokens.

        A bar marker goes in front of every cell whose index is a positive
        multiple of ``q_value``; the pending run is flushed first, so a
        note never spans a bar line.  The final run is flushed without a
        trailing marker.
        """
        score = EncodedScore()
        current: Optional[int] = None
        units = 0

        for i, pitch in enumerate(grid):
            if i > 0 and i % self.q_value == 0:
                self._push(score, current, units)
                units = 0
                current = None
                score.melody.append(BarMarker())
                score.harmony.append(BarMarker())

            if units == 0:
                current = pitch
                units = 1
            elif pitch == current:
                units += 1
            else:
                self._push(score, current, units)
                current = pitch
                units = 1

        self._push(score, current, units)
        return score


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

@dataclass
class TranscriptionResult:
    """A finished transcription, ready for export."""

    melody: list[str]
    harmony: list[str]
    key: str
    q_value: int = 8
    sensitivity: float = 0.5
    title: str = "Melody"
    tempo_bpm: int = 120
    duration: Optional[float] = None

    @property
    def n_notes(self) -> int:
        return sum(1 for t in self.melody if t != BAR and not t.startswith(REST))


class NotationExporter:
    """
    Serializes transcriptions as ABC text or a JSON manifest.
    """

    METER = "4/4"
    UNIT_LENGTH = "1/8"
    SCHEMA_VERSION = "1.0"

    def __init__(self, empty_body: str = "z4"):
        """
        Initialize the exporter.

        Args:
            empty_body: Voice body written when a line has no tokens.
        """
        self.empty_body = empty_body

    def header(self, title: str, key: str, tempo_bpm: int = 120) -> str:
        return (
            "X:1\n"
            f"T:{title}\n"
            f"M:{self.METER}\n"
            f"L:{self.UNIT_LENGTH}\n"
            f"Q:1/4={tempo_bpm}\n"
            f"K:{key}\n"
        )

    def build_document(self, result: TranscriptionResult) -> str:
        """Full two-voice ABC document for *result*."""
        mel_body = " ".join(result.melody) if result.melody else self.empty_body
        har_body = " ".join(result.harmony) if result.harmony else self.empty_body
        return (
            self.header(result.title, result.key, result.tempo_bpm)
            + "%%staves {V1 V2}\n"
            + 'V:V1 name="Melody" nm="Mel."\n'
            + f"{mel_body}\n"
            + 'V:V2 name="Harmony" nm="Har." clef=bass\n'
            + f"{har_body}\n"
        )

    def to_dict(self, result: TranscriptionResult) -> dict[str, Any]:
        """Return the manifest as a dictionary (for in-memory use)."""
        return {
            "metadata": {
                "title": result.title,
                "key": result.key,
                "meter": self.METER,
                "unit_length": self.UNIT_LENGTH,
                "tempo_bpm": result.tempo_bpm,
                "q_value": result.q_value,
                "sensitivity": result.sensitivity,
                "duration": result.duration,
                "n_notes": result.n_notes,
                "schema_version": self.SCHEMA_VERSION,
            },
            "melody": list(result.melody),
            "harmony": list(result.harmony),
        }

    def export_abc(self, result: TranscriptionResult, output_path: Union[str, Path]) -> Path:
        """
        Write the ABC document to *output_path*.

        Returns:
            Path to written file.
        """
        output_path = Path(output_path)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(self.build_document(result))
        logger.info("Wrote ABC notation to %s", output_path)
        return output_path

    def export_json(
        self,
        result: TranscriptionResult,
        output_path: Union[str, Path],
        indent: int = 2,
    ) -> Path:
        """
        Write the JSON manifest to *output_path*.

        Returns:
            Path to written file.
        """
        output_path = Path(output_path)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(result), f, indent=indent)
        logger.info("Wrote JSON manifest to %s", output_path)
        return output_path
