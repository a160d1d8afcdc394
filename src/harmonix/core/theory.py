"""
Key detection, scale snapping and chord naming over pitch numbers.

Pitch numbers follow the MIDI convention (60 = middle C).  All functions
here are pure and operate on plain integers so both the batch quantizer
and the live session can share them.
"""

from typing import Iterable, Sequence

import librosa

# Key names as written in the notation header (flats for black keys)
KEY_NAMES = ["C", "Db", "D", "Eb", "E", "F", "Gb", "G", "Ab", "A", "Bb", "B"]

# Chord names use sharps
CHROMA_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

MAJOR_INTERVALS = (0, 2, 4, 5, 7, 9, 11)

MIN_KEY_PITCHES = 5
DEFAULT_KEY = "C"


def key_root(key: str) -> int:
    """Pitch class of a key name; unknown names map to C."""
    try:
        return KEY_NAMES.index(key)
    except ValueError:
        return 0


def major_scale(root: int) -> list[int]:
    """Pitch classes of the major scale on *root*, in ascending interval order."""
    return [(root + i) % 12 for i in MAJOR_INTERVALS]


def detect_key(pitches: Sequence[int]) -> str:
    """
    Pick the major key whose scale covers the most input pitch classes.

    Every candidate root is scored by how many of the input pitches fall
    into its major scale.  A later root has to strictly beat the current
    best, so ties resolve to the lowest root (C first).

    Args:
        pitches: Absolute pitch numbers.  Fewer than five yields "C".

    Returns:
        Key name from :data:`KEY_NAMES`.
    """
    if len(pitches) < MIN_KEY_PITCHES:
        return DEFAULT_KEY

    chromas = [int(p) % 12 for p in pitches]

    best_root = 0
    best_count = -1
    for root in range(12):
        scale = set(major_scale(root))
        count = sum(1 for c in chromas if c in scale)
        if count > best_count:
            best_count = count
            best_root = root

    return KEY_NAMES[best_root]


def circular_distance(a: int, b: int) -> int:
    """Semitone distance between two pitch classes, wrapping at the tritone."""
    d = abs(a - b)
    if d > 6:
        d = 12 - d
    return d


def snap_to_scale(pitch: int, key: str) -> int:
    """
    Move *pitch* onto the nearest pitch class of *key*'s major scale.

    In-scale pitches are returned unchanged.  Otherwise the closest scale
    class wins, ties going to the first scale degree in ascending interval
    order.  The result keeps the octave of the input, so a wrap-around
    match (e.g. B to C) lands at the bottom of the same octave.
    """
    scale = major_scale(key_root(key))
    chroma = pitch % 12
    if chroma in scale:
        return pitch

    best = pitch
    best_distance = 13
    for s in scale:
        distance = circular_distance(chroma, s)
        if distance < best_distance:
            best_distance = distance
            best = (pitch // 12) * 12 + s
    return best


def detect_chord(pitches: Iterable[int]) -> str:
    """
    Name the triad formed by a handful of pitches.

    Returns ``"<root> Maj"`` or ``"<root> min"`` for the first root (C
    upward) whose major or minor triad is fully present, ``"---"`` when
    there are fewer than two distinct pitch classes, and ``"Complex"``
    otherwise.
    """
    chromas = {int(p) % 12 for p in pitches}
    if len(chromas) < 2:
        return "---"

    for root in range(12):
        major = {root, (root + 4) % 12, (root + 7) % 12}
        minor = {root, (root + 3) % 12, (root + 7) % 12}
        if major <= chromas:
            return f"{CHROMA_NAMES[root]} Maj"
        if minor <= chromas:
            return f"{CHROMA_NAMES[root]} min"

    return "Complex"


def pitch_name(pitch: int) -> str:
    """Scientific pitch name, e.g. 60 -> "C4", 61 -> "C#4"."""
    return librosa.midi_to_note(int(pitch), unicode=False)
