"""
Frequency estimation and frequency-to-pitch-number mapping.

The estimator wraps librosa's probabilistic YIN (pYIN) and reports one
(frequency, confidence) pair per frame.  Everything downstream works on
integer pitch numbers folded into the vocal band, with ``None`` standing
for silence.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import librosa
import numpy as np

logger = logging.getLogger(__name__)

# Accepted estimator output band; outside it is rumble or an artifact
MIN_FREQUENCY = 85.0
MAX_FREQUENCY = 1200.0

# Vocal band every melody pitch is folded into (C3..C6)
VOCAL_LOW = 48
VOCAL_HIGH = 84


@dataclass
class PitchSample:
    """Raw estimator output for one frame/slice."""

    frequency_hz: Optional[float]
    confidence: float

    @property
    def is_voiced(self) -> bool:
        return self.frequency_hz is not None and math.isfinite(self.frequency_hz)


def base_clarity(sensitivity: float) -> float:
    """Confidence an estimate must exceed at the given sensitivity."""
    return 0.95 - 0.35 * sensitivity


def frequency_to_pitch(frequency_hz: float) -> int:
    """Nearest semitone pitch number (A4 = 440 Hz = 69), halves rounding up."""
    return int(math.floor(12.0 * math.log2(frequency_hz / 440.0) + 69.0 + 0.5))


def fold_pitch(pitch: int, low: int = VOCAL_LOW, high: int = VOCAL_HIGH) -> int:
    """Shift *pitch* by whole octaves until it lies in [low, high]."""
    while pitch < low:
        pitch += 12
    while pitch > high:
        pitch -= 12
    return pitch


def sample_to_pitch(sample: PitchSample, min_confidence: float) -> Optional[int]:
    """
    Convert an estimator sample to a vocal-band pitch number.

    Returns None (silence) when the frequency is missing, lies outside
    [85, 1200] Hz, or the confidence does not exceed *min_confidence*.
    """
    if not sample.is_voiced:
        return None
    if sample.frequency_hz < MIN_FREQUENCY or sample.frequency_hz > MAX_FREQUENCY:
        return None
    if not sample.confidence > min_confidence:
        return None
    return fold_pitch(frequency_to_pitch(sample.frequency_hz))


class PitchEstimator:
    """
    Monophonic fundamental-frequency estimator backed by ``librosa.pyin``.

    The voiced probability reported by pYIN is used as the confidence
    score, so it lives in [0, 1] like the clarity value the thresholds
    were tuned against.
    """

    def __init__(
        self,
        fmin: Optional[float] = None,
        fmax: Optional[float] = None,
        frame_length: int = 2048,
    ):
        """
        Initialize the estimator.

        Args:
            fmin: Lowest frequency searched (default C2, ~65 Hz).
            fmax: Highest frequency searched (default C7, ~2093 Hz).
            frame_length: Analysis frame length in samples.
        """
        self.fmin = fmin if fmin is not None else float(librosa.note_to_hz("C2"))
        self.fmax = fmax if fmax is not None else float(librosa.note_to_hz("C7"))
        self.frame_length = frame_length

    def _pyin(self, y: np.ndarray, sample_rate: int, frame_length: int, hop_length: int):
        fmax = min(self.fmax, sample_rate / 2.0 - 1.0)
        return librosa.pyin(
            y=np.asarray(y, dtype=np.float32),
            fmin=self.fmin,
            fmax=fmax,
            sr=sample_rate,
            frame_length=frame_length,
            hop_length=hop_length,
            center=False,
        )

    def find(self, frame: np.ndarray, sample_rate: int) -> tuple[Optional[float], float]:
        """
        Estimate the fundamental of a single frame.

        Args:
            frame: 1-D float samples (typically ``frame_length`` long).
            sample_rate: Sample rate in Hz.

        Returns:
            ``(frequency_hz, confidence)``; frequency is None when unvoiced.
        """
        frame = np.asarray(frame, dtype=np.float32)
        n = len(frame)
        if n == 0 or not np.any(frame):
            return None, 0.0

        try:
            f0, _, probs = self._pyin(frame, sample_rate, frame_length=n, hop_length=n)
        except Exception as exc:
            logger.debug("pyin failed on frame: %s", exc)
            return None, 0.0

        freq = float(f0[0]) if len(f0) else float("nan")
        confidence = float(probs[0]) if len(probs) else 0.0
        if not math.isfinite(freq):
            return None, confidence
        return freq, confidence

    def n_slices(self, n_samples: int, hop_length: int) -> int:
        """Number of frames :meth:`track` reports for *n_samples* of audio."""
        span = n_samples - self.frame_length
        if span <= 0:
            return 0
        return -(-span // hop_length)

    def track(self, y: np.ndarray, sample_rate: int, hop_length: int) -> list[PitchSample]:
        """
        Estimate a whole signal in one pass, one sample per hop.

        Frames start every *hop_length* samples and span ``frame_length``
        samples.  A frame may only start strictly before
        ``len(y) - frame_length``, so a signal exactly one frame long (or any
        frame ending flush with the signal) yields no sample for that frame.
        """
        n = self.n_slices(len(y), hop_length)
        if n == 0:
            return []

        try:
            f0, _, probs = self._pyin(
                y, sample_rate, frame_length=self.frame_length, hop_length=hop_length
            )
        except Exception as exc:
            logger.warning("pyin failed, treating signal as silent: %s", exc)
            return [PitchSample(None, 0.0) for _ in range(n)]

        samples = []
        for freq, prob in zip(f0[:n], probs[:n]):
            freq = float(freq)
            samples.append(
                PitchSample(
                    frequency_hz=freq if math.isfinite(freq) else None,
                    confidence=float(prob) if np.isfinite(prob) else 0.0,
                )
            )
        return samples
