"""
Transcription settings shared by the batch and live paths.

``q_value`` selects the rhythmic grid (cells per bar) and ``sensitivity``
is the single user-facing dial that moves both the pitch confidence gate
and the batch silence threshold.
"""

import math
from dataclasses import dataclass
from typing import Optional

from harmonix.core.pitch import base_clarity
from harmonix.core.quantizer import silence_threshold
from harmonix.core.theory import KEY_NAMES

VALID_Q_VALUES = (4, 8, 16)


@dataclass
class TranscriptionConfig:
    """Options for a transcription run (offline or live)."""

    q_value: int = 8
    sensitivity: float = 0.5

    # Header / key
    key: Optional[str] = None      # None = auto-detect
    title: str = "Melody"
    tempo_bpm: int = 120

    # Estimation
    slice_seconds: float = 0.03
    frame_size: int = 2048
    highpass_hz: Optional[float] = 60.0

    # Live scheduling
    debounce_frames: int = 6
    frame_rate: float = 60.0
    snapshot_hz: float = 10.0

    def __post_init__(self):
        if self.q_value not in VALID_Q_VALUES:
            raise ValueError(
                f"q_value must be one of {VALID_Q_VALUES}, got {self.q_value!r}"
            )
        if not 0.0 <= float(self.sensitivity) <= 1.0:
            raise ValueError(
                f"sensitivity must lie in [0.0, 1.0], got {self.sensitivity!r}"
            )
        if self.key is not None and self.key not in KEY_NAMES:
            raise ValueError(f"Unknown key {self.key!r}; expected one of {KEY_NAMES}")
        if self.debounce_frames < 1:
            raise ValueError("debounce_frames must be at least 1")
        if self.frame_rate <= 0 or self.snapshot_hz <= 0:
            raise ValueError("frame_rate and snapshot_hz must be positive")

    @property
    def base_clarity(self) -> float:
        """Minimum estimator confidence for a frame to count as voiced."""
        return base_clarity(self.sensitivity)

    @property
    def silence_threshold(self) -> float:
        """Largest silent-slice ratio a grid cell may have and still hold a note."""
        return silence_threshold(self.sensitivity)

    def slice_size(self, sample_rate: int) -> int:
        """Hop between estimator frames in batch mode, in samples."""
        return max(1, int(math.floor(sample_rate * self.slice_seconds)))
