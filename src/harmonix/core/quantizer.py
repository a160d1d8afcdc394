"""
Batch quantization of per-slice pitch numbers onto a rhythmic grid.

A grid cell spans ``2.0 / q_value`` seconds of audio.  All slices that
fall into a cell vote on its pitch; cells with too many silent slices
become rests.  Winning pitches are snapped to the key's major scale.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

from harmonix.core.pitch import VOCAL_HIGH, VOCAL_LOW, fold_pitch
from harmonix.core.smoother import GridSmoother
from harmonix.core.theory import snap_to_scale

logger = logging.getLogger(__name__)


def silence_threshold(sensitivity: float) -> float:
    """Largest silent-slice ratio a cell may have and still hold a note."""
    return 0.2 + 0.6 * sensitivity


@dataclass
class GridCell:
    """One slot of the quantization grid; ``pitch`` None means rest."""

    index: int
    pitch: Optional[int]


@dataclass
class QuantizedGrid:
    """Result of bucketing a slice sequence."""

    pitches: list[Optional[int]]
    q_value: int
    slices_per_grid: int
    key: str
    n_slices: int = 0
    raw_pitches: list[Optional[int]] = field(default_factory=list)

    @property
    def cells(self) -> list[GridCell]:
        return [GridCell(index=i, pitch=p) for i, p in enumerate(self.pitches)]

    def __len__(self) -> int:
        return len(self.pitches)


class OfflineQuantizer:
    """
    Buckets a full slice sequence into grid cells by majority vote.

    The quantizer is stateless between calls; every call owns its grid.
    """

    def __init__(
        self,
        q_value: int = 8,
        sensitivity: float = 0.5,
        smoother: Optional[GridSmoother] = None,
    ):
        """
        Initialize the quantizer.

        Args:
            q_value: Grid resolution (4, 8 or 16 cells per bar).
            sensitivity: 0.0 (strict, more rests) to 1.0 (loose, more notes).
            smoother: Post-processing applied by :meth:`quantize`
                      (default: gap filling + tail extension).
        """
        self.q_value = q_value
        self.sensitivity = sensitivity
        self.smoother = smoother or GridSmoother()

    @property
    def silence_threshold(self) -> float:
        return silence_threshold(self.sensitivity)

    def slices_per_grid(self, sample_rate: int, slice_size: int) -> int:
        """Number of estimator slices that make up one grid cell."""
        seconds_per_grid = 2.0 / self.q_value
        samples_per_grid = sample_rate * seconds_per_grid
        # round-half-up, like the rest of the grid arithmetic
        return max(1, int(math.floor(samples_per_grid / slice_size + 0.5)))

    def vote(self, chunk: Sequence[Optional[int]]) -> Optional[int]:
        """
        Decide the pitch of one cell from the slices inside it.

        The cell is a rest when the silent ratio strictly exceeds the
        silence threshold.  Otherwise the most frequent pitch wins; on a
        tie the lowest pitch number wins (pitches are visited in ascending
        order and a later one has to strictly beat the current best).
        """
        if not chunk:
            return None

        silent = 0
        counts: dict[int, int] = {}
        for p in chunk:
            if p is None:
                silent += 1
            else:
                counts[p] = counts.get(p, 0) + 1

        if silent / len(chunk) > self.silence_threshold:
            return None

        best_pitch = None
        best_count = -1
        for pitch in sorted(counts):
            if counts[pitch] > best_count:
                best_count = counts[pitch]
                best_pitch = pitch
        return best_pitch

    def bucket(
        self,
        raw_pitches: Sequence[Optional[int]],
        sample_rate: int,
        slice_size: int,
        key: str,
    ) -> QuantizedGrid:
        """
        Partition the slice sequence into cells and vote each one.

        Args:
            raw_pitches: Per-slice pitch numbers (None = silent slice).
            sample_rate: Sample rate the slices were taken at.
            slice_size: Hop between slices in samples.
            key: Key used to snap winning pitches to the scale.

        Returns:
            QuantizedGrid with ``ceil(len(raw_pitches) / slices_per_grid)`` cells.
        """
        per_grid = self.slices_per_grid(sample_rate, slice_size)

        pitches: list[Optional[int]] = []
        for start in range(0, len(raw_pitches), per_grid):
            chunk = raw_pitches[start:start + per_grid]
            pitch = self.vote(chunk)
            if pitch is not None:
                # snapping keeps the octave, which can overshoot the band edge
                pitch = int(fold_pitch(snap_to_scale(pitch, key), VOCAL_LOW, VOCAL_HIGH))
            pitches.append(pitch)

        logger.debug(
            "Bucketed %d slices into %d cells (%d slices/cell, key=%s)",
            len(raw_pitches), len(pitches), per_grid, key,
        )

        return QuantizedGrid(
            pitches=pitches,
            q_value=self.q_value,
            slices_per_grid=per_grid,
            key=key,
            n_slices=len(raw_pitches),
            raw_pitches=list(raw_pitches),
        )

    def quantize(
        self,
        raw_pitches: Sequence[Optional[int]],
        sample_rate: int,
        slice_size: int,
        key: str,
    ) -> QuantizedGrid:
        """Bucket the slices and run the smoother over the resulting grid."""
        grid = self.bucket(raw_pitches, sample_rate, slice_size, key)
        grid.pitches = self.smoother.smooth(grid.pitches)
        return grid
