"""
Grid-level smoothing for quantized melodies.

Cleans up the per-cell pitch grid produced by the offline quantizer
before it is encoded: short silent gaps between notes are bridged
(legato) and near-complete note runs absorb a single trailing rest.
"""

import logging
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

Grid = list[Optional[int]]

# Run lengths one cell short of a full 1/4, 1/2 or whole-bar note
TAIL_RUN_LENGTHS = (3, 7, 15)


class GridSmoother:
    """
    Applies gap filling and tail extension to a pitch grid.

    Both passes return a new list; the input grid is never mutated.
    """

    def __init__(
        self,
        fill_gaps: bool = True,
        extend_tails: bool = True,
        tail_run_lengths: Sequence[int] = TAIL_RUN_LENGTHS,
    ):
        """
        Initialize the smoother.

        Args:
            fill_gaps: Bridge single silent cells between two notes.
            extend_tails: Let near-complete runs absorb one trailing rest.
            tail_run_lengths: Run lengths that qualify for tail extension.
        """
        self.fill_gaps_enabled = fill_gaps
        self.extend_tails_enabled = extend_tails
        self.tail_run_lengths = tuple(tail_run_lengths)

    def fill_gaps(self, grid: Sequence[Optional[int]]) -> Grid:
        """
        Replace interior silent cells flanked by notes with the left note.

        The left neighbour always wins, whether or not it matches the right
        one.  Cells are visited left to right, so a cell filled here counts
        as a note for the next position.
        """
        out = list(grid)
        filled = 0
        for i in range(1, len(out) - 1):
            if out[i] is None and out[i - 1] is not None and out[i + 1] is not None:
                out[i] = out[i - 1]
                filled += 1
        if filled:
            logger.debug("Gap fill bridged %d cell(s)", filled)
        return out

    def extend_tails(self, grid: Sequence[Optional[int]]) -> Grid:
        """
        Extend runs of length 3, 7 or 15 into exactly one trailing rest.

        A run qualifies only when it is followed by a single silent cell,
        i.e. the cell after that rest is a note or the end of the grid.
        At most one cell is converted per run.
        """
        out = list(grid)
        n = len(out)
        i = 0
        while i < n:
            pitch = out[i]
            if pitch is None:
                i += 1
                continue

            j = i
            while j < n and out[j] == pitch:
                j += 1
            run = j - i

            single_rest = j < n and out[j] is None and (j + 1 >= n or out[j + 1] is not None)
            if single_rest and run in self.tail_run_lengths:
                out[j] = pitch
                logger.debug("Tail extension at cell %d (run of %d)", j, run)
                # The absorbed cell belongs to this run; do not rescan it
                j += 1
            i = j
        return out

    def smooth(self, grid: Sequence[Optional[int]]) -> Grid:
        """Run gap filling followed by tail extension."""
        out = list(grid)
        if self.fill_gaps_enabled:
            out = self.fill_gaps(out)
        if self.extend_tails_enabled:
            out = self.extend_tails(out)
        return out
