"""
End-to-end batch transcription.

Decode → per-slice pitch estimation → key detection → grid quantization
and smoothing → notation encoding.  Every call owns its own buffers, so
one pipeline instance can be reused across files.
"""

import logging
import time
from pathlib import Path
from typing import Any, Optional, Sequence, Union

import numpy as np

from harmonix.config import TranscriptionConfig
from harmonix.core.pitch import PitchEstimator, sample_to_pitch
from harmonix.core.quantizer import OfflineQuantizer, QuantizedGrid
from harmonix.core.source import FileSource
from harmonix.core.theory import DEFAULT_KEY, detect_key
from harmonix.io.notation import NotationEncoder, NotationExporter, TranscriptionResult

logger = logging.getLogger(__name__)

# Voiced slices required before the key is detected rather than assumed
MIN_KEY_SLICES = 6


class TranscriptionPipeline:
    """
    Batch transcription of an audio file or sample buffer.
    """

    def __init__(
        self,
        config: Optional[TranscriptionConfig] = None,
        estimator: Optional[PitchEstimator] = None,
        exporter: Optional[NotationExporter] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Transcription options (default settings if None).
            estimator: Frequency estimator (default: pYIN at ``config.frame_size``).
            exporter: Notation exporter used to build the ABC document.
        """
        self.config = config or TranscriptionConfig()
        self.estimator = estimator or PitchEstimator(frame_length=self.config.frame_size)
        self.exporter = exporter or NotationExporter()
        self.quantizer = OfflineQuantizer(
            q_value=self.config.q_value,
            sensitivity=self.config.sensitivity,
        )
        self.encoder = NotationEncoder(self.config.q_value)

    def estimate_pitches(self, y: np.ndarray, sr: int) -> list[Optional[int]]:
        """Per-slice vocal-band pitch numbers (None for silent slices)."""
        slice_size = self.config.slice_size(sr)
        samples = self.estimator.track(y, sr, hop_length=slice_size)
        threshold = self.config.base_clarity
        return [sample_to_pitch(s, threshold) for s in samples]

    def choose_key(self, raw_pitches: Sequence[Optional[int]]) -> str:
        """The configured key, or one detected from the voiced slices."""
        if self.config.key is not None:
            return self.config.key
        voiced = [p for p in raw_pitches if p is not None]
        if len(voiced) < MIN_KEY_SLICES:
            return DEFAULT_KEY
        return detect_key(voiced)

    def transcribe_pitches(
        self,
        raw_pitches: Sequence[Optional[int]],
        sr: int,
        slice_size: Optional[int] = None,
        duration: Optional[float] = None,
    ) -> tuple[TranscriptionResult, QuantizedGrid]:
        """
        Quantize, smooth and encode an already estimated slice sequence.

        Returns:
            Tuple of (TranscriptionResult, QuantizedGrid).
        """
        cfg = self.config
        slice_size = slice_size or cfg.slice_size(sr)
        key = self.choose_key(raw_pitches)

        grid = self.quantizer.quantize(raw_pitches, sr, slice_size, key)
        score = self.encoder.encode_grid(grid.pitches)

        result = TranscriptionResult(
            melody=score.melody_text(cfg.q_value),
            harmony=score.harmony_text(cfg.q_value),
            key=key,
            q_value=cfg.q_value,
            sensitivity=cfg.sensitivity,
            title=cfg.title,
            tempo_bpm=cfg.tempo_bpm,
            duration=duration,
        )
        return result, grid

    def process_samples(self, y: np.ndarray, sr: int) -> dict[str, Any]:
        """
        Transcribe an in-memory mono signal.

        Returns:
            Dictionary with ``result``, ``abc``, ``key``, ``grid``,
            ``raw_pitches`` and ``duration``.
        """
        t0 = time.perf_counter()
        duration = len(y) / float(sr) if sr else 0.0

        raw = self.estimate_pitches(y, sr)
        result, grid = self.transcribe_pitches(raw, sr, duration=duration)

        logger.info(
            "Transcribed %.2fs: %d slices, %d cells, %d notes, key %s (%.2fs)",
            duration, len(raw), len(grid), result.n_notes, result.key,
            time.perf_counter() - t0,
        )
        return {
            "result": result,
            "abc": self.exporter.build_document(result),
            "key": result.key,
            "grid": grid,
            "raw_pitches": raw,
            "duration": duration,
        }

    def process(self, audio_path: Union[str, Path]) -> dict[str, Any]:
        """
        Decode and transcribe an audio file.

        Raises:
            AudioSourceError: If the file cannot be decoded.
        """
        source = FileSource(
            audio_path,
            frame_size=self.config.frame_size,
            highpass_hz=self.config.highpass_hz,
        )
        with source:
            return self.process_samples(source.y, source.sample_rate)
