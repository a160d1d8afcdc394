"""Pitch-to-notation transcription for sung and played melodies."""

from harmonix.config import TranscriptionConfig
from harmonix.core.quantizer import OfflineQuantizer
from harmonix.core.smoother import GridSmoother
from harmonix.core.stream import LiveRecorder, RealtimeStabilizer, Session
from harmonix.io.notation import NotationEncoder, NotationExporter, TranscriptionResult
from harmonix.pipeline import TranscriptionPipeline

__version__ = "0.1.0"
__all__ = [
    "TranscriptionConfig",
    "OfflineQuantizer",
    "GridSmoother",
    "RealtimeStabilizer",
    "Session",
    "LiveRecorder",
    "NotationEncoder",
    "NotationExporter",
    "TranscriptionResult",
    "TranscriptionPipeline",
]
