"""Core pitch processing modules."""

from harmonix.core.pitch import PitchEstimator, PitchSample
from harmonix.core.quantizer import OfflineQuantizer
from harmonix.core.smoother import GridSmoother
from harmonix.core.stream import RealtimeStabilizer, Session

__all__ = ["PitchEstimator", "PitchSample", "OfflineQuantizer", "GridSmoother", "RealtimeStabilizer", "Session"]
