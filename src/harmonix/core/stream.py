"""
Real-time pitch stabilization for live transcription.

Architecture Overview
---------------------
::

    FrameSource (microphone ring buffer, or a replayed file)
        │
        ▼  Session.step(): one frame per tick (~60 Hz)
    PitchEstimator.find(frame, sr)
        │
        ├─► sample_to_pitch()   band / confidence gate, vocal-band fold
        │
        ├─► RealtimeStabilizer.process(pitch)
        │        └─► debounce → merge-or-append → bar counting
        │
        └─► Session.snapshot(): copy-on-read, polled at ~10 Hz
                 └─► LiveSnapshot (returned to the caller for display)

Threading
---------
``step`` and ``snapshot`` are meant to be called from the same thread
(``LiveRecorder`` does exactly that), so the token buffers need no lock.
A snapshot is always a full copy, never a view of the live buffers.  The
only cross-thread boundary is inside ``MicrophoneSource``, which guards
its ring buffer itself.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from harmonix.core.pitch import (
    PitchEstimator,
    PitchSample,
    base_clarity,
    frequency_to_pitch,
    sample_to_pitch,
)
from harmonix.core.source import FrameSource
from harmonix.core.theory import DEFAULT_KEY, detect_key, pitch_name
from harmonix.io.notation import (
    BarMarker,
    Note,
    Token,
    TranscriptionResult,
    describe_recent_harmony,
    harmony_pitch,
    render_tokens,
)

logger = logging.getLogger(__name__)

DEBOUNCE_FRAMES = 6
# Recorded pitches needed before a stopped session guesses its key
MIN_SESSION_PITCHES = 6


class DetectionState(Enum):
    IDLE = "idle"
    CANDIDATE = "candidate"
    EMITTING = "emitting"


@dataclass
class LiveSnapshot:
    """
    Point-in-time copy of a live session for display.

    Token lists are rendered strings, copied out of the session buffers.
    """

    frame_index: int = 0
    time_sec: float = 0.0
    melody: list[str] = field(default_factory=list)
    harmony: list[str] = field(default_factory=list)

    # Instantaneous feedback, not part of the notation
    current_pitch_hz: Optional[float] = None
    current_note: Optional[str] = None

    detected_key: str = DEFAULT_KEY
    n_notes: int = 0
    recent_harmony: str = "---"
    is_recording: bool = False


class RealtimeStabilizer:
    """
    Debounce / merge state machine over a stream of pitch numbers.

    A pitch has to repeat for ``debounce_frames`` consecutive frames before
    it counts as one grid unit.  Consecutive confirmations of the same
    pitch lengthen the last note instead of appending a new one, and a bar
    marker follows every ``q_value`` confirmed units.
    """

    def __init__(self, q_value: int = 8, debounce_frames: int = DEBOUNCE_FRAMES):
        self.q_value = q_value
        self.debounce_frames = debounce_frames
        self.clear()

    def reset_detection(self) -> None:
        """Forget the current candidate (silence or a new session)."""
        self.last_pitch: Optional[int] = None
        self.stable_frames = 0
        self.continuity = False

    def clear(self) -> None:
        """Drop all buffered tokens and detection state."""
        self.melody: list[Token] = []
        self.harmony: list[Token] = []
        self.recorded_pitches: list[int] = []
        self.grid_units = 0
        self.reset_detection()

    @property
    def state(self) -> DetectionState:
        if self.last_pitch is None:
            return DetectionState.IDLE
        if self.continuity:
            return DetectionState.EMITTING
        return DetectionState.CANDIDATE

    def process(self, pitch: Optional[int]) -> bool:
        """
        Feed one frame's pitch number (None for silence).

        Returns:
            True if this frame confirmed a grid unit.
        """
        if pitch is None:
            self.reset_detection()
            return False

        if pitch != self.last_pitch:
            # A change never merges with the previous note
            self.last_pitch = pitch
            self.stable_frames = 0
            self.continuity = False
            return False

        self.stable_frames += 1
        if self.stable_frames < self.debounce_frames:
            return False

        self._confirm(pitch)
        self.continuity = True
        self.stable_frames = 0
        return True

    def _confirm(self, pitch: int) -> None:
        merged = self._merge_or_append(self.melody, pitch)
        self._merge_or_append(self.harmony, harmony_pitch(pitch))
        if not merged:
            self.recorded_pitches.append(pitch)

        self.grid_units += 1
        if self.grid_units >= self.q_value:
            self.melody.append(BarMarker())
            self.harmony.append(BarMarker())
            self.grid_units = 0

    def _merge_or_append(self, buffer: list[Token], pitch: int) -> bool:
        last = buffer[-1] if buffer else None
        if self.continuity and isinstance(last, Note) and last.pitch == pitch:
            last.duration += 1
            return True
        buffer.append(Note(pitch, 1))
        return False


class Session:
    """
    One live recording: a frame source, an estimator and a stabilizer.

    ``start`` acquires the source, ``step`` processes one frame, and
    ``stop`` releases the source and detects the key.  Starting again
    replaces the previous buffers.
    """

    def __init__(
        self,
        source: FrameSource,
        estimator: Optional[PitchEstimator] = None,
        q_value: int = 8,
        sensitivity: float = 0.5,
        debounce_frames: int = DEBOUNCE_FRAMES,
        title: str = "Melody",
        tempo_bpm: int = 120,
        frame_rate: float = 60.0,
    ):
        """
        Initialize the session.

        Args:
            source: Where frames come from.
            estimator: Frequency estimator (default: pYIN at the source's frame size).
            q_value: Bar length in confirmed units (4, 8 or 16).
            sensitivity: 0.0 (strict) to 1.0 (loose) confidence gate.
            debounce_frames: Frames a pitch must hold before it is confirmed.
            title: Title used by :meth:`result`.
            tempo_bpm: Tempo used by :meth:`result`.
            frame_rate: Nominal step rate, used to timestamp snapshots.
        """
        self.source = source
        self.estimator = estimator or PitchEstimator(frame_length=source.frame_size)
        self.q_value = q_value
        self.sensitivity = sensitivity
        self.min_confidence = base_clarity(sensitivity)
        self.title = title
        self.tempo_bpm = tempo_bpm
        self.frame_rate = frame_rate

        self.stabilizer = RealtimeStabilizer(q_value, debounce_frames)
        self.running = False
        self.frame_index = 0
        self.current_pitch_hz: Optional[float] = None
        self.detected_key = DEFAULT_KEY

    @classmethod
    def from_config(cls, source: FrameSource, config, estimator: Optional[PitchEstimator] = None):
        """Build a session from a :class:`harmonix.config.TranscriptionConfig`."""
        return cls(
            source,
            estimator=estimator,
            q_value=config.q_value,
            sensitivity=config.sensitivity,
            debounce_frames=config.debounce_frames,
            title=config.title,
            tempo_bpm=config.tempo_bpm,
            frame_rate=config.frame_rate,
        )

    def start(self) -> None:
        """
        Reset the buffers and acquire the frame source.

        Raises:
            AudioSourceError: If the source cannot be opened.  Anything the
                source managed to acquire is released first.
        """
        self.stabilizer.clear()
        self.frame_index = 0
        self.current_pitch_hz = None
        self.detected_key = DEFAULT_KEY
        try:
            self.source.open()
        except Exception:
            self.source.close()
            raise
        self.running = True
        logger.info("Live session started (q=%d, sensitivity=%.2f)", self.q_value, self.sensitivity)

    def step(self) -> bool:
        """
        Read and process one frame.

        Returns:
            False once the session is stopped or the source is exhausted.
        """
        if not self.running:
            return False

        try:
            frame = self.source.next_frame()
            if frame is None:
                self.stop()
                return False

            freq, confidence = self.estimator.find(frame, self.source.sample_rate)
            pitch = sample_to_pitch(PitchSample(freq, confidence), self.min_confidence)
        except Exception:
            self.stop()
            raise

        self.current_pitch_hz = freq if pitch is not None else None
        self.stabilizer.process(pitch)
        self.frame_index += 1
        return True

    def stop(self) -> str:
        """
        Stop processing, release the source and detect the key.

        Safe to call more than once.

        Returns:
            The detected key (unchanged if too few pitches were recorded).
        """
        was_running = self.running
        self.running = False
        self.current_pitch_hz = None
        self.source.close()

        recorded = self.stabilizer.recorded_pitches
        if len(recorded) >= MIN_SESSION_PITCHES:
            self.detected_key = detect_key(recorded)
        if was_running:
            logger.info(
                "Live session stopped after %d frames, %d notes, key %s",
                self.frame_index, len(recorded), self.detected_key,
            )
        return self.detected_key

    def clear(self) -> None:
        """Empty the melody and harmony buffers."""
        self.stabilizer.clear()

    def snapshot(self) -> LiveSnapshot:
        """Copy the current buffers and feedback values."""
        melody = render_tokens(self.stabilizer.melody, self.q_value)
        harmony = render_tokens(self.stabilizer.harmony, self.q_value)
        pitch_hz = self.current_pitch_hz
        return LiveSnapshot(
            frame_index=self.frame_index,
            time_sec=self.frame_index / self.frame_rate,
            melody=melody,
            harmony=harmony,
            current_pitch_hz=pitch_hz,
            current_note=self._note_name(pitch_hz),
            detected_key=self.detected_key,
            n_notes=sum(1 for t in self.stabilizer.melody if isinstance(t, Note)),
            recent_harmony=describe_recent_harmony(self.stabilizer.melody),
            is_recording=self.running,
        )

    @staticmethod
    def _note_name(pitch_hz: Optional[float]) -> Optional[str]:
        if pitch_hz is None:
            return None
        return pitch_name(frequency_to_pitch(pitch_hz))

    def result(self) -> TranscriptionResult:
        return TranscriptionResult(
            melody=render_tokens(self.stabilizer.melody, self.q_value),
            harmony=render_tokens(self.stabilizer.harmony, self.q_value),
            key=self.detected_key,
            q_value=self.q_value,
            sensitivity=self.sensitivity,
            title=self.title,
            tempo_bpm=self.tempo_bpm,
        )

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False


class LiveRecorder:
    """
    Drives a session at a fixed frame rate and polls snapshots.

    Both the per-frame step and the snapshot run in the calling thread;
    the loop sleeps until whichever is due next.
    """

    def __init__(
        self,
        session: Session,
        frame_rate: float = 60.0,
        snapshot_hz: float = 10.0,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        self.frame_period = 1.0 / frame_rate
        self.snapshot_period = 1.0 / snapshot_hz
        self._clock = clock
        self._sleep = sleep

    def run(
        self,
        duration: Optional[float] = None,
        on_snapshot: Optional[Callable[[LiveSnapshot], None]] = None,
    ) -> LiveSnapshot:
        """
        Record until *duration* seconds pass or the source runs dry.

        The session is always stopped on the way out, including when the
        loop is interrupted.

        Returns:
            Final snapshot, taken after the session has stopped.
        """
        if not self.session.running:
            self.session.start()

        start = self._clock()
        next_frame = start
        next_snapshot = start
        try:
            while self.session.running:
                now = self._clock()
                if duration is not None and now - start >= duration:
                    break
                if now >= next_frame:
                    self.session.step()
                    next_frame += self.frame_period
                    if next_frame < now:
                        # fell behind; skip missed ticks rather than bursting
                        next_frame = now + self.frame_period
                if now >= next_snapshot:
                    if on_snapshot is not None:
                        on_snapshot(self.session.snapshot())
                    next_snapshot += self.snapshot_period
                wait = min(next_frame, next_snapshot) - self._clock()
                if wait > 0:
                    self._sleep(wait)
        finally:
            self.session.stop()

        final = self.session.snapshot()
        if on_snapshot is not None:
            on_snapshot(final)
        return final
