"""
Audio frame sources.

A frame source hands out fixed-size mono frames on request.  Sources are
context managers: the underlying file or device is acquired in ``open``
and always released in ``close``, including on errors.

``MicrophoneSource`` requires the optional ``sounddevice`` package; a
clear ImportError is raised if it is absent.
"""

import logging
import threading
from pathlib import Path
from typing import Optional, Union

import librosa
import numpy as np
from scipy import signal as scipy_signal

logger = logging.getLogger(__name__)


class AudioSourceError(RuntimeError):
    """Raised when audio cannot be decoded or an input device cannot be opened."""


class FrameSource:
    """
    Base class for anything that yields audio frames.

    Subclasses implement :meth:`next_frame`, and :meth:`open` /
    :meth:`close` when they hold an external resource.
    """

    def __init__(self, sample_rate: int, frame_size: int = 2048):
        self.sample_rate = sample_rate
        self.frame_size = frame_size
        self.is_open = False

    def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        self.is_open = False

    def next_frame(self) -> Optional[np.ndarray]:
        """Return the next frame, or None when the source is exhausted."""
        raise NotImplementedError

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class ArraySource(FrameSource):
    """
    Serves frames from an in-memory signal, advancing ``hop`` samples per call.

    Useful for replaying a decoded file through the live stabilizer.
    """

    def __init__(
        self,
        y: np.ndarray,
        sample_rate: int,
        frame_size: int = 2048,
        hop: Optional[int] = None,
    ):
        super().__init__(sample_rate, frame_size)
        self.y = np.asarray(y, dtype=np.float32)
        self.hop = hop or max(1, int(sample_rate / 60))
        self._position = 0

    def open(self) -> None:
        self._position = 0
        super().open()

    def next_frame(self) -> Optional[np.ndarray]:
        start = self._position
        if start + self.frame_size > len(self.y):
            return None
        self._position += self.hop
        return self.y[start:start + self.frame_size].copy()


class FileSource(ArraySource):
    """
    Decodes an audio file to mono and serves it as frames.

    The whole file is decoded once when the source is opened.
    """

    def __init__(
        self,
        audio_path: Union[str, Path],
        sr: Optional[int] = None,
        frame_size: int = 2048,
        hop: Optional[int] = None,
        highpass_hz: Optional[float] = 60.0,
    ):
        """
        Initialize the source.

        Args:
            audio_path: Path to audio file (wav, mp3, flac).
            sr: Target sample rate. None preserves the file's rate.
            frame_size: Samples per frame.
            hop: Samples advanced per :meth:`next_frame` call.
            highpass_hz: Rumble filter cutoff; None disables filtering.
        """
        super().__init__(np.zeros(0, dtype=np.float32), sr or 0, frame_size, hop)
        self.audio_path = Path(audio_path)
        self.target_sr = sr
        self.highpass_hz = highpass_hz
        self._requested_hop = hop

    @property
    def duration(self) -> float:
        if not self.sample_rate:
            return 0.0
        return librosa.get_duration(y=self.y, sr=self.sample_rate)

    def open(self) -> None:
        try:
            y, sr_out = librosa.load(self.audio_path, sr=self.target_sr, mono=True)
        except Exception as exc:
            raise AudioSourceError(f"Could not decode {self.audio_path}: {exc}") from exc

        self.sample_rate = int(sr_out)
        self.y = self._highpass(y, self.sample_rate)
        self.hop = self._requested_hop or max(1, int(self.sample_rate / 60))
        logger.info(
            "Decoded %s: %.2fs at %d Hz", self.audio_path, self.duration, self.sample_rate
        )
        super().open()

    def _highpass(self, y: np.ndarray, sr: int) -> np.ndarray:
        """Remove low-frequency rumble with a 4th-order Butterworth high-pass."""
        if not self.highpass_hz or len(y) == 0:
            return y.astype(np.float32)
        nyquist = sr / 2
        cutoff = self.highpass_hz / nyquist
        if not 0.0 < cutoff < 1.0:
            return y.astype(np.float32)
        sos = scipy_signal.butter(4, cutoff, btype="highpass", output="sos")
        return scipy_signal.sosfilt(sos, y).astype(np.float32)


class MicrophoneSource(FrameSource):
    """
    Live input from the default (or a chosen) audio device.

    The device callback runs on its own thread and writes into a ring
    buffer; :meth:`next_frame` returns a copy of the latest
    ``frame_size`` samples under a lock.

    Install the optional extra to use this class::

        pip install "harmonix[live]"

    Raises:
        ImportError: At construction time if ``sounddevice`` is not installed.
    """

    def __init__(
        self,
        sample_rate: int = 44100,
        frame_size: int = 2048,
        device: Optional[int] = None,
        blocksize: int = 512,
    ):
        try:
            import sounddevice as sd  # type: ignore[import]
        except ModuleNotFoundError as exc:
            raise ImportError(
                "The 'sounddevice' package is required for live capture.\n"
                "Install it with:  pip install 'harmonix[live]'"
            ) from exc

        super().__init__(sample_rate, frame_size)
        self._sd = sd
        self.device = device
        self.blocksize = blocksize
        self._stream = None
        self._lock = threading.Lock()
        self._ring = np.zeros(frame_size, dtype=np.float32)

    def _callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.warning("Audio status: %s", status)
        block = indata[:, 0]
        n = len(block)
        with self._lock:
            if n >= self.frame_size:
                self._ring[:] = block[-self.frame_size:]
            else:
                self._ring[:-n] = self._ring[n:]
                self._ring[-n:] = block

    def open(self) -> None:
        self._ring[:] = 0.0
        try:
            self._stream = self._sd.InputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=1,
                blocksize=self.blocksize,
                dtype="float32",
                callback=self._callback,
            )
            self._stream.start()
        except Exception as exc:
            self.close()
            raise AudioSourceError(f"Could not open input device: {exc}") from exc
        logger.info("Microphone opened at %d Hz", self.sample_rate)
        super().open()

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                if stream.active:
                    stream.stop()
            finally:
                stream.close()
            logger.info("Microphone released")
        super().close()

    def next_frame(self) -> Optional[np.ndarray]:
        if not self.is_open:
            return None
        with self._lock:
            return self._ring.copy()
