"""Shared fixtures: synthetic signals and scripted estimators."""

import numpy as np
import pytest

from harmonix.core.pitch import PitchSample

TEST_SR = 22050


def make_tone(freq, duration=1.0, sr=TEST_SR, amplitude=0.5):
    t = np.linspace(0, duration, int(sr * duration), endpoint=False)
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


class ScriptedEstimator:
    """
    Stand-in for PitchEstimator that replays a fixed script.

    ``find`` returns the scripted frequencies one call at a time (silence
    once the script runs out); ``track`` returns one PitchSample per
    scripted entry regardless of the signal.
    """

    def __init__(self, freqs, confidence=0.99):
        self.freqs = list(freqs)
        self.confidence = confidence
        self.calls = 0

    def find(self, frame, sample_rate):
        if self.calls >= len(self.freqs):
            self.calls += 1
            return None, 0.0
        freq = self.freqs[self.calls]
        self.calls += 1
        if freq is None:
            return None, 0.0
        return freq, self.confidence

    def track(self, y, sample_rate, hop_length):
        return [
            PitchSample(f, self.confidence if f is not None else 0.0)
            for f in self.freqs
        ]


@pytest.fixture
def pure_sine():
    """One second of A4 (440 Hz)."""
    return make_tone(440.0), TEST_SR


@pytest.fixture
def silence():
    return np.zeros(TEST_SR, dtype=np.float32), TEST_SR


@pytest.fixture
def wav_file(tmp_path, pure_sine):
    """A short 16-bit WAV of the pure sine on disk."""
    from scipy.io import wavfile

    y, sr = pure_sine
    path = tmp_path / "tone.wav"
    wavfile.write(str(path), sr, (y * 32767).astype(np.int16))
    return path


def hz(pitch):
    """Equal-tempered frequency of a pitch number."""
    return 440.0 * 2 ** ((pitch - 69) / 12)


def held(pitches, frames=7):
    """Frequency script holding each pitch for *frames* frames."""
    script = []
    for p in pitches:
        script.extend([None if p is None else hz(p)] * frames)
    return script


class FakeClock:
    """Deterministic clock; ``sleep`` advances time instead of blocking."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = 0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps += 1
        self.now += seconds
