"""Tests for the array, file and microphone frame sources."""

import sys
import types

import numpy as np
import pytest

from harmonix.core.source import (
    ArraySource,
    AudioSourceError,
    FileSource,
    MicrophoneSource,
)

from conftest import TEST_SR, make_tone


# ---------------------------------------------------------------------------
# In-memory / file sources
# ---------------------------------------------------------------------------

class TestArraySource:
    def test_frames_until_exhausted(self):
        y = np.arange(100, dtype=np.float32)
        with ArraySource(y, 1000, frame_size=40, hop=30) as source:
            frames = []
            while (frame := source.next_frame()) is not None:
                frames.append(frame)
        assert [f[0] for f in frames] == [0, 30, 60]
        assert all(len(f) == 40 for f in frames)

    def test_default_hop_is_one_sixtieth_second(self):
        source = ArraySource(np.zeros(10), 6000)
        assert source.hop == 100

    def test_reopen_rewinds(self):
        source = ArraySource(np.ones(20), 1000, frame_size=10, hop=10)
        source.open()
        source.next_frame()
        source.next_frame()
        assert source.next_frame() is None
        source.open()
        assert source.next_frame() is not None

    def test_frames_are_copies(self):
        y = np.zeros(20, dtype=np.float32)
        source = ArraySource(y, 1000, frame_size=10, hop=10)
        source.open()
        source.next_frame()[:] = 1.0
        assert not np.any(source.y)


class TestFileSource:
    def test_decode(self, wav_file):
        with FileSource(wav_file) as source:
            assert source.sample_rate == TEST_SR
            assert source.duration == pytest.approx(1.0, abs=0.01)
            assert source.hop == TEST_SR // 60
            frame = source.next_frame()
            assert frame.dtype == np.float32
            assert len(frame) == 2048
        assert not source.is_open

    def test_resample(self, wav_file):
        with FileSource(wav_file, sr=16000) as source:
            assert source.sample_rate == 16000

    def test_highpass_removes_rumble(self, tmp_path):
        from scipy.io import wavfile

        rumble = make_tone(30.0, duration=1.0, amplitude=0.8)
        path = tmp_path / "rumble.wav"
        wavfile.write(str(path), TEST_SR, rumble)

        with FileSource(path, highpass_hz=60.0) as filtered:
            kept = np.sqrt(np.mean(filtered.y[TEST_SR // 2:] ** 2))
        with FileSource(path, highpass_hz=None) as raw:
            original = np.sqrt(np.mean(raw.y[TEST_SR // 2:] ** 2))
        assert kept < original * 0.5

    def test_undecodable_file(self, tmp_path):
        path = tmp_path / "garbage.wav"
        path.write_bytes(b"definitely not audio")
        with pytest.raises(AudioSourceError):
            FileSource(path).open()


# ---------------------------------------------------------------------------
# Microphone
# ---------------------------------------------------------------------------

class FakeInputStream:
    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.active = False
        self.closed = False
        FakeInputStream.instances.append(self)

    def start(self):
        self.active = True

    def stop(self):
        self.active = False

    def close(self):
        self.closed = True


@pytest.fixture
def fake_sounddevice(monkeypatch):
    FakeInputStream.instances = []
    module = types.ModuleType("sounddevice")
    module.InputStream = FakeInputStream
    monkeypatch.setitem(sys.modules, "sounddevice", module)
    return module


class TestMicrophoneSource:
    def test_missing_dependency(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "sounddevice", None)
        with pytest.raises(ImportError, match="harmonix\\[live\\]"):
            MicrophoneSource()

    def test_open_and_close(self, fake_sounddevice):
        mic = MicrophoneSource(sample_rate=16000, frame_size=8)
        assert mic.next_frame() is None

        with mic:
            stream = FakeInputStream.instances[-1]
            assert stream.active
            assert stream.kwargs["samplerate"] == 16000
            assert stream.kwargs["channels"] == 1
            assert np.array_equal(mic.next_frame(), np.zeros(8))

        assert stream.closed
        assert not stream.active
        assert mic.next_frame() is None

    def test_ring_buffer_keeps_latest_samples(self, fake_sounddevice):
        mic = MicrophoneSource(frame_size=4)
        mic.open()
        mic._callback(np.array([[1.0], [2.0]], dtype=np.float32), 2, None, None)
        assert mic.next_frame().tolist() == [0.0, 0.0, 1.0, 2.0]
        mic._callback(np.arange(3, 9, dtype=np.float32).reshape(-1, 1), 6, None, None)
        assert mic.next_frame().tolist() == [5.0, 6.0, 7.0, 8.0]
        mic.close()

    def test_device_failure(self, fake_sounddevice, monkeypatch):
        def refuse(**kwargs):
            raise OSError("no input device")

        monkeypatch.setattr(fake_sounddevice, "InputStream", refuse)
        mic = MicrophoneSource()
        with pytest.raises(AudioSourceError):
            mic.open()
        assert not mic.is_open
