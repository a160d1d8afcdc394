"""Tests for TranscriptionConfig validation and derived thresholds."""

import pytest

from harmonix.config import TranscriptionConfig


class TestTranscriptionConfig:
    def test_defaults(self):
        config = TranscriptionConfig()
        assert config.q_value == 8
        assert config.sensitivity == 0.5
        assert config.key is None
        assert config.debounce_frames == 6

    def test_derived_thresholds(self):
        config = TranscriptionConfig(sensitivity=1.0)
        assert config.base_clarity == pytest.approx(0.60)
        assert config.silence_threshold == pytest.approx(0.80)

    def test_slice_size(self):
        assert TranscriptionConfig().slice_size(22050) == 661
        assert TranscriptionConfig().slice_size(44100) == 1323
        assert TranscriptionConfig(slice_seconds=0.0).slice_size(22050) == 1

    @pytest.mark.parametrize("q_value", [0, 2, 12, 32])
    def test_rejects_bad_q(self, q_value):
        with pytest.raises(ValueError, match="q_value"):
            TranscriptionConfig(q_value=q_value)

    @pytest.mark.parametrize("sensitivity", [-0.1, 1.5])
    def test_rejects_bad_sensitivity(self, sensitivity):
        with pytest.raises(ValueError, match="sensitivity"):
            TranscriptionConfig(sensitivity=sensitivity)

    def test_key_names(self):
        assert TranscriptionConfig(key="Bb").key == "Bb"
        with pytest.raises(ValueError, match="Unknown key"):
            TranscriptionConfig(key="A#")

    def test_rejects_bad_live_settings(self):
        with pytest.raises(ValueError):
            TranscriptionConfig(debounce_frames=0)
        with pytest.raises(ValueError):
            TranscriptionConfig(snapshot_hz=0)
