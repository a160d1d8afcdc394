"""End-to-end tests for the batch transcription pipeline."""

import numpy as np
import pytest

from harmonix.config import TranscriptionConfig
from harmonix.core.source import AudioSourceError
from harmonix.pipeline import TranscriptionPipeline

from conftest import TEST_SR, ScriptedEstimator, held

G_MAJOR = [67, 69, 71, 72, 74, 76, 78]


# ---------------------------------------------------------------------------
# Key choice
# ---------------------------------------------------------------------------

class TestChooseKey:
    def test_configured_key_wins(self):
        pipeline = TranscriptionPipeline(TranscriptionConfig(key="Eb"), estimator=ScriptedEstimator([]))
        assert pipeline.choose_key(G_MAJOR) == "Eb"

    def test_too_few_voiced_slices(self):
        pipeline = TranscriptionPipeline(estimator=ScriptedEstimator([]))
        assert pipeline.choose_key([67, 69, None, 71, 74, None, 76]) == "C"

    def test_detected_from_voiced_slices(self):
        pipeline = TranscriptionPipeline(estimator=ScriptedEstimator([]))
        assert pipeline.choose_key(G_MAJOR + [None, None]) == "G"


# ---------------------------------------------------------------------------
# Quantize + encode
# ---------------------------------------------------------------------------

class TestTranscribePitches:
    def test_grid_to_notation(self):
        pipeline = TranscriptionPipeline(estimator=ScriptedEstimator([]))
        raw = [60, 60, 60, None, 64, 64, None, None]
        # sr=4 with one-sample slices puts one slice in each q=8 cell
        result, grid = pipeline.transcribe_pitches(raw, 4, slice_size=1)

        assert grid.pitches == [60, 60, 60, 60, 64, 64, None, None]
        assert result.key == "C"
        assert result.melody == ["C4", "E2", "z2"]
        assert result.harmony == ["C,4", "E,2", "z2"]

    def test_numpy_pitches(self):
        pipeline = TranscriptionPipeline(TranscriptionConfig(key="C"), estimator=ScriptedEstimator([]))
        raw = list(np.array([60, 60, 62, 62]))
        result, grid = pipeline.transcribe_pitches(raw, 4, slice_size=1)

        assert result.melody == ["C2", "D2"]
        assert result.harmony == ["C,2", "D,2"]
        assert all(type(p) is int for p in grid.pitches)

    def test_bar_lines(self):
        pipeline = TranscriptionPipeline(TranscriptionConfig(q_value=4), estimator=ScriptedEstimator([]))
        # sr=2: a q=4 cell (0.5 s) is one slice
        result, _ = pipeline.transcribe_pitches([60] * 5 + [62] * 3, 2, slice_size=1)
        assert result.melody == ["C8", "|", "C2", "D6"]

    def test_result_carries_settings(self):
        config = TranscriptionConfig(q_value=16, sensitivity=0.3, title="Hum", tempo_bpm=90)
        pipeline = TranscriptionPipeline(config, estimator=ScriptedEstimator([]))
        result, _ = pipeline.transcribe_pitches([], 8, slice_size=1, duration=0.0)
        assert result.melody == []
        assert result.q_value == 16
        assert result.sensitivity == 0.3
        assert result.title == "Hum"
        assert result.tempo_bpm == 90


class TestProcessSamples:
    def test_scripted_melody(self):
        # 661-sample slices at 22050 Hz: eight slices per q=8 cell
        estimator = ScriptedEstimator(held(G_MAJOR, frames=8))
        pipeline = TranscriptionPipeline(estimator=estimator)
        y = np.zeros(TEST_SR * 2, dtype=np.float32)

        processed = pipeline.process_samples(y, TEST_SR)

        assert processed["key"] == "G"
        assert processed["duration"] == pytest.approx(2.0)
        assert processed["result"].melody == ["G", "A", "B", "c", "d", "e", "^f"]
        assert len(processed["raw_pitches"]) == 56
        assert len(processed["grid"]) == 7
        assert "K:G\n" in processed["abc"]

    def test_low_confidence_is_rest(self):
        estimator = ScriptedEstimator(held([60], frames=8), confidence=0.7)
        pipeline = TranscriptionPipeline(TranscriptionConfig(sensitivity=0.0), estimator=estimator)
        processed = pipeline.process_samples(np.zeros(TEST_SR, dtype=np.float32), TEST_SR)
        assert processed["result"].melody == ["z"]


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

class TestProcessFile:
    def test_sine_file(self, wav_file):
        pipeline = TranscriptionPipeline(TranscriptionConfig(sensitivity=1.0))
        processed = pipeline.process(wav_file)

        assert processed["duration"] == pytest.approx(1.0, abs=0.01)
        assert processed["key"] == "C"
        assert processed["result"].melody
        assert processed["result"].melody[0].startswith("A")

    def test_missing_file(self, tmp_path):
        pipeline = TranscriptionPipeline()
        with pytest.raises(AudioSourceError):
            pipeline.process(tmp_path / "nope.wav")
