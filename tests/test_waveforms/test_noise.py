"""Tests for noise sources and presets."""

import pytest

from src.waveforms.noise import NOISE_PRESETS, NoiseConfig, artifact_spike, baseline_wander, uniform_noise


class TestNoisePresets:
    def test_all_presets_exist(self):
        assert set(NOISE_PRESETS) == {"clean", "low", "medium", "high"}

    def test_clean_is_silent(self):
        clean = NOISE_PRESETS["clean"]
        assert clean.ecg_noise_level == 0.0
        assert clean.ecg_artifact_probability == 0.0
        assert clean.respiration_noise_level == 0.0
        assert clean.capnography_noise_level == 0.0

    def test_medium_matches_defaults(self):
        assert NOISE_PRESETS["medium"] == NoiseConfig()

    def test_levels_increase(self):
        assert (
            NOISE_PRESETS["low"].ecg_noise_level
            < NOISE_PRESETS["medium"].ecg_noise_level
            < NOISE_PRESETS["high"].ecg_noise_level
        )


class TestNoiseSources:
    def test_uniform_noise_bound(self, rng):
        draws = [uniform_noise(rng, 0.05) for _ in range(1000)]
        assert max(abs(d) for d in draws) < 0.05

    def test_uniform_noise_zero_level(self, rng):
        assert uniform_noise(rng, 0.0) == 0.0

    def test_artifact_disabled(self, rng):
        assert all(artifact_spike(rng, 0.0, 1.0) == 0.0 for _ in range(100))

    def test_artifact_always(self, rng):
        spikes = [artifact_spike(rng, 1.0, 0.5) for _ in range(100)]
        assert all(abs(s) <= 0.5 for s in spikes)
        assert any(s != 0.0 for s in spikes)

    def test_baseline_wander(self):
        assert baseline_wander(1.0, 0.0, 0.25) == 0.0
        assert baseline_wander(1.0, 0.1, 0.25) == pytest.approx(0.1)
