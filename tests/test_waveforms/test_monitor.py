"""Tests for the three-channel monitor bank."""

import logging

import numpy as np
import pytest
import yaml

from config.settings import ChannelConfig, Settings
from src.monitor_system.exceptions import ConfigurationError
from src.monitor_system.schemas import PatientState
from src.waveforms.capnography import CapnographyPattern
from src.waveforms.cardiac import CardiacParams, CardiacSignalGenerator, Rhythm
from src.waveforms.monitor import CHANNELS, WaveformMonitor
from src.waveforms.respiratory import BreathingPattern
from src.waveforms.selection import load_selection_rules


class TestConstruction:
    def test_default_channels(self):
        monitor = WaveformMonitor(seed=1)
        assert tuple(monitor.generators) == CHANNELS
        assert isinstance(monitor.ecg, CardiacSignalGenerator)

    def test_buffer_lengths(self):
        monitor = WaveformMonitor(seed=1)
        assert monitor.buffers["ecg"].maxlen == 2500
        assert monitor.buffers["respiration"].maxlen == 3000
        assert monitor.buffers["capnography"].maxlen == 2000

    def test_custom_generator(self):
        ecg = CardiacSignalGenerator(CardiacParams(sample_rate=500.0), seed=0)
        monitor = WaveformMonitor({"ecg": ecg}, buffer_seconds={"ecg": 2.0})
        assert monitor.ecg is ecg
        assert monitor.buffers["ecg"].maxlen == 1000

    def test_unknown_channel_rejected(self):
        with pytest.raises(ConfigurationError):
            WaveformMonitor({"spo2": CardiacSignalGenerator(seed=0)})

    def test_independent_channel_streams(self):
        monitor = WaveformMonitor(seed=1)
        assert monitor.ecg._rng.random() != monitor.respiration._rng.random()


class TestAdvance:
    def test_sample_counts(self):
        monitor = WaveformMonitor(seed=1)
        out = monitor.advance(1.0)
        assert len(out["ecg"]) == 250
        assert len(out["respiration"]) == 100
        assert len(out["capnography"]) == 100

    def test_fractional_carry(self):
        monitor = WaveformMonitor(seed=1)
        counts = {name: 0 for name in CHANNELS}
        for _ in range(10):
            for name, samples in monitor.advance(0.004).items():
                counts[name] += len(samples)
        assert counts["ecg"] == 10
        assert counts["respiration"] == 4
        assert counts["capnography"] == 4

    def test_buffers_are_bounded(self):
        monitor = WaveformMonitor(seed=1)
        monitor.advance(12.0)
        assert len(monitor.get_waveform_data("ecg")) == 2500
        assert len(monitor.get_waveform_data("respiration")) == 1200

    def test_buffer_follows_sample_rate_change(self):
        monitor = WaveformMonitor(seed=1)
        monitor.advance(1.0)
        monitor.ecg.update_params(sample_rate=500.0)
        monitor.advance(12.0)
        assert monitor.buffers["ecg"].maxlen == 5000
        assert len(monitor.get_waveform_data("ecg")) == 5000

    def test_buffer_shrinks_to_recent_samples(self):
        monitor = WaveformMonitor(seed=1)
        out = monitor.advance(10.0)
        monitor.ecg.update_params(sample_rate=100.0)
        data = monitor.get_waveform_data("ecg")
        assert monitor.buffers["ecg"].maxlen == 1000
        np.testing.assert_array_equal(data, out["ecg"][-1000:])

    def test_negative_seconds(self):
        with pytest.raises(ConfigurationError):
            WaveformMonitor(seed=1).advance(-0.5)

    def test_get_recent_window(self):
        monitor = WaveformMonitor(seed=1)
        out = monitor.advance(3.0)
        recent = monitor.get_waveform_data("ecg", 1.0)
        assert len(recent) == 250
        np.testing.assert_array_equal(recent, out["ecg"][-250:])
        assert len(monitor.get_waveform_data("ecg", 0.0)) == 0

    def test_unknown_channel_warns(self, caplog):
        monitor = WaveformMonitor(seed=1)
        with caplog.at_level(logging.WARNING):
            data = monitor.get_waveform_data("spo2")
        assert data.size == 0
        assert "spo2" in caplog.text

    def test_same_seed_same_output(self):
        a = WaveformMonitor(seed=9).advance(2.0)
        b = WaveformMonitor(seed=9).advance(2.0)
        for name in CHANNELS:
            np.testing.assert_array_equal(a[name], b[name])


class TestPatientState:
    def test_forwards_to_every_channel(self):
        monitor = WaveformMonitor(seed=1)
        choices = monitor.apply_patient_state(PatientState(airway_obstruction=0.5))
        assert set(choices) == set(CHANNELS)
        assert monitor.respiration.pattern is BreathingPattern.OBSTRUCTIVE
        assert monitor.capnography.pattern is CapnographyPattern.OBSTRUCTIVE
        assert monitor.ecg.pattern is Rhythm.NORMAL_SINUS

    def test_unchanged_snapshot_skipped(self):
        monitor = WaveformMonitor(seed=1)
        assert monitor.apply_patient_state({"hr": 80}) is not None
        assert monitor.apply_patient_state({"hr": 80}) is None
        assert monitor.apply_patient_state({"hr": 90}) is not None
        assert monitor.ecg.params.heart_rate == 90.0


class TestNoiseAndReset:
    def test_clean_preset(self):
        monitor = WaveformMonitor(seed=1)
        monitor.apply_noise_preset("clean")
        assert monitor.ecg.params.noise_level == 0.0
        assert monitor.ecg.params.artifact_probability == 0.0
        assert monitor.respiration.params.noise_level == 0.0
        assert monitor.capnography.params.noise_level == 0.0

    def test_high_preset_keeps_asystole_flat(self):
        monitor = WaveformMonitor(seed=1)
        monitor.apply_noise_preset("high")
        assert monitor.ecg.params.wander_amplitude > 0.0
        monitor.ecg.set_rhythm(Rhythm.ASYSTOLE)
        wave = monitor.ecg.generate_waveform(10.0)
        assert np.abs(wave).max() <= monitor.ecg.params.noise_level

    def test_unknown_preset(self):
        with pytest.raises(ConfigurationError):
            WaveformMonitor(seed=1).apply_noise_preset("deafening")

    def test_reset(self):
        monitor = WaveformMonitor(seed=1)
        monitor.apply_patient_state(PatientState(cardiac_arrest=True))
        monitor.advance(2.0)
        monitor.reset()
        assert all(len(buf) == 0 for buf in monitor.buffers.values())
        assert monitor.ecg.pattern is Rhythm.NORMAL_SINUS
        assert monitor.ecg.state.clock.elapsed == 0.0
        assert monitor.apply_patient_state(PatientState(cardiac_arrest=True)) is not None


class TestFromSettings:
    def test_params_and_buffers(self):
        settings = Settings(
            cardiac=ChannelConfig(params={"sample_rate": 500.0}, buffer_seconds=4.0),
            seed=3,
            noise_preset="clean",
        )
        monitor = WaveformMonitor.from_settings(settings)
        assert monitor.ecg.sample_rate == 500.0
        assert monitor.buffers["ecg"].maxlen == 2000
        assert monitor.ecg.params.noise_level == 0.0

    def test_seeded_settings_reproducible(self):
        a = WaveformMonitor.from_settings(Settings(seed=5)).advance(1.0)
        b = WaveformMonitor.from_settings(Settings(seed=5)).advance(1.0)
        for name in CHANNELS:
            np.testing.assert_array_equal(a[name], b[name])

    def test_unknown_param_rejected(self):
        settings = Settings(respiratory=ChannelConfig(params={"tidal_volume": 500}))
        with pytest.raises(ConfigurationError):
            WaveformMonitor.from_settings(settings)

    def test_sets_package_log_level(self):
        WaveformMonitor.from_settings(Settings(seed=1, log_level="warning"))
        assert logging.getLogger("src.waveforms").level == logging.WARNING
        logging.getLogger("src.waveforms").setLevel(logging.NOTSET)

    def test_custom_rules_path(self, tmp_path):
        rules = load_selection_rules()
        rules["cardiac"]["bradycardia"]["hr_below"] = 60
        path = tmp_path / "rules.yaml"
        path.write_text(yaml.safe_dump(rules))
        monitor = WaveformMonitor.from_settings(Settings(seed=1, rules_path=str(path)))
        monitor.apply_patient_state(PatientState(hr=55))
        assert monitor.ecg.last_rule == "bradycardia"
