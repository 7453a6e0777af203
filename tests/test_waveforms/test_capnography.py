"""Tests for the capnography generator and its breath phase machine."""

import numpy as np
import pytest

from src.monitor_system.exceptions import PatternOptionsError
from src.monitor_system.schemas import PatientState
from src.waveforms.capnography import (
    BreathPhase,
    BreathTiming,
    CapnographyGenerator,
    CapnographyParams,
    CapnographyPattern,
    EsophagealOptions,
    RebreathingOptions,
    low_output_etco2,
)
from src.waveforms.selection import load_selection_rules


def run(gen, seconds):
    times, values, phases = [], [], []
    for _ in range(int(round(seconds * gen.sample_rate))):
        values.append(gen.get_next_value())
        times.append(gen.state.clock.elapsed)
        phases.append(gen.breath_phase)
    return np.array(times), np.array(values), phases


class TestBreathTiming:
    def test_phase_split(self):
        timing = BreathTiming.from_params(CapnographyParams())
        assert timing.cycle == pytest.approx(5.0)
        assert timing.inspiration == pytest.approx(5.0 / 3.0)
        assert timing.expiration_start == pytest.approx(10.0 / 3.0 * 0.1)
        assert timing.plateau == pytest.approx(10.0 / 3.0 * 0.7)
        assert timing.expiration_end == pytest.approx(10.0 / 3.0 * 0.2)

    def test_locate(self):
        timing = BreathTiming.from_params(CapnographyParams())
        assert timing.locate(0.5)[0] is BreathPhase.INSPIRATION
        assert timing.locate(1.8)[0] is BreathPhase.EXPIRATION_START
        phase, u = timing.locate(3.0)
        assert phase is BreathPhase.ALVEOLAR_PLATEAU
        assert 0.0 < u < 1.0
        assert timing.locate(4.9)[0] is BreathPhase.EXPIRATION_END

    def test_phases_cycle_in_order(self, clean_capnography_params):
        gen = CapnographyGenerator(clean_capnography_params, seed=0)
        _, _, phases = run(gen, 10.0)
        order = [phases[0]]
        for phase in phases[1:]:
            if phase is not order[-1]:
                order.append(phase)
        expected = list(BreathPhase) * 3
        assert order == expected[:len(order)]
        assert gen.state.expiration_count == 2


class TestShapes:
    def test_plateau_ends_at_etco2(self, clean_capnography_params):
        gen = CapnographyGenerator(clean_capnography_params, seed=0)
        wave = gen.generate_waveform(15.0)
        assert wave.max() == pytest.approx(35.0, abs=0.1)
        assert wave.max() <= 35.0 + 1e-9

    def test_inspiration_at_baseline(self, clean_capnography_params):
        gen = CapnographyGenerator(clean_capnography_params, seed=0)
        _, values, phases = run(gen, 10.0)
        insp = np.array([p is BreathPhase.INSPIRATION for p in phases])
        assert np.all(values[insp] == 0.0)

    def test_never_negative(self):
        gen = CapnographyGenerator(CapnographyParams(noise_level=1.0), seed=0)
        assert gen.generate_waveform(20.0).min() >= 0.0

    def test_noise_bound(self):
        gen = CapnographyGenerator(seed=0)
        _, values, phases = run(gen, 10.0)
        insp = np.array([p is BreathPhase.INSPIRATION for p in phases])
        assert values[insp].max() <= 0.2 * 35.0 * 0.1

    def test_esophageal_windows(self):
        gen = CapnographyGenerator(seed=3)
        gen.set_pattern(CapnographyPattern.ESOPHAGEAL_INTUBATION)
        wave = gen.generate_waveform(60.0)
        window = int(10 * gen.sample_rate)
        for start in range(0, len(wave) - window + 1, window):
            assert np.abs(wave[start:start + window]).mean() < 0.1 * gen.params.etco2

    @pytest.mark.parametrize("etco2", [1.0, 6.0])
    def test_esophageal_windows_after_arrest_clamp(self, etco2):
        gen = CapnographyGenerator(seed=3)
        gen.apply_patient_state(PatientState(cardiac_arrest=True, etco2=etco2))
        assert gen.pattern is CapnographyPattern.ESOPHAGEAL_INTUBATION
        wave = gen.generate_waveform(30.0)
        window = int(10 * gen.sample_rate)
        for start in range(0, len(wave) - window + 1, window):
            assert np.abs(wave[start:start + window]).mean() < 0.1 * gen.params.etco2

    def test_esophageal_fraction_validated(self):
        with pytest.raises(PatternOptionsError):
            EsophagealOptions(spike_fraction=1.5)

    def test_esophageal_spikes_fade(self, clean_capnography_params):
        gen = CapnographyGenerator(clean_capnography_params, seed=0)
        gen.set_pattern(CapnographyPattern.ESOPHAGEAL_INTUBATION, EsophagealOptions())
        cycle = int(5.0 * gen.sample_rate)
        wave = gen.generate_waveform(25.0)
        peaks = [wave[i * cycle:(i + 1) * cycle].max() for i in range(5)]
        assert peaks[0] == pytest.approx(0.15 * 35.0, abs=0.05)
        assert peaks[1] == pytest.approx(0.075 * 35.0, abs=0.05)
        assert peaks[2] == pytest.approx(0.0375 * 35.0, abs=0.05)
        assert peaks[3] == 0.0
        assert peaks[4] == 0.0

    def test_obstructive_shark_fin(self, clean_capnography_params):
        gen = CapnographyGenerator(clean_capnography_params, seed=0)
        gen.set_pattern(CapnographyPattern.OBSTRUCTIVE, {"severity": 0.5})
        _, values, phases = run(gen, 5.0)
        insp = np.array([p is BreathPhase.INSPIRATION for p in phases])
        np.testing.assert_allclose(values[insp], 0.5 * 35.0 * 0.1)
        assert values.max() == pytest.approx(35.0, abs=0.2)

    def test_rebreathing_raises_baseline(self, clean_capnography_params):
        gen = CapnographyGenerator(clean_capnography_params, seed=0)
        gen.set_pattern(CapnographyPattern.REBREATHING, RebreathingOptions(baseline_fraction=0.2))
        assert gen.generate_waveform(10.0).min() == pytest.approx(7.0)

    @pytest.mark.parametrize(
        "pattern,scale",
        [
            (CapnographyPattern.HYPERVENTILATION, 0.7),
            (CapnographyPattern.HYPOVENTILATION, 1.3),
        ],
    )
    def test_scaled_plateau(self, clean_capnography_params, pattern, scale):
        gen = CapnographyGenerator(clean_capnography_params, seed=0)
        gen.set_pattern(pattern)
        assert gen.generate_waveform(10.0).max() == pytest.approx(35.0 * scale, abs=0.15)

    def test_airway_leak_reduced(self, clean_capnography_params):
        gen = CapnographyGenerator(clean_capnography_params, seed=0)
        gen.set_pattern(CapnographyPattern.AIRWAY_LEAK)
        assert gen.generate_waveform(10.0).max() <= 0.7 * 35.0 + 1e-9

    def test_curare_cleft_dips_plateau(self, clean_capnography_params):
        normal = CapnographyGenerator(clean_capnography_params, seed=0)
        cleft = CapnographyGenerator(clean_capnography_params, seed=0)
        cleft.set_pattern(CapnographyPattern.CURARE_CLEFT)
        _, a, phases = run(normal, 5.0)
        _, b, _ = run(cleft, 5.0)
        plateau = np.array([p is BreathPhase.ALVEOLAR_PLATEAU for p in phases])
        assert (a[plateau] - b[plateau]).max() == pytest.approx(0.15 * 35.0, abs=0.1)

    def test_cardiac_oscillations_ripple(self, clean_capnography_params):
        normal = CapnographyGenerator(clean_capnography_params, seed=0)
        ripple = CapnographyGenerator(clean_capnography_params, seed=0)
        ripple.set_pattern(CapnographyPattern.CARDIAC_OSCILLATIONS)
        _, a, phases = run(normal, 5.0)
        _, b, _ = run(ripple, 5.0)
        plateau = np.array([p is BreathPhase.ALVEOLAR_PLATEAU for p in phases])
        diff = b[plateau] - a[plateau]
        assert np.abs(diff).max() == pytest.approx(0.03 * 35.0, abs=0.05)
        assert np.all(b[~plateau] == a[~plateau])


class TestDisplayValue:
    @pytest.mark.parametrize(
        "pattern,expected",
        [
            (CapnographyPattern.NORMAL, 35.0),
            (CapnographyPattern.HYPERVENTILATION, 24.5),
            (CapnographyPattern.HYPOVENTILATION, 45.5),
            (CapnographyPattern.AIRWAY_LEAK, 24.5),
            (CapnographyPattern.ESOPHAGEAL_INTUBATION, 3.5),
            (CapnographyPattern.CURARE_CLEFT, 35.0),
        ],
    )
    def test_get_etco2(self, pattern, expected):
        gen = CapnographyGenerator(seed=0)
        gen.set_pattern(pattern)
        assert gen.get_etco2() == pytest.approx(expected)


class TestCapnographyCascade:
    def test_cardiac_arrest_clamps_etco2(self, fixed_draws):
        gen = CapnographyGenerator(rng=fixed_draws())
        gen.apply_patient_state(PatientState(cardiac_arrest=True, etco2=35))
        assert gen.pattern is CapnographyPattern.ESOPHAGEAL_INTUBATION
        assert gen.params.etco2 == 10.0
        assert gen.get_etco2() == pytest.approx(1.0)

    def test_arrest_keeps_lower_etco2(self, fixed_draws):
        gen = CapnographyGenerator(rng=fixed_draws())
        gen.apply_patient_state(PatientState(cardiac_arrest=True, etco2=6))
        assert gen.params.etco2 == 6.0

    def test_obstruction_half(self, fixed_draws):
        gen = CapnographyGenerator(rng=fixed_draws())
        gen.apply_patient_state(PatientState(airway_obstruction=0.5))
        assert gen.pattern is CapnographyPattern.OBSTRUCTIVE
        assert gen.options.severity == pytest.approx(0.5)

    def test_hypoventilation(self, fixed_draws):
        gen = CapnographyGenerator(rng=fixed_draws())
        gen.apply_patient_state(PatientState(respiratory_depression=0.5))
        assert gen.pattern is CapnographyPattern.HYPOVENTILATION

    def test_hyperventilation(self, fixed_draws):
        gen = CapnographyGenerator(rng=fixed_draws())
        gen.apply_patient_state(PatientState(rr=30))
        assert gen.pattern is CapnographyPattern.HYPERVENTILATION
        assert gen.params.respiration_rate == 30.0

    def test_normal_copies_vitals(self, fixed_draws):
        gen = CapnographyGenerator(rng=fixed_draws())
        gen.apply_patient_state(PatientState(etco2=40, rr=16))
        assert gen.pattern is CapnographyPattern.NORMAL
        assert gen.params.etco2 == 40.0
        assert gen.params.respiration_rate == 16.0

    @pytest.mark.parametrize("intubated,level", [(True, 0.1), (False, 0.3)])
    def test_noise_by_airway(self, fixed_draws, intubated, level):
        gen = CapnographyGenerator(rng=fixed_draws())
        gen.apply_patient_state(PatientState(intubated=intubated))
        assert gen.params.noise_level == pytest.approx(level)

    def test_low_cardiac_output_penalty(self, fixed_draws):
        gen = CapnographyGenerator(rng=fixed_draws())
        gen.apply_patient_state(PatientState(etco2=35, cardiac_output=2.0))
        assert gen.params.etco2 == pytest.approx(25.0)

    def test_low_cardiac_output_floor(self, fixed_draws):
        gen = CapnographyGenerator(rng=fixed_draws())
        gen.apply_patient_state(PatientState(etco2=35, cardiac_output=0.5))
        assert gen.params.etco2 == pytest.approx(10.0)

    def test_penalty_never_raises(self):
        config = load_selection_rules()["capnography"]["low_cardiac_output"]
        assert low_output_etco2(8.0, 1.0, config) == 8.0
        assert low_output_etco2(35.0, 4.0, config) == 35.0
