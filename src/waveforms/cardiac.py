"""Single-lead ECG generator with rhythm state machines and a clinical cascade."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional

import numpy as np

from src.monitor_system.schemas import PatientState
from src.waveforms.base import GeneratorState, NoOptions, WaveformGenerator, require
from src.waveforms.morphology import (
    FIBRILLATORY_COMPONENTS,
    VF_COMPONENTS,
    asymmetric_wave,
    gaussian_pulse,
    half_sine,
    qrs_deflection,
    sawtooth,
    segment_position,
    sine_mixture,
    wrap_phase,
)
from src.waveforms.noise import artifact_spike, baseline_wander, uniform_noise
from src.waveforms.selection import PatternChoice, SelectionRule, always, weighted_choice

logger = logging.getLogger(__name__)

COMPLEX_FIT = 0.95  # largest share of a beat interval one PQRST(U) may occupy
T_WAVE_PEAK = 0.6
U_WAVE_SCALE = 0.25
PACING_SPIKE_DURATION = 0.01
PVC_COUPLING = 0.60
PAC_COUPLING = 0.70
PAC_PR_SCALE = 0.8
AF_COMPLEX_MARGIN = 0.04
FIBRILLATORY_SCALE = 0.25
FLUTTER_SCALE = 0.6
VF_BASE_FREQUENCY = 4.0
VF_SCALE = 0.8
VF_FINE_FLOOR = 0.2
ARTIFACT_SCALE = 0.5


class Rhythm(Enum):
    """Cardiac rhythms the generator can draw."""

    NORMAL_SINUS = "normal_sinus"
    SINUS_BRADYCARDIA = "sinus_bradycardia"
    SINUS_TACHYCARDIA = "sinus_tachycardia"
    ATRIAL_FIBRILLATION = "atrial_fibrillation"
    ATRIAL_FLUTTER = "atrial_flutter"
    VENTRICULAR_TACHYCARDIA = "ventricular_tachycardia"
    VENTRICULAR_FIBRILLATION = "ventricular_fibrillation"
    ASYSTOLE = "asystole"
    FIRST_DEGREE_BLOCK = "first_degree_block"
    SECOND_DEGREE_TYPE_I = "second_degree_block_type1"
    SECOND_DEGREE_TYPE_II = "second_degree_block_type2"
    THIRD_DEGREE_BLOCK = "third_degree_block"
    PVC = "premature_ventricular_contraction"
    PAC = "premature_atrial_contraction"
    PACED = "paced"


# ============== Rhythm options ==============


@dataclass(frozen=True)
class AtrialFibrillationOptions:
    ventricular_rate: Optional[float] = None  # None follows heart_rate
    rr_variability: float = 0.2

    def __post_init__(self) -> None:
        tag = Rhythm.ATRIAL_FIBRILLATION.value
        require(self.ventricular_rate is None or self.ventricular_rate > 0, tag, "ventricular_rate must be positive")
        require(0.0 <= self.rr_variability < 1.0, tag, "rr_variability must lie in [0, 1)")


@dataclass(frozen=True)
class AtrialFlutterOptions:
    atrial_rate: float = 300.0
    conduction_ratio: int = 2

    def __post_init__(self) -> None:
        tag = Rhythm.ATRIAL_FLUTTER.value
        require(self.atrial_rate > 0, tag, "atrial_rate must be positive")
        require(self.conduction_ratio >= 1, tag, "conduction_ratio must be at least 1")


@dataclass(frozen=True)
class VentricularTachycardiaOptions:
    rate: float = 180.0

    def __post_init__(self) -> None:
        require(self.rate > 0, Rhythm.VENTRICULAR_TACHYCARDIA.value, "rate must be positive")


@dataclass(frozen=True)
class VentricularFibrillationOptions:
    """``progressive`` decays coarse VF to fine VF over ``coarse_to_fine_duration`` seconds."""

    progressive: bool = False
    coarse_to_fine_duration: float = 60.0

    def __post_init__(self) -> None:
        require(
            self.coarse_to_fine_duration > 0,
            Rhythm.VENTRICULAR_FIBRILLATION.value,
            "coarse_to_fine_duration must be positive",
        )


@dataclass(frozen=True)
class FirstDegreeBlockOptions:
    pr_interval: float = 0.22

    def __post_init__(self) -> None:
        require(self.pr_interval > 0, Rhythm.FIRST_DEGREE_BLOCK.value, "pr_interval must be positive")


@dataclass(frozen=True)
class WenckebachOptions:
    """Conducted beats per cycle and the PR prolongation added on each."""

    max_count: int = 3
    pr_increase: float = 0.04

    def __post_init__(self) -> None:
        tag = Rhythm.SECOND_DEGREE_TYPE_I.value
        require(self.max_count >= 1, tag, "max_count must be at least 1")
        require(self.pr_increase > 0, tag, "pr_increase must be positive")


@dataclass(frozen=True)
class MobitzIIOptions:
    """Every ``conduction_ratio``-th P wave is not conducted."""

    conduction_ratio: int = 2

    def __post_init__(self) -> None:
        require(self.conduction_ratio >= 2, Rhythm.SECOND_DEGREE_TYPE_II.value, "conduction_ratio must be at least 2")


@dataclass(frozen=True)
class CompleteBlockOptions:
    atrial_rate: float = 75.0
    ventricular_rate: float = 40.0

    def __post_init__(self) -> None:
        tag = Rhythm.THIRD_DEGREE_BLOCK.value
        require(self.atrial_rate > 0, tag, "atrial_rate must be positive")
        require(self.ventricular_rate > 0, tag, "ventricular_rate must be positive")


@dataclass(frozen=True)
class EctopicOptions:
    """Chance, per sinus beat, of scheduling the next ectopic beat."""

    frequency: float = 0.1

    def __post_init__(self) -> None:
        require(0.0 <= self.frequency <= 1.0, "ectopic", "frequency must lie in [0, 1]")


RHYTHM_OPTIONS: dict[Rhythm, type] = {
    Rhythm.NORMAL_SINUS: NoOptions,
    Rhythm.SINUS_BRADYCARDIA: NoOptions,
    Rhythm.SINUS_TACHYCARDIA: NoOptions,
    Rhythm.ATRIAL_FIBRILLATION: AtrialFibrillationOptions,
    Rhythm.ATRIAL_FLUTTER: AtrialFlutterOptions,
    Rhythm.VENTRICULAR_TACHYCARDIA: VentricularTachycardiaOptions,
    Rhythm.VENTRICULAR_FIBRILLATION: VentricularFibrillationOptions,
    Rhythm.ASYSTOLE: NoOptions,
    Rhythm.FIRST_DEGREE_BLOCK: FirstDegreeBlockOptions,
    Rhythm.SECOND_DEGREE_TYPE_I: WenckebachOptions,
    Rhythm.SECOND_DEGREE_TYPE_II: MobitzIIOptions,
    Rhythm.THIRD_DEGREE_BLOCK: CompleteBlockOptions,
    Rhythm.PVC: EctopicOptions,
    Rhythm.PAC: EctopicOptions,
    Rhythm.PACED: NoOptions,
}


# ============== Parameters and state ==============


@dataclass(frozen=True)
class CardiacParams:
    """ECG generator parameters. Amplitudes in mV, durations in seconds."""

    sample_rate: float = 250.0
    heart_rate: float = 72.0
    p_wave_amplitude: float = 0.25
    qrs_amplitude: float = 1.0
    t_wave_amplitude: float = 0.3
    pr_interval: float = 0.16
    p_duration: float = 0.08
    qrs_duration: float = 0.08
    qt_interval: float = 0.36
    t_duration: float = 0.16
    u_duration: float = 0.12
    q_ratio: float = 0.25
    s_ratio: float = 0.25
    st_elevation: float = 0.0
    u_wave_present: bool = False
    baseline: float = 0.0
    noise_level: float = 0.03
    artifact_probability: float = 0.001
    wander_amplitude: float = 0.0
    wander_frequency: float = 0.25


@dataclass(frozen=True)
class MorphologyOverlay:
    """Electrolyte-driven morphology changes layered over the parameters."""

    p_wave_amplitude: Optional[float] = None
    t_wave_amplitude: Optional[float] = None
    qrs_duration: Optional[float] = None
    qt_interval: Optional[float] = None
    u_wave_present: Optional[bool] = None

    def apply(self, params: CardiacParams) -> CardiacParams:
        changes = {k: v for k, v in dataclasses.asdict(self).items() if v is not None}
        return dataclasses.replace(params, **changes) if changes else params


class BeatKind(Enum):
    SINUS = "sinus"
    NON_CONDUCTED = "non_conducted"
    PREMATURE_VENTRICULAR = "premature_ventricular"
    PREMATURE_ATRIAL = "premature_atrial"
    VENTRICULAR = "ventricular"
    PACED = "paced"
    NO_P_WAVE = "no_p_wave"


@dataclass(frozen=True)
class BeatRecord:
    """One scheduled beat: when it started, what it is and how long it lasts."""

    index: int
    start: float
    kind: BeatKind
    interval: float
    pr_interval: float

    @property
    def conducted(self) -> bool:
        return self.kind is not BeatKind.NON_CONDUCTED


@dataclass
class CardiacState(GeneratorState):
    beat: Optional[BeatRecord] = None
    beat_count: int = 0
    block_step: int = 0


@dataclass(frozen=True)
class ComplexShape:
    """How a beat kind alters the PQRST primitives."""

    p_present: bool = True
    conducted: bool = True
    qrs_scale: float = 1.0
    q_ratio: Optional[float] = None  # None uses params.q_ratio
    s_ratio: Optional[float] = None
    t_inverted: bool = False
    paced: bool = False


BEAT_SHAPES: dict[BeatKind, ComplexShape] = {
    BeatKind.SINUS: ComplexShape(),
    BeatKind.PREMATURE_ATRIAL: ComplexShape(),
    BeatKind.NON_CONDUCTED: ComplexShape(conducted=False),
    BeatKind.PREMATURE_VENTRICULAR: ComplexShape(
        p_present=False, qrs_scale=1.5, q_ratio=0.1, s_ratio=0.5, t_inverted=True
    ),
    BeatKind.VENTRICULAR: ComplexShape(
        p_present=False, qrs_scale=2.0, q_ratio=0.1, s_ratio=0.5, t_inverted=True
    ),
    BeatKind.PACED: ComplexShape(p_present=False, qrs_scale=1.8, q_ratio=0.1, s_ratio=0.5, paced=True),
    BeatKind.NO_P_WAVE: ComplexShape(p_present=False),
}


# ============== Complex synthesis ==============


def complex_value(
    params: CardiacParams,
    shape: ComplexShape,
    since: float,
    interval: float,
    pr_interval: float,
) -> float:
    """Value of one beat's P, QRS, ST, T and U segments *since* seconds after onset.

    The complex is time-compressed when it would not fit inside
    ``COMPLEX_FIT * interval``, so every beat ends on the baseline.
    """
    qrs_onset = pr_interval if shape.p_present else 0.0
    qrs_duration = params.qrs_duration * shape.qrs_scale
    st_duration = max(0.0, params.qt_interval - qrs_duration - params.t_duration)
    st_onset = qrs_onset + qrs_duration
    t_onset = st_onset + st_duration
    u_onset = t_onset + params.t_duration

    end = u_onset + (params.u_duration if params.u_wave_present else 0.0)
    if not shape.conducted:
        end = params.p_duration
    budget = COMPLEX_FIT * interval
    if end > budget:
        since *= end / budget

    value = 0.0
    if shape.p_present:
        u = segment_position(since, 0.0, params.p_duration)
        if u is not None:
            value += gaussian_pulse(u, params.p_wave_amplitude)
    if not shape.conducted:
        return value

    u = segment_position(since, qrs_onset, qrs_duration)
    if u is not None:
        if shape.paced and since - qrs_onset < PACING_SPIKE_DURATION:
            value += 2.0 * params.qrs_amplitude
        else:
            q_ratio = params.q_ratio if shape.q_ratio is None else shape.q_ratio
            s_ratio = params.s_ratio if shape.s_ratio is None else shape.s_ratio
            value += qrs_deflection(u, params.qrs_amplitude, q_ratio, s_ratio)

    if segment_position(since, st_onset, st_duration) is not None:
        value += params.st_elevation

    u = segment_position(since, t_onset, params.t_duration)
    if u is not None:
        amplitude = -params.t_wave_amplitude if shape.t_inverted else params.t_wave_amplitude
        value += asymmetric_wave(u, amplitude, T_WAVE_PEAK)

    if params.u_wave_present:
        u = segment_position(since, u_onset, params.u_duration)
        if u is not None:
            value += half_sine(u, U_WAVE_SCALE * params.t_wave_amplitude)
    return value


# ============== Beat scheduling ==============


def _beat_due(state: CardiacState, t: float) -> Optional[float]:
    """Start time of the next beat if the current one has run out, else None."""
    beat = state.beat
    if beat is None:
        return state.pattern_start
    if t - beat.start < beat.interval:
        return None
    start = beat.start + beat.interval
    # stay on the beat grid unless a whole interval was skipped
    return start if t - start < beat.interval else t


def _start_beat(
    state: CardiacState,
    start: float,
    kind: BeatKind,
    interval: float,
    pr_interval: float,
) -> BeatRecord:
    beat = BeatRecord(
        index=state.beat_count, start=start, kind=kind, interval=interval, pr_interval=pr_interval
    )
    state.beat = beat
    state.beat_count += 1
    state.clock.last_beat = start
    return beat


def _render(params: CardiacParams, state: CardiacState, t: float) -> float:
    beat = state.beat
    since = t - beat.start
    state.phase = wrap_phase(since, beat.interval)
    return complex_value(params, BEAT_SHAPES[beat.kind], since, beat.interval, beat.pr_interval)


# ============== Rhythm samplers ==============
# Each sampler takes (params, options, state, rng, t), may mutate only
# *state* and returns the noiseless sample.


def sample_sinus(params, options, state, rng, t) -> float:
    start = _beat_due(state, t)
    if start is not None:
        _start_beat(state, start, BeatKind.SINUS, 60.0 / params.heart_rate, params.pr_interval)
    return _render(params, state, t)


def sample_first_degree_block(params, options: FirstDegreeBlockOptions, state, rng, t) -> float:
    start = _beat_due(state, t)
    if start is not None:
        _start_beat(state, start, BeatKind.SINUS, 60.0 / params.heart_rate, options.pr_interval)
    return _render(params, state, t)


def sample_paced(params, options, state, rng, t) -> float:
    start = _beat_due(state, t)
    if start is not None:
        _start_beat(state, start, BeatKind.PACED, 60.0 / params.heart_rate, 0.0)
    return _render(params, state, t)


def sample_ventricular_tachycardia(params, options: VentricularTachycardiaOptions, state, rng, t) -> float:
    start = _beat_due(state, t)
    if start is not None:
        _start_beat(state, start, BeatKind.VENTRICULAR, 60.0 / options.rate, 0.0)
    return _render(params, state, t)


def sample_atrial_fibrillation(params, options: AtrialFibrillationOptions, state, rng, t) -> float:
    start = _beat_due(state, t)
    if start is not None:
        rate = options.ventricular_rate or params.heart_rate
        jitter = (2.0 * rng.random() - 1.0) * options.rr_variability
        _start_beat(state, start, BeatKind.NO_P_WAVE, 60.0 / rate * (1.0 + jitter), 0.0)
    value = _render(params, state, t)
    if t - state.beat.start >= params.qt_interval + AF_COMPLEX_MARGIN:
        value += FIBRILLATORY_SCALE * params.p_wave_amplitude * sine_mixture(t, 1.0, FIBRILLATORY_COMPONENTS)
    return value


def sample_atrial_flutter(params, options: AtrialFlutterOptions, state, rng, t) -> float:
    atrial_period = 60.0 / options.atrial_rate
    start = _beat_due(state, t)
    if start is not None:
        _start_beat(state, start, BeatKind.NO_P_WAVE, atrial_period * options.conduction_ratio, 0.0)
    value = _render(params, state, t)
    flutter_phase = wrap_phase(t - state.pattern_start, atrial_period)
    return value + sawtooth(flutter_phase, FLUTTER_SCALE * params.p_wave_amplitude)


def sample_ventricular_fibrillation(params, options: VentricularFibrillationOptions, state, rng, t) -> float:
    local = t - state.pattern_start
    amplitude = VF_SCALE * params.qrs_amplitude
    if options.progressive:
        progress = min(1.0, local / options.coarse_to_fine_duration)
        amplitude *= 1.0 - (1.0 - VF_FINE_FLOOR) * progress
    state.phase = wrap_phase(local, 1.0 / VF_BASE_FREQUENCY)
    return amplitude * sine_mixture(local, VF_BASE_FREQUENCY, VF_COMPONENTS)


def sample_asystole(params, options, state, rng, t) -> float:
    state.phase = wrap_phase(t - state.pattern_start, 60.0 / params.heart_rate)
    return 0.0


def sample_wenckebach(params, options: WenckebachOptions, state, rng, t) -> float:
    start = _beat_due(state, t)
    if start is not None:
        rr = 60.0 / params.heart_rate
        state.block_step += 1
        if state.block_step > options.max_count:
            state.block_step = 0
            _start_beat(state, start, BeatKind.NON_CONDUCTED, rr, params.pr_interval)
        else:
            pr = params.pr_interval + (state.block_step - 1) * options.pr_increase
            _start_beat(state, start, BeatKind.SINUS, rr, pr)
    return _render(params, state, t)


def sample_mobitz_ii(params, options: MobitzIIOptions, state, rng, t) -> float:
    start = _beat_due(state, t)
    if start is not None:
        rr = 60.0 / params.heart_rate
        state.block_step += 1
        if state.block_step >= options.conduction_ratio:
            state.block_step = 0
            _start_beat(state, start, BeatKind.NON_CONDUCTED, rr, params.pr_interval)
        else:
            _start_beat(state, start, BeatKind.SINUS, rr, params.pr_interval)
    return _render(params, state, t)


def sample_complete_block(params, options: CompleteBlockOptions, state, rng, t) -> float:
    # ventricular escape on the beat grid; P waves on their own clock
    start = _beat_due(state, t)
    if start is not None:
        _start_beat(state, start, BeatKind.NO_P_WAVE, 60.0 / options.ventricular_rate, 0.0)
    value = _render(params, state, t)
    atrial_time = (t - state.pattern_start) % (60.0 / options.atrial_rate)
    u = segment_position(atrial_time, 0.0, params.p_duration)
    if u is not None:
        value += gaussian_pulse(u, params.p_wave_amplitude)
    return value


def _sample_ectopic(params, options: EctopicOptions, state, rng, t, kind: BeatKind, coupling: float) -> float:
    clock = state.clock
    rr = 60.0 / params.heart_rate
    if 0.0 <= clock.next_event <= t:
        if kind is BeatKind.PREMATURE_VENTRICULAR:
            # full compensatory pause: next sinus beat lands two cycles after the host beat
            interval = max(state.beat.start + 2.0 * rr - clock.next_event, 0.5 * rr)
            pr = 0.0
        else:
            interval = rr
            pr = params.pr_interval * PAC_PR_SCALE
        _start_beat(state, clock.next_event, kind, interval, pr)
        clock.next_event = -1.0
    else:
        start = _beat_due(state, t)
        if start is not None:
            _start_beat(state, start, BeatKind.SINUS, rr, params.pr_interval)
            if clock.next_event < 0.0 and rng.random() < options.frequency:
                slots_ahead = int(rng.integers(0, 3))
                clock.next_event = start + (slots_ahead + coupling) * rr
    return _render(params, state, t)


def sample_pvc(params, options: EctopicOptions, state, rng, t) -> float:
    return _sample_ectopic(params, options, state, rng, t, BeatKind.PREMATURE_VENTRICULAR, PVC_COUPLING)


def sample_pac(params, options: EctopicOptions, state, rng, t) -> float:
    return _sample_ectopic(params, options, state, rng, t, BeatKind.PREMATURE_ATRIAL, PAC_COUPLING)


RHYTHM_SAMPLERS: dict[Rhythm, Callable[..., float]] = {
    Rhythm.NORMAL_SINUS: sample_sinus,
    Rhythm.SINUS_BRADYCARDIA: sample_sinus,
    Rhythm.SINUS_TACHYCARDIA: sample_sinus,
    Rhythm.ATRIAL_FIBRILLATION: sample_atrial_fibrillation,
    Rhythm.ATRIAL_FLUTTER: sample_atrial_flutter,
    Rhythm.VENTRICULAR_TACHYCARDIA: sample_ventricular_tachycardia,
    Rhythm.VENTRICULAR_FIBRILLATION: sample_ventricular_fibrillation,
    Rhythm.ASYSTOLE: sample_asystole,
    Rhythm.FIRST_DEGREE_BLOCK: sample_first_degree_block,
    Rhythm.SECOND_DEGREE_TYPE_I: sample_wenckebach,
    Rhythm.SECOND_DEGREE_TYPE_II: sample_mobitz_ii,
    Rhythm.THIRD_DEGREE_BLOCK: sample_complete_block,
    Rhythm.PVC: sample_pvc,
    Rhythm.PAC: sample_pac,
    Rhythm.PACED: sample_paced,
}


# ============== Clinical selection ==============


def electrolyte_overlay(state: PatientState, config: Mapping[str, Any]) -> MorphologyOverlay:
    """Morphology changes implied by potassium and calcium levels."""
    changes: dict[str, Any] = {}
    if state.k > config["hyperkalemia_k_above"]:
        changes.update(config["hyperkalemia"])
    elif state.k < config["hypokalemia_k_below"]:
        changes.update(config["hypokalemia"])
    if state.ca < config["hypocalcemia_ca_below"]:
        changes.update(config["hypocalcemia"])
    elif state.ca > config["hypercalcemia_ca_above"]:
        changes.update(config["hypercalcemia"])
    return MorphologyOverlay(**changes)


def build_cardiac_rules(config: Mapping[str, Any]) -> tuple[SelectionRule, ...]:
    """Ordered rhythm cascade built from the ``cardiac`` YAML section."""
    arrest = config["cardiac_arrest"]
    brady = config["bradycardia"]
    tachy = config["tachycardia"]
    hypoxia = config["hypoxia"]
    depression = config["cardiac_depression"]

    def arrest_choice(state: PatientState, rng: np.random.Generator) -> PatternChoice:
        w = arrest["weights"]
        return weighted_choice(rng, [
            (PatternChoice(Rhythm.VENTRICULAR_FIBRILLATION, VentricularFibrillationOptions()),
             w["ventricular_fibrillation"]),
            (PatternChoice(Rhythm.ASYSTOLE, NoOptions()), w["asystole"]),
            (PatternChoice(Rhythm.VENTRICULAR_TACHYCARDIA, VentricularTachycardiaOptions()),
             w["ventricular_tachycardia"]),
        ])

    def brady_choice(state: PatientState, rng: np.random.Generator) -> PatternChoice:
        w = brady["weights"]
        escape_rate = state.hr if state.hr > 0 else CompleteBlockOptions.ventricular_rate
        return weighted_choice(rng, [
            (PatternChoice(Rhythm.SINUS_BRADYCARDIA, NoOptions()), w["sinus_bradycardia"]),
            (PatternChoice(Rhythm.FIRST_DEGREE_BLOCK,
                           FirstDegreeBlockOptions(pr_interval=brady["first_degree_pr_interval"])),
             w["first_degree_block"]),
            (PatternChoice(Rhythm.SECOND_DEGREE_TYPE_I, WenckebachOptions()), w["second_degree_block_type1"]),
            (PatternChoice(Rhythm.THIRD_DEGREE_BLOCK,
                           CompleteBlockOptions(atrial_rate=brady["complete_block_atrial_rate"],
                                                ventricular_rate=escape_rate)),
             w["third_degree_block"]),
        ])

    def tachy_choice(state: PatientState, rng: np.random.Generator) -> PatternChoice:
        w = tachy["weights"]
        return weighted_choice(rng, [
            (PatternChoice(Rhythm.SINUS_TACHYCARDIA, NoOptions()), w["sinus_tachycardia"]),
            (PatternChoice(Rhythm.ATRIAL_FIBRILLATION, AtrialFibrillationOptions(ventricular_rate=state.hr)),
             w["atrial_fibrillation"]),
            (PatternChoice(Rhythm.VENTRICULAR_TACHYCARDIA, VentricularTachycardiaOptions(rate=state.hr)),
             w["ventricular_tachycardia"]),
        ])

    def hypoxia_choice(state: PatientState, rng: np.random.Generator) -> PatternChoice:
        w = hypoxia["weights"]
        af_rate = state.hr if state.hr > 0 else None
        return weighted_choice(rng, [
            (PatternChoice(Rhythm.PVC, EctopicOptions(frequency=hypoxia["pvc_frequency"])),
             w["premature_ventricular_contraction"]),
            (PatternChoice(Rhythm.ATRIAL_FIBRILLATION, AtrialFibrillationOptions(ventricular_rate=af_rate)),
             w["atrial_fibrillation"]),
            (PatternChoice(Rhythm.NORMAL_SINUS, NoOptions()), w["normal_sinus"]),
        ])

    def depression_choice(state: PatientState, rng: np.random.Generator) -> PatternChoice:
        frequency = state.cardiac_depression * depression["pvc_frequency_scale"]
        return PatternChoice(Rhythm.PVC, EctopicOptions(frequency=frequency))

    return (
        SelectionRule("cardiac_arrest", lambda s: s.cardiac_arrest, arrest_choice),
        SelectionRule("bradycardia", lambda s: s.hr < brady["hr_below"], brady_choice),
        SelectionRule("tachycardia", lambda s: s.hr > tachy["hr_above"], tachy_choice),
        SelectionRule(
            "hypoxia",
            lambda s: s.hypoxia > hypoxia["hypoxia_above"] or s.spo2 < hypoxia["spo2_below"],
            hypoxia_choice,
        ),
        SelectionRule(
            "cardiac_depression",
            lambda s: s.cardiac_depression > depression["depression_above"],
            depression_choice,
        ),
        SelectionRule("normal_sinus", always, lambda s, rng: PatternChoice(Rhythm.NORMAL_SINUS, NoOptions())),
    )


# ============== Generator ==============


class CardiacSignalGenerator(WaveformGenerator):
    """Streams single-lead ECG samples in mV.

    Electrolyte overlays from :meth:`apply_patient_state` are held apart
    from the configured parameters and layered on top of them while
    sampling, so clearing the electrolyte disturbance restores the
    configured morphology.

    Args:
        params: initial :class:`CardiacParams`.
        seed: seed for the generator's own random source.
        rng: pre-built random source; takes precedence over *seed*.
        rules_path: alternative selection thresholds YAML.
    """

    signal_name = "cardiac"
    params_type = CardiacParams
    state_type = CardiacState
    pattern_type = Rhythm
    options_types = RHYTHM_OPTIONS
    baseline_pattern = Rhythm.NORMAL_SINUS
    rules_section = "cardiac"
    rate_field = "heart_rate"
    positive_fields = ("pr_interval", "p_duration", "qrs_duration", "qt_interval", "t_duration", "u_duration")
    non_negative_fields = ("noise_level", "artifact_probability", "wander_amplitude", "wander_frequency")

    def __init__(
        self,
        params: CardiacParams | None = None,
        *,
        seed: int | None = None,
        rng: np.random.Generator | None = None,
        rules_path: str | None = None,
    ) -> None:
        self.overlay = MorphologyOverlay()
        self._effective: Optional[CardiacParams] = None
        self._electrolytes: Mapping[str, Any] = {}
        super().__init__(params, seed=seed, rng=rng, rules_path=rules_path)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def rhythm(self) -> Rhythm:
        return self.pattern

    def set_rhythm(self, rhythm: Rhythm | str, options: Any = None) -> bool:
        """Alias of :meth:`set_pattern`."""
        return self.set_pattern(rhythm, options)

    @property
    def effective_params(self) -> CardiacParams:
        """Configured parameters with the electrolyte overlay applied."""
        if self._effective is None:
            self._effective = self.overlay.apply(self.params)
        return self._effective

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _build_rules(self, config: Mapping[str, Any]) -> tuple[SelectionRule, ...]:
        self._electrolytes = config["electrolytes"]
        return build_cardiac_rules(config)

    def _apply_vitals(self, state: PatientState) -> None:
        self._set_rate_from_vital(state.hr)
        overlay = electrolyte_overlay(state, self._electrolytes)
        if overlay != self.overlay:
            logger.debug("Electrolyte overlay K=%s Ca=%s -> %s", state.k, state.ca, overlay)
        self.overlay = overlay
        self._effective = None

    def _on_params_changed(self) -> None:
        self._effective = None

    def _sample(self, t: float) -> float:
        params = self.effective_params
        value = RHYTHM_SAMPLERS[self.pattern](params, self.options, self.state, self._rng, t)
        value += params.baseline + uniform_noise(self._rng, params.noise_level)
        if self.pattern is not Rhythm.ASYSTOLE:
            value += baseline_wander(t, params.wander_amplitude, params.wander_frequency)
            value += artifact_spike(self._rng, params.artifact_probability, ARTIFACT_SCALE * params.qrs_amplitude)
        return value
