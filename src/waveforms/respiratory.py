"""Respiratory effort generator covering normal and pathological breathing."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional

import numpy as np

from src.monitor_system.schemas import COMATOSE, PatientState
from src.waveforms.base import GeneratorState, NoOptions, WaveformGenerator, require
from src.waveforms.morphology import exponential_decay, quarter_fall, quarter_rise, safe_fraction, wrap_phase
from src.waveforms.noise import uniform_noise
from src.waveforms.selection import PatternChoice, SelectionRule, always, weighted_choice

NOISE_SCALE = 0.1
AGONAL_GAIN = 1.5
AGONAL_INTERVAL_RANGE = (20.0, 60.0)
ATAXIC_APNEA_CHANCE = 0.25  # per cycle, scaled by severity
ATAXIC_APNEA_RANGE = (5.0, 15.0)
ASSISTED_GAIN = 1.2
VOLUME_SQUARE_FACTOR = 0.3
ASYNC_RATE_SCALE = 0.8
ASYNC_GAIN = 0.4


class BreathingPattern(Enum):
    """Breathing patterns the generator can draw."""

    NORMAL = "normal"
    APNEA = "apnea"
    BRADYPNEA = "bradypnea"
    TACHYPNEA = "tachypnea"
    CHEYNE_STOKES = "cheyne_stokes"
    KUSSMAUL = "kussmaul"
    BIOT = "biot"
    OBSTRUCTIVE = "obstructive"
    AGONAL = "agonal"
    PARADOXICAL = "paradoxical"
    ATAXIC = "ataxic"
    ASSISTED_VENTILATION = "assisted_ventilation"


# ============== Pattern options ==============


@dataclass(frozen=True)
class BradypneaOptions:
    rate: float = 8.0

    def __post_init__(self) -> None:
        require(self.rate > 0, BreathingPattern.BRADYPNEA.value, "rate must be positive")


@dataclass(frozen=True)
class TachypneaOptions:
    rate: float = 28.0
    depth_factor: float = 0.7

    def __post_init__(self) -> None:
        tag = BreathingPattern.TACHYPNEA.value
        require(self.rate > 0, tag, "rate must be positive")
        require(self.depth_factor > 0, tag, "depth_factor must be positive")


@dataclass(frozen=True)
class CheyneStokesOptions:
    """Waxing/waning breathing for ``crescendo_duration`` then apnea."""

    crescendo_duration: float = 60.0
    apnea_duration: float = 20.0

    def __post_init__(self) -> None:
        tag = BreathingPattern.CHEYNE_STOKES.value
        require(self.crescendo_duration > 0, tag, "crescendo_duration must be positive")
        require(self.apnea_duration >= 0, tag, "apnea_duration must be non-negative")


@dataclass(frozen=True)
class KussmaulOptions:
    depth: float = 1.5
    rate: float = 20.0
    ie_ratio: float = 0.9

    def __post_init__(self) -> None:
        tag = BreathingPattern.KUSSMAUL.value
        require(self.depth > 0, tag, "depth must be positive")
        require(self.rate > 0, tag, "rate must be positive")
        require(self.ie_ratio > 0, tag, "ie_ratio must be positive")


@dataclass(frozen=True)
class BiotOptions:
    breath_count: int = 4
    apnea_duration: float = 15.0

    def __post_init__(self) -> None:
        tag = BreathingPattern.BIOT.value
        require(self.breath_count >= 1, tag, "breath_count must be at least 1")
        require(self.apnea_duration >= 0, tag, "apnea_duration must be non-negative")


@dataclass(frozen=True)
class SeverityOptions:
    severity: float = 0.5

    def __post_init__(self) -> None:
        require(0.0 <= self.severity <= 1.0, "severity", "severity must lie in [0, 1]")


@dataclass(frozen=True)
class AtaxicOptions:
    severity: float = 0.7

    def __post_init__(self) -> None:
        require(0.0 <= self.severity <= 1.0, BreathingPattern.ATAXIC.value, "severity must lie in [0, 1]")


@dataclass(frozen=True)
class AgonalOptions:
    """Isolated gasps; ``interval`` None draws 20-60 s between gasps."""

    interval: Optional[float] = None
    breath_duration: float = 2.0

    def __post_init__(self) -> None:
        tag = BreathingPattern.AGONAL.value
        require(0.0 < self.breath_duration <= 2.0, tag, "breath_duration must lie in (0, 2]")
        require(
            self.interval is None or self.interval >= self.breath_duration,
            tag,
            "interval must not be shorter than breath_duration",
        )


@dataclass(frozen=True)
class AssistedVentilationOptions:
    ventilator_mode: str = "volume"
    rate: Optional[float] = None  # None follows respiration_rate
    ie_ratio: float = 0.5
    patient_trigger: bool = False
    async_probability: float = 0.0

    def __post_init__(self) -> None:
        tag = BreathingPattern.ASSISTED_VENTILATION.value
        require(self.rate is None or self.rate > 0, tag, "rate must be positive")
        require(self.ie_ratio > 0, tag, "ie_ratio must be positive")
        require(0.0 <= self.async_probability <= 1.0, tag, "async_probability must lie in [0, 1]")


PATTERN_OPTIONS: dict[BreathingPattern, type] = {
    BreathingPattern.NORMAL: NoOptions,
    BreathingPattern.APNEA: NoOptions,
    BreathingPattern.BRADYPNEA: BradypneaOptions,
    BreathingPattern.TACHYPNEA: TachypneaOptions,
    BreathingPattern.CHEYNE_STOKES: CheyneStokesOptions,
    BreathingPattern.KUSSMAUL: KussmaulOptions,
    BreathingPattern.BIOT: BiotOptions,
    BreathingPattern.OBSTRUCTIVE: SeverityOptions,
    BreathingPattern.AGONAL: AgonalOptions,
    BreathingPattern.PARADOXICAL: SeverityOptions,
    BreathingPattern.ATAXIC: AtaxicOptions,
    BreathingPattern.ASSISTED_VENTILATION: AssistedVentilationOptions,
}


# ============== Parameters and state ==============


@dataclass(frozen=True)
class RespiratoryParams:
    """Breathing-effort parameters.

    ``ie_ratio`` is inspiration time over expiration time; the default
    gives a 0.4:0.6 split of each cycle.
    """

    sample_rate: float = 100.0
    respiration_rate: float = 14.0
    ie_ratio: float = 2.0 / 3.0
    amplitude: float = 1.0
    baseline: float = 0.0
    noise_level: float = 0.05


@dataclass
class RespiratoryState(GeneratorState):
    cycle_start: float = 0.0
    cycle_rate: float = 0.0
    cycle_amplitude: float = 0.0
    apnea_until: float = -1.0
    cycle_index: int = -1
    async_active: bool = False


# ============== Shapes ==============


def breath_shape(phase: float, ie_ratio: float) -> float:
    """Unit breath: quarter-sine inspiration then quarter-cosine expiration."""
    inspiration = ie_ratio / (1.0 + ie_ratio)
    if phase < inspiration:
        return quarter_rise(safe_fraction(phase, 0.0, inspiration))
    return quarter_fall(safe_fraction(phase, inspiration, 1.0))


def _breath(state: RespiratoryState, time: float, rate: float, ie_ratio: float) -> float:
    phase = wrap_phase(time, 60.0 / rate)
    state.phase = phase
    return breath_shape(phase, ie_ratio)


def _hold(params: RespiratoryParams, state: RespiratoryState, time: float, period: float) -> float:
    state.phase = wrap_phase(time, period)
    return params.baseline


# ============== Pattern samplers ==============
# Same contract as the cardiac samplers: (params, options, state, rng, t).


def sample_normal(params, options, state, rng, t) -> float:
    local = t - state.pattern_start
    return params.baseline + params.amplitude * _breath(state, local, params.respiration_rate, params.ie_ratio)


def sample_apnea(params, options, state, rng, t) -> float:
    return _hold(params, state, t - state.pattern_start, 60.0 / params.respiration_rate)


def sample_bradypnea(params, options: BradypneaOptions, state, rng, t) -> float:
    local = t - state.pattern_start
    return params.baseline + params.amplitude * _breath(state, local, options.rate, params.ie_ratio)


def sample_tachypnea(params, options: TachypneaOptions, state, rng, t) -> float:
    local = t - state.pattern_start
    amplitude = params.amplitude * options.depth_factor
    return params.baseline + amplitude * _breath(state, local, options.rate, params.ie_ratio)


def sample_cheyne_stokes(params, options: CheyneStokesOptions, state, rng, t) -> float:
    crescendo = options.crescendo_duration
    position = (t - state.pattern_start) % (crescendo + options.apnea_duration)
    if position >= crescendo:
        return _hold(params, state, position - crescendo, options.apnea_duration)
    envelope = 1.0 - abs(2.0 * position / crescendo - 1.0)
    breath = _breath(state, position, params.respiration_rate, params.ie_ratio)
    return params.baseline + envelope * params.amplitude * breath


def sample_kussmaul(params, options: KussmaulOptions, state, rng, t) -> float:
    local = t - state.pattern_start
    amplitude = params.amplitude * options.depth
    return params.baseline + amplitude * _breath(state, local, options.rate, options.ie_ratio)


def sample_biot(params, options: BiotOptions, state, rng, t) -> float:
    breathing = options.breath_count * 60.0 / params.respiration_rate
    position = (t - state.pattern_start) % (breathing + options.apnea_duration)
    if position >= breathing:
        return _hold(params, state, position - breathing, options.apnea_duration)
    return params.baseline + params.amplitude * _breath(state, position, params.respiration_rate, params.ie_ratio)


def sample_obstructive(params, options: SeverityOptions, state, rng, t) -> float:
    severity = options.severity
    ie_ratio = params.ie_ratio / (1.0 + severity)
    phase = wrap_phase(t - state.pattern_start, 60.0 / params.respiration_rate)
    state.phase = phase
    inspiration = ie_ratio / (1.0 + ie_ratio)
    peak = params.amplitude * (1.0 - 0.5 * severity)
    if phase < inspiration:
        return params.baseline + peak * quarter_rise(safe_fraction(phase, 0.0, inspiration))
    u = safe_fraction(phase, inspiration, 1.0)
    return params.baseline + peak * exponential_decay(u, 2.0 * (1.0 + severity))


def _agonal_interval(options: AgonalOptions, rng: np.random.Generator) -> float:
    if options.interval is not None:
        return options.interval
    return float(rng.uniform(*AGONAL_INTERVAL_RANGE))


def sample_agonal(params, options: AgonalOptions, state, rng, t) -> float:
    clock = state.clock
    if clock.next_event < 0.0:
        # first gasp fires as the pattern starts
        clock.last_beat = state.pattern_start
        clock.next_event = state.pattern_start + _agonal_interval(options, rng)
    if t >= clock.next_event:
        clock.last_beat = clock.next_event
        clock.next_event = clock.last_beat + _agonal_interval(options, rng)
    since = t - clock.last_beat
    state.phase = wrap_phase(since, clock.next_event - clock.last_beat)
    if since >= options.breath_duration:
        return params.baseline
    p = since / options.breath_duration
    gasp = float(np.sin(np.pi * p)) * (1.0 + 0.3 * float(np.sin(3.0 * np.pi * p)))
    return params.baseline + AGONAL_GAIN * params.amplitude * gasp


def sample_paradoxical(params, options: SeverityOptions, state, rng, t) -> float:
    local = t - state.pattern_start
    gain = 0.5 + 0.3 * options.severity
    return params.baseline - gain * params.amplitude * _breath(state, local, params.respiration_rate, params.ie_ratio)


def sample_ataxic(params, options: AtaxicOptions, state, rng, t) -> float:
    if t < state.apnea_until:
        return _hold(params, state, t - state.cycle_start, state.apnea_until - state.cycle_start)
    if state.cycle_rate <= 0.0 or t - state.cycle_start >= 60.0 / state.cycle_rate:
        state.cycle_start = t
        if rng.random() < ATAXIC_APNEA_CHANCE * options.severity:
            state.apnea_until = t + float(rng.uniform(*ATAXIC_APNEA_RANGE))
            state.cycle_rate = 0.0
            state.phase = 0.0
            return params.baseline
        state.cycle_rate = params.respiration_rate * (1.0 + (rng.random() - 0.5) * options.severity)
        state.cycle_amplitude = params.amplitude * (1.0 + (rng.random() - 0.5) * options.severity)
    breath = _breath(state, t - state.cycle_start, state.cycle_rate, params.ie_ratio)
    return params.baseline + state.cycle_amplitude * breath


def sample_assisted(params, options: AssistedVentilationOptions, state, rng, t) -> float:
    rate = options.rate or params.respiration_rate
    amplitude = params.amplitude * ASSISTED_GAIN
    local = t - state.pattern_start
    cycle = 60.0 / rate
    index = int(local // cycle)
    if index != state.cycle_index:
        state.cycle_index = index
        state.async_active = options.patient_trigger and rng.random() < options.async_probability

    phase = wrap_phase(local, cycle)
    state.phase = phase
    inspiration = options.ie_ratio / (1.0 + options.ie_ratio)
    if phase < inspiration:
        u = safe_fraction(phase, 0.0, inspiration)
        shape = quarter_rise(u)
        if options.ventilator_mode == "volume":
            shape = (1.0 - VOLUME_SQUARE_FACTOR) * shape + VOLUME_SQUARE_FACTOR * (1.0 if u > 0.1 else 0.0)
    else:
        shape = quarter_fall(safe_fraction(phase, inspiration, 1.0))

    value = amplitude * shape
    if state.async_active:
        effort_period = 60.0 / (rate * ASYNC_RATE_SCALE)
        value += ASYNC_GAIN * amplitude * float(np.sin(2.0 * np.pi * local / effort_period))
    return params.baseline + value


PATTERN_SAMPLERS: dict[BreathingPattern, Callable[..., float]] = {
    BreathingPattern.NORMAL: sample_normal,
    BreathingPattern.APNEA: sample_apnea,
    BreathingPattern.BRADYPNEA: sample_bradypnea,
    BreathingPattern.TACHYPNEA: sample_tachypnea,
    BreathingPattern.CHEYNE_STOKES: sample_cheyne_stokes,
    BreathingPattern.KUSSMAUL: sample_kussmaul,
    BreathingPattern.BIOT: sample_biot,
    BreathingPattern.OBSTRUCTIVE: sample_obstructive,
    BreathingPattern.AGONAL: sample_agonal,
    BreathingPattern.PARADOXICAL: sample_paradoxical,
    BreathingPattern.ATAXIC: sample_ataxic,
    BreathingPattern.ASSISTED_VENTILATION: sample_assisted,
}


# ============== Clinical selection ==============


def build_respiratory_rules(config: Mapping[str, Any]) -> tuple[SelectionRule, ...]:
    """Ordered breathing-pattern cascade built from the ``respiratory`` YAML section."""
    vent = config["assisted_ventilation"]
    arrest = config["cardiac_arrest"]
    ataxic = config["ataxic"]
    kussmaul = config["kussmaul"]
    cheyne = config["cheyne_stokes"]
    biot = config["biot"]
    tachy = config["tachypnea"]
    brady = config["bradypnea"]

    def ventilated_choice(s: PatientState, rng: np.random.Generator) -> PatternChoice:
        return PatternChoice(
            BreathingPattern.ASSISTED_VENTILATION,
            AssistedVentilationOptions(
                ventilator_mode=s.ventilator_mode,
                patient_trigger=s.respiratory_depression < vent["patient_trigger_depression_below"],
                async_probability=min(
                    vent["async_probability_max"], s.respiratory_distress * vent["async_distress_scale"]
                ),
            ),
        )

    def arrest_choice(s: PatientState, rng: np.random.Generator) -> PatternChoice:
        if s.cpr_in_progress:
            return PatternChoice(
                BreathingPattern.ASSISTED_VENTILATION,
                AssistedVentilationOptions(
                    ventilator_mode=arrest["cpr_ventilator_mode"], rate=float(arrest["cpr_rate"])
                ),
            )
        w = arrest["weights"]
        return weighted_choice(rng, [
            (PatternChoice(BreathingPattern.APNEA, NoOptions()), w["apnea"]),
            (PatternChoice(BreathingPattern.AGONAL, AgonalOptions()), w["agonal"]),
        ])

    def ataxic_choice(s: PatientState, rng: np.random.Generator) -> PatternChoice:
        severity = s.head_injury if s.head_injury > 0 else ataxic["default_severity"]
        return PatternChoice(BreathingPattern.ATAXIC, AtaxicOptions(severity=severity))

    def kussmaul_choice(s: PatientState, rng: np.random.Generator) -> PatternChoice:
        depth = kussmaul["base_depth"] + kussmaul["depth_scale"] * s.metabolic_acidosis
        return PatternChoice(BreathingPattern.KUSSMAUL, KussmaulOptions(depth=depth))

    def cheyne_choice(s: PatientState, rng: np.random.Generator) -> PatternChoice:
        return PatternChoice(
            BreathingPattern.CHEYNE_STOKES,
            CheyneStokesOptions(
                crescendo_duration=float(cheyne["crescendo_duration"]),
                apnea_duration=cheyne["apnea_base"] + cheyne["apnea_scale"] * s.head_injury,
            ),
        )

    def biot_choice(s: PatientState, rng: np.random.Generator) -> PatternChoice:
        return PatternChoice(
            BreathingPattern.BIOT,
            BiotOptions(
                breath_count=int(rng.integers(biot["min_breaths"], biot["max_breaths"] + 1)),
                apnea_duration=biot["apnea_base"] + biot["apnea_scale"] * s.head_injury,
            ),
        )

    def tachypnea_choice(s: PatientState, rng: np.random.Generator) -> PatternChoice:
        rate = min(tachy["max_rate"], s.rr + tachy["rate_increment"] + tachy["distress_scale"] * s.respiratory_distress)
        return PatternChoice(BreathingPattern.TACHYPNEA, TachypneaOptions(rate=rate))

    def bradypnea_choice(s: PatientState, rng: np.random.Generator) -> PatternChoice:
        rate = max(brady["min_rate"], s.rr - brady["rate_decrement"] - brady["depression_scale"] * s.respiratory_depression)
        return PatternChoice(BreathingPattern.BRADYPNEA, BradypneaOptions(rate=rate))

    return (
        SelectionRule("assisted_ventilation", lambda s: s.ventilated, ventilated_choice),
        SelectionRule("cardiac_arrest", lambda s: s.cardiac_arrest, arrest_choice),
        SelectionRule(
            "apnea",
            lambda s: s.respiratory_depression > config["apnea"]["depression_above"],
            lambda s, rng: PatternChoice(BreathingPattern.APNEA, NoOptions()),
        ),
        SelectionRule(
            "ataxic",
            lambda s: s.head_injury > ataxic["head_injury_above"] or s.neuro_status == COMATOSE,
            ataxic_choice,
        ),
        SelectionRule("kussmaul", lambda s: s.metabolic_acidosis > kussmaul["acidosis_above"], kussmaul_choice),
        SelectionRule(
            "cheyne_stokes",
            lambda s: cheyne["head_injury_above"] < s.head_injury < cheyne["head_injury_below"],
            cheyne_choice,
        ),
        SelectionRule(
            "biot",
            lambda s: biot["head_injury_above"] < s.head_injury < biot["head_injury_below"],
            biot_choice,
        ),
        SelectionRule(
            "obstructive",
            lambda s: s.airway_obstruction > config["obstructive"]["obstruction_above"],
            lambda s, rng: PatternChoice(BreathingPattern.OBSTRUCTIVE, SeverityOptions(severity=s.airway_obstruction)),
        ),
        SelectionRule(
            "paradoxical",
            lambda s: s.respiratory_muscle_weakness > config["paradoxical"]["weakness_above"],
            lambda s, rng: PatternChoice(
                BreathingPattern.PARADOXICAL, SeverityOptions(severity=s.respiratory_muscle_weakness)
            ),
        ),
        SelectionRule(
            "tachypnea",
            lambda s: (
                s.respiratory_distress > tachy["distress_above"]
                or s.hypoxia > tachy["hypoxia_above"]
                or s.spo2 < tachy["spo2_below"]
            ),
            tachypnea_choice,
        ),
        SelectionRule(
            "bradypnea",
            lambda s: brady["depression_above"] < s.respiratory_depression < brady["depression_below"],
            bradypnea_choice,
        ),
        SelectionRule("normal", always, lambda s, rng: PatternChoice(BreathingPattern.NORMAL, NoOptions())),
    )


# ============== Generator ==============


class RespiratoryEffortGenerator(WaveformGenerator):
    """Streams a normalised breathing-effort signal.

    Args:
        params: initial :class:`RespiratoryParams`.
        seed: seed for the generator's own random source.
        rng: pre-built random source; takes precedence over *seed*.
        rules_path: alternative selection thresholds YAML.
    """

    signal_name = "respiratory"
    params_type = RespiratoryParams
    state_type = RespiratoryState
    pattern_type = BreathingPattern
    options_types = PATTERN_OPTIONS
    baseline_pattern = BreathingPattern.NORMAL
    rules_section = "respiratory"
    rate_field = "respiration_rate"
    positive_fields = ("ie_ratio", "amplitude")
    non_negative_fields = ("noise_level",)

    def noise_band(self) -> float:
        """Largest absolute noise added to any sample."""
        return self.params.noise_level * self.params.amplitude * NOISE_SCALE

    def _build_rules(self, config: Mapping[str, Any]) -> tuple[SelectionRule, ...]:
        return build_respiratory_rules(config)

    def _apply_vitals(self, state: PatientState) -> None:
        self._set_rate_from_vital(state.rr)

    def _sample(self, t: float) -> float:
        value = PATTERN_SAMPLERS[self.pattern](self.params, self.options, self.state, self._rng, t)
        return value + uniform_noise(self._rng, self.noise_band())
