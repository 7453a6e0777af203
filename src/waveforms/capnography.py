"""Capnography generator: exhaled CO2 with a four-phase breath state machine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

import numpy as np

from src.monitor_system.schemas import PatientState
from src.waveforms.base import GeneratorState, NoOptions, WaveformGenerator, require
from src.waveforms.morphology import safe_fraction, wrap_phase
from src.waveforms.noise import uniform_noise
from src.waveforms.selection import PatternChoice, SelectionRule, always

logger = logging.getLogger(__name__)

EXPIRATION_START_SHARE = 0.1
PLATEAU_SHARE = 0.7
EXPIRATION_END_SHARE = 0.2
NOISE_SCALE = 0.1
HYPOVENTILATION_SCALE = 1.3
HYPERVENTILATION_SCALE = 0.7
LEAK_SCALE = 0.7
LEAK_NOISE_SCALE = 1.5
ESOPHAGEAL_DISPLAY_SCALE = 0.1
CLEFT_WINDOW = (0.3, 0.7)


class CapnographyPattern(Enum):
    """Capnogram shapes the generator can draw."""

    NORMAL = "normal"
    OBSTRUCTIVE = "obstructive"
    REBREATHING = "rebreathing"
    HYPOVENTILATION = "hypoventilation"
    HYPERVENTILATION = "hyperventilation"
    AIRWAY_LEAK = "airway_leak"
    ESOPHAGEAL_INTUBATION = "esophageal_intubation"
    CARDIAC_OSCILLATIONS = "cardiac_oscillations"
    CURARE_CLEFT = "curare_cleft"


class BreathPhase(Enum):
    INSPIRATION = "inspiration"
    EXPIRATION_START = "expiration_start"
    ALVEOLAR_PLATEAU = "alveolar_plateau"
    EXPIRATION_END = "expiration_end"


# ============== Pattern options ==============


@dataclass(frozen=True)
class ObstructionOptions:
    severity: float = 0.5

    def __post_init__(self) -> None:
        require(0.0 <= self.severity <= 1.0, CapnographyPattern.OBSTRUCTIVE.value, "severity must lie in [0, 1]")


@dataclass(frozen=True)
class RebreathingOptions:
    """Inspired CO2 as a fraction of ETCO2."""

    baseline_fraction: float = 0.2

    def __post_init__(self) -> None:
        require(
            0.0 <= self.baseline_fraction < 0.9,
            CapnographyPattern.REBREATHING.value,
            "baseline_fraction must lie in [0, 0.9)",
        )


@dataclass(frozen=True)
class EsophagealOptions:
    """Gastric CO2 washout: one spike per expiration, fading after a few breaths."""

    spike_breaths: int = 3
    spike_fraction: float = 0.15  # of ETCO2
    spike_decay: float = 0.5

    def __post_init__(self) -> None:
        tag = CapnographyPattern.ESOPHAGEAL_INTUBATION.value
        require(self.spike_breaths >= 0, tag, "spike_breaths must be non-negative")
        require(0.0 <= self.spike_fraction <= 1.0, tag, "spike_fraction must lie in [0, 1]")
        require(0.0 < self.spike_decay <= 1.0, tag, "spike_decay must lie in (0, 1]")


@dataclass(frozen=True)
class CardiacOscillationOptions:
    heart_rate: float = 80.0
    amplitude_fraction: float = 0.03

    def __post_init__(self) -> None:
        tag = CapnographyPattern.CARDIAC_OSCILLATIONS.value
        require(self.heart_rate > 0, tag, "heart_rate must be positive")
        require(self.amplitude_fraction >= 0, tag, "amplitude_fraction must be non-negative")


@dataclass(frozen=True)
class CurareCleftOptions:
    depth_fraction: float = 0.15

    def __post_init__(self) -> None:
        require(
            0.0 <= self.depth_fraction < 1.0,
            CapnographyPattern.CURARE_CLEFT.value,
            "depth_fraction must lie in [0, 1)",
        )


PATTERN_OPTIONS: dict[CapnographyPattern, type] = {
    CapnographyPattern.NORMAL: NoOptions,
    CapnographyPattern.OBSTRUCTIVE: ObstructionOptions,
    CapnographyPattern.REBREATHING: RebreathingOptions,
    CapnographyPattern.HYPOVENTILATION: NoOptions,
    CapnographyPattern.HYPERVENTILATION: NoOptions,
    CapnographyPattern.AIRWAY_LEAK: NoOptions,
    CapnographyPattern.ESOPHAGEAL_INTUBATION: EsophagealOptions,
    CapnographyPattern.CARDIAC_OSCILLATIONS: CardiacOscillationOptions,
    CapnographyPattern.CURARE_CLEFT: CurareCleftOptions,
}

# Multipliers from configured to displayed end-tidal CO2.
ETCO2_DISPLAY_SCALE: dict[CapnographyPattern, float] = {
    CapnographyPattern.HYPERVENTILATION: HYPERVENTILATION_SCALE,
    CapnographyPattern.HYPOVENTILATION: HYPOVENTILATION_SCALE,
    CapnographyPattern.AIRWAY_LEAK: LEAK_SCALE,
    CapnographyPattern.ESOPHAGEAL_INTUBATION: ESOPHAGEAL_DISPLAY_SCALE,
}


# ============== Parameters and state ==============


@dataclass(frozen=True)
class CapnographyParams:
    """Capnography parameters; CO2 values in mmHg."""

    sample_rate: float = 100.0
    respiration_rate: float = 12.0
    etco2: float = 35.0
    ie_ratio: float = 0.5
    baseline: float = 0.0
    noise_level: float = 0.2


@dataclass(frozen=True)
class BreathTiming:
    """Durations (s) of one breath and its four phases."""

    cycle: float
    inspiration: float
    expiration_start: float
    plateau: float
    expiration_end: float

    @classmethod
    def from_params(cls, params: CapnographyParams) -> BreathTiming:
        cycle = 60.0 / params.respiration_rate
        expiration = cycle / (1.0 + params.ie_ratio)
        return cls(
            cycle=cycle,
            inspiration=cycle - expiration,
            expiration_start=expiration * EXPIRATION_START_SHARE,
            plateau=expiration * PLATEAU_SHARE,
            expiration_end=expiration * EXPIRATION_END_SHARE,
        )

    def locate(self, position: float) -> tuple[BreathPhase, float]:
        """Phase containing *position* (s into the cycle) and the normalised time within it."""
        boundary = self.inspiration
        if position < boundary:
            return BreathPhase.INSPIRATION, safe_fraction(position, 0.0, boundary)
        start = boundary
        boundary += self.expiration_start
        if position < boundary:
            return BreathPhase.EXPIRATION_START, safe_fraction(position, start, boundary)
        start = boundary
        boundary += self.plateau
        if position < boundary:
            return BreathPhase.ALVEOLAR_PLATEAU, safe_fraction(position, start, boundary)
        return BreathPhase.EXPIRATION_END, min(1.0, safe_fraction(position, boundary, self.cycle))


@dataclass
class CapnographyState(GeneratorState):
    breath_phase: BreathPhase = BreathPhase.INSPIRATION
    expiration_count: int = 0


# ============== Shapes ==============
# Shape functions take (params, options, state, phase, u, timing) and
# return the noiseless CO2 value for normalised time u within phase.


def normal_curve(phase: BreathPhase, u: float, etco2: float, inspired: float) -> float:
    """Square-ish capnogram rising from *inspired* to *etco2* at the end of the plateau."""
    if phase is BreathPhase.INSPIRATION:
        return inspired
    if phase is BreathPhase.EXPIRATION_START:
        return inspired + (0.9 * etco2 - inspired) * (1.0 - (1.0 - u) ** 2)
    if phase is BreathPhase.ALVEOLAR_PLATEAU:
        return etco2 * (0.9 + 0.1 * u)
    return inspired + (etco2 - inspired) * (1.0 - u ** 0.7)


def shape_normal(params, options, state, phase, u, timing) -> float:
    return normal_curve(phase, u, params.etco2, params.baseline)


def shape_hypoventilation(params, options, state, phase, u, timing) -> float:
    return normal_curve(phase, u, params.etco2 * HYPOVENTILATION_SCALE, params.baseline)


def shape_hyperventilation(params, options, state, phase, u, timing) -> float:
    return normal_curve(phase, u, params.etco2 * HYPERVENTILATION_SCALE, params.baseline)


def shape_rebreathing(params, options: RebreathingOptions, state, phase, u, timing) -> float:
    return normal_curve(phase, u, params.etco2, params.etco2 * options.baseline_fraction)


def shape_obstructive(params, options: ObstructionOptions, state, phase, u, timing) -> float:
    severity = options.severity
    etco2 = params.etco2
    inspired = params.baseline + severity * etco2 * 0.1
    if phase is BreathPhase.INSPIRATION:
        return inspired
    if phase is BreathPhase.EXPIRATION_START:
        return inspired + (0.8 * etco2 - inspired) * u ** 0.7
    if phase is BreathPhase.ALVEOLAR_PLATEAU:
        # no flat plateau: keeps climbing to ETCO2 (shark fin)
        return etco2 * (0.8 + 0.2 * u ** (0.7 + severity))
    return inspired + (etco2 - inspired) * (1.0 - u ** 0.5)


def shape_airway_leak(params, options, state, phase, u, timing) -> float:
    reduced = params.etco2 * LEAK_SCALE
    if phase is BreathPhase.INSPIRATION:
        return params.baseline
    if phase is BreathPhase.EXPIRATION_START:
        return params.baseline + (reduced - params.baseline) * u ** 0.5
    if phase is BreathPhase.ALVEOLAR_PLATEAU:
        return reduced * (1.0 - 0.2 * u)
    return params.baseline + (0.8 * reduced - params.baseline) * (1.0 - u)


def shape_esophageal(params, options: EsophagealOptions, state, phase, u, timing) -> float:
    count = state.expiration_count
    if phase is not BreathPhase.EXPIRATION_START or not 1 <= count <= options.spike_breaths:
        return params.baseline
    amplitude = options.spike_fraction * params.etco2 * options.spike_decay ** (count - 1)
    return params.baseline + amplitude * float(np.sin(np.pi * u))


def shape_cardiac_oscillations(params, options: CardiacOscillationOptions, state, phase, u, timing) -> float:
    value = normal_curve(phase, u, params.etco2, params.baseline)
    if phase is BreathPhase.ALVEOLAR_PLATEAU:
        elapsed = u * timing.plateau
        ripple = np.sin(2.0 * np.pi * options.heart_rate / 60.0 * elapsed)
        value += options.amplitude_fraction * params.etco2 * float(ripple)
    return value


def shape_curare_cleft(params, options: CurareCleftOptions, state, phase, u, timing) -> float:
    value = normal_curve(phase, u, params.etco2, params.baseline)
    low, high = CLEFT_WINDOW
    if phase is BreathPhase.ALVEOLAR_PLATEAU and low < u < high:
        value -= options.depth_fraction * params.etco2 * float(np.sin(np.pi * safe_fraction(u, low, high)))
    return value


PATTERN_SHAPES: dict[CapnographyPattern, Callable[..., float]] = {
    CapnographyPattern.NORMAL: shape_normal,
    CapnographyPattern.OBSTRUCTIVE: shape_obstructive,
    CapnographyPattern.REBREATHING: shape_rebreathing,
    CapnographyPattern.HYPOVENTILATION: shape_hypoventilation,
    CapnographyPattern.HYPERVENTILATION: shape_hyperventilation,
    CapnographyPattern.AIRWAY_LEAK: shape_airway_leak,
    CapnographyPattern.ESOPHAGEAL_INTUBATION: shape_esophageal,
    CapnographyPattern.CARDIAC_OSCILLATIONS: shape_cardiac_oscillations,
    CapnographyPattern.CURARE_CLEFT: shape_curare_cleft,
}


def advance_breath_phase(params: CapnographyParams, state: CapnographyState, t: float) -> tuple[BreathPhase, float, BreathTiming]:
    """Move the breath state machine to time *t*.

    Returns:
        The active phase, the normalised time within it and the breath timing.
    """
    timing = BreathTiming.from_params(params)
    local = t - state.pattern_start
    state.phase = wrap_phase(local, timing.cycle)
    phase, u = timing.locate(state.phase * timing.cycle)
    if phase is not state.breath_phase:
        if state.breath_phase is BreathPhase.INSPIRATION:
            state.expiration_count += 1
        state.breath_phase = phase
        state.clock.last_transition = t
    return phase, u, timing


# ============== Clinical selection ==============


def build_capnography_rules(config: Mapping[str, Any]) -> tuple[SelectionRule, ...]:
    """Ordered capnogram cascade built from the ``capnography`` YAML section."""
    arrest = config["cardiac_arrest"]

    def arrest_choice(s: PatientState, rng: np.random.Generator) -> PatternChoice:
        return PatternChoice(
            CapnographyPattern.ESOPHAGEAL_INTUBATION,
            EsophagealOptions(),
            updates={"etco2": min(float(arrest["etco2_max"]), s.etco2)},
        )

    return (
        SelectionRule("cardiac_arrest", lambda s: s.cardiac_arrest, arrest_choice),
        SelectionRule(
            "obstructive",
            lambda s: s.airway_obstruction > config["obstructive"]["obstruction_above"],
            lambda s, rng: PatternChoice(
                CapnographyPattern.OBSTRUCTIVE, ObstructionOptions(severity=s.airway_obstruction)
            ),
        ),
        SelectionRule(
            "hypoventilation",
            lambda s: s.respiratory_depression > config["hypoventilation"]["depression_above"],
            lambda s, rng: PatternChoice(CapnographyPattern.HYPOVENTILATION, NoOptions()),
        ),
        SelectionRule(
            "hyperventilation",
            lambda s: s.rr > config["hyperventilation"]["rr_above"],
            lambda s, rng: PatternChoice(CapnographyPattern.HYPERVENTILATION, NoOptions()),
        ),
        SelectionRule("normal", always, lambda s, rng: PatternChoice(CapnographyPattern.NORMAL, NoOptions())),
    )


def low_output_etco2(etco2: float, cardiac_output: float, config: Mapping[str, Any]) -> float:
    """ETCO2 after the low cardiac output penalty; never raises *etco2*."""
    if cardiac_output >= config["cardiac_output_below"]:
        return etco2
    penalised = etco2 - (config["cardiac_output_below"] - cardiac_output) * config["penalty_per_l_min"]
    return min(etco2, max(float(config["etco2_floor"]), penalised))


# ============== Generator ==============


class CapnographyGenerator(WaveformGenerator):
    """Streams exhaled CO2 in mmHg.

    Args:
        params: initial :class:`CapnographyParams`.
        seed: seed for the generator's own random source.
        rng: pre-built random source; takes precedence over *seed*.
        rules_path: alternative selection thresholds YAML.
    """

    signal_name = "capnography"
    params_type = CapnographyParams
    state_type = CapnographyState
    pattern_type = CapnographyPattern
    options_types = PATTERN_OPTIONS
    baseline_pattern = CapnographyPattern.NORMAL
    rules_section = "capnography"
    rate_field = "respiration_rate"
    positive_fields = ("ie_ratio",)
    non_negative_fields = ("etco2", "baseline", "noise_level")

    def __init__(
        self,
        params: CapnographyParams | None = None,
        *,
        seed: int | None = None,
        rng: np.random.Generator | None = None,
        rules_path: str | None = None,
    ) -> None:
        self._config: Mapping[str, Any] = {}
        super().__init__(params, seed=seed, rng=rng, rules_path=rules_path)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def breath_phase(self) -> BreathPhase:
        return self.state.breath_phase

    @property
    def timing(self) -> BreathTiming:
        return BreathTiming.from_params(self.params)

    def get_etco2(self) -> float:
        """End-tidal CO2 the monitor should display for the active pattern."""
        return self.params.etco2 * ETCO2_DISPLAY_SCALE.get(self.pattern, 1.0)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _build_rules(self, config: Mapping[str, Any]) -> tuple[SelectionRule, ...]:
        self._config = config
        return build_capnography_rules(config)

    def _apply_vitals(self, state: PatientState) -> None:
        noise_key = "intubated_noise_level" if state.intubated else "spontaneous_noise_level"
        self.update_params(etco2=state.etco2, noise_level=self._config[noise_key])
        self._set_rate_from_vital(state.rr)

    def _after_selection(self, state: PatientState, choice: PatternChoice) -> None:
        etco2 = low_output_etco2(self.params.etco2, state.cardiac_output, self._config["low_cardiac_output"])
        if etco2 != self.params.etco2:
            logger.debug("Low cardiac output %.1f L/min: ETCO2 %.1f -> %.1f", state.cardiac_output, self.params.etco2, etco2)
            self.update_params(etco2=etco2)

    def _sample(self, t: float) -> float:
        phase, u, timing = advance_breath_phase(self.params, self.state, t)
        value = PATTERN_SHAPES[self.pattern](self.params, self.options, self.state, phase, u, timing)
        level = self.params.noise_level * self.get_etco2() * NOISE_SCALE
        if self.pattern is CapnographyPattern.AIRWAY_LEAK:
            level *= LEAK_NOISE_SCALE
        return max(0.0, value + uniform_noise(self._rng, level))
