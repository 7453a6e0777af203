"""Shared cyclic-sample contract for the streamed waveform generators."""

from __future__ import annotations

import dataclasses
import logging
import math
import numbers
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Mapping, Optional, Union

import numpy as np

from src.monitor_system.exceptions import ConfigurationError, PatternOptionsError
from src.monitor_system.schemas import PatientState
from src.waveforms.selection import PatternChoice, SelectionRule, first_match, load_selection_rules

logger = logging.getLogger(__name__)

# Absorbs binary rounding in duration * sample_rate (e.g. 0.29 * 100).
_SAMPLE_COUNT_TOLERANCE = 1e-9


@dataclass(frozen=True)
class NoOptions:
    """Options record for patterns that take no options."""


@dataclass
class GeneratorClock:
    """Monotonic sample clock plus auxiliary timestamps for stateful patterns.

    ``next_event`` is -1 while nothing is scheduled.
    """

    elapsed: float = 0.0
    last_beat: float = 0.0
    last_transition: float = 0.0
    next_event: float = -1.0

    def tick(self, dt: float) -> float:
        self.elapsed += dt
        return self.elapsed


@dataclass
class GeneratorState:
    """Mutable per-instance state handed to the sampling functions.

    Subclasses add pattern-local counters. A fresh record is created on
    every pattern switch; only the clock is carried over.
    """

    clock: GeneratorClock = field(default_factory=GeneratorClock)
    pattern_start: float = 0.0
    phase: float = 0.0


def require(condition: bool, pattern: str, detail: str) -> None:
    """Raise :class:`PatternOptionsError` unless *condition* holds."""
    if not condition:
        raise PatternOptionsError(pattern, detail)


class WaveformGenerator:
    """Base class for a generator that is pulled one sample at a time.

    Subclasses declare the class attributes below and implement
    :meth:`_sample`, :meth:`_build_rules` and, where needed, the
    ``_apply_vitals`` / ``_after_selection`` hooks.

    Args:
        params: initial parameter record; defaults to adult-normal values.
        seed: seed for the generator's own ``np.random.Generator``.
        rng: pre-built random source; takes precedence over *seed*.
        rules_path: alternative selection thresholds YAML.
    """

    signal_name: ClassVar[str]
    params_type: ClassVar[type]
    state_type: ClassVar[type[GeneratorState]] = GeneratorState
    pattern_type: ClassVar[type[Enum]]
    options_types: ClassVar[Mapping[Enum, type]]
    baseline_pattern: ClassVar[Enum]
    rules_section: ClassVar[str]
    rate_field: ClassVar[str]
    positive_fields: ClassVar[tuple[str, ...]] = ()
    non_negative_fields: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        params: Any = None,
        *,
        seed: int | None = None,
        rng: np.random.Generator | None = None,
        rules_path: str | None = None,
    ) -> None:
        if params is None:
            params = self.params_type()
        elif not isinstance(params, self.params_type):
            raise ConfigurationError(
                f"{self.signal_name} expects {self.params_type.__name__}, got {type(params).__name__}"
            )
        self._validate(params)
        self.params = params
        self._rng = rng if rng is not None else np.random.default_rng(seed)
        self.rules: tuple[SelectionRule, ...] = self._build_rules(
            load_selection_rules(rules_path)[self.rules_section]
        )
        self.last_rule: Optional[str] = None
        self.pattern: Enum = self.baseline_pattern
        self.options: Any = self.options_types[self.baseline_pattern]()
        self.state = self.state_type()

    @classmethod
    def params_from(cls, overrides: Mapping[str, Any]) -> Any:
        """Build a parameter record from a mapping of field overrides."""
        try:
            return cls.params_type(**overrides)
        except TypeError as exc:
            raise ConfigurationError(f"Unknown {cls.signal_name} parameter: {exc}") from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def sample_rate(self) -> float:
        return self.params.sample_rate

    @property
    def rate(self) -> float:
        return getattr(self.params, self.rate_field)

    @property
    def cycle_length(self) -> float:
        """Seconds per cycle, ``60 / rate``."""
        return 60.0 / self.rate

    def update_params(self, partial: Mapping[str, Any] | None = None, **fields: Any) -> None:
        """Merge *partial* and *fields* into the parameter record.

        Raises:
            ConfigurationError: unknown field or a value that fails validation.
        """
        changes = {**(partial or {}), **fields}
        if not changes:
            return
        try:
            updated = dataclasses.replace(self.params, **changes)
        except TypeError as exc:
            raise ConfigurationError(f"Unknown {self.signal_name} parameter: {exc}") from exc
        self._validate(updated)
        self.params = updated
        self._on_params_changed()

    def set_pattern(self, pattern: Union[Enum, str], options: Any = None) -> bool:
        """Switch to *pattern* with *options*.

        Returns:
            ``False`` when *pattern* is not recognised; the active pattern is kept.

        Raises:
            PatternOptionsError: *options* do not fit *pattern*.
        """
        tag = self._coerce_pattern(pattern)
        if tag is None:
            logger.warning(
                "Unknown %s pattern %r; keeping %s", self.signal_name, pattern, self.pattern.value
            )
            return False
        options = self._coerce_options(tag, options)
        self.pattern = tag
        self.options = options
        self._restart_pattern_state()
        logger.debug("%s pattern -> %s %s", self.signal_name, tag.value, options)
        return True

    def apply_patient_state(self, state: PatientState | Mapping[str, Any]) -> PatternChoice:
        """Run the clinical cascade for *state* and activate its outcome."""
        if not isinstance(state, PatientState):
            state = PatientState.from_mapping(state)
        self._apply_vitals(state)
        rule, choice = first_match(self.rules, state, self._rng)
        if choice.updates:
            self.update_params(choice.updates)
        self._after_selection(state, choice)
        if choice.pattern != self.pattern or choice.options != self.options:
            self.set_pattern(choice.pattern, choice.options)
        self.last_rule = rule.name
        logger.debug("%s rule '%s' selected %s", self.signal_name, rule.name, choice.pattern.value)
        return choice

    def get_next_value(self) -> float:
        """Advance the clock by one sample period and return one sample."""
        t = self.state.clock.tick(1.0 / self.params.sample_rate)
        return float(self._sample(t))

    def generate_waveform(self, duration: float) -> np.ndarray:
        """Return ``floor(duration * sample_rate)`` consecutive samples."""
        if duration < 0:
            raise ConfigurationError(f"duration must be non-negative, got {duration!r}")
        n = int(math.floor(duration * self.params.sample_rate + _SAMPLE_COUNT_TOLERANCE))
        return np.fromiter((self.get_next_value() for _ in range(n)), dtype=np.float64, count=n)

    def reset(self) -> None:
        """Restore clock and counters and revert to the baseline pattern."""
        self.pattern = self.baseline_pattern
        self.options = self.options_types[self.baseline_pattern]()
        self.state = self.state_type()

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    def _sample(self, t: float) -> float:
        raise NotImplementedError

    def _build_rules(self, config: Mapping[str, Any]) -> tuple[SelectionRule, ...]:
        raise NotImplementedError

    def _apply_vitals(self, state: PatientState) -> None:
        """Copy vitals from the snapshot into the parameter record."""

    def _after_selection(self, state: PatientState, choice: PatternChoice) -> None:
        """Adjust parameters once the outcome is known."""

    def _on_params_changed(self) -> None:
        """Invalidate anything derived from the parameter record."""

    def _set_rate_from_vital(self, value: float) -> None:
        if value > 0:
            self.update_params({self.rate_field: float(value)})
        else:
            logger.debug("Keeping %s %s=%s; vital is %s", self.signal_name, self.rate_field, self.rate, value)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _validate(self, params: Any) -> None:
        for name in ("sample_rate", self.rate_field, *self.positive_fields):
            value = getattr(params, name)
            if not _is_real(value) or not math.isfinite(value) or value <= 0:
                raise ConfigurationError(
                    f"{self.signal_name} '{name}' must be a positive number, got {value!r}"
                )
        for name in self.non_negative_fields:
            value = getattr(params, name)
            if not _is_real(value) or not math.isfinite(value) or value < 0:
                raise ConfigurationError(
                    f"{self.signal_name} '{name}' must be non-negative, got {value!r}"
                )

    def _coerce_pattern(self, pattern: Union[Enum, str]) -> Optional[Enum]:
        if isinstance(pattern, self.pattern_type):
            return pattern
        if isinstance(pattern, str):
            try:
                return self.pattern_type(pattern)
            except ValueError:
                pass
            try:
                return self.pattern_type[pattern.upper()]
            except KeyError:
                return None
        return None

    def _coerce_options(self, tag: Enum, options: Any) -> Any:
        options_type = self.options_types[tag]
        if options is None:
            return options_type()
        if isinstance(options, options_type):
            return options
        if isinstance(options, Mapping):
            try:
                return options_type(**options)
            except TypeError as exc:
                raise PatternOptionsError(tag.value, str(exc)) from exc
        raise PatternOptionsError(
            tag.value, f"expected {options_type.__name__}, got {type(options).__name__}"
        )

    def _restart_pattern_state(self) -> None:
        clock = self.state.clock
        clock.last_beat = clock.elapsed
        clock.last_transition = clock.elapsed
        clock.next_event = -1.0
        self.state = self.state_type(clock=clock, pattern_start=clock.elapsed)


def _is_real(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)
