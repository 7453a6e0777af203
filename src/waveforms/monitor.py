"""Bank of the three monitor channels with bounded sample buffers."""

from __future__ import annotations

import logging
import math
from collections import deque
from typing import Any, Mapping, Optional

import numpy as np

from config.settings import Settings
from src.monitor_system.exceptions import ConfigurationError
from src.monitor_system.schemas import PatientState
from src.waveforms.base import WaveformGenerator
from src.waveforms.capnography import CapnographyGenerator
from src.waveforms.cardiac import CardiacSignalGenerator
from src.waveforms.noise import NOISE_PRESETS, NoiseConfig
from src.waveforms.respiratory import RespiratoryEffortGenerator
from src.waveforms.selection import PatternChoice

logger = logging.getLogger(__name__)

CHANNELS = ("ecg", "respiration", "capnography")

DEFAULT_BUFFER_SECONDS: dict[str, float] = {
    "ecg": 10.0,
    "respiration": 30.0,
    "capnography": 20.0,
}

_SAMPLE_COUNT_TOLERANCE = 1e-9


class WaveformMonitor:
    """Drives one generator per channel and keeps the most recent samples.

    Args:
        generators: channel name -> generator; missing channels get a
            default generator.
        buffer_seconds: channel name -> buffer length in seconds.
        seed: root seed; each default generator gets an independent child stream.
    """

    def __init__(
        self,
        generators: Mapping[str, WaveformGenerator] | None = None,
        buffer_seconds: Mapping[str, float] | None = None,
        seed: int | None = None,
    ) -> None:
        generators = dict(generators or {})
        children = np.random.SeedSequence(seed).spawn(len(CHANNELS))
        defaults = {
            "ecg": CardiacSignalGenerator,
            "respiration": RespiratoryEffortGenerator,
            "capnography": CapnographyGenerator,
        }
        self.generators: dict[str, WaveformGenerator] = {}
        for name, child in zip(CHANNELS, children):
            gen = generators.pop(name, None)
            self.generators[name] = gen if gen is not None else defaults[name](rng=np.random.default_rng(child))
        if generators:
            raise ConfigurationError(f"Unknown monitor channels: {sorted(generators)}")

        self.buffer_seconds = {**DEFAULT_BUFFER_SECONDS, **(buffer_seconds or {})}
        self.buffers: dict[str, deque] = {}
        for name in self.generators:
            if self.buffer_seconds[name] <= 0:
                raise ConfigurationError(
                    f"buffer_seconds for '{name}' must be positive, got {self.buffer_seconds[name]!r}"
                )
            self.buffers[name] = deque(maxlen=self._buffer_length(name))
        self._carry = {name: 0.0 for name in CHANNELS}
        self._last_state: Optional[PatientState] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> WaveformMonitor:
        """Build a monitor from :class:`Settings`."""
        logging.getLogger("src.waveforms").setLevel(settings.log_level.upper())
        children = np.random.SeedSequence(settings.seed).spawn(len(CHANNELS))
        channel_settings = {
            "ecg": (CardiacSignalGenerator, settings.cardiac),
            "respiration": (RespiratoryEffortGenerator, settings.respiratory),
            "capnography": (CapnographyGenerator, settings.capnography),
        }
        generators = {}
        buffers = {}
        for (name, (gen_cls, channel)), child in zip(channel_settings.items(), children):
            generators[name] = gen_cls(
                gen_cls.params_from(channel.params),
                rng=np.random.default_rng(child),
                rules_path=settings.rules_path,
            )
            buffers[name] = channel.buffer_seconds
        monitor = cls(generators, buffer_seconds=buffers)
        if settings.noise_preset:
            monitor.apply_noise_preset(settings.noise_preset)
        logger.info(
            "Monitor configured: seed=%s preset=%s rules=%s",
            settings.seed, settings.noise_preset, settings.rules_path or "default",
        )
        return monitor

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def ecg(self) -> CardiacSignalGenerator:
        return self.generators["ecg"]

    @property
    def respiration(self) -> RespiratoryEffortGenerator:
        return self.generators["respiration"]

    @property
    def capnography(self) -> CapnographyGenerator:
        return self.generators["capnography"]

    def apply_patient_state(
        self, state: PatientState | Mapping[str, Any]
    ) -> Optional[dict[str, PatternChoice]]:
        """Forward a new snapshot to every channel.

        Returns:
            Channel name -> chosen pattern, or ``None`` when *state* equals
            the last snapshot applied.
        """
        if not isinstance(state, PatientState):
            state = PatientState.from_mapping(state)
        if state == self._last_state:
            return None
        choices = {name: gen.apply_patient_state(state) for name, gen in self.generators.items()}
        self._last_state = state
        return choices

    def advance(self, seconds: float) -> dict[str, np.ndarray]:
        """Generate *seconds* of signal on every channel and buffer it."""
        if seconds < 0:
            raise ConfigurationError(f"seconds must be non-negative, got {seconds!r}")
        out = {}
        for name, gen in self.generators.items():
            self._fit_buffer(name)
            exact = seconds * gen.sample_rate + self._carry[name]
            n = int(math.floor(exact + _SAMPLE_COUNT_TOLERANCE))
            self._carry[name] = max(0.0, exact - n)
            samples = np.fromiter((gen.get_next_value() for _ in range(n)), dtype=np.float64, count=n)
            self.buffers[name].extend(samples.tolist())
            out[name] = samples
        return out

    def get_waveform_data(self, channel: str, seconds: float | None = None) -> np.ndarray:
        """Most recent *seconds* of buffered samples (all of them if ``None``)."""
        buf = self.buffers.get(channel)
        if buf is None:
            logger.warning("Unknown monitor channel %r", channel)
            return np.empty(0, dtype=np.float64)
        buf = self._fit_buffer(channel)
        data = np.fromiter(buf, dtype=np.float64, count=len(buf))
        if seconds is None:
            return data
        n = int(math.floor(seconds * self.generators[channel].sample_rate + _SAMPLE_COUNT_TOLERANCE))
        return data[-n:] if n > 0 else data[:0]

    def apply_noise_preset(self, name: str) -> NoiseConfig:
        """Apply one of :data:`NOISE_PRESETS` across all channels."""
        if name not in NOISE_PRESETS:
            raise ConfigurationError(
                f"Unknown noise preset '{name}'. Choose from: {sorted(NOISE_PRESETS)}"
            )
        preset = NOISE_PRESETS[name]
        self.ecg.update_params(
            noise_level=preset.ecg_noise_level,
            artifact_probability=preset.ecg_artifact_probability,
            wander_amplitude=preset.ecg_wander_amplitude,
        )
        self.respiration.update_params(noise_level=preset.respiration_noise_level)
        self.capnography.update_params(noise_level=preset.capnography_noise_level)
        logger.info("Applied noise preset '%s'", name)
        return preset

    def reset(self) -> None:
        """Clear buffers and reset every generator to its baseline pattern."""
        for name, gen in self.generators.items():
            gen.reset()
            self.buffers[name].clear()
            self._carry[name] = 0.0
        self._last_state = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _buffer_length(self, name: str) -> int:
        return max(1, int(round(self.buffer_seconds[name] * self.generators[name].sample_rate)))

    def _fit_buffer(self, name: str) -> deque:
        """Resize *name*'s buffer when its generator's sample rate has changed."""
        buf = self.buffers[name]
        maxlen = self._buffer_length(name)
        if buf.maxlen != maxlen:
            logger.debug("Resizing %s buffer %d -> %d samples", name, buf.maxlen, maxlen)
            buf = deque(buf, maxlen=maxlen)
            self.buffers[name] = buf
        return buf
