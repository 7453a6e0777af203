"""Per-sample noise sources and channel noise presets."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class NoiseConfig:
    """Noise levels applied across the three monitor channels.

    Attributes:
        ecg_noise_level: peak uniform ECG noise (mV).
        ecg_artifact_probability: per-sample chance of an ECG artifact spike.
        ecg_wander_amplitude: baseline wander amplitude (mV).
        respiration_noise_level: respiratory noise as a fraction of amplitude.
        capnography_noise_level: capnography noise as a fraction of ETCO2.
    """

    ecg_noise_level: float = 0.03
    ecg_artifact_probability: float = 0.001
    ecg_wander_amplitude: float = 0.0
    respiration_noise_level: float = 0.05
    capnography_noise_level: float = 0.2


NOISE_PRESETS: dict[str, NoiseConfig] = {
    "clean": NoiseConfig(
        ecg_noise_level=0.0,
        ecg_artifact_probability=0.0,
        ecg_wander_amplitude=0.0,
        respiration_noise_level=0.0,
        capnography_noise_level=0.0,
    ),
    "low": NoiseConfig(
        ecg_noise_level=0.015,
        ecg_artifact_probability=0.0005,
        ecg_wander_amplitude=0.0,
        respiration_noise_level=0.025,
        capnography_noise_level=0.1,
    ),
    "medium": NoiseConfig(),
    "high": NoiseConfig(
        ecg_noise_level=0.08,
        ecg_artifact_probability=0.005,
        ecg_wander_amplitude=0.1,
        respiration_noise_level=0.1,
        capnography_noise_level=0.4,
    ),
}


def uniform_noise(rng: np.random.Generator, level: float) -> float:
    """One symmetric draw with ``|x| < level``."""
    return level * (2.0 * rng.random() - 1.0)


def artifact_spike(rng: np.random.Generator, probability: float, amplitude: float) -> float:
    """Occasional motion/electrode spike of up to ``amplitude`` in either direction."""
    if probability <= 0.0 or rng.random() >= probability:
        return 0.0
    return amplitude * (2.0 * rng.random() - 1.0)


def baseline_wander(t: float, amplitude: float, frequency: float) -> float:
    """Slow respiratory-coupled baseline drift."""
    if amplitude == 0.0:
        return 0.0
    return amplitude * float(np.sin(2.0 * np.pi * frequency * t))
