"""Shared pytest fixtures for the waveform engine tests."""

from __future__ import annotations

import numpy as np
import pytest

from src.waveforms.capnography import CapnographyParams
from src.waveforms.cardiac import CardiacParams
from src.waveforms.respiratory import RespiratoryParams


class FixedDraws:
    """Stand-in random source that replays scripted ``random()`` draws.

    ``integers`` and ``uniform`` return their lower bound so cascade tests
    can pin every branch without depending on a seed.
    """

    def __init__(self, *draws: float) -> None:
        self.draws = list(draws)

    def random(self) -> float:
        return self.draws.pop(0) if self.draws else 0.0

    def integers(self, low, high=None):
        return low

    def uniform(self, low=0.0, high=1.0):
        return low


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


@pytest.fixture
def clean_cardiac_params() -> CardiacParams:
    """ECG parameters with every noise source disabled."""
    return CardiacParams(sample_rate=250.0, noise_level=0.0, artifact_probability=0.0, wander_amplitude=0.0)


@pytest.fixture
def clean_respiratory_params() -> RespiratoryParams:
    return RespiratoryParams(noise_level=0.0)


@pytest.fixture
def clean_capnography_params() -> CapnographyParams:
    return CapnographyParams(noise_level=0.0)


@pytest.fixture
def fixed_draws():
    """The :class:`FixedDraws` class, for scripting random draws in a test."""
    return FixedDraws
