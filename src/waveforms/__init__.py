"""Waveform engine: streamed ECG, respiratory effort and capnography signals."""

from src.waveforms.base import NoOptions, WaveformGenerator
from src.waveforms.capnography import BreathPhase, CapnographyGenerator, CapnographyParams, CapnographyPattern
from src.waveforms.cardiac import CardiacParams, CardiacSignalGenerator, Rhythm
from src.waveforms.monitor import WaveformMonitor
from src.waveforms.noise import NOISE_PRESETS, NoiseConfig
from src.waveforms.respiratory import BreathingPattern, RespiratoryEffortGenerator, RespiratoryParams
from src.waveforms.selection import PatternChoice, SelectionRule

__all__ = [
    "NoOptions",
    "WaveformGenerator",
    "BreathPhase",
    "CapnographyGenerator",
    "CapnographyParams",
    "CapnographyPattern",
    "CardiacParams",
    "CardiacSignalGenerator",
    "Rhythm",
    "WaveformMonitor",
    "NOISE_PRESETS",
    "NoiseConfig",
    "BreathingPattern",
    "RespiratoryEffortGenerator",
    "RespiratoryParams",
    "PatternChoice",
    "SelectionRule",
]
