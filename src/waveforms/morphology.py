"""Closed-form waveform primitives evaluated on normalised segment positions.

Every shape takes a position ``u`` in [0, 1] within its own segment and
returns a scalar. Generators place segments on their timelines and sum the
results, so each primitive starts and ends at zero unless stated otherwise.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

MIN_SPAN = 1e-6

# (frequency multiplier, weight, phase) triples for multi-sine baselines.
FIBRILLATORY_COMPONENTS: tuple[tuple[float, float, float], ...] = (
    (8.0, 0.3, 0.0),
    (10.4, 0.3, 0.0),
    (5.6, 0.4, 0.2),
)
VF_COMPONENTS: tuple[tuple[float, float, float], ...] = (
    (1.0, 1.0, 0.0),
    (2.3, 0.5, 0.0),
    (3.9, 0.3, 0.0),
    (4.7, 0.2, 1.0),
    (15.0, 0.1, 2.0),
)


# ------------------------------------------------------------------
# Normalisation helpers
# ------------------------------------------------------------------


def safe_fraction(value: float, low: float, high: float) -> float:
    """Position of *value* within ``[low, high]``.

    A collapsed range is widened to ``MIN_SPAN`` so the result stays finite.
    """
    span = high - low
    if abs(span) < MIN_SPAN:
        span = MIN_SPAN if span >= 0.0 else -MIN_SPAN
    return (value - low) / span


def wrap_phase(t: float, period: float) -> float:
    """Normalise *t* to a phase in [0, 1) of a cycle lasting *period* seconds."""
    period = max(period, MIN_SPAN)
    phase = (t % period) / period
    # float rounding can land exactly on 1.0 for t just below a cycle boundary
    if phase >= 1.0:
        return 0.0
    return phase


def segment_position(t: float, start: float, duration: float) -> Optional[float]:
    """Normalised position of *t* inside ``[start, start + duration)``, else None."""
    if duration <= 0.0 or t < start or t >= start + duration:
        return None
    return (t - start) / duration


# ------------------------------------------------------------------
# Shapes
# ------------------------------------------------------------------


def gaussian_pulse(u: float, amplitude: float, center: float = 0.5, width: float = 0.25) -> float:
    """Gaussian bump centred at *center* of the segment."""
    return amplitude * float(np.exp(-(((u - center) / width) ** 2)))


def half_sine(u: float, amplitude: float) -> float:
    """Single positive lobe, zero at both segment ends."""
    return amplitude * float(np.sin(np.pi * u))


def quarter_rise(u: float) -> float:
    """Rising quarter sine from 0 to 1."""
    return float(np.sin(0.5 * np.pi * u))


def quarter_fall(u: float) -> float:
    """Falling quarter cosine from 1 to 0."""
    return float(np.cos(0.5 * np.pi * u))


def qrs_deflection(
    u: float,
    amplitude: float,
    q_ratio: float = 0.25,
    s_ratio: float = 0.25,
    q_fraction: float = 0.2,
    r_fraction: float = 0.4,
) -> float:
    """Q, R and S as consecutive half-sine lobes.

    Args:
        u: position within the QRS segment.
        amplitude: R-wave peak.
        q_ratio: Q depth as a fraction of R.
        s_ratio: S depth as a fraction of R.
        q_fraction: share of the segment taken by Q.
        r_fraction: share of the segment taken by R; S fills the rest.
    """
    r_end = q_fraction + r_fraction
    if u < q_fraction:
        return -q_ratio * half_sine(safe_fraction(u, 0.0, q_fraction), amplitude)
    if u < r_end:
        return half_sine(safe_fraction(u, q_fraction, r_end), amplitude)
    return -s_ratio * half_sine(safe_fraction(u, r_end, 1.0), amplitude)


def asymmetric_wave(u: float, amplitude: float, peak: float = 0.6) -> float:
    """Sine rise to *peak* followed by a cosine fall, as in a T wave."""
    if u < peak:
        return amplitude * quarter_rise(safe_fraction(u, 0.0, peak))
    return amplitude * quarter_fall(safe_fraction(u, peak, 1.0))


def sawtooth(u: float, amplitude: float, ramp: float = 0.7) -> float:
    """Negative-going flutter wave: slow descent then a quick return to zero."""
    if u < ramp:
        return -amplitude * safe_fraction(u, 0.0, ramp)
    return -amplitude * (1.0 - safe_fraction(u, ramp, 1.0))


def sine_mixture(
    t: float,
    base_frequency: float,
    components: Sequence[tuple[float, float, float]],
) -> float:
    """Weighted sum of sines at multiples of *base_frequency*."""
    total = 0.0
    for multiplier, weight, phase in components:
        total += weight * float(np.sin(2.0 * np.pi * base_frequency * multiplier * t + phase))
    return total


def exponential_decay(u: float, rate: float) -> float:
    """Decay from 1 at ``u=0`` to exactly 0 at ``u=1``."""
    floor = float(np.exp(-rate))
    return safe_fraction(float(np.exp(-rate * u)), floor, 1.0)
