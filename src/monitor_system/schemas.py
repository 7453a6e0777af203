"""Data classes shared by the waveform generators and their callers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any, Mapping

from src.monitor_system.exceptions import PatientStateError

logger = logging.getLogger(__name__)

VENTILATOR_OFF = "none"
COMATOSE = "comatose"

SEVERITY_FIELDS: tuple[str, ...] = (
    "respiratory_depression",
    "airway_obstruction",
    "respiratory_distress",
    "respiratory_muscle_weakness",
    "hypoxia",
    "metabolic_acidosis",
    "head_injury",
    "cardiac_depression",
)

_NON_NEGATIVE_FIELDS: tuple[str, ...] = ("hr", "rr", "etco2", "cardiac_output")


# ============== Patient State ==============


@dataclass(frozen=True)
class PatientState:
    """Read-only clinical snapshot consumed by every generator.

    Severity scalars are normalised to [0, 1]. Electrolytes use the units
    of a bedside chemistry panel (K in mmol/L, Ca in mg/dL).
    """

    hr: float = 72.0
    rr: float = 14.0
    spo2: float = 98.0
    etco2: float = 35.0
    cardiac_output: float = 5.0  # L/min
    intubated: bool = False
    ventilator_mode: str = VENTILATOR_OFF
    respiratory_depression: float = 0.0
    airway_obstruction: float = 0.0
    respiratory_distress: float = 0.0
    respiratory_muscle_weakness: float = 0.0
    hypoxia: float = 0.0
    metabolic_acidosis: float = 0.0
    head_injury: float = 0.0
    neuro_status: str = "normal"
    cardiac_depression: float = 0.0
    k: float = 4.0
    ca: float = 9.0
    cardiac_arrest: bool = False
    cpr_in_progress: bool = False

    def __post_init__(self) -> None:
        for name in SEVERITY_FIELDS:
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise PatientStateError(name, f"severity must lie in [0, 1], got {value!r}")
        for name in _NON_NEGATIVE_FIELDS:
            value = getattr(self, name)
            if value < 0.0:
                raise PatientStateError(name, f"must be non-negative, got {value!r}")
        if not 0.0 <= self.spo2 <= 100.0:
            raise PatientStateError("spo2", f"must lie in [0, 100], got {self.spo2!r}")

    @property
    def ventilated(self) -> bool:
        """True when intubated with an active ventilator mode."""
        return self.intubated and self.ventilator_mode != VENTILATOR_OFF

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> PatientState:
        """Build a snapshot from a plain mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.debug("Ignoring unknown patient state keys: %s", ", ".join(unknown))
        return cls(**{key: value for key, value in data.items() if key in known})
