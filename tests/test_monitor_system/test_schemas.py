"""Tests for the patient state snapshot and exception hierarchy."""

import dataclasses
import logging

import pytest

from src.monitor_system.exceptions import (
    ConfigurationError,
    PatientStateError,
    PatternOptionsError,
    WaveformSystemError,
)
from src.monitor_system.schemas import SEVERITY_FIELDS, PatientState


class TestPatientState:
    def test_defaults(self):
        s = PatientState()
        assert s.hr == 72.0
        assert s.rr == 14.0
        assert s.spo2 == 98.0
        assert s.etco2 == 35.0
        assert s.ventilator_mode == "none"
        assert all(getattr(s, name) == 0.0 for name in SEVERITY_FIELDS)
        assert not s.cardiac_arrest

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            PatientState().hr = 80

    @pytest.mark.parametrize("name", SEVERITY_FIELDS)
    def test_severity_range(self, name):
        with pytest.raises(PatientStateError) as exc:
            PatientState(**{name: 1.5})
        assert exc.value.field_name == name
        with pytest.raises(PatientStateError):
            PatientState(**{name: -0.1})

    @pytest.mark.parametrize("name", ["hr", "rr", "etco2", "cardiac_output"])
    def test_negative_vitals(self, name):
        with pytest.raises(PatientStateError):
            PatientState(**{name: -1})

    def test_zero_vitals_allowed(self):
        s = PatientState(hr=0, rr=0)
        assert s.hr == 0

    def test_spo2_range(self):
        with pytest.raises(PatientStateError):
            PatientState(spo2=101)

    def test_ventilated(self):
        assert not PatientState(intubated=True).ventilated
        assert not PatientState(ventilator_mode="volume").ventilated
        assert PatientState(intubated=True, ventilator_mode="volume").ventilated

    def test_from_mapping_ignores_unknown(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="src.monitor_system.schemas"):
            s = PatientState.from_mapping({"hr": 110, "bp_systolic": 90})
        assert s.hr == 110
        assert "bp_systolic" in caplog.text


class TestExceptions:
    def test_hierarchy(self):
        assert issubclass(ConfigurationError, WaveformSystemError)
        assert issubclass(PatternOptionsError, ConfigurationError)
        assert issubclass(PatientStateError, WaveformSystemError)

    def test_pattern_options_message(self):
        err = PatternOptionsError("paced", "rate must be positive")
        assert err.pattern == "paced"
        assert "paced" in str(err)
        assert "rate must be positive" in str(err)
