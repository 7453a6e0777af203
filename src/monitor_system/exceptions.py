"""Custom exception hierarchy for the monitor waveform engine."""


class WaveformSystemError(Exception):
    """Base exception for all waveform engine errors."""


class ConfigurationError(WaveformSystemError):
    """Raised when generator parameters or settings are invalid."""


class PatternOptionsError(ConfigurationError):
    """Raised when pattern options do not fit the selected pattern."""

    def __init__(self, pattern: str, detail: str) -> None:
        self.pattern = pattern
        self.detail = detail
        super().__init__(f"Invalid options for pattern '{pattern}': {detail}")


class PatientStateError(WaveformSystemError):
    """Raised when a patient state snapshot holds out-of-range values."""

    def __init__(self, field_name: str, detail: str) -> None:
        self.field_name = field_name
        self.detail = detail
        super().__init__(f"Invalid patient state field '{field_name}': {detail}")
