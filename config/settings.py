"""Configuration management for the monitor waveform engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class ChannelConfig:
    """Parameter overrides and buffer length for one monitor channel.

    ``params`` holds field overrides for the channel's generator parameter
    record (e.g. ``{"sample_rate": 500, "noise_level": 0.0}``).
    """

    params: dict[str, Any] = field(default_factory=dict)
    buffer_seconds: float = 10.0


@dataclass
class Settings:
    """Top-level engine settings."""

    cardiac: ChannelConfig = field(default_factory=lambda: ChannelConfig(buffer_seconds=10.0))
    respiratory: ChannelConfig = field(default_factory=lambda: ChannelConfig(buffer_seconds=30.0))
    capnography: ChannelConfig = field(default_factory=lambda: ChannelConfig(buffer_seconds=20.0))
    rules_path: Optional[str] = None
    noise_preset: Optional[str] = None  # "clean", "low", "medium" or "high"
    seed: Optional[int] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        seed = os.getenv("WAVEFORM_SEED")
        return cls(
            rules_path=os.getenv("WAVEFORM_RULES_PATH"),
            noise_preset=os.getenv("WAVEFORM_NOISE_PRESET"),
            seed=int(seed) if seed else None,
            log_level=os.getenv("WAVEFORM_LOG_LEVEL", "INFO"),
        )

    @classmethod
    def from_yaml(cls, path: str) -> Settings:
        """Load settings from YAML config file."""
        config_path = Path(path)
        if not config_path.exists():
            return cls()
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        settings = cls()
        for channel in ("cardiac", "respiratory", "capnography"):
            if channel in data:
                current = getattr(settings, channel)
                section = data[channel] or {}
                setattr(
                    settings,
                    channel,
                    ChannelConfig(
                        params=dict(section.get("params") or {}),
                        buffer_seconds=float(section.get("buffer_seconds", current.buffer_seconds)),
                    ),
                )
        for key in ("rules_path", "noise_preset", "seed", "log_level"):
            if key in data:
                setattr(settings, key, data[key])
        return settings
