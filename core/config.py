"""LayerSync controller configuration (TOML) parsing and validation."""
from __future__ import annotations
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from core.offsets import DEFAULT_FRAME_RATE
from core.state import COMPLETION_THRESHOLD_S

DEFAULT_OSC_PORT = 6250
DEFAULT_STATUS_PORT = 9421
DEFAULT_COMMAND_PORT = 5250


@dataclass
class ControllerSettings:
    osc_host: str = "0.0.0.0"
    osc_port: int = DEFAULT_OSC_PORT
    status_port: int = DEFAULT_STATUS_PORT
    command_host: str = "127.0.0.1"
    command_port: int = DEFAULT_COMMAND_PORT
    heartbeat_interval_s: float = 5.0
    log_dir: str = "logs"
    log_level: str = "INFO"
    journal: bool = True
    advertise: bool = True


@dataclass
class Defaults:
    frame_rate: float = DEFAULT_FRAME_RATE
    image_duration_s: float = 5.0
    completion_threshold_s: float = COMPLETION_THRESHOLD_S


@dataclass
class ChannelConfig:
    id: int = 1
    frame_rate: Optional[float] = None
    layers: list[int] = field(default_factory=list)


@dataclass
class Config:
    controller: ControllerSettings = field(default_factory=ControllerSettings)
    defaults: Defaults = field(default_factory=Defaults)
    channels: list[ChannelConfig] = field(default_factory=list)

    def frame_rate_for(self, channel: int) -> float:
        for ch in self.channels:
            if ch.id == channel and ch.frame_rate:
                return ch.frame_rate
        return self.defaults.frame_rate

    def validate(self) -> list[str]:
        errors = []
        for name in ("osc_port", "status_port", "command_port"):
            port = getattr(self.controller, name)
            if not (0 < port < 65536):
                errors.append(f"Invalid controller.{name}: {port}")
        if not isinstance(logging.getLevelName(self.controller.log_level.upper()), int):
            errors.append(f"Invalid controller.log_level: {self.controller.log_level}")
        if self.controller.heartbeat_interval_s <= 0:
            errors.append("controller.heartbeat_interval_s must be positive")
        if self.defaults.frame_rate <= 0:
            errors.append("defaults.frame_rate must be positive")
        if self.defaults.image_duration_s < 0:
            errors.append("defaults.image_duration_s must not be negative")
        if self.defaults.completion_threshold_s < 0:
            errors.append("defaults.completion_threshold_s must not be negative")
        ids_seen = set()
        for ch in self.channels:
            if ch.id < 1:
                errors.append(f"Channel id must be >= 1, got {ch.id}")
            if ch.id in ids_seen:
                errors.append(f"Duplicate channel id: {ch.id}")
            ids_seen.add(ch.id)
            if ch.frame_rate is not None and ch.frame_rate <= 0:
                errors.append(f"Channel {ch.id}: frame_rate must be positive")
        return errors


def _parse_controller(raw: dict) -> ControllerSettings:
    return ControllerSettings(
        osc_host=raw.get("osc_host", "0.0.0.0"),
        osc_port=raw.get("osc_port", DEFAULT_OSC_PORT),
        status_port=raw.get("status_port", DEFAULT_STATUS_PORT),
        command_host=raw.get("command_host", "127.0.0.1"),
        command_port=raw.get("command_port", DEFAULT_COMMAND_PORT),
        heartbeat_interval_s=float(raw.get("heartbeat_interval_s", 5.0)),
        log_dir=raw.get("log_dir", "logs"),
        log_level=str(raw.get("log_level", "INFO")).upper(),
        journal=raw.get("journal", True),
        advertise=raw.get("advertise", True),
    )


def _parse_defaults(raw: dict) -> Defaults:
    return Defaults(
        frame_rate=float(raw.get("frame_rate", DEFAULT_FRAME_RATE)),
        image_duration_s=float(raw.get("image_duration_s", 5.0)),
        completion_threshold_s=float(raw.get("completion_threshold_s", COMPLETION_THRESHOLD_S)),
    )


def _parse_channel(raw: dict) -> ChannelConfig:
    frame_rate = raw.get("frame_rate")
    return ChannelConfig(
        id=raw.get("id", 1),
        frame_rate=float(frame_rate) if frame_rate is not None else None,
        layers=list(raw.get("layers", [])),
    )


def load_config(path: Path) -> Config:
    """Load a layersync.toml configuration file."""
    with open(path, "rb") as f:
        data = tomllib.load(f)

    return Config(
        controller=_parse_controller(data.get("controller", {})),
        defaults=_parse_defaults(data.get("defaults", {})),
        channels=[_parse_channel(c) for c in data.get("channels", [])],
    )
