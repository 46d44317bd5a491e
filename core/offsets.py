"""LayerSync offset and timecode arithmetic."""
from __future__ import annotations
import math
import re
from dataclasses import dataclass, asdict
from typing import Any, Optional

DEFAULT_FRAME_RATE = 25

_OFFSET_RE = re.compile(r"^(-)?(\d+):(\d+):(\d+):(\d+)$")


@dataclass(frozen=True)
class OffsetSpec:
    """Signed HH:MM:SS:FF delta relative to a trigger point."""
    hours: int = 0
    minutes: int = 0
    seconds: int = 0
    frames: int = 0
    negative: bool = False

    def validate(self, frame_rate: float = DEFAULT_FRAME_RATE) -> list[str]:
        errors = []
        for name in ("hours", "minutes", "seconds", "frames"):
            if getattr(self, name) < 0:
                errors.append(f"Offset {name} must be non-negative")
        if self.frames >= frame_rate:
            errors.append(f"Offset frames {self.frames} must be below frame rate {frame_rate}")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> "OffsetSpec":
        if not raw:
            return cls()
        return cls(
            hours=int(raw.get("hours", 0)),
            minutes=int(raw.get("minutes", 0)),
            seconds=int(raw.get("seconds", 0)),
            frames=int(raw.get("frames", 0)),
            negative=bool(raw.get("negative", False)),
        )


def offset_to_seconds(offset: Optional[OffsetSpec], frame_rate: float = DEFAULT_FRAME_RATE) -> float:
    """Signed seconds: before the trigger if negative, after it otherwise."""
    if offset is None:
        return 0.0
    total = offset.hours * 3600 + offset.minutes * 60 + offset.seconds + offset.frames / frame_rate
    return -total if offset.negative else float(total)


def seconds_to_offset(total_seconds: float, frame_rate: float = DEFAULT_FRAME_RATE) -> OffsetSpec:
    negative = total_seconds < 0
    abs_seconds = abs(total_seconds)
    whole = int(abs_seconds)
    frames = round((abs_seconds - whole) * frame_rate)
    # Rounding up to a full second carries into the seconds field
    if frames >= frame_rate:
        whole += 1
        frames = 0
    return OffsetSpec(
        hours=whole // 3600,
        minutes=(whole % 3600) // 60,
        seconds=whole % 60,
        frames=int(frames),
        negative=negative and (whole > 0 or frames > 0),
    )


def offset_to_frames(offset: Optional[OffsetSpec], frame_rate: float = DEFAULT_FRAME_RATE) -> int:
    return round(offset_to_seconds(offset, frame_rate) * frame_rate)


def is_offset_zero(offset: Optional[OffsetSpec]) -> bool:
    if offset is None:
        return True
    return offset.hours == 0 and offset.minutes == 0 and offset.seconds == 0 and offset.frames == 0


def format_offset(offset: Optional[OffsetSpec]) -> str:
    """Format as [-]HH:MM:SS:FF."""
    if offset is None:
        return "00:00:00:00"
    sign = "-" if offset.negative else ""
    return f"{sign}{offset.hours:02d}:{offset.minutes:02d}:{offset.seconds:02d}:{offset.frames:02d}"


def parse_offset_string(text: str) -> OffsetSpec:
    """Parse [-]HH:MM:SS:FF; anything else yields a zero offset."""
    if not text:
        return OffsetSpec()
    m = _OFFSET_RE.match(text.strip())
    if not m:
        return OffsetSpec()
    sign, hh, mm, ss, ff = m.groups()
    return OffsetSpec(
        hours=int(hh), minutes=int(mm), seconds=int(ss), frames=int(ff), negative=sign == "-"
    )


# ---- Timecode display helpers ----

def frames_to_timecode(frames: int, frame_rate: float = DEFAULT_FRAME_RATE) -> str:
    if not frames or frames < 0:
        return "00:00:00:00"
    total_seconds = frames / frame_rate
    hours = int(total_seconds // 3600)
    minutes = int((total_seconds % 3600) // 60)
    seconds = int(total_seconds % 60)
    rem_frames = int(frames % frame_rate)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}:{rem_frames:02d}"


def seconds_to_timecode(seconds: float, show_frames: bool = False,
                        frame_rate: float = DEFAULT_FRAME_RATE) -> str:
    if not seconds or seconds < 0:
        return "00:00:00:00" if show_frames else "00:00:00"
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    if show_frames:
        frames = int((seconds % 1) * frame_rate)
        return f"{hours:02d}:{minutes:02d}:{secs:02d}:{frames:02d}"
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def timecode_to_seconds(timecode: str, frame_rate: float = DEFAULT_FRAME_RATE) -> float:
    """HH:MM:SS:FF or HH:MM:SS to seconds; unparseable input is 0."""
    if not timecode:
        return 0.0
    try:
        parts = [int(p) for p in timecode.split(":")]
    except ValueError:
        return 0.0
    if len(parts) == 4:
        hours, minutes, seconds, frames = parts
        return hours * 3600 + minutes * 60 + seconds + frames / frame_rate
    if len(parts) == 3:
        hours, minutes, seconds = parts
        return float(hours * 3600 + minutes * 60 + seconds)
    return 0.0


def timecode_to_frames(timecode: str, frame_rate: float = DEFAULT_FRAME_RATE) -> int:
    return math.floor(timecode_to_seconds(timecode, frame_rate) * frame_rate)


def format_duration(seconds: Optional[float]) -> str:
    if not seconds or seconds <= 0:
        return "00:00"
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_remaining(remaining: Optional[float]) -> str:
    if not remaining or remaining <= 0:
        return "-00:00"
    return "-" + format_duration(remaining)


def calculate_progress(current: float, total: float) -> float:
    """Percentage 0-100, clamped."""
    if not total or total <= 0:
        return 0.0
    return min(100.0, max(0.0, current / total * 100.0))
