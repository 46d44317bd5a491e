"""LayerSync telemetry address resolution.

Recognised shape: /channel/<N>/stage/layer/<M>/<property path...>
e.g. /channel/1/stage/layer/10/file/time
     /channel/1/stage/layer/10/foreground/producer/type
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PropertyKind(str, Enum):
    TIME = "time"
    FRAME = "frame"
    PAUSED = "paused"
    LOOP = "loop"
    PRODUCER_TYPE = "producerType"
    PATH = "path"
    NONE = "none"


_LAST_SEGMENT_KINDS = {
    "time": PropertyKind.TIME,
    "frame": PropertyKind.FRAME,
    "paused": PropertyKind.PAUSED,
    "loop": PropertyKind.LOOP,
    "path": PropertyKind.PATH,
}


_INDEX_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class ResolvedAddress:
    channel: Optional[int] = None
    layer: Optional[int] = None
    kind: PropertyKind = PropertyKind.NONE
    property_path: str = ""

    @property
    def is_layer_address(self) -> bool:
        return self.channel is not None and self.layer is not None

    @property
    def is_actionable(self) -> bool:
        return self.is_layer_address and self.kind is not PropertyKind.NONE


def _parse_index(segment: str) -> Optional[int]:
    # ASCII digits only; str.isdigit() also accepts superscripts int() rejects
    if not _INDEX_RE.fullmatch(segment):
        return None
    return int(segment)


def resolve_address(address: str) -> ResolvedAddress:
    parts = [p for p in address.split("/") if p]

    if len(parts) < 2 or parts[0] != "channel":
        return ResolvedAddress()
    channel = _parse_index(parts[1])
    if channel is None:
        return ResolvedAddress()

    if len(parts) < 5 or parts[2] != "stage" or parts[3] != "layer":
        return ResolvedAddress(channel=channel)
    layer = _parse_index(parts[4])
    if layer is None:
        return ResolvedAddress(channel=channel)

    property_parts = parts[5:]
    property_path = "/".join(property_parts)
    kind = PropertyKind.NONE
    if property_parts:
        last = property_parts[-1]
        if last in _LAST_SEGMENT_KINDS:
            kind = _LAST_SEGMENT_KINDS[last]
        elif last == "type" and "producer" in property_path:
            kind = PropertyKind.PRODUCER_TYPE

    return ResolvedAddress(channel=channel, layer=layer, kind=kind, property_path=property_path)
