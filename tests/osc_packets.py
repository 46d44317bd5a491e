"""Test-only OSC encoder used to build telemetry packets."""
from __future__ import annotations
import struct


def osc_string(s: str) -> bytes:
    """Null-terminated, padded to a 4-byte boundary."""
    b = s.encode("utf-8") + b"\x00"
    return b + b"\x00" * ((4 - len(b) % 4) % 4)


def encode_message(address: str, type_tags: str = "", *args) -> bytes:
    tags = type_tags if type_tags.startswith(",") else "," + type_tags
    out = osc_string(address) + osc_string(tags)
    values = iter(args)
    for tag in tags[1:]:
        if tag in "TF":
            continue
        value = next(values)
        if tag == "i":
            out += struct.pack(">i", value)
        elif tag == "f":
            out += struct.pack(">f", value)
        elif tag == "s":
            out += osc_string(value)
        elif tag == "h":
            out += struct.pack(">q", value)
        elif tag == "d":
            out += struct.pack(">d", value)
        else:
            raise ValueError(f"cannot encode tag {tag!r}")
    return out


def encode_bundle(*elements: bytes, timetag: int = 1) -> bytes:
    out = osc_string("#bundle") + struct.pack(">Q", timetag)
    for element in elements:
        out += struct.pack(">i", len(element)) + element
    return out


def time_message(channel: int, layer: int, *values: float) -> bytes:
    return encode_message(
        f"/channel/{channel}/stage/layer/{layer}/file/time", "f" * len(values), *values
    )
