"""LayerSync OSC telemetry decoding (decode only; messages and bundles)."""
from __future__ import annotations
import logging
import struct
from dataclasses import dataclass, field
from typing import Union

logger = logging.getLogger("layersync.core.osc")

BUNDLE_MARKER = "#bundle"
# Padded marker (8 bytes) + 64-bit time tag
BUNDLE_HEADER_SIZE = 16
MAX_BUNDLE_DEPTH = 16

OscArg = Union[int, float, str, bool]


class OscDecodeError(Exception):
    """Raised internally when a packet or message cannot be decoded."""


@dataclass(frozen=True)
class OscMessage:
    address: str
    args: tuple[OscArg, ...] = field(default_factory=tuple)
    type_tags: str = ""


def padded_size(length: int) -> int:
    """Bytes occupied by a string of `length` chars: terminator + pad to 4."""
    return ((length + 1 + 3) // 4) * 4


def _read_string(data: bytes, offset: int) -> tuple[str, int]:
    end = data.find(b"\x00", offset)
    if end < 0:
        raise OscDecodeError(f"unterminated string at offset {offset}")
    text = data[offset:end].decode("utf-8", errors="replace")
    return text, offset + padded_size(end - offset)


def _require(data: bytes, offset: int, width: int, tag: str) -> None:
    if offset + width > len(data):
        raise OscDecodeError(f"truncated '{tag}' argument at offset {offset}")


def _read_int32(data: bytes, offset: int) -> tuple[int, int]:
    _require(data, offset, 4, "i")
    return struct.unpack_from(">i", data, offset)[0], offset + 4


def _read_float32(data: bytes, offset: int) -> tuple[float, int]:
    _require(data, offset, 4, "f")
    return struct.unpack_from(">f", data, offset)[0], offset + 4


def _read_int64(data: bytes, offset: int) -> tuple[int, int]:
    _require(data, offset, 8, "h")
    high, low = struct.unpack_from(">iI", data, offset)
    return high * 2**32 + low, offset + 8


def _read_float64(data: bytes, offset: int) -> tuple[float, int]:
    _require(data, offset, 8, "d")
    return struct.unpack_from(">d", data, offset)[0], offset + 8


def _read_true(data: bytes, offset: int) -> tuple[bool, int]:
    return True, offset


def _read_false(data: bytes, offset: int) -> tuple[bool, int]:
    return False, offset


_ARG_READERS = {
    "i": _read_int32,
    "f": _read_float32,
    "s": _read_string,
    "T": _read_true,
    "F": _read_false,
    "h": _read_int64,
    "d": _read_float64,
}


def decode_message(data: bytes) -> OscMessage:
    """Decode a single (non-bundle) message. Raises OscDecodeError."""
    address, offset = _read_string(data, 0)
    if offset >= len(data) or data[offset:offset + 1] != b",":
        # No type tag string: no typed arguments
        return OscMessage(address=address)

    tags, offset = _read_string(data, offset)
    args: list[OscArg] = []
    for tag in tags[1:]:
        reader = _ARG_READERS.get(tag)
        if reader is None:
            raise OscDecodeError(f"unknown type tag '{tag}' in {address}")
        value, offset = reader(data, offset)
        args.append(value)
    return OscMessage(address=address, args=tuple(args), type_tags=tags)


def _decode_bundle(data: bytes, out: list[OscMessage], depth: int) -> None:
    if depth > MAX_BUNDLE_DEPTH:
        raise OscDecodeError("bundle nesting too deep")
    if len(data) < BUNDLE_HEADER_SIZE:
        raise OscDecodeError("truncated bundle header")

    offset = BUNDLE_HEADER_SIZE
    while offset < len(data):
        if offset + 4 > len(data):
            logger.debug("Bundle ends with %d stray bytes", len(data) - offset)
            return
        (size,) = struct.unpack_from(">i", data, offset)
        offset += 4
        if size <= 0 or offset + size > len(data):
            logger.debug("Bad bundle element length %d at offset %d; stopping", size, offset - 4)
            return
        chunk = data[offset:offset + size]
        offset += size
        try:
            _decode_element(chunk, out, depth + 1)
        except OscDecodeError as e:
            logger.debug("Dropped bundle element: %s", e)


def _decode_element(data: bytes, out: list[OscMessage], depth: int) -> None:
    first, _ = _read_string(data, 0)
    if first == BUNDLE_MARKER:
        _decode_bundle(data, out, depth)
    else:
        out.append(decode_message(data))


def decode_packet(data: Union[bytes, bytearray, memoryview]) -> list[OscMessage]:
    """
    Decode a raw datagram into messages, flattening bundles in order.
    Never raises: malformed input yields whatever parsed before the fault.
    """
    out: list[OscMessage] = []
    try:
        _decode_element(bytes(data), out, 0)
    except OscDecodeError as e:
        logger.debug("Malformed OSC packet (%d bytes): %s", len(data), e)
    return out
