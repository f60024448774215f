"""Minimal protobuf wire-format reading and writing."""

from __future__ import annotations

from typing import Iterator, NamedTuple

VARINT = 0
FIXED64 = 1
LENGTH_DELIMITED = 2
FIXED32 = 5

_MASK64 = (1 << 64) - 1
_MAX_VARINT_SHIFT = 70


class ProtoDecodeError(ValueError):
    """Raised when bytes are not valid protobuf wire data."""


class Field(NamedTuple):
    """One decoded field: its number, wire type and raw value."""

    number: int
    wire_type: int
    value: int | bytes


def read_varint(data: bytes, pos: int) -> tuple[int, int]:
    """Read an unsigned varint at ``pos``; return the value and the next position."""
    result = 0
    shift = 0
    while True:
        if shift >= _MAX_VARINT_SHIFT:
            raise ProtoDecodeError("varint is too long")
        if pos >= len(data):
            raise ProtoDecodeError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if byte < 0x80:
            return result & _MASK64, pos
        shift += 7


def _take(data: bytes, pos: int, size: int) -> tuple[bytes, int]:
    end = pos + size
    if end > len(data):
        raise ProtoDecodeError("unexpected end of data")
    return bytes(data[pos:end]), end


def iter_fields(data: bytes) -> Iterator[Field]:
    """Yield every field of a protobuf message in the order it is stored."""
    pos = 0
    while pos < len(data):
        tag, pos = read_varint(data, pos)
        number, wire_type = tag >> 3, tag & 0x7
        if number == 0:
            raise ProtoDecodeError("illegal field number 0")
        value: int | bytes
        if wire_type == VARINT:
            value, pos = read_varint(data, pos)
        elif wire_type == FIXED64:
            raw, pos = _take(data, pos, 8)
            value = int.from_bytes(raw, "little")
        elif wire_type == LENGTH_DELIMITED:
            length, pos = read_varint(data, pos)
            value, pos = _take(data, pos, length)
        elif wire_type == FIXED32:
            raw, pos = _take(data, pos, 4)
            value = int.from_bytes(raw, "little")
        else:
            raise ProtoDecodeError(f"unsupported wire type {wire_type} for field {number}")
        yield Field(number, wire_type, value)


def encode_varint(value: int) -> bytes:
    """Encode an integer as a varint; negative values use 64-bit two's complement."""
    if value < 0:
        value += 1 << 64
    if not 0 <= value <= _MASK64:
        raise ValueError(f"value {value} does not fit in 64 bits")
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def _tag(number: int, wire_type: int) -> bytes:
    if number <= 0:
        raise ValueError(f"invalid field number {number}")
    return encode_varint((number << 3) | wire_type)


def encode_varint_field(number: int, value: int) -> bytes:
    """Encode a varint field with its tag."""
    return _tag(number, VARINT) + encode_varint(value)


def encode_bytes_field(number: int, value: bytes | str) -> bytes:
    """Encode a length-delimited field with its tag; strings are stored as UTF-8."""
    if isinstance(value, str):
        value = value.encode("utf-8")
    return _tag(number, LENGTH_DELIMITED) + encode_varint(len(value)) + bytes(value)