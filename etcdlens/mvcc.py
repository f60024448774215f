"""etcd MVCC records: key-value messages and revision keys."""

from __future__ import annotations

import struct
from dataclasses import dataclass

from etcdlens.protowire import (
    LENGTH_DELIMITED,
    VARINT,
    ProtoDecodeError,
    encode_bytes_field,
    encode_varint_field,
    iter_fields,
)

REV_BYTES_LEN = 8 + 1 + 8
MARKED_REV_BYTES_LEN = REV_BYTES_LEN + 1
MARK_BYTE_POSITION = MARKED_REV_BYTES_LEN - 1
MARK_TOMBSTONE = ord("t")

_INT64_SIGN = 1 << 63


def _to_int64(value: int) -> int:
    return value - (1 << 64) if value >= _INT64_SIGN else value


@dataclass
class KeyValue:
    """One stored version of an etcd key."""

    key: bytes = b""
    create_revision: int = 0
    mod_revision: int = 0
    version: int = 0
    value: bytes = b""
    lease: int = 0

    def to_bytes(self) -> bytes:
        """Encode the record as a protobuf message, omitting zero-valued fields."""
        parts = []
        if self.key:
            parts.append(encode_bytes_field(1, self.key))
        for number, number_value in (
            (2, self.create_revision),
            (3, self.mod_revision),
            (4, self.version),
        ):
            if number_value:
                parts.append(encode_varint_field(number, number_value))
        if self.value:
            parts.append(encode_bytes_field(5, self.value))
        if self.lease:
            parts.append(encode_varint_field(6, self.lease))
        return b"".join(parts)


_INT_FIELDS = {2: "create_revision", 3: "mod_revision", 4: "version", 6: "lease"}
_BYTES_FIELDS = {1: "key", 5: "value"}


def parse_key_value(data: bytes) -> KeyValue:
    """Decode a protobuf-encoded etcd key-value record."""
    kv = KeyValue()
    for number, wire_type, value in iter_fields(bytes(data)):
        if number in _BYTES_FIELDS:
            if wire_type != LENGTH_DELIMITED:
                raise ProtoDecodeError(f"wrong wire type {wire_type} for field {number}")
            setattr(kv, _BYTES_FIELDS[number], value)
        elif number in _INT_FIELDS:
            if wire_type != VARINT:
                raise ProtoDecodeError(f"wrong wire type {wire_type} for field {number}")
            setattr(kv, _INT_FIELDS[number], _to_int64(value))
    return kv


@dataclass(frozen=True)
class Revision:
    """A revision key: main revision, sub revision and tombstone mark."""

    main: int
    sub: int
    tombstone: bool = False


def bytes_to_rev(data: bytes) -> Revision:
    """Decode a revision key as stored in the key bucket."""
    data = bytes(data)
    if len(data) < REV_BYTES_LEN:
        raise ValueError(f"revision key too short: {len(data)} bytes")
    main = struct.unpack(">q", data[0:8])[0]
    sub = struct.unpack(">q", data[9:17])[0]
    tombstone = len(data) >= MARKED_REV_BYTES_LEN and data[MARK_BYTE_POSITION] == MARK_TOMBSTONE
    return Revision(main=main, sub=sub, tombstone=tombstone)


def rev_to_bytes(main: int, sub: int, tombstone: bool = False) -> bytes:
    """Encode a revision key, adding the tombstone mark when requested."""
    data = struct.pack(">q", main) + b"_" + struct.pack(">q", sub)
    if tombstone:
        data += bytes([MARK_TOMBSTONE])
    return data