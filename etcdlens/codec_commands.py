"""Decoding and encoding of objects in the Kubernetes etcd storage encoding."""

from __future__ import annotations

import binascii
import io
import sys
from typing import BinaryIO, Iterable

from etcdlens.encoding import (
    STORAGE_BINARY_MEDIA_TYPE,
    convert,
    decode_summary,
    detect_and_extract,
)


def strip_newline(data: bytes) -> bytes:
    """Remove a single trailing newline byte, if there is one."""
    data = bytes(data)
    return data[:-1] if data.endswith(b"\n") else data


def read_input(filename: str = "", stdin: BinaryIO | None = None) -> bytes:
    """Read input from ``filename`` or, when it is empty, from ``stdin``.

    One trailing newline is stripped: etcdctl's --print-value-only adds one even
    to binary values, and none of the valid inputs end with a newline byte.
    """
    if filename:
        try:
            with open(filename, "rb") as handle:
                data = handle.read()
        except OSError as exc:
            raise OSError(f"error reading input file {filename}: {exc}") from exc
        return strip_newline(data)

    if stdin is None:
        stdin = sys.stdin.buffer
    isatty = getattr(stdin, "isatty", None)
    if isatty is not None and isatty():
        print("warn: waiting on stdin from tty", file=sys.stderr)
    try:
        data = stdin.read()
    except OSError as exc:
        raise OSError(f"unable to read data from stdin: {exc}") from exc
    return strip_newline(data)


def _decode_one(meta_only: bool, out_media_type: str, data: bytes) -> bytes:
    in_media_type, extracted = detect_and_extract(data)
    if meta_only:
        text = io.StringIO()
        decode_summary(in_media_type, extracted, text)
        return text.getvalue().encode("utf-8")
    encoded, _ = convert(in_media_type, out_media_type, extracted)
    return encoded


def run_decode(meta_only: bool, out_media_type: str, data: bytes, out: BinaryIO) -> None:
    """Decode stored data and write it to ``out`` in the requested media type."""
    out.write(_decode_one(meta_only, out_media_type, data))


def run_batch(
    meta_only: bool, out_media_type: str, lines: Iterable[bytes], out: BinaryIO
) -> None:
    """Decode hex-encoded values, one per line, writing a status column per line.

    Each decoded line is written as ``OK|<data>``; a line that cannot be decoded
    is written as ``ERROR:<reason>|``. A final line without a newline is ignored.
    """
    for line_number, line in enumerate(lines):
        if not line.endswith(b"\n"):
            return
        try:
            raw = binascii.unhexlify(strip_newline(line))
        except (binascii.Error, ValueError) as exc:
            raise ValueError(
                f"error decoding input on line {line_number} of --batch-process input: {exc}"
            ) from exc
        try:
            decoded = _decode_one(meta_only, out_media_type, raw)
        except ValueError as exc:
            out.write(f"ERROR:{exc}|\n".encode("utf-8"))
            continue
        out.write(b"OK|" + decoded + b"\n")


def run_encode(in_media_type: str, data: bytes, out: BinaryIO) -> None:
    """Encode data of the given media type into the binary storage encoding."""
    encoded, _ = convert(in_media_type, STORAGE_BINARY_MEDIA_TYPE, data)
    out.write(encoded)