"""Printers that write key-values read from etcd in YAML or JSON."""

from __future__ import annotations

from typing import BinaryIO, Protocol

from etcdlens.client import KeyValue
from etcdlens.encoding import JSON_MEDIA_TYPE, YAML_MEDIA_TYPE, convert, detect_and_extract


class Printer(Protocol):
    def print(self, kv: KeyValue) -> None: ...


class YamlPrinter:
    """Writes each key-value as a YAML document headed by a comment line.

    Values that cannot be decoded are written raw inside comments instead.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream

    def _write_raw(self, kv: KeyValue, error: Exception) -> None:
        self.stream.write(
            b"---\n# " + kv.key + f" | raw | {error}\n# ".encode("utf-8") + kv.value + b"\n"
        )

    def print(self, kv: KeyValue) -> None:
        try:
            in_media_type, _ = detect_and_extract(kv.value)
            data, _ = convert(in_media_type, YAML_MEDIA_TYPE, kv.value)
        except ValueError as exc:
            self._write_raw(kv, exc)
            return
        self.stream.write(
            b"---\n# " + kv.key + f" | {in_media_type}\n".encode("utf-8") + data + b"\n"
        )


class JsonPrinter:
    """Writes each key-value's object as JSON."""

    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream

    def print(self, kv: KeyValue) -> None:
        in_media_type, _ = detect_and_extract(kv.value)
        data, _ = convert(in_media_type, JSON_MEDIA_TYPE, kv.value)
        self.stream.write(data)


def new_printer(stream: BinaryIO, printer_type: str) -> Printer:
    """Return the printer for ``printer_type`` ('yaml' or 'json')."""
    if printer_type == "yaml":
        return YamlPrinter(stream)
    if printer_type == "json":
        return JsonPrinter(stream)
    raise ValueError(f'invalid output format: "{printer_type}"')