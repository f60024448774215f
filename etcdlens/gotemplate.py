"""A small evaluator for field-lookup templates in the text/template style."""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Mapping
from typing import Any

_FIELD_CHAIN = re.compile(r"(?:\.[A-Za-z_]\w*)+")
_SPACE = re.compile(r"\s*")


class TemplateError(ValueError):
    """Raised when a template cannot be parsed or evaluated."""


class _Missing:
    def __repr__(self) -> str:
        return "<no value>"


_MISSING = _Missing()


def _snake(name: str) -> str:
    text = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", text)
    return text.lower()


def _parse_action(inner: str) -> tuple[str, ...] | None:
    if inner.startswith("/*") and inner.endswith("*/"):
        return None
    if not inner:
        raise TemplateError("missing value for command")
    if inner == ".":
        return ()
    if _FIELD_CHAIN.fullmatch(inner):
        return tuple(inner[1:].split("."))
    raise TemplateError(f"unsupported action: {inner}")


def _parse(source: str) -> list[str | tuple[str, ...]]:
    parts: list[str | tuple[str, ...]] = []
    pos = 0
    while True:
        start = source.find("{{", pos)
        if start < 0:
            parts.append(source[pos:])
            return parts
        end = source.find("}}", start + 2)
        if end < 0:
            raise TemplateError("unclosed action")
        text = source[pos:start]
        inner = source[start + 2:end]
        if inner[:2] in ("- ", "-\t", "-\n"):
            text = text.rstrip()
            inner = inner[1:]
        trim_right = inner[-2:] in (" -", "\t-", "\n-")
        if trim_right:
            inner = inner[:-1]
        parts.append(text)
        action = _parse_action(inner.strip())
        if action is not None:
            parts.append(action)
        pos = end + 2
        if trim_right:
            pos = _SPACE.match(source, pos).end()


def _lookup(value: Any, name: str) -> Any:
    if value is _MISSING or value is None:
        return _MISSING
    if isinstance(value, Mapping):
        return value.get(name, _MISSING)
    for attr in (name, _snake(name)):
        if not attr.startswith("_") and hasattr(value, attr):
            return getattr(value, attr)
    raise TemplateError(f"can't evaluate field {name} in type {type(value).__name__}")


def _format(value: Any) -> str:
    if value is _MISSING:
        return "<no value>"
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        inner = " ".join(f"{k}:{_format(value[k])}" for k in sorted(value))
        return f"map[{inner}]"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_format(v) for v in value) + "]"
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        inner = " ".join(_format(getattr(value, f.name)) for f in dataclasses.fields(value))
        return "{" + inner + "}"
    return str(value)


class Template:
    """A parsed template of literal text and ``{{.Field.path}}`` actions."""

    def __init__(self, source: str) -> None:
        self.source = source
        self._parts = _parse(source)

    def execute(self, data: Any) -> str:
        """Render the template against ``data``."""
        out = []
        for part in self._parts:
            if isinstance(part, str):
                out.append(part)
                continue
            value = data
            for name in part:
                value = _lookup(value, name)
            out.append(_format(value))
        return "".join(out)