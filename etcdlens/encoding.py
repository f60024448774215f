"""Detection and conversion of Kubernetes objects in their etcd storage encodings."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, TextIO

import yaml

from etcdlens.protowire import (
    LENGTH_DELIMITED,
    ProtoDecodeError,
    encode_bytes_field,
    iter_fields,
)

STORAGE_BINARY_MEDIA_TYPE = "application/vnd.kubernetes.storagebinary"
PROTOBUF_MEDIA_TYPE = "application/vnd.kubernetes.protobuf"
YAML_MEDIA_TYPE = "application/yaml"
JSON_MEDIA_TYPE = "application/json"

PROTOBUF_SHORTNAME = "proto"
YAML_SHORTNAME = "yaml"
JSON_SHORTNAME = "json"

PROTO_ENCODING_PREFIX = b"k8s\x00"

_JSON_START_CHARS = b"{["
_JSON_WHITESPACE = b" \t\r\n"


class EncodingError(ValueError):
    """Raised when data cannot be detected, decoded or converted."""


@dataclass
class TypeMeta:
    """The apiVersion and kind of a Kubernetes object."""

    api_version: str = ""
    kind: str = ""


@dataclass
class Unknown:
    """The envelope wrapping a payload in the binary storage encoding."""

    type_meta: TypeMeta = field(default_factory=TypeMeta)
    raw: bytes = b""
    content_encoding: str = ""
    content_type: str = ""


class _Loader(yaml.SafeLoader):
    """Safe YAML loader that keeps timestamps as plain strings."""


_Loader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _go_bytes(data: bytes) -> str:
    return "[" + " ".join(str(b) for b in data) + "]"


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON literal {name}")


def _json_loads(data: bytes) -> Any:
    return json.loads(data.decode("utf-8"), parse_constant=_reject_constant)


def _yaml_dump(obj: Any) -> bytes:
    return yaml.safe_dump(
        obj, default_flow_style=False, sort_keys=True, allow_unicode=True
    ).encode("utf-8")


def _json_dump(obj: Any) -> bytes:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def to_media_type(out: str) -> str:
    """Map an output flag value (yaml, json, proto) to its media type."""
    media_types = {
        YAML_SHORTNAME: YAML_MEDIA_TYPE,
        JSON_SHORTNAME: JSON_MEDIA_TYPE,
        PROTOBUF_SHORTNAME: PROTOBUF_MEDIA_TYPE,
    }
    try:
        return media_types[out]
    except KeyError:
        raise EncodingError(f"unrecognized 'out' flag value: {out}") from None


def detect_and_convert(out_media_type: str, data: bytes) -> tuple[bytes, TypeMeta]:
    """Detect the media type of stored data and convert it to the given output type."""
    in_media_type, extracted = detect_and_extract(data)
    return convert(in_media_type, out_media_type, extracted)


def convert(in_media_type: str, out_media_type: str, data: bytes) -> tuple[bytes, TypeMeta]:
    """Convert data between media types; return the encoded bytes and the type meta."""
    if in_media_type == STORAGE_BINARY_MEDIA_TYPE and out_media_type == PROTOBUF_MEDIA_TYPE:
        unknown = decode_unknown(data)
        return unknown.raw, unknown.type_meta

    if in_media_type == PROTOBUF_MEDIA_TYPE and out_media_type == STORAGE_BINARY_MEDIA_TYPE:
        raise EncodingError(
            "unsupported conversion: protobuf to kubernetes binary storage representation"
        )

    type_meta = decode_type_meta(in_media_type, data)

    if in_media_type == out_media_type:
        encoded = bytes(data)
        if out_media_type == JSON_MEDIA_TYPE:
            encoded += b"\n"
        return encoded, type_meta

    if in_media_type == JSON_MEDIA_TYPE and out_media_type == YAML_MEDIA_TYPE:
        try:
            value = _json_loads(data)
        except ValueError as exc:
            raise EncodingError(f"error decoding from {in_media_type}: {exc}") from exc
        if not isinstance(value, dict):
            raise EncodingError(
                f"error decoding from {in_media_type}: expected a JSON object"
            )
        return _yaml_dump(value), type_meta

    _check_group_version(type_meta.api_version)
    obj = _decode_object(in_media_type, data, type_meta)
    return _encode_object(out_media_type, obj, type_meta), type_meta


def _check_group_version(api_version: str) -> None:
    if api_version in ("", "/"):
        return
    if api_version.count("/") > 1:
        raise EncodingError(
            f"unable to parse meta APIVersion '{api_version}': "
            f"unexpected GroupVersion string: {api_version}"
        )


def _decode_object(media_type: str, data: bytes, type_meta: TypeMeta) -> Any:
    try:
        if media_type == JSON_MEDIA_TYPE:
            obj = _json_loads(data)
        elif media_type == YAML_MEDIA_TYPE:
            obj = yaml.load(data, Loader=_Loader)
        elif media_type == STORAGE_BINARY_MEDIA_TYPE:
            unknown = decode_unknown(data)
            if unknown.content_type not in ("", JSON_MEDIA_TYPE):
                raise ValueError(
                    f"no type information available to decode {unknown.content_type} "
                    f"payload of {type_meta.api_version}/{type_meta.kind}"
                )
            obj = _json_loads(unknown.raw)
        else:
            raise ValueError(f"no serializer registered for {media_type}")
    except (ValueError, yaml.YAMLError) as exc:
        raise EncodingError(f"error decoding from {media_type}: {exc}") from exc
    if isinstance(obj, dict):
        if type_meta.api_version:
            obj.setdefault("apiVersion", type_meta.api_version)
        if type_meta.kind:
            obj.setdefault("kind", type_meta.kind)
    return obj


def _encode_object(media_type: str, obj: Any, type_meta: TypeMeta) -> bytes:
    try:
        if media_type == JSON_MEDIA_TYPE:
            return _json_dump(obj) + b"\n"
        if media_type == YAML_MEDIA_TYPE:
            return _yaml_dump(obj)
        if media_type == STORAGE_BINARY_MEDIA_TYPE:
            unknown = Unknown(type_meta=type_meta, raw=_json_dump(obj), content_type=JSON_MEDIA_TYPE)
            return encode_unknown(unknown)
        if media_type == PROTOBUF_MEDIA_TYPE:
            raise ValueError(
                f"no type information available to encode "
                f"{type_meta.api_version}/{type_meta.kind} as protobuf"
            )
        raise ValueError(f"no serializer registered for {media_type}")
    except (ValueError, TypeError, yaml.YAMLError) as exc:
        raise EncodingError(f"error encoding to {media_type}: {exc}") from exc


def detect_and_extract(data: bytes) -> tuple[str, bytes]:
    """Find the start of binary or JSON data; return its media type and the data."""
    proto = try_find_proto(data)
    if proto is not None:
        return STORAGE_BINARY_MEDIA_TYPE, proto
    js = try_find_json(data)
    if js is not None:
        return JSON_MEDIA_TYPE, js
    raise EncodingError(
        "error reading input, does not appear to contain valid JSON or binary data"
    )


def try_find_proto(data: bytes) -> bytes | None:
    """Return the data from the storage encoding prefix onwards, or None if absent."""
    index = bytes(data).find(PROTO_ENCODING_PREFIX)
    if index < 0:
        return None
    return bytes(data[index:])


def _find_json_start(data: bytes) -> int:
    positions = [p for p in (data.find(c) for c in (b"{", b"[")) if p >= 0]
    return min(positions) if positions else -1


def try_find_json(data: bytes) -> bytes | None:
    """Return the first suffix starting at '{' or '[' that is one valid JSON value."""
    data = bytes(data)
    index = _find_json_start(data)
    while index >= 0:
        data = data[index:]
        if len(data) < 2:
            break
        try:
            _json_loads(data)
        except (ValueError, UnicodeDecodeError):
            pass
        else:
            return data.rstrip(_JSON_WHITESPACE)
        data = data[1:]
        index = _find_json_start(data)
    return None


def decode_summary(in_media_type: str, data: bytes, out: TextIO) -> None:
    """Write the apiVersion and kind of the given data to ``out``."""
    type_meta = decode_type_meta(in_media_type, data)
    out.write(f"TypeMeta.APIVersion: {type_meta.api_version}\n")
    out.write(f"TypeMeta.Kind: {type_meta.kind}\n")


def _field_text(value: int | bytes, wire_type: int, name: str) -> str:
    if wire_type != LENGTH_DELIMITED or not isinstance(value, bytes):
        raise EncodingError(f"wrong wire type for field {name}")
    return value.decode("utf-8", errors="replace")


def _parse_type_meta(data: bytes, type_meta: TypeMeta) -> None:
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            type_meta.api_version = _field_text(value, wire_type, "APIVersion")
        elif number == 2:
            type_meta.kind = _field_text(value, wire_type, "Kind")


def decode_unknown(data: bytes) -> Unknown:
    """Decode the storage envelope from prefixed binary storage data."""
    data = bytes(data)
    if len(data) < 4:
        raise EncodingError(
            f"input too short, expected 4 byte proto encoding prefix but got {_go_bytes(data)}"
        )
    if data[:4] != PROTO_ENCODING_PREFIX:
        raise EncodingError(
            f"first 4 bytes {_go_bytes(data[:4])}, do not match proto encoding prefix "
            f"of {_go_bytes(PROTO_ENCODING_PREFIX)}"
        )
    unknown = Unknown()
    try:
        for number, wire_type, value in iter_fields(data[4:]):
            if number == 1:
                if wire_type != LENGTH_DELIMITED or not isinstance(value, bytes):
                    raise EncodingError("wrong wire type for field TypeMeta")
                _parse_type_meta(value, unknown.type_meta)
            elif number == 2:
                if wire_type != LENGTH_DELIMITED or not isinstance(value, bytes):
                    raise EncodingError("wrong wire type for field Raw")
                unknown.raw = value
            elif number == 3:
                unknown.content_encoding = _field_text(value, wire_type, "ContentEncoding")
            elif number == 4:
                unknown.content_type = _field_text(value, wire_type, "ContentType")
    except ProtoDecodeError as exc:
        raise EncodingError(str(exc)) from exc
    return unknown


def encode_unknown(unknown: Unknown) -> bytes:
    """Encode a storage envelope, including the storage encoding prefix."""
    type_meta = encode_bytes_field(1, unknown.type_meta.api_version) + encode_bytes_field(
        2, unknown.type_meta.kind
    )
    body = (
        encode_bytes_field(1, type_meta)
        + encode_bytes_field(2, unknown.raw)
        + encode_bytes_field(3, unknown.content_encoding)
        + encode_bytes_field(4, unknown.content_type)
    )
    return PROTO_ENCODING_PREFIX + body


def _type_meta_from_mapping(obj: Any, media_type: str) -> TypeMeta:
    if obj is None:
        return TypeMeta()
    if not isinstance(obj, dict):
        raise EncodingError(f"cannot decode type meta from {media_type}: expected an object")
    result = TypeMeta()
    for key, attr in (("apiVersion", "api_version"), ("kind", "kind")):
        value = obj.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise EncodingError(
                f"cannot decode type meta from {media_type}: {key} must be a string"
            )
        setattr(result, attr, value)
    return result


def decode_type_meta(in_media_type: str, data: bytes) -> TypeMeta:
    """Read the type meta of JSON, YAML or binary storage data."""
    if in_media_type == JSON_MEDIA_TYPE:
        try:
            obj = _json_loads(bytes(data))
        except (ValueError, UnicodeDecodeError) as exc:
            raise EncodingError(str(exc)) from exc
        return _type_meta_from_mapping(obj, in_media_type)
    if in_media_type == STORAGE_BINARY_MEDIA_TYPE:
        return decode_unknown(data).type_meta
    if in_media_type == YAML_MEDIA_TYPE:
        try:
            obj = yaml.load(bytes(data), Loader=_Loader)
        except yaml.YAMLError as exc:
            raise EncodingError(str(exc)) from exc
        return _type_meta_from_mapping(obj, in_media_type)
    raise EncodingError(f"unsupported inMediaType {in_media_type}")