"""A small etcd client that reads Kubernetes objects by group-resource."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Protocol, Sequence

import grpc

from etcdlens.keys import GroupResource, get_prefix
from etcdlens.mvcc import KeyValue as StoredKeyValue
from etcdlens.mvcc import parse_key_value
from etcdlens.protowire import (
    LENGTH_DELIMITED,
    VARINT,
    ProtoDecodeError,
    encode_bytes_field,
    encode_varint_field,
    iter_fields,
)

RANGE_METHOD = "/etcdserverpb.KV/Range"
AUTHENTICATE_METHOD = "/etcdserverpb.Auth/Authenticate"

_NO_PREFIX_END = b"\x00"
_INT64_SIGN = 1 << 63


class ClientError(ValueError):
    """Raised when a request to etcd cannot be made or fails."""


@dataclass(frozen=True)
class KeyValue:
    """A key and its value as handed to response callbacks."""

    key: bytes
    value: bytes


@dataclass
class RangeResponse:
    """The parts of a range response this client uses."""

    kvs: list[StoredKeyValue] = field(default_factory=list)
    more: bool = False
    revision: int = 0


class RangeBackend(Protocol):
    def range(self, key: bytes, range_end: bytes, limit: int, revision: int) -> RangeResponse: ...


def prefix_range_end(key: bytes) -> bytes:
    """Return the range end that covers every key starting with ``key``."""
    end = bytearray(key)
    while end:
        if end[-1] < 0xFF:
            end[-1] += 1
            return bytes(end)
        end.pop()
    return _NO_PREFIX_END


def _to_int64(value: int) -> int:
    return value - (1 << 64) if value >= _INT64_SIGN else value


def _encode_range_request(key: bytes, range_end: bytes, limit: int, revision: int) -> bytes:
    parts = [encode_bytes_field(1, key)]
    if range_end:
        parts.append(encode_bytes_field(2, range_end))
    if limit:
        parts.append(encode_varint_field(3, limit))
    if revision:
        parts.append(encode_varint_field(4, revision))
    return b"".join(parts)


def _header_revision(data: bytes) -> int:
    revision = 0
    for number, wire_type, value in iter_fields(data):
        if number == 3 and wire_type == VARINT:
            revision = _to_int64(value)
    return revision


def _decode_range_response(data: bytes) -> RangeResponse:
    resp = RangeResponse()
    try:
        for number, wire_type, value in iter_fields(data):
            if number == 1 and wire_type == LENGTH_DELIMITED:
                resp.revision = _header_revision(value)
            elif number == 2 and wire_type == LENGTH_DELIMITED:
                resp.kvs.append(parse_key_value(value))
            elif number == 3 and wire_type == VARINT:
                resp.more = bool(value)
    except ProtoDecodeError as exc:
        raise ClientError(f"invalid range response: {exc}") from exc
    return resp


def _decode_token(data: bytes) -> str:
    try:
        for number, wire_type, value in iter_fields(data):
            if number == 2 and wire_type == LENGTH_DELIMITED:
                return value.decode("utf-8")
    except (ProtoDecodeError, UnicodeDecodeError) as exc:
        raise ClientError(f"invalid authenticate response: {exc}") from exc
    return ""


def _target(endpoint: str) -> str:
    for scheme in ("http://", "https://"):
        if endpoint.startswith(scheme):
            return endpoint[len(scheme):]
    return endpoint


class EtcdKV:
    """Range access to an etcd cluster over gRPC."""

    def __init__(
        self,
        endpoints: Sequence[str],
        tls: grpc.ChannelCredentials | None = None,
        username: str = "",
        password: str = "",
    ) -> None:
        if not endpoints:
            raise ClientError("no endpoints given")
        target = _target(endpoints[0])
        if tls is not None:
            self._channel = grpc.secure_channel(target, tls)
        else:
            self._channel = grpc.insecure_channel(target)
        self._range_call = self._channel.unary_unary(RANGE_METHOD)
        self._metadata: list[tuple[str, str]] = []
        if username:
            self._metadata.append(("token", self._authenticate(username, password)))

    def _authenticate(self, username: str, password: str) -> str:
        call = self._channel.unary_unary(AUTHENTICATE_METHOD)
        request = encode_bytes_field(1, username) + encode_bytes_field(2, password)
        try:
            reply = call(request)
        except grpc.RpcError as exc:
            self._channel.close()
            raise ClientError(f"authentication failed: {exc.details()}") from exc
        return _decode_token(reply)

    def range(self, key: bytes, range_end: bytes = b"", limit: int = 0, revision: int = 0) -> RangeResponse:
        """Fetch keys in [key, range_end), or only ``key`` when range_end is empty."""
        request = _encode_range_request(key, range_end, limit, revision)
        try:
            reply = self._range_call(request, metadata=self._metadata or None)
        except grpc.RpcError as exc:
            raise ClientError(f"etcd range failed: {exc.details()}") from exc
        return _decode_range_response(reply)

    def close(self) -> None:
        """Close the underlying channel."""
        self._channel.close()

    def __enter__(self) -> "EtcdKV":
        return self

    def __exit__(self, *args) -> None:
        self.close()


class Client:
    """Reads Kubernetes objects from etcd, calling back for each key-value."""

    def __init__(self, kv: RangeBackend) -> None:
        self._kv = kv

    @staticmethod
    def _deliver(resp: RangeResponse, response: Callable[[KeyValue], None]) -> None:
        for kv in resp.kvs:
            response(KeyValue(key=kv.key, value=kv.value))

    def get(
        self,
        prefix: str,
        *,
        group_resource: GroupResource | None = None,
        name: str = "",
        namespace: str = "",
        chunk_size: int = 0,
        revision: int = 0,
        response: Callable[[KeyValue], None] | None = None,
    ) -> int:
        """Pass every matching key-value to ``response``; return the revision read at."""
        if not prefix:
            raise ClientError("prefix is required")
        if response is None:
            raise ClientError("response is required")

        gr = group_resource if group_resource is not None else GroupResource()
        try:
            path, single = get_prefix(prefix, gr, name, namespace)
        except ValueError as exc:
            raise ClientError(str(exc)) from exc

        key = path.encode("utf-8")
        range_end = b"" if single else prefix_range_end(key)

        if single or chunk_size == 0:
            resp = self._kv.range(key, range_end, 0, revision)
            self._deliver(resp, response)
            return resp.revision

        rev = revision
        while True:
            resp = self._kv.range(key, range_end, chunk_size, rev)
            self._deliver(resp, response)
            # Pin later pages to the revision of the first response.
            if rev == 0:
                rev = resp.revision
            if not resp.more or not resp.kvs:
                break
            key = resp.kvs[-1].key + b"\x00"
        return rev