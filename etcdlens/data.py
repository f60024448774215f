"""Queries over the etcd key space stored in a bolt database file."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Protocol

from etcdlens.boltdb import BoltDB, Bucket
from etcdlens.encoding import JSON_MEDIA_TYPE, EncodingError, TypeMeta, detect_and_convert
from etcdlens.gotemplate import Template, TemplateError
from etcdlens.mvcc import KeyValue, Revision, bytes_to_rev, parse_key_value
from etcdlens.protowire import ProtoDecodeError

KEY_BUCKET = b"key"
META_BUCKET = b"meta"
FINISHED_COMPACT_KEY_NAME = b"finishedCompactRev"


class DataError(ValueError):
    """Raised when the database cannot be queried as requested."""


@dataclass
class KeySummaryStats:
    """Size and version statistics for one key."""

    version_count: int = 0
    key_size: int = 0
    value_size: int = 0
    all_versions_key_size: int = 0
    all_versions_value_size: int = 0


@dataclass
class KeySummary:
    """A Kubernetes object stored in etcd."""

    key: str = ""
    version: int = 0
    value: Any = None
    type_meta: TypeMeta | None = None
    stats: KeySummaryStats = field(default_factory=KeySummaryStats)

    def value_json(self) -> str:
        """Return the value as compact JSON."""
        try:
            text = json.dumps(self.value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
        except (TypeError, ValueError):
            return ""
        return text.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")


@dataclass(frozen=True)
class KeySummaryProjection:
    """Which optional fields to include in key summaries."""

    has_key: bool = True
    has_value: bool = True


PROJECT_EVERYTHING = KeySummaryProjection(has_key=True, has_value=True)


class Filter(Protocol):
    def accept(self, summary: KeySummary) -> bool: ...


@dataclass(frozen=True)
class PrefixFilter:
    """Accept summaries whose key starts with a prefix."""

    prefix: str

    def accept(self, summary: KeySummary) -> bool:
        return summary.key.startswith(self.prefix)


class ConstraintOp(Enum):
    EQUALS = "="

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class FieldConstraint:
    """A '<field>=<value>' constraint on a template field."""

    lhs: str
    op: ConstraintOp
    rhs: str

    def __str__(self) -> str:
        return f"{self.lhs}{self.op}{self.rhs}"

    def build_filter(self) -> "FieldFilter":
        try:
            template = Template("{{" + self.lhs + "}}")
        except TemplateError as exc:
            raise DataError(f"invalid filter field {self.lhs}: {exc}") from exc
        return FieldFilter(self, template)


@dataclass(frozen=True)
class FieldFilter:
    """Filter according to a field constraint."""

    constraint: FieldConstraint
    template: Template

    def accept(self, summary: KeySummary) -> bool:
        try:
            value = self.template.execute(summary)
        except TemplateError as exc:
            raise DataError(
                f"failed to look up field in filter {self.constraint.lhs}: {exc}"
            ) from exc
        if self.constraint.op is ConstraintOp.EQUALS:
            return value == self.constraint.rhs
        raise DataError(f"Unsupported filter operator: {self.constraint.op}")


@dataclass(frozen=True)
class Checksum:
    hash: int
    revision: int
    compact_revision: int


def _crc32c_table() -> list[int]:
    table = []
    for n in range(256):
        crc = n
        for _ in range(8):
            crc = (crc >> 1) ^ 0x82F63B78 if crc & 1 else crc >> 1
        table.append(crc)
    return table


_CRC32C = _crc32c_table()


def _crc32c_update(crc: int, data: bytes) -> int:
    crc ^= 0xFFFFFFFF
    for byte in data:
        crc = _CRC32C[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ 0xFFFFFFFF


def _bolt_open(path: str) -> BoltDB:
    if not os.path.exists(path):
        raise DataError(f"file does not exist: {path}")
    return BoltDB(path)


def _bucket(db: BoltDB, name: bytes) -> Bucket:
    bucket = db.bucket(name)
    if bucket is None:
        raise DataError(f"bucket {name.decode()} not found")
    return bucket


def _walk(db: BoltDB) -> Iterator[tuple[Revision, KeyValue]]:
    for key, value in _bucket(db, KEY_BUCKET).items():
        revision = bytes_to_rev(key)
        try:
            kv = parse_key_value(value)
        except ProtoDecodeError as exc:
            raise DataError(str(exc)) from exc
        yield revision, kv


def _compact_revision(db: BoltDB) -> int:
    raw = _bucket(db, META_BUCKET).get(FINISHED_COMPACT_KEY_NAME)
    return bytes_to_rev(raw).main if raw else 0


def _walk_revision(db: BoltDB, revision: int) -> Iterator[tuple[Revision, KeyValue]]:
    if revision > 0 and revision < _compact_revision(db):
        raise DataError("required revision has been compacted")
    latest: dict[bytes, tuple[Revision, KeyValue]] = {}
    for rev, kv in _walk(db):
        if revision > 0 and rev.main > revision:
            continue
        current = latest.get(kv.key)
        if (current[0].main if current else 0) < rev.main:
            latest[kv.key] = (rev, kv)
    for key in sorted(latest):
        rev, kv = latest[key]
        if not rev.tombstone:
            yield rev, kv


def hash_by_revision(filename: str, revision: int = 0) -> Checksum:
    """Checksum the live key space at ``revision`` (0 means the latest)."""
    with _bolt_open(filename) as db:
        crc = _crc32c_update(0, KEY_BUCKET)
        compact = _compact_revision(db)
        latest = compact
        for rev, kv in _walk_revision(db, revision):
            latest = max(latest, rev.main)
            crc = _crc32c_update(crc, kv.key)
            crc = _crc32c_update(crc, kv.value)
    return Checksum(crc, latest, compact)


def _raw_json_unmarshal(text: str) -> dict | None:
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _separate_prefix_filter(filters: Iterable[Filter]) -> tuple[PrefixFilter | None, list]:
    filters = list(filters)
    prefixes = [f for f in filters if isinstance(f, PrefixFilter)]
    if not prefixes:
        return None, filters
    chosen = prefixes[-1]
    return chosen, [f for f in filters if f is not chosen]


def _new_summary(kv: KeyValue, projection: KeySummaryProjection, need_value: bool) -> KeySummary:
    val_json = ""
    type_meta = None
    try:
        buf, type_meta = detect_and_convert(JSON_MEDIA_TYPE, kv.value)
        val_json = buf.decode("utf-8", errors="replace").strip()
    except EncodingError:
        type_meta = None
    key = kv.key.decode("utf-8", errors="replace")
    size = len(kv.value)
    return KeySummary(
        key=key if projection.has_key else "",
        version=kv.version,
        value=_raw_json_unmarshal(val_json) if need_value else None,
        type_meta=type_meta,
        stats=KeySummaryStats(
            version_count=1,
            key_size=len(kv.key),
            value_size=size,
            all_versions_key_size=len(kv.key),
            all_versions_value_size=size,
        ),
    )


def list_key_summaries(
    filename: str,
    filters: Iterable[Filter] = (),
    projection: KeySummaryProjection = PROJECT_EVERYTHING,
    revision: int = 0,
) -> list[KeySummary]:
    """Return key summaries, sorted by key, with filters and projection applied."""
    prefix_filter, others = _separate_prefix_filter(filters)
    summaries: dict[str, KeySummary] = {}
    with _bolt_open(filename) as db:
        for rev, kv in _walk(db):
            if revision > 0 and rev.main > revision:
                continue
            key = kv.key.decode("utf-8", errors="replace")
            if rev.tombstone:
                summaries.pop(key, None)
            if prefix_filter is not None and not prefix_filter.accept(KeySummary(key=key)):
                continue
            summary = summaries.get(key)
            if summary is None:
                summary = _new_summary(kv, projection, projection.has_value or bool(others))
                try:
                    accepted = all(f.accept(summary) for f in others)
                except DataError as exc:
                    raise DataError(f"Error handling key {key}: {exc}") from exc
                if accepted:
                    summaries[key] = summary
            else:
                if kv.mod_revision > summary.version:
                    summary.version = kv.mod_revision
                    summary.stats.value_size = len(kv.value)
                summary.stats.version_count += 1
                summary.stats.all_versions_key_size += len(kv.key)
                summary.stats.all_versions_value_size += len(kv.value)
    return sorted(summaries.values(), key=lambda s: s.key)


def list_versions(filename: str, key: str) -> list[int]:
    """List every stored version of ``key``."""
    target = key.encode("utf-8")
    with _bolt_open(filename) as db:
        return [kv.version for _, kv in _walk(db) if kv.key == target]


def get_value(filename: str, key: str, version: int) -> bytes:
    """Return the value stored for ``key`` at ``version``."""
    target = key.encode("utf-8")
    with _bolt_open(filename) as db:
        for _, kv in _walk(db):
            if kv.key == target and kv.version == version:
                return kv.value
    raise DataError(f"key not found: {key}")


def parse_filters(text: str) -> list[FieldFilter]:
    """Parse a comma separated list of '<field>=<value>' filters."""
    results = []
    for item in text.split(","):
        parts = item.split("=")
        if len(parts) != 2:
            raise DataError(f"failed to parse filter '{item}'")
        constraint = FieldConstraint(parts[0].strip(), ConstraintOp.EQUALS, parts[1].strip())
        results.append(constraint.build_filter())
    return results