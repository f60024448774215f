"""Read-only access to bolt database files, plus a small writer for building them."""

from __future__ import annotations

import math
import re
import struct
from typing import Iterator, Mapping

MAGIC = 0xED0CDAED
VERSION = 2
DEFAULT_PAGE_SIZE = 4096

BRANCH_PAGE = 0x01
LEAF_PAGE = 0x02
META_PAGE = 0x04
FREELIST_PAGE = 0x10

BUCKET_LEAF_FLAG = 0x01

_PAGE_HEADER = struct.Struct("<QHHI")
_META = struct.Struct("<IIIIQQQQQQ")
_LEAF_ELEMENT = struct.Struct("<IIII")
_BRANCH_ELEMENT = struct.Struct("<IIQ")
_BUCKET_HEADER = struct.Struct("<QQ")

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK64 = (1 << 64) - 1


class BoltError(ValueError):
    """Raised when a file is not a readable bolt database."""


def _fnv64a(data: bytes) -> int:
    h = _FNV_OFFSET
    for byte in data:
        h = ((h ^ byte) * _FNV_PRIME) & _MASK64
    return h


def _parse_meta(data: bytes, offset: int) -> tuple | None:
    start = offset + _PAGE_HEADER.size
    end = start + _META.size
    if end > len(data):
        return None
    meta = _META.unpack_from(data, start)
    magic, version = meta[0], meta[1]
    if magic != MAGIC or version != VERSION:
        return None
    if _fnv64a(data[start:end - 8]) != meta[9]:
        return None
    return meta


class Bucket:
    """A bucket of key/value pairs inside a bolt database."""

    def __init__(self, db: "BoltDB", root: int, inline: bytes = b"") -> None:
        self._db = db
        self._root = root
        self._inline = inline

    def _entries(self) -> Iterator[tuple[bytes, bytes, int]]:
        if self._root == 0:
            yield from _iter_page(self._inline, 0, self._db)
        else:
            yield from self._db._iter_pgid(self._root)

    def items(self) -> Iterator[tuple[bytes, bytes]]:
        """Yield every key/value pair in key order, skipping nested buckets."""
        for key, value, flags in self._entries():
            if not flags & BUCKET_LEAF_FLAG:
                yield key, value

    def get(self, key: bytes) -> bytes | None:
        """Return the value stored under ``key``, or None."""
        key = bytes(key)
        for entry_key, value in self.items():
            if entry_key == key:
                return value
        return None


def _iter_page(data: bytes, offset: int, db: "BoltDB") -> Iterator[tuple[bytes, bytes, int]]:
    if offset + _PAGE_HEADER.size > len(data):
        raise BoltError("page out of range")
    _, flags, count, _ = _PAGE_HEADER.unpack_from(data, offset)
    first = offset + _PAGE_HEADER.size
    if flags & LEAF_PAGE:
        for i in range(count):
            element = first + i * _LEAF_ELEMENT.size
            elem_flags, pos, ksize, vsize = _LEAF_ELEMENT.unpack_from(data, element)
            kstart = element + pos
            vstart = kstart + ksize
            if vstart + vsize > len(data):
                raise BoltError("leaf element out of range")
            yield bytes(data[kstart:vstart]), bytes(data[vstart:vstart + vsize]), elem_flags
    elif flags & BRANCH_PAGE:
        for i in range(count):
            element = first + i * _BRANCH_ELEMENT.size
            _, _, child = _BRANCH_ELEMENT.unpack_from(data, element)
            yield from db._iter_pgid(child)
    else:
        raise BoltError(f"unexpected page type 0x{flags:02x}")


class BoltDB:
    """A bolt database file opened read-only."""

    def __init__(self, path: str) -> None:
        with open(path, "rb") as handle:
            self._data = handle.read()
        meta0 = _parse_meta(self._data, 0)
        page_size = meta0[2] if meta0 else DEFAULT_PAGE_SIZE
        meta1 = _parse_meta(self._data, page_size)
        candidates = [m for m in (meta0, meta1) if m is not None]
        if not candidates:
            raise BoltError(f"invalid database: {path}")
        meta = max(candidates, key=lambda m: m[8])
        self.page_size = meta[2]
        self._root = meta[4]

    def _iter_pgid(self, pgid: int) -> Iterator[tuple[bytes, bytes, int]]:
        return _iter_page(self._data, pgid * self.page_size, self)

    def close(self) -> None:
        """Release the file contents."""
        self._data = b""

    def __enter__(self) -> "BoltDB":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def bucket(self, name: bytes) -> Bucket | None:
        """Return the top-level bucket ``name``, or None if absent."""
        name = bytes(name)
        for key, value, flags in self._iter_pgid(self._root):
            if key == name and flags & BUCKET_LEAF_FLAG:
                if len(value) < _BUCKET_HEADER.size:
                    raise BoltError(f"corrupt bucket header for {name!r}")
                root, _ = _BUCKET_HEADER.unpack_from(value, 0)
                return Bucket(self, root, value[_BUCKET_HEADER.size:])
        return None


def _leaf_page(pgid: int, entries: list[tuple[int, bytes, bytes]]) -> bytes:
    if len(entries) > 0xFFFF:
        raise BoltError("too many entries for one page")
    elements = bytearray()
    payload = bytearray()
    data_start = _PAGE_HEADER.size + _LEAF_ELEMENT.size * len(entries)
    for i, (flags, key, value) in enumerate(entries):
        element = _PAGE_HEADER.size + i * _LEAF_ELEMENT.size
        pos = data_start + len(payload) - element
        elements += _LEAF_ELEMENT.pack(flags, pos, len(key), len(value))
        payload += key + value
    total = data_start + len(payload)
    pages = max(1, math.ceil(total / DEFAULT_PAGE_SIZE))
    header = _PAGE_HEADER.pack(pgid, LEAF_PAGE, len(entries), pages - 1)
    return (header + bytes(elements) + bytes(payload)).ljust(pages * DEFAULT_PAGE_SIZE, b"\0")


def _meta_page(pgid: int, root: int, high_water: int, txid: int) -> bytes:
    fields = (MAGIC, VERSION, DEFAULT_PAGE_SIZE, 0, root, 0, 2, high_water, txid)
    body = _META.pack(*fields, 0)[:-8]
    meta = body + struct.pack("<Q", _fnv64a(body))
    return (_PAGE_HEADER.pack(pgid, META_PAGE, 0, 0) + meta).ljust(DEFAULT_PAGE_SIZE, b"\0")


def write_bolt(path: str, buckets: Mapping[bytes, Mapping[bytes, bytes]]) -> None:
    """Write a bolt database holding the given top-level buckets."""
    pages: list[bytes] = []
    next_pgid = 3
    root_entries = []
    for name in sorted(bytes(n) for n in buckets):
        items = sorted((bytes(k), bytes(v)) for k, v in buckets[name].items())
        page = _leaf_page(next_pgid, [(0, k, v) for k, v in items])
        root_entries.append((BUCKET_LEAF_FLAG, name, _BUCKET_HEADER.pack(next_pgid, 0)))
        pages.append(page)
        next_pgid += len(page) // DEFAULT_PAGE_SIZE
    root_pgid = next_pgid
    root_page = _leaf_page(root_pgid, root_entries)
    pages.append(root_page)
    high_water = root_pgid + len(root_page) // DEFAULT_PAGE_SIZE
    freelist = _PAGE_HEADER.pack(2, FREELIST_PAGE, 0, 0).ljust(DEFAULT_PAGE_SIZE, b"\0")
    with open(path, "wb") as handle:
        handle.write(_meta_page(0, root_pgid, high_water, 1))
        handle.write(_meta_page(1, root_pgid, high_water, 0))
        handle.write(freelist)
        for page in pages:
            handle.write(page)