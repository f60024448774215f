import struct

import pytest

from etcdlens.boltdb import MAGIC, BoltDB, BoltError, write_bolt


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "test.db"
    write_bolt(
        str(path),
        {
            b"key": {b"b": b"2", b"a": b"1", b"c": b"3"},
            b"meta": {b"finishedCompactRev": b"x"},
        },
    )
    return str(path)


def test_magic_written_at_meta_page(db_path):
    with open(db_path, "rb") as handle:
        data = handle.read()
    assert struct.unpack_from("<I", data, 16)[0] == MAGIC


def test_items_round_trip_sorted(db_path):
    with BoltDB(db_path) as db:
        items = list(db.bucket(b"key").items())
    assert items == [(b"a", b"1"), (b"b", b"2"), (b"c", b"3")]


def test_get_value(db_path):
    with BoltDB(db_path) as db:
        bucket = db.bucket(b"meta")
        assert bucket.get(b"finishedCompactRev") == b"x"
        assert bucket.get(b"missing") is None


def test_missing_bucket(db_path):
    with BoltDB(db_path) as db:
        assert db.bucket(b"nope") is None


def test_large_values_use_overflow_pages(tmp_path):
    path = str(tmp_path / "big.db")
    records = {bytes([i]) * 3: bytes([i]) * 5000 for i in range(1, 20)}
    write_bolt(path, {b"key": records, b"other": {b"k": b"v"}})
    with BoltDB(path) as db:
        assert dict(db.bucket(b"key").items()) == records
        assert db.bucket(b"other").get(b"k") == b"v"


def test_invalid_file_raises(tmp_path):
    path = tmp_path / "bad.db"
    path.write_bytes(b"\0" * 8192)
    with pytest.raises(BoltError):
        BoltDB(str(path))


def test_corrupted_first_meta_falls_back(db_path):
    with open(db_path, "r+b") as handle:
        handle.seek(20)
        handle.write(b"\xff\xff")
    with BoltDB(db_path) as db:
        assert db.bucket(b"key").get(b"a") == b"1"