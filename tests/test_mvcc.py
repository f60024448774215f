import pytest

from etcdlens.mvcc import (
    KeyValue,
    Revision,
    bytes_to_rev,
    parse_key_value,
    rev_to_bytes,
)
from etcdlens.protowire import ProtoDecodeError, encode_varint_field


def test_key_value_round_trip():
    kv = KeyValue(
        key=b"/registry/jobs/default/pi",
        create_revision=5,
        mod_revision=9,
        version=3,
        value=b"k8s\x00payload",
        lease=7,
    )
    assert parse_key_value(kv.to_bytes()) == kv


def test_key_value_negative_lease_round_trip():
    kv = KeyValue(key=b"k", lease=-5)
    assert parse_key_value(kv.to_bytes()).lease == -5


def test_empty_key_value_encodes_to_nothing():
    assert KeyValue().to_bytes() == b""
    assert parse_key_value(b"") == KeyValue()


def test_parse_key_value_ignores_unknown_fields():
    kv = KeyValue(key=b"a", version=2)
    data = kv.to_bytes() + encode_varint_field(15, 99)
    assert parse_key_value(data) == kv


def test_parse_key_value_rejects_wrong_wire_type():
    with pytest.raises(ProtoDecodeError):
        parse_key_value(encode_varint_field(1, 3))


def test_rev_to_bytes_layout():
    assert rev_to_bytes(1, 0) == b"\x00" * 7 + b"\x01_" + b"\x00" * 8


def test_tombstone_mark_is_appended():
    plain = rev_to_bytes(4, 2)
    marked = rev_to_bytes(4, 2, tombstone=True)
    assert marked == plain + b"t"


@pytest.mark.parametrize(
    "main, sub, tombstone",
    [(1, 0, False), (12345, 6, False), (99, 1, True), (2**40, 2**20, True)],
)
def test_revision_round_trip(main, sub, tombstone):
    assert bytes_to_rev(rev_to_bytes(main, sub, tombstone)) == Revision(main, sub, tombstone)


def test_revision_keys_sort_by_main_then_sub():
    revisions = [(3, 0), (1, 5), (1, 2), (2, 0)]
    keys = sorted(rev_to_bytes(m, s) for m, s in revisions)
    decoded = [(r.main, r.sub) for r in map(bytes_to_rev, keys)]
    assert decoded == sorted(revisions)


def test_other_mark_is_not_tombstone():
    assert bytes_to_rev(rev_to_bytes(2, 1) + b"x").tombstone is False


def test_bytes_to_rev_too_short():
    with pytest.raises(ValueError):
        bytes_to_rev(b"\x00" * 8)