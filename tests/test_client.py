from concurrent import futures

import grpc
import pytest

from etcdlens.client import Client, ClientError, EtcdKV, KeyValue, RangeResponse, prefix_range_end
from etcdlens.keys import GroupResource
from etcdlens.mvcc import KeyValue as StoredKeyValue
from etcdlens.protowire import encode_bytes_field, encode_varint_field, iter_fields

STORE_REVISION = 7


class FakeKV:
    def __init__(self, items, revision=STORE_REVISION):
        self.items = dict(sorted(items.items()))
        self.revision = revision
        self.calls = []

    def range(self, key, range_end, limit, revision):
        self.calls.append((key, range_end, limit, revision))
        if range_end:
            matched = [k for k in self.items if key <= k < range_end]
        else:
            matched = [k for k in self.items if k == key]
        more = bool(limit) and len(matched) > limit
        if limit:
            matched = matched[:limit]
        kvs = [StoredKeyValue(key=k, value=self.items[k]) for k in matched]
        return RangeResponse(kvs=kvs, more=more, revision=self.revision)


def _pods(count):
    return {f"/registry/pods/default/p{i}".encode(): f"v{i}".encode() for i in range(count)}


def test_prefix_range_end_covers_prefix():
    key = b"/registry/"
    end = prefix_range_end(key)
    assert end == b"/registry0"
    for candidate in (b"/registry/", b"/registry/pods", b"/registry/\xff\xff"):
        assert key <= candidate < end
    assert not (b"/registryA" < end)


def test_prefix_range_end_all_ff():
    assert prefix_range_end(b"\xff\xff") == b"\x00"


def test_prefix_range_end_drops_trailing_ff():
    end = prefix_range_end(b"a\xff")
    assert b"a\xff\xff" < end
    assert len(end) == 1


def test_get_requires_prefix():
    with pytest.raises(ClientError, match="prefix is required"):
        Client(FakeKV({})).get("", response=lambda kv: None)


def test_get_requires_response():
    with pytest.raises(ClientError, match="response is required"):
        Client(FakeKV({})).get("/registry")


def test_get_rejects_name_without_resource():
    with pytest.raises(ClientError, match="must be omitted"):
        Client(FakeKV({})).get("/registry", name="pod", response=lambda kv: None)


def test_get_single_object():
    items = _pods(3)
    kv = FakeKV(items)
    seen = []
    rev = Client(kv).get(
        "/registry",
        group_resource=GroupResource("", "pods"),
        name="p1",
        namespace="default",
        chunk_size=2,
        response=seen.append,
    )
    assert seen == [KeyValue(b"/registry/pods/default/p1", b"v1")]
    assert rev == STORE_REVISION
    assert kv.calls == [(b"/registry/pods/default/p1", b"", 0, 0)]


def test_get_without_paging_reads_once():
    items = _pods(4)
    items[b"/registry/minions/n1"] = b"node"
    kv = FakeKV(items)
    seen = []
    Client(kv).get(
        "/registry",
        group_resource=GroupResource("", "pods"),
        namespace="default",
        response=seen.append,
    )
    assert [s.key for s in seen] == sorted(_pods(4))
    assert len(kv.calls) == 1
    assert kv.calls[0][2] == 0


def test_get_pages_through_everything_in_order():
    items = _pods(5)
    items[b"/registry/minions/n1"] = b"node"
    kv = FakeKV(items)
    seen = []
    rev = Client(kv).get(
        "/registry",
        group_resource=GroupResource("", "pods"),
        chunk_size=2,
        response=seen.append,
    )
    assert [s.key for s in seen] == sorted(_pods(5))
    assert rev == STORE_REVISION
    assert len(kv.calls) == 3
    assert kv.calls[0][3] == 0
    assert all(call[3] == STORE_REVISION for call in kv.calls[1:])
    assert all(call[2] == 2 for call in kv.calls)
    assert all(call[1] == prefix_range_end(b"/registry/pods/") for call in kv.calls)


def test_get_with_explicit_revision():
    kv = FakeKV(_pods(3))
    seen = []
    rev = Client(kv).get(
        "/registry", chunk_size=1, revision=2, response=seen.append
    )
    assert rev == 2
    assert len(seen) == 3
    assert all(call[3] == 2 for call in kv.calls)


def test_get_callback_error_stops():
    kv = FakeKV(_pods(3))
    seen = []

    def callback(item):
        seen.append(item)
        raise RuntimeError("stop")

    with pytest.raises(RuntimeError, match="stop"):
        Client(kv).get("/registry", response=callback)
    assert len(seen) == 1


@pytest.fixture
def etcd_server():
    state = {"requests": [], "metadata": []}

    def range_handler(request, context):
        state["requests"].append({n: v for n, _, v in iter_fields(request)})
        state["metadata"].append(dict(context.invocation_metadata()))
        header = encode_varint_field(3, 42)
        kv = StoredKeyValue(key=b"/registry/pods/default/p0", value=b"v0", version=1, mod_revision=5)
        return (
            encode_bytes_field(1, header)
            + encode_bytes_field(2, kv.to_bytes())
            + encode_varint_field(3, 1)
        )

    def auth_handler(request, context):
        fields = {n: v for n, _, v in iter_fields(request)}
        state["auth"] = fields
        return encode_bytes_field(2, "token")

    server = grpc.server(futures.ThreadPoolExecutor(max_workers=2))
    server.add_generic_rpc_handlers(
        (
            grpc.method_handlers_generic_handler(
                "etcdserverpb.KV", {"Range": grpc.unary_unary_rpc_method_handler(range_handler)}
            ),
            grpc.method_handlers_generic_handler(
                "etcdserverpb.Auth",
                {"Authenticate": grpc.unary_unary_rpc_method_handler(auth_handler)},
            ),
        )
    )
    port = server.add_insecure_port("127.0.0.1:0")
    server.start()
    try:
        yield f"127.0.0.1:{port}", state
    finally:
        server.stop(None)


def test_etcd_kv_range_round_trip(etcd_server):
    endpoint, state = etcd_server
    with EtcdKV([f"http://{endpoint}"]) as kv:
        resp = kv.range(b"/registry/", b"/registry0", 3, 9)
    assert resp.revision == 42
    assert resp.more is True
    assert [(k.key, k.value, k.mod_revision) for k in resp.kvs] == [
        (b"/registry/pods/default/p0", b"v0", 5)
    ]
    assert state["requests"] == [{1: b"/registry/", 2: b"/registry0", 3: 3, 4: 9}]
    assert "token" not in state["metadata"][0]


def test_etcd_kv_authenticates(etcd_server):
    endpoint, state = etcd_server
    password = "password"
    kv = EtcdKV([endpoint], None, "root", password)
    try:
        kv.range(b"/registry/pods/default/p0")
    finally:
        kv.close()
    assert state["auth"] == {1: b"root", 2: b"password"}
    assert state["metadata"][0]["token"] == "token"
    assert state["requests"] == [{1: b"/registry/pods/default/p0"}]


def test_etcd_kv_requires_endpoints():
    with pytest.raises(ClientError, match="no endpoints"):
        EtcdKV([])