# etcdlens

A Python library for inspecting Kubernetes objects as they are stored in
etcd 3+.

Kubernetes writes its objects to etcd in a binary storage encoding: a
`k8s\0` prefix followed by a protobuf envelope (`Unknown`) that names the
API version and kind and carries the payload. etcd persists its key space
to a bolt `.db` file, keeping every revision of every key until
compaction. etcdlens reads both layers, and can also read keys from a
running etcd cluster over gRPC.

## Installation

```
pip install etcdlens
```

Dependencies: `pyyaml` and `grpcio`.

## Stored values: `etcdlens.encoding`

```python
from etcdlens import encoding

media_type, data = encoding.detect_and_extract(raw_value)
yaml_bytes, type_meta = encoding.convert(media_type, encoding.YAML_MEDIA_TYPE, data)
print(type_meta.api_version, type_meta.kind)

json_bytes, _ = encoding.detect_and_convert(encoding.JSON_MEDIA_TYPE, raw_value)
```

- `detect_and_extract(data)` skips any bytes before the `k8s\0` prefix or
  before the first `{` / `[` that starts a valid JSON value, and returns the
  media type (`STORAGE_BINARY_MEDIA_TYPE` or `JSON_MEDIA_TYPE`) with the data.
- `convert(in_media_type, out_media_type, data)` converts between the
  storage encoding, JSON, YAML and protobuf and returns the bytes together
  with a `TypeMeta`. Converting storage data to `PROTOBUF_MEDIA_TYPE`
  returns the envelope's raw payload unchanged.
- `to_media_type("yaml" | "json" | "proto")` maps short names to media types.
- `decode_type_meta`, `decode_summary`, `decode_unknown` and
  `encode_unknown` read and write the envelope directly.

Failures raise `encoding.EncodingError`.

## Decoding and encoding helpers: `etcdlens.codec_commands`

```python
import sys
from etcdlens.codec_commands import read_input, run_decode, run_encode, run_batch
from etcdlens.encoding import JSON_MEDIA_TYPE

data = read_input("pod.bin")                       # one trailing newline stripped
run_decode(False, JSON_MEDIA_TYPE, data, sys.stdout.buffer)
run_decode(True, JSON_MEDIA_TYPE, data, sys.stdout.buffer)   # apiVersion and kind only
run_encode(JSON_MEDIA_TYPE, json_bytes, sys.stdout.buffer)   # into the storage encoding
```

`run_batch(meta_only, out_media_type, lines, out)` decodes hex-encoded
values, one per line, writing `OK|<decoded data>` or `ERROR:<message>|`
for each.

## Bolt database files: `etcdlens.data`

```python
from etcdlens import data

for summary in data.list_key_summaries("db", [data.PrefixFilter("/registry/pods")]):
    print(summary.key, summary.stats.version_count, summary.stats.value_size)

filters = data.parse_filters(".Value.metadata.namespace=kube-system")
summaries = data.list_key_summaries("db", filters, data.PROJECT_EVERYTHING, 0)

data.list_versions("db", "/registry/jobs/default/pi")
data.get_value("db", "/registry/jobs/default/pi", 3)
data.hash_by_revision("db", 0)        # Checksum(hash, revision, compact_revision)
```

Filters compare a dotted field path of a `KeySummary` (`.Key`, `.Version`,
`.Value...`, `.TypeMeta.APIVersion`, `.TypeMeta.Kind`, `.Stats...`) with a
value. `KeySummary.value_json()` returns the decoded object as compact
JSON. The checksum is a CRC-32C of the live key space at a revision; a
revision that has been compacted raises `data.DataError`.

Lower layers are available on their own: `etcdlens.boltdb.BoltDB` reads
bolt files (and `write_bolt` builds them), `etcdlens.mvcc` decodes etcd
key-value records and revision keys, `etcdlens.gotemplate.Template`
evaluates `{{.Field.path}}` templates, and `etcdlens.protowire` reads and
writes protobuf wire data.

## Reports: `etcdlens.reports`

```python
import sys
from etcdlens import reports

reports.analyze("db", sys.stdout)       # counts, storage totals, common kinds, largest objects
reports.checksum("db", 0, sys.stdout)   # checksum, compact-revision, revision
```

## A running cluster: `etcdlens.client` and `etcdlens.printers`

```python
import sys
from etcdlens.client import Client, EtcdKV
from etcdlens.keys import parse_group_resource
from etcdlens.printers import new_printer

printer = new_printer(sys.stdout.buffer, "yaml")
with EtcdKV(["127.0.0.1:2379"]) as kv:
    Client(kv).get(
        "/registry",
        group_resource=parse_group_resource("leases"),
        namespace="kube-system",
        chunk_size=500,
        response=printer.print,
    )
```

`etcdlens.keys.get_prefix` works out the storage path the way the
Kubernetes API server lays out its keys (nodes under `minions`, services
under `services/specs`, custom resources under `<group>/<resource>`).
With a `chunk_size`, listings are read in pages, all at the revision of
the first page. `EtcdKV` accepts `grpc` channel credentials as `tls` and
a `username` / `password` pair for token authentication.

The YAML printer precedes each object with `---` and a comment holding its
key and media type; values that cannot be decoded are written as a comment
with the error. The JSON printer writes each object as JSON.

## What it does not do

- It installs no command-line programs; everything is used from Python.
- It has no registry of Kubernetes types. Storage values whose payload is
  protobuf can be summarized and their payload extracted, but converted to
  JSON or YAML only when the payload itself is JSON. Objects encoded into
  the storage encoding carry a JSON payload, not protobuf.