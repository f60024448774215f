"""Storage analysis and checksum reports over a bolt database file."""

from __future__ import annotations

from collections import Counter
from typing import TextIO

from etcdlens.data import KeySummaryProjection, hash_by_revision, list_key_summaries
from etcdlens.encoding import TypeMeta

_TOP_ENTRIES = 12


def analyze(filename: str, out: TextIO) -> None:
    """Write object counts, storage totals and the largest objects to ``out``."""
    summaries = list_key_summaries(
        filename, [], KeySummaryProjection(has_key=True, has_value=False), 0
    )

    counts = Counter(
        f"{s.type_meta.api_version}/{s.type_meta.kind}"
        for s in summaries
        if s.type_meta is not None
    )
    entries = sorted(counts.items(), key=lambda item: item[1], reverse=True)

    key_size = sum(s.stats.key_size for s in summaries)
    value_size = sum(s.stats.value_size for s in summaries)
    all_key_size = sum(s.stats.all_versions_key_size for s in summaries)
    all_value_size = sum(s.stats.all_versions_value_size for s in summaries)

    out.write(f"Total kubernetes objects: {len(summaries)}\n")
    out.write(
        "Total (all revisions) storage used by kubernetes objects: "
        f"{all_key_size + all_value_size}\n"
    )
    out.write(
        "Current (latest revision) storage used by kubernetes objects: "
        f"{key_size + value_size}\n"
    )
    out.write("\n")
    out.write("Most common kubernetes types:\n")
    for gvk, count in entries[:_TOP_ENTRIES]:
        out.write(f"\t{count}\t{gvk}\n")

    largest = sorted(summaries, key=lambda s: s.stats.all_versions_value_size, reverse=True)
    out.write("\n")
    out.write("Largest objects (byte size sum of all revisions):\n")
    for summary in largest[:_TOP_ENTRIES]:
        meta = summary.type_meta or TypeMeta()
        out.write(
            f"\t{summary.stats.all_versions_value_size}\t{summary.key} "
            f"({meta.api_version}/{meta.kind})\n"
        )


def checksum(filename: str, revision: int, out: TextIO) -> None:
    """Write the key space checksum at ``revision`` (0 for the latest) to ``out``."""
    result = hash_by_revision(filename, revision)
    out.write(f"checksum: {result.hash}\n")
    out.write(f"compact-revision: {result.compact_revision}\n")
    out.write(f"revision: {result.revision}\n")