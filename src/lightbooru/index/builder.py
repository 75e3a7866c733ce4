"""Build the immutable, queryable Snapshot from a stream of view records."""

import bisect
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType

from lightbooru.duplicates.clusters import cluster_hashes
from lightbooru.errors import MalformedRecordError
from lightbooru.models import (
    DuplicateCluster,
    IssueKind,
    PerceptualHash,
    ScanIssue,
    ScanReport,
    ViewRecord,
)

logger = logging.getLogger(__name__)

_EMPTY: frozenset[str] = frozenset()


@dataclass(frozen=True, eq=False)
class Snapshot:
    """One fully built index generation. Never modified after construction."""

    records: tuple[ViewRecord, ...]
    by_id: Mapping[str, ViewRecord]
    positions: Mapping[str, int]
    tag_index: Mapping[str, frozenset[str]]
    platform_index: Mapping[str, frozenset[str]]
    author_index: Mapping[str, frozenset[str]]
    # (posted_at, item_id) pairs sorted ascending, split for bisect
    date_keys: tuple[datetime, ...]
    date_ids: tuple[str, ...]
    report: ScanReport = ScanReport()
    hashes: Mapping[str, PerceptualHash] = field(default_factory=lambda: MappingProxyType({}))
    hash_algorithm: str | None = None
    clusters: tuple[DuplicateCluster, ...] = ()
    cluster_threshold: int | None = None
    roots: tuple[Path, ...] = ()
    generation: int = 0
    built_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[ViewRecord]:
        return iter(self.records)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self.by_id

    def ids_with_tag(self, tag: str) -> frozenset[str]:
        return self.tag_index.get(tag, _EMPTY)

    def ids_for_platform(self, platform: str) -> frozenset[str]:
        return self.platform_index.get(platform.lower(), _EMPTY)

    def ids_for_author(self, author: str) -> frozenset[str]:
        return self.author_index.get(author.lower(), _EMPTY)

    def ids_posted_between(self, start: datetime | None, end: datetime | None) -> frozenset[str]:
        """Items whose posted_at lies in [start, end]; either bound may be open."""
        lo = 0 if start is None else bisect.bisect_left(self.date_keys, start)
        hi = len(self.date_keys) if end is None else bisect.bisect_right(self.date_keys, end)
        return frozenset(self.date_ids[lo:hi])


def validate_record(record: object) -> ViewRecord:
    """Reject records that would corrupt the indices."""
    if not isinstance(record, ViewRecord):
        raise MalformedRecordError(f"not a ViewRecord: {type(record).__name__}")
    if not isinstance(record.item_id, str) or not record.item_id:
        raise MalformedRecordError("missing item_id")
    if not isinstance(record.tags, frozenset) or not all(isinstance(t, str) for t in record.tags):
        raise MalformedRecordError(f"tags must be a set of strings ({record.item_id})")
    posted_at = record.posted_at
    if posted_at is not None and (not isinstance(posted_at, datetime) or posted_at.tzinfo is None):
        raise MalformedRecordError(f"posted_at must be an aware datetime ({record.item_id})")
    if not isinstance(record.sensitive, bool):
        raise MalformedRecordError(f"sensitive must be a bool ({record.item_id})")
    return record


def _freeze(index: dict[str, set[str]]) -> Mapping[str, frozenset[str]]:
    return MappingProxyType({key: frozenset(ids) for key, ids in index.items()})


def build(
    records: Iterable[ViewRecord],
    *,
    issues: Iterable[ScanIssue] = (),
    hashes: Mapping[str, PerceptualHash] | None = None,
    hash_algorithm: str | None = None,
    duplicate_threshold: int | None = None,
    roots: Iterable[Path] = (),
    generation: int = 0,
) -> Snapshot:
    """Index ``records`` in one pass.

    Discovery order is kept as the primary order. A malformed record is
    reported in the snapshot's report and left out; it never aborts the build.
    """
    collected_issues = list(issues)
    ordered: list[ViewRecord] = []
    by_id: dict[str, ViewRecord] = {}
    tag_index: dict[str, set[str]] = {}
    platform_index: dict[str, set[str]] = {}
    author_index: dict[str, set[str]] = {}
    dated: list[tuple[datetime, str]] = []

    for record in records:
        try:
            validate_record(record)
            if record.item_id in by_id:
                raise MalformedRecordError(f"duplicate item_id {record.item_id}")
        except MalformedRecordError as exc:
            item_id = getattr(getattr(record, "item", None), "item_id", None)
            path = getattr(getattr(record, "item", None), "file_path", None)
            logger.warning("Skipping record: %s", exc)
            collected_issues.append(ScanIssue(IssueKind.RECORD_ERROR, path, str(exc), item_id))
            continue

        item_id = record.item_id
        ordered.append(record)
        by_id[item_id] = record
        for tag in record.tags:
            tag_index.setdefault(tag, set()).add(item_id)
        if record.platform:
            platform_index.setdefault(record.platform.lower(), set()).add(item_id)
        if record.author_name:
            author_index.setdefault(record.author_name.lower(), set()).add(item_id)
        if record.posted_at is not None:
            dated.append((record.posted_at, item_id))

    dated.sort()
    kept_hashes = {k: v for k, v in (hashes or {}).items() if k in by_id}
    clusters: tuple[DuplicateCluster, ...] = ()
    if hash_algorithm is not None and duplicate_threshold is not None:
        clusters = tuple(cluster_hashes(kept_hashes, duplicate_threshold))

    return Snapshot(
        records=tuple(ordered),
        by_id=MappingProxyType(by_id),
        positions=MappingProxyType({record.item_id: i for i, record in enumerate(ordered)}),
        tag_index=_freeze(tag_index),
        platform_index=_freeze(platform_index),
        author_index=_freeze(author_index),
        date_keys=tuple(d for d, _ in dated),
        date_ids=tuple(i for _, i in dated),
        report=ScanReport(tuple(collected_issues)),
        hashes=MappingProxyType(kept_hashes),
        hash_algorithm=hash_algorithm,
        clusters=clusters,
        cluster_threshold=duplicate_threshold if hash_algorithm is not None else None,
        roots=tuple(roots),
        generation=generation,
    )
