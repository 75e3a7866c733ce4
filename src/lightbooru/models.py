"""Data models for media items, metadata, overlays and scan reports."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class MediaItem:
    """One discovered media file."""

    item_id: str
    file_path: Path
    file_size: int | None
    extension: str
    source_platform: str | None
    source_post_id: str | None
    metadata_path: Path | None = None
    overlay_path: Path | None = None


@dataclass(frozen=True)
class NormalizedMetadata:
    """Canonical projection of a source metadata record."""

    post_id: str | None = None
    author_name: str | None = None
    posted_at: datetime | None = None
    title: str | None = None
    description: str | None = None
    tags: frozenset[str] = frozenset()
    sensitive: bool | None = None
    score: float | None = None
    media_url: str | None = None
    post_url: str | None = None
    width: int | None = None
    height: int | None = None
    content_hash: str | None = None
    tag_categories: dict[str, frozenset[str]] = field(default_factory=dict, hash=False)
    raw_extra: dict[str, Any] = field(default_factory=dict, hash=False)

    @classmethod
    def empty(cls) -> "NormalizedMetadata":
        """Metadata for an item whose source record is missing or unreadable."""
        return cls()


@dataclass(frozen=True)
class EditOverlay:
    """User-authored edits for one media item."""

    tags_added: frozenset[str] = frozenset()
    tags_removed: frozenset[str] = frozenset()
    sensitive_override: bool | None = None
    notes: str | None = None
    edited_at: datetime | None = None
    # Keys we do not understand, kept so a rewrite never drops them
    extra: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass(frozen=True)
class EditDelta:
    """A single edit request against an item's overlay."""

    add_tags: frozenset[str] = frozenset()
    remove_tags: frozenset[str] = frozenset()
    set_tags: frozenset[str] | None = None
    sensitive: bool | None = None
    clear_sensitive: bool = False
    notes: str | None = None

    def is_empty(self) -> bool:
        return (
            not self.add_tags
            and not self.remove_tags
            and self.set_tags is None
            and self.sensitive is None
            and not self.clear_sensitive
            and self.notes is None
        )


@dataclass(frozen=True)
class ViewRecord:
    """Merged, query-facing record: source metadata with the overlay applied."""

    item: MediaItem
    metadata: NormalizedMetadata
    tags: frozenset[str]
    sensitive: bool
    notes: str | None
    has_overlay: bool

    @property
    def item_id(self) -> str:
        return self.item.item_id

    @property
    def platform(self) -> str | None:
        return self.item.source_platform

    @property
    def post_id(self) -> str | None:
        return self.metadata.post_id

    @property
    def author_name(self) -> str | None:
        return self.metadata.author_name

    @property
    def posted_at(self) -> datetime | None:
        return self.metadata.posted_at

    @property
    def title(self) -> str | None:
        return self.metadata.title

    @property
    def description(self) -> str | None:
        return self.metadata.description

    @property
    def score(self) -> float | None:
        return self.metadata.score

    @property
    def post_url(self) -> str | None:
        return self.metadata.post_url


@dataclass(frozen=True)
class PerceptualHash:
    """Fixed-width bit fingerprint of one image."""

    algorithm: str
    bits: int
    width: int = 64

    def distance(self, other: "PerceptualHash") -> int:
        """Hamming distance; a width mismatch counts every missing bit as different."""
        width = min(self.width, other.width)
        mask = (1 << width) - 1
        return ((self.bits ^ other.bits) & mask).bit_count() + abs(self.width - other.width)

    @property
    def hex(self) -> str:
        return f"{self.bits:0{(self.width + 3) // 4}x}"


@dataclass(frozen=True)
class DuplicateCluster:
    """Connected component of items under "Hamming distance <= threshold"."""

    item_ids: tuple[str, ...]
    # (item_a, item_b, distance) for every pair inside the cluster
    distances: tuple[tuple[str, str, int], ...] = ()

    def __len__(self) -> int:
        return len(self.item_ids)

    @property
    def max_distance(self) -> int:
        return max((d for _, _, d in self.distances), default=0)

    def is_clique(self, threshold: int) -> bool:
        """True when every pair, not just every chain link, is within the threshold."""
        return all(d <= threshold for _, _, d in self.distances)


class IssueKind(StrEnum):
    SCAN_WARNING = "scan_warning"
    PARSE_ERROR = "parse_error"
    HASH_ERROR = "hash_error"
    RECORD_ERROR = "record_error"


@dataclass(frozen=True)
class ScanIssue:
    """A non-fatal problem found while building a snapshot."""

    kind: IssueKind
    path: Path | None
    message: str
    item_id: str | None = None

    def __str__(self) -> str:
        where = f" ({self.path})" if self.path is not None else ""
        return f"[{self.kind}] {self.message}{where}"


@dataclass(frozen=True)
class ScanReport:
    """All non-fatal issues collected during one rebuild."""

    issues: tuple[ScanIssue, ...] = ()

    def __len__(self) -> int:
        return len(self.issues)

    def __iter__(self):
        return iter(self.issues)

    def of_kind(self, kind: IssueKind) -> list[ScanIssue]:
        return [issue for issue in self.issues if issue.kind == kind]

    def counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for issue in self.issues:
            counts[issue.kind.value] = counts.get(issue.kind.value, 0) + 1
        return counts

    @property
    def affected_items(self) -> int:
        """Number of distinct items with at least one issue."""
        return len({issue.item_id for issue in self.issues if issue.item_id is not None})
