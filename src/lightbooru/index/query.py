"""Filter, sort and paginate view records against a Snapshot."""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from lightbooru.errors import ItemNotFoundError
from lightbooru.index.builder import Snapshot
from lightbooru.library.normalizer import normalize_tags
from lightbooru.models import ViewRecord


@dataclass(frozen=True)
class Filter:
    """Conjunction of predicates; unset predicates match everything."""

    tags_any: frozenset[str] = frozenset()
    tags_all: frozenset[str] = frozenset()
    tags_none: frozenset[str] = frozenset()
    sensitive: bool | None = None
    platforms: frozenset[str] = frozenset()
    authors: frozenset[str] = frozenset()
    posted_from: datetime | None = None
    posted_to: datetime | None = None
    # Case-insensitive substring over title, description and notes
    text: str | None = None
    # Any term matching a tag, the author, or the title/description/notes
    terms: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Naive bounds are read as UTC, like naive timestamps in metadata
        for name in ("posted_from", "posted_to"):
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                object.__setattr__(self, name, value.replace(tzinfo=UTC))


class SortKey(StrEnum):
    POSTED_AT = "posted_at"
    SCORE = "score"
    FILE_SIZE = "file_size"
    PLATFORM_POST_ID = "platform_post_id"


@dataclass(frozen=True)
class Sort:
    key: SortKey = SortKey.POSTED_AT
    descending: bool = True


@dataclass(frozen=True)
class Page:
    offset: int = 0
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError(f"offset must be >= 0, got {self.offset}")
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be >= 0, got {self.limit}")


@dataclass(frozen=True)
class QueryResult:
    items: tuple[ViewRecord, ...]
    total_count: int


def _candidate_ids(snapshot: Snapshot, flt: Filter) -> frozenset[str] | None:
    """Intersect index lookups; None means no indexed predicate was given."""
    sets: list[frozenset[str]] = []
    for tag in normalize_tags(flt.tags_all):
        sets.append(snapshot.ids_with_tag(tag))
    if flt.tags_any:
        sets.append(frozenset().union(*(snapshot.ids_with_tag(t) for t in normalize_tags(flt.tags_any))))
    if flt.platforms:
        sets.append(frozenset().union(*(snapshot.ids_for_platform(p) for p in flt.platforms)))
    if flt.authors:
        sets.append(frozenset().union(*(snapshot.ids_for_author(a) for a in flt.authors)))
    if flt.posted_from is not None or flt.posted_to is not None:
        sets.append(snapshot.ids_posted_between(flt.posted_from, flt.posted_to))
    if not sets:
        return None
    sets.sort(key=len)
    result = sets[0]
    for other in sets[1:]:
        if not result:
            break
        result = result & other
    return result


def _haystack(record: ViewRecord) -> str:
    return "\n".join(s for s in (record.title, record.description, record.notes) if s).lower()


def _matches_terms(record: ViewRecord, terms: list[str]) -> bool:
    author = (record.author_name or "").lower()
    text = _haystack(record)
    for term in terms:
        if term in author or term in text or any(term in tag for tag in record.tags):
            return True
    return False


def filter_records(snapshot: Snapshot, flt: Filter) -> list[ViewRecord]:
    """Records matching ``flt`` in discovery order."""
    candidates = _candidate_ids(snapshot, flt)
    if candidates is None:
        records = list(snapshot.records)
    else:
        records = sorted((snapshot.by_id[i] for i in candidates), key=lambda r: snapshot.positions[r.item_id])

    if flt.tags_none:
        excluded = frozenset().union(*(snapshot.ids_with_tag(t) for t in normalize_tags(flt.tags_none)))
        records = [r for r in records if r.item_id not in excluded]
    if flt.sensitive is not None:
        records = [r for r in records if r.sensitive == flt.sensitive]
    if flt.text:
        needle = flt.text.lower()
        records = [r for r in records if needle in _haystack(r)]
    terms = [t.strip().lower() for t in flt.terms if t.strip()]
    if terms:
        records = [r for r in records if _matches_terms(r, terms)]
    return records


def _natural(value: str | None) -> tuple[int, int, str]:
    if value is None:
        return (2, 0, "")
    if value.isdigit():
        return (0, int(value), value)
    return (1, 0, value)


def _tiebreak(record: ViewRecord) -> tuple:
    return ((record.platform or ""), _natural(record.post_id), record.item_id)


def _primary(record: ViewRecord, key: SortKey):
    if key is SortKey.POSTED_AT:
        return record.posted_at
    if key is SortKey.SCORE:
        return record.score
    if key is SortKey.FILE_SIZE:
        return record.item.file_size
    return _tiebreak(record)


def sort_records(records: list[ViewRecord], sort: Sort) -> list[ViewRecord]:
    """Sort by the requested key; ties fall back to platform, post id, item id.

    Records without a value for the key always come last.
    """
    ordered = sorted(records, key=_tiebreak)
    present = [r for r in ordered if _primary(r, sort.key) is not None]
    missing = [r for r in ordered if _primary(r, sort.key) is None]
    # sorted() is stable even with reverse=True, so ties keep the tiebreak order
    present = sorted(present, key=lambda r: _primary(r, sort.key), reverse=sort.descending)
    return present + missing


def query(
    snapshot: Snapshot,
    flt: Filter | None = None,
    sort: Sort | None = None,
    page: Page | None = None,
) -> QueryResult:
    """Evaluate a filter/sort/page request. Read-only; safe to call concurrently."""
    matched = filter_records(snapshot, flt or Filter())
    ordered = sort_records(matched, sort or Sort())
    page = page or Page()
    end = None if page.limit is None else page.offset + page.limit
    return QueryResult(items=tuple(ordered[page.offset:end]), total_count=len(ordered))


def get_item(snapshot: Snapshot, item_id: str) -> ViewRecord:
    try:
        return snapshot.by_id[item_id]
    except KeyError:
        raise ItemNotFoundError(item_id) from None


def tag_counts(snapshot: Snapshot, limit: int | None = None) -> list[tuple[str, int]]:
    """Most used tags first, ties alphabetical."""
    ranked = sorted(
        ((tag, len(ids)) for tag, ids in snapshot.tag_index.items()), key=lambda kv: (-kv[1], kv[0])
    )
    return ranked[:limit] if limit is not None else ranked


def platform_names(snapshot: Snapshot) -> list[str]:
    return sorted(snapshot.platform_index)
