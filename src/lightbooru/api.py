"""Programmatic surface shared by the CLI, the web UI and other front-ends."""

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, replace
from pathlib import Path

from lightbooru.config import resolve_roots
from lightbooru.duplicates.detector import DuplicateReport, detect_duplicates
from lightbooru.duplicates.hashing import ProgressCallback
from lightbooru.index import query as query_engine
from lightbooru.index.builder import Snapshot
from lightbooru.index.query import Filter, Page, QueryResult, Sort
from lightbooru.index.store import SnapshotStore, rebuild
from lightbooru.library.aliases import expand_terms, load_alias_map, normalize_terms
from lightbooru.library.overlay import edit_media
from lightbooru.models import EditDelta, EditOverlay, ScanIssue, ViewRecord
from lightbooru.paths import resolve_media_path

logger = logging.getLogger(__name__)


def rebuild_snapshot(
    roots: Iterable[Path | str] | None = None,
    *,
    compute_hashes: bool = False,
    workers: int | None = None,
    cancel: threading.Event | None = None,
    progress: ProgressCallback | None = None,
) -> Snapshot:
    """Scan and index ``roots``; per-item problems are in ``snapshot.report``."""
    return rebuild(roots, compute_hashes=compute_hashes, workers=workers, cancel=cancel, progress=progress)


def query(
    snapshot: Snapshot,
    filter: Filter | None = None,
    sort: Sort | None = None,
    page: Page | None = None,
) -> QueryResult:
    return query_engine.query(snapshot, filter, sort, page)


def get_item(snapshot: Snapshot, item_id: str) -> ViewRecord:
    return query_engine.get_item(snapshot, item_id)


def apply_edit(item_id: str, delta: EditDelta) -> EditOverlay:
    """Write ``delta`` to the item's overlay. The current snapshot is not touched.

    Raises:
        EditError: the overlay could not be updated.
    """
    return edit_media(Path(item_id), delta)


def find_duplicates(
    snapshot: Snapshot,
    threshold: int | None = None,
    *,
    algorithm: str | None = None,
    skip_same_dir: bool = False,
    workers: int | None = None,
    progress: ProgressCallback | None = None,
) -> DuplicateReport:
    return detect_duplicates(
        snapshot,
        threshold,
        algorithm=algorithm,
        skip_same_dir=skip_same_dir,
        workers=workers,
        progress=progress,
    )


@dataclass(frozen=True)
class SearchResult:
    terms: tuple[str, ...]
    # terms plus every alias reachable from them
    expanded_terms: tuple[str, ...]
    result: QueryResult
    alias_issues: tuple[ScanIssue, ...] = ()


class Library:
    """A set of roots with the snapshot currently published for them."""

    def __init__(
        self,
        roots: Iterable[Path | str] | None = None,
        *,
        compute_hashes: bool = False,
        workers: int | None = None,
    ) -> None:
        self.roots = resolve_roots(list(roots) if roots is not None else None)
        self.compute_hashes = compute_hashes
        self.workers = workers
        self.store = SnapshotStore()

    def rebuild(self, progress: ProgressCallback | None = None) -> Snapshot:
        """Build and publish a fresh snapshot, superseding any rebuild in flight."""
        return self.store.rebuild(
            self.roots, compute_hashes=self.compute_hashes, workers=self.workers, progress=progress
        )

    def snapshot(self) -> Snapshot:
        """The published snapshot, building the first one on demand."""
        current = self.store.current
        return current if current is not None else self.rebuild()

    def query(self, filter: Filter | None = None, sort: Sort | None = None, page: Page | None = None) -> QueryResult:
        return query(self.snapshot(), filter, sort, page)

    def search(
        self,
        terms: Iterable[str],
        *,
        use_aliases: bool = False,
        filter: Filter | None = None,
        sort: Sort | None = None,
        page: Page | None = None,
    ) -> SearchResult:
        """Match items where any term occurs in a tag, the author or the text fields."""
        normalized = normalize_terms(terms)
        expanded = normalized
        issues: list[ScanIssue] = []
        if use_aliases and normalized:
            aliases, issues = load_alias_map(self.roots)
            expanded = expand_terms(normalized, aliases)
        flt = replace(filter or Filter(), terms=tuple(expanded))
        return SearchResult(
            terms=tuple(normalized),
            expanded_terms=tuple(expanded),
            result=self.query(flt, sort, page),
            alias_issues=tuple(issues),
        )

    def get_item(self, item_id: str) -> ViewRecord:
        return get_item(self.snapshot(), item_id)

    def resolve(self, path: Path | str) -> Path:
        """Media path for user input: a media or sidecar path, absolute or relative to a root."""
        return resolve_media_path(path, self.roots)

    def apply_edit(self, item: str | Path, delta: EditDelta) -> EditOverlay:
        """Edit one item's overlay. Visible in queries after the next rebuild."""
        return edit_media(self.resolve(item), delta)

    def find_duplicates(self, threshold: int | None = None, **kwargs) -> DuplicateReport:
        return find_duplicates(self.snapshot(), threshold, workers=self.workers, **kwargs)
