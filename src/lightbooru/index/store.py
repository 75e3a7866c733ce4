"""Rebuild pipeline and the single published-snapshot reference."""

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from lightbooru.config import DUPLICATE_THRESHOLD, HASH_ALGORITHM, WORKERS, resolve_roots
from lightbooru.duplicates import hashing
from lightbooru.duplicates.hashing import ProgressCallback
from lightbooru.errors import RebuildCancelled
from lightbooru.index.builder import Snapshot, build
from lightbooru.library.scanner import Discovered, LoadedItem, discover, failed_item, load_item
from lightbooru.models import ScanIssue

logger = logging.getLogger(__name__)


def _check(cancel: threading.Event | None, stage: str) -> None:
    if cancel is not None and cancel.is_set():
        raise RebuildCancelled(f"Rebuild cancelled during {stage}")


def rebuild(
    roots: Iterable[Path | str] | None = None,
    *,
    compute_hashes: bool = False,
    hash_algorithm: str = HASH_ALGORITHM,
    duplicate_threshold: int = DUPLICATE_THRESHOLD,
    workers: int | None = None,
    cancel: threading.Event | None = None,
    progress: ProgressCallback | None = None,
    generation: int = 0,
) -> Snapshot:
    """Scan ``roots`` and build a complete Snapshot off to the side.

    Per-file loading (and hashing, if requested) runs on a thread pool;
    results are put back into discovery order before the single-threaded
    build. Per-item problems end up in ``snapshot.report``.

    Raises:
        ConfigError: ``roots`` is an empty list.
        FatalScanError: none of the roots is readable.
        RebuildCancelled: ``cancel`` was set before the build finished.
    """
    root_paths = resolve_roots(list(roots) if roots is not None else None)
    logger.info("Scanning %s", ", ".join(str(r) for r in root_paths))
    entries, issues = discover(root_paths)
    _check(cancel, "discovery")

    total = len(entries)
    done = 0
    lock = threading.Lock()

    def _load(entry: Discovered) -> LoadedItem | None:
        nonlocal done
        if cancel is not None and cancel.is_set():
            return None
        try:
            loaded = load_item(entry)
        except Exception as exc:
            logger.exception("Failed to load %s", entry.media_path)
            loaded = failed_item(entry, exc)
        if progress is not None:
            with lock:
                done += 1
                progress("load", done, total)
        return loaded

    with ThreadPoolExecutor(max_workers=workers or WORKERS) as pool:
        loaded = list(pool.map(_load, entries))
    _check(cancel, "loading")

    all_issues: list[ScanIssue] = list(issues)
    records = []
    for item in loaded:
        records.append(item.record)
        all_issues.extend(item.issues)

    hashes = None
    if compute_hashes:
        hashes, hash_issues = hashing.compute_hashes(
            records, hash_algorithm, workers=workers, cancel=cancel, progress=progress
        )
        all_issues.extend(hash_issues)

    snapshot = build(
        records,
        issues=all_issues,
        hashes=hashes,
        hash_algorithm=hash_algorithm if compute_hashes else None,
        duplicate_threshold=duplicate_threshold if compute_hashes else None,
        roots=root_paths,
        generation=generation,
    )
    _check(cancel, "build")
    logger.info("Indexed %d items with %d issues", len(snapshot), len(snapshot.report))
    return snapshot


class SnapshotStore:
    """Holds the current Snapshot; readers never see a partial one.

    Each rebuild takes a generation number. Starting a new rebuild cancels
    the one in flight, and a result is published only if no newer rebuild
    has started meanwhile.
    """

    def __init__(self, snapshot: Snapshot | None = None) -> None:
        self._lock = threading.Lock()
        self._current = snapshot
        self._generation = snapshot.generation if snapshot is not None else 0
        self._cancel: threading.Event | None = None

    @property
    def current(self) -> Snapshot | None:
        with self._lock:
            return self._current

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def begin(self) -> tuple[int, threading.Event]:
        """Reserve the next generation, cancelling any rebuild still running."""
        with self._lock:
            if self._cancel is not None:
                self._cancel.set()
            self._generation += 1
            self._cancel = threading.Event()
            return self._generation, self._cancel

    def publish(self, snapshot: Snapshot) -> bool:
        """Swap in ``snapshot`` unless a newer generation has been started."""
        with self._lock:
            if snapshot.generation != self._generation:
                logger.info(
                    "Discarding stale snapshot (generation %d, current %d)", snapshot.generation, self._generation
                )
                return False
            if self._cancel is not None and self._cancel.is_set():
                logger.info("Discarding cancelled snapshot (generation %d)", snapshot.generation)
                return False
            self._current = snapshot
            self._cancel = None
            return True

    def cancel(self) -> None:
        """Abandon the rebuild in flight, if any."""
        with self._lock:
            if self._cancel is not None:
                self._cancel.set()

    def rebuild(self, roots: Iterable[Path | str] | None = None, **kwargs) -> Snapshot:
        """Run a full rebuild and publish it.

        Raises:
            RebuildCancelled: a newer rebuild superseded this one, or it was cancelled.
        """
        generation, token = self.begin()
        snapshot = rebuild(roots, cancel=token, generation=generation, **kwargs)
        if not self.publish(snapshot):
            raise RebuildCancelled(f"Rebuild generation {generation} was superseded")
        return snapshot
