"""Near-duplicate detection over a built snapshot."""

import logging
from dataclasses import dataclass

from lightbooru.config import DUPLICATE_THRESHOLD, HASH_ALGORITHM
from lightbooru.duplicates.clusters import cluster_hashes
from lightbooru.duplicates.hashing import ProgressCallback, compute_hashes
from lightbooru.index.builder import Snapshot
from lightbooru.models import DuplicateCluster, ScanIssue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicateReport:
    clusters: tuple[DuplicateCluster, ...]
    # Items excluded from clustering because no hash could be computed
    unhashed: tuple[str, ...]
    threshold: int
    algorithm: str
    issues: tuple[ScanIssue, ...] = ()

    def __len__(self) -> int:
        return len(self.clusters)

    def __iter__(self):
        return iter(self.clusters)

    @property
    def duplicate_count(self) -> int:
        """Items that could be removed while keeping one per cluster."""
        return sum(len(c) - 1 for c in self.clusters)


def detect_duplicates(
    snapshot: Snapshot,
    threshold: int | None = None,
    *,
    algorithm: str | None = None,
    skip_same_dir: bool = False,
    workers: int | None = None,
    progress: ProgressCallback | None = None,
) -> DuplicateReport:
    """Cluster the snapshot's images by perceptual-hash distance.

    Hashes stored in the snapshot are reused when they were computed with the
    requested algorithm; otherwise they are computed here. The snapshot is
    never modified.
    """
    threshold = DUPLICATE_THRESHOLD if threshold is None else threshold
    if threshold < 0:
        raise ValueError(f"threshold must be >= 0, got {threshold}")
    algorithm = algorithm or snapshot.hash_algorithm or HASH_ALGORITHM

    issues: list[ScanIssue] = []
    if snapshot.hash_algorithm == algorithm:
        hashes = dict(snapshot.hashes)
    else:
        logger.info("Snapshot has no %s hashes; computing them for %d items", algorithm, len(snapshot))
        hashes, issues = compute_hashes(snapshot.records, algorithm, workers=workers, progress=progress)

    if (
        not skip_same_dir
        and snapshot.hash_algorithm == algorithm
        and snapshot.cluster_threshold == threshold
    ):
        clusters = snapshot.clusters
    else:
        clusters = tuple(cluster_hashes(hashes, threshold, skip_same_dir=skip_same_dir))

    unhashed = tuple(r.item_id for r in snapshot.records if r.item_id not in hashes)
    logger.info(
        "Found %d duplicate clusters (%d items unhashed, threshold %d)", len(clusters), len(unhashed), threshold
    )
    return DuplicateReport(
        clusters=clusters,
        unhashed=unhashed,
        threshold=threshold,
        algorithm=algorithm,
        issues=tuple(issues),
    )
