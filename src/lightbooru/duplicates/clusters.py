"""Group perceptual hashes into near-duplicate clusters with union-find.

Clusters are connected components of the "distance <= threshold" graph, so a
chain of near-duplicates may join images that are far apart end to end. Each
cluster therefore carries all of its pairwise distances and can report whether
it is a clique.
"""

from collections.abc import Mapping
from itertools import combinations
from pathlib import PurePosixPath

import numpy as np

from lightbooru.models import DuplicateCluster, PerceptualHash


class UnionFind:
    """Disjoint sets over 0..size-1 with path compression and union by rank."""

    def __init__(self, size: int) -> None:
        self.parent = list(range(size))
        self.rank = [0] * size

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        if self.rank[root_a] < self.rank[root_b]:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        if self.rank[root_a] == self.rank[root_b]:
            self.rank[root_a] += 1


def _bit_matrix(hashes: list[PerceptualHash]) -> np.ndarray:
    """One row of 0/1 per hash, most significant bit first."""
    width = max(h.width for h in hashes)
    n_bytes = (width + 7) // 8
    raw = b"".join(h.bits.to_bytes(n_bytes, "big") for h in hashes)
    bits = np.unpackbits(np.frombuffer(raw, dtype=np.uint8).reshape(len(hashes), n_bytes), axis=1)
    return bits[:, n_bytes * 8 - width:]


def _parent_dir(item_id: str) -> str:
    return str(PurePosixPath(item_id).parent)


def cluster_hashes(
    hashes: Mapping[str, PerceptualHash],
    threshold: int,
    *,
    skip_same_dir: bool = False,
) -> list[DuplicateCluster]:
    """Connected components of items whose hashes differ by at most ``threshold`` bits.

    Only clusters with two or more members are returned, largest first, then by
    smallest member id. With ``skip_same_dir`` pairs inside one directory are
    never linked directly (gallery-dl often saves variants of one post together).
    """
    if threshold < 0:
        raise ValueError(f"threshold must be >= 0, got {threshold}")
    ids = sorted(hashes)
    if len(ids) < 2:
        return []

    values = [hashes[i] for i in ids]
    uniform = len({h.width for h in values}) == 1
    matrix = _bit_matrix(values) if uniform else None
    parents = [_parent_dir(i) for i in ids] if skip_same_dir else None
    uf = UnionFind(len(ids))

    for i in range(len(ids) - 1):
        if matrix is not None:
            distances = np.count_nonzero(matrix[i + 1:] != matrix[i], axis=1)
            neighbours = (np.flatnonzero(distances <= threshold) + i + 1).tolist()
        else:
            neighbours = [j for j in range(i + 1, len(ids)) if values[i].distance(values[j]) <= threshold]
        for j in neighbours:
            if parents is not None and parents[i] == parents[j]:
                continue
            uf.union(i, j)

    members: dict[int, list[int]] = {}
    for index in range(len(ids)):
        members.setdefault(uf.find(index), []).append(index)

    clusters = []
    for group in members.values():
        if len(group) < 2:
            continue
        pairs = tuple(
            (ids[a], ids[b], values[a].distance(values[b])) for a, b in combinations(group, 2)
        )
        clusters.append(DuplicateCluster(item_ids=tuple(ids[g] for g in group), distances=pairs))

    clusters.sort(key=lambda c: (-len(c), c.item_ids[0]))
    return clusters
