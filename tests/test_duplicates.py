"""Tests for perceptual hashing and near-duplicate clustering."""

import random

import pytest
from conftest import make_record, noise_array, write_image, write_media

from lightbooru.duplicates.clusters import UnionFind, cluster_hashes
from lightbooru.duplicates.detector import detect_duplicates
from lightbooru.duplicates.hashing import compute_hash, compute_hashes
from lightbooru.errors import HashComputationError
from lightbooru.index.store import rebuild
from lightbooru.models import DuplicateCluster, IssueKind, PerceptualHash


def _h(bits: int, width: int = 64) -> PerceptualHash:
    return PerceptualHash("phash", bits, width)


def test_union_find():
    uf = UnionFind(5)
    uf.union(0, 1)
    uf.union(3, 4)
    uf.union(1, 4)
    assert uf.find(0) == uf.find(3)
    assert uf.find(2) != uf.find(0)


def test_perceptual_hash_distance_and_hex():
    a, b = _h(0b1010), _h(0b0110)
    assert a.distance(b) == 2
    assert a.hex == "000000000000000a"
    assert _h(0, 8).distance(_h(0, 12)) == 4


def test_cluster_basic():
    hashes = {"/a/1.jpg": _h(0), "/a/2.jpg": _h(0b11), "/a/3.jpg": _h(2**64 - 1)}
    clusters = cluster_hashes(hashes, threshold=2)
    assert clusters == [DuplicateCluster(("/a/1.jpg", "/a/2.jpg"), (("/a/1.jpg", "/a/2.jpg", 2),))]


def test_chain_is_one_cluster_but_not_a_clique():
    hashes = {"a": _h(0), "b": _h(0b111), "c": _h(0b111111)}
    (cluster,) = cluster_hashes(hashes, threshold=3)
    assert cluster.item_ids == ("a", "b", "c")
    assert cluster.max_distance == 6
    assert cluster.is_clique(3) is False
    assert cluster.is_clique(6) is True


def test_threshold_zero_needs_identical_hashes():
    hashes = {"a": _h(5), "b": _h(5), "c": _h(4)}
    assert [c.item_ids for c in cluster_hashes(hashes, 0)] == [("a", "b")]


def test_negative_threshold_rejected():
    with pytest.raises(ValueError):
        cluster_hashes({"a": _h(0)}, -1)


def test_clusters_ordered_by_size_then_id():
    hashes = {
        "z1": _h(0),
        "z2": _h(0),
        "m1": _h(2**63),
        "m2": _h(2**63),
        "m3": _h(2**63),
        "a1": _h(2**40 - 1),
        "a2": _h(2**40 - 1),
    }
    clusters = cluster_hashes(hashes, 0)
    assert [c.item_ids for c in clusters] == [("m1", "m2", "m3"), ("a1", "a2"), ("z1", "z2")]


def test_skip_same_dir():
    hashes = {"/x/a.jpg": _h(0), "/x/b.jpg": _h(0)}
    assert cluster_hashes(hashes, 0, skip_same_dir=True) == []
    hashes["/y/c.jpg"] = _h(0)
    (cluster,) = cluster_hashes(hashes, 0, skip_same_dir=True)
    assert len(cluster) == 3


def test_mixed_widths_fall_back_to_pairwise():
    hashes = {"a": _h(0, 64), "b": _h(0, 60), "c": _h(2**64 - 1, 64)}
    assert [c.item_ids for c in cluster_hashes(hashes, 4)] == [("a", "b")]


def _components(hashes, threshold):
    ids = sorted(hashes)
    seen, groups = set(), []
    for start in ids:
        if start in seen:
            continue
        stack, group = [start], set()
        while stack:
            node = stack.pop()
            if node in group:
                continue
            group.add(node)
            stack.extend(o for o in ids if o not in group and hashes[node].distance(hashes[o]) <= threshold)
        seen |= group
        if len(group) > 1:
            groups.append(tuple(sorted(group)))
    return sorted(groups)


def test_clusters_match_connected_components():
    rng = random.Random(7)
    base = [rng.getrandbits(64) for _ in range(6)]
    hashes = {}
    for i in range(60):
        bits = base[i % 6]
        for _ in range(rng.randint(0, 6)):
            bits ^= 1 << rng.randrange(64)
        hashes[f"item{i:02d}"] = _h(bits)

    for threshold in (0, 3, 6, 10):
        clusters = cluster_hashes(hashes, threshold)
        assert sorted(c.item_ids for c in clusters) == _components(hashes, threshold)
        members = [i for c in clusters for i in c.item_ids]
        assert len(members) == len(set(members))


def test_compute_hash_same_pixels_same_hash(tmp_path):
    pixels = noise_array(1)
    a = compute_hash(write_image(tmp_path / "a.png", pixels))
    b = compute_hash(write_image(tmp_path / "b.bmp", pixels))
    c = compute_hash(write_image(tmp_path / "c.png", noise_array(2)))
    assert a == b
    assert a.width == 64
    assert len(a.hex) == 16
    assert a.distance(c) > 8


@pytest.mark.parametrize("algorithm", ["phash", "dhash", "ahash"])
def test_compute_hash_algorithms(tmp_path, algorithm):
    digest = compute_hash(write_image(tmp_path / "a.png", noise_array(3)), algorithm)
    assert digest.algorithm == algorithm
    assert 0 <= digest.bits < 2**64


def test_compute_hash_errors(tmp_path):
    broken = write_media(tmp_path, "broken.jpg")
    with pytest.raises(HashComputationError) as excinfo:
        compute_hash(broken)
    assert excinfo.value.path == broken
    with pytest.raises(ValueError):
        compute_hash(broken, "sha1")


def test_compute_hashes_skips_videos_and_reports_failures(tmp_path):
    image = write_image(tmp_path / "a.png", noise_array(1))
    video = write_media(tmp_path, "clip.mp4")
    broken = write_media(tmp_path, "broken.jpg")
    records = [make_record(str(p)) for p in (image, video, broken)]
    calls = []

    hashes, issues = compute_hashes(records, workers=2, progress=lambda *args: calls.append(args))

    assert set(hashes) == {str(image)}
    assert [(i.kind, i.item_id) for i in issues] == [(IssueKind.HASH_ERROR, str(broken))]
    assert sorted(calls)[-1] == ("hash", 2, 2)


def _gallery(root):
    pixels = noise_array(1)
    write_image(root / "twitter" / "a.png", pixels, metadata={"category": "twitter"})
    write_image(root / "pixiv" / "b.bmp", pixels, metadata={"category": "pixiv"})
    write_image(root / "pixiv" / "c.png", noise_array(2), metadata={"category": "pixiv"})
    write_media(root / "pixiv", "d.mp4", metadata={"category": "pixiv"})
    write_media(root / "pixiv", "e.jpg", metadata={"category": "pixiv"})


def test_detect_duplicates_without_stored_hashes(root):
    _gallery(root)
    snapshot = rebuild([root])

    report = detect_duplicates(snapshot, 4, algorithm="phash")

    assert [[i.rsplit("/", 1)[1] for i in c.item_ids] for c in report.clusters] == [["b.bmp", "a.png"]]
    assert {i.rsplit("/", 1)[1] for i in report.unhashed} == {"d.mp4", "e.jpg"}
    assert [i.kind for i in report.issues] == [IssueKind.HASH_ERROR]
    assert report.duplicate_count == 1
    assert len(snapshot.hashes) == 0
    assert snapshot.clusters == ()


def test_rebuild_with_hashes_precomputes_clusters(root):
    _gallery(root)
    snapshot = rebuild([root], compute_hashes=True, hash_algorithm="phash", duplicate_threshold=4)

    assert len(snapshot.hashes) == 3
    assert len(snapshot.clusters) == 1
    assert len(snapshot.report.of_kind(IssueKind.HASH_ERROR)) == 1

    report = detect_duplicates(snapshot, 4)
    assert report.clusters is snapshot.clusters
    assert report.algorithm == "phash"

    # Same-directory filter is never precomputed
    assert len(detect_duplicates(snapshot, 4, skip_same_dir=True)) == 1
    assert detect_duplicates(snapshot, 4, algorithm="dhash").algorithm == "dhash"


def test_detect_duplicates_rejects_negative_threshold(root):
    _gallery(root)
    with pytest.raises(ValueError):
        detect_duplicates(rebuild([root]), -1)
