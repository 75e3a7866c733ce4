"""Tests for snapshot construction and the rebuild pipeline."""

import os
import threading
from dataclasses import replace

import pytest
from conftest import make_record, utc, write_media

from lightbooru.errors import ConfigError, FatalScanError, RebuildCancelled
from lightbooru.index import store
from lightbooru.index.builder import build
from lightbooru.index.query import Filter, query
from lightbooru.index.store import SnapshotStore, rebuild
from lightbooru.models import IssueKind


def test_build_indices():
    records = [
        make_record("/r/b.jpg", tags={"cat"}, platform="twitter", author="Alice", posted_at=utc(2024, 1, 1)),
        make_record("/r/a.jpg", tags={"cat", "dog"}, platform="pixiv", author="bob"),
        make_record("/r/c.jpg", tags={"dog"}, platform="Twitter", author="alice", posted_at=utc(2023, 1, 1)),
    ]
    snapshot = build(records)

    assert [r.item_id for r in snapshot] == ["/r/b.jpg", "/r/a.jpg", "/r/c.jpg"]
    assert len(snapshot) == 3
    assert "/r/a.jpg" in snapshot
    assert snapshot.ids_with_tag("cat") == {"/r/b.jpg", "/r/a.jpg"}
    assert snapshot.ids_with_tag("bird") == frozenset()
    assert snapshot.ids_for_platform("TWITTER") == {"/r/b.jpg", "/r/c.jpg"}
    assert snapshot.ids_for_author("ALICE") == {"/r/b.jpg", "/r/c.jpg"}
    assert snapshot.date_keys == (utc(2023, 1, 1), utc(2024, 1, 1))


def test_posted_between_is_inclusive():
    records = [make_record(f"/r/{d}.jpg", posted_at=utc(2024, 1, d)) for d in (1, 2, 3, 4)]
    snapshot = build(records)
    assert snapshot.ids_posted_between(utc(2024, 1, 2), utc(2024, 1, 3)) == {"/r/2.jpg", "/r/3.jpg"}
    assert snapshot.ids_posted_between(None, utc(2024, 1, 1)) == {"/r/1.jpg"}
    assert snapshot.ids_posted_between(utc(2024, 1, 4), None) == {"/r/4.jpg"}


def test_malformed_records_are_reported_not_fatal():
    good = make_record("/r/a.jpg")
    naive = replace(make_record("/r/b.jpg"), metadata=replace(good.metadata, posted_at=utc(2024, 1, 1).replace(tzinfo=None)))
    bad_tags = replace(make_record("/r/c.jpg"), tags=frozenset({1}))
    snapshot = build([good, naive, good, bad_tags, "not a record"])

    assert [r.item_id for r in snapshot] == ["/r/a.jpg"]
    errors = snapshot.report.of_kind(IssueKind.RECORD_ERROR)
    assert len(errors) == 4
    assert any("duplicate item_id" in e.message for e in errors)


def test_snapshot_indices_are_read_only():
    snapshot = build([make_record("/r/a.jpg", tags={"cat"})])
    with pytest.raises(TypeError):
        snapshot.tag_index["dog"] = frozenset()


def _populate(root):
    write_media(root / "twitter" / "alice", "1.jpg", metadata={"category": "twitter", "hashtags": ["cat"]})
    write_media(root / "twitter" / "alice", "2.jpg", metadata={"category": "twitter", "hashtags": ["dog"]})
    write_media(root / "pixiv" / "bob", "3.png", metadata={"category": "pixiv", "tags": ["cat", "dog"]})
    write_media(root / "misc", "4.gif")


def test_rebuild_twice_gives_equal_record_sets(root):
    _populate(root)
    first = rebuild([root], workers=1)
    second = rebuild([root], workers=4)
    assert set(first.records) == set(second.records)
    assert len(first) == 4


def test_rebuild_reports_missing_metadata(root):
    _populate(root)
    snapshot = rebuild([root])
    warnings = snapshot.report.of_kind(IssueKind.SCAN_WARNING)
    assert [w.message for w in warnings] == ["media file without metadata"]
    assert snapshot.report.counts() == {"scan_warning": 1}


def test_corrupt_metadata_item_still_indexed(root):
    _populate(root)
    media = write_media(root / "twitter" / "alice", "5.jpg")
    (root / "twitter" / "alice" / "5.jpg.json").write_text("{{{", encoding="utf-8")

    snapshot = rebuild([root])

    record = snapshot.by_id[media.resolve().as_posix()]
    assert record.metadata.post_id is None
    assert record.tags == frozenset()
    parse_errors = snapshot.report.of_kind(IssueKind.PARSE_ERROR)
    assert [e.item_id for e in parse_errors] == [record.item_id]


def test_sensitive_overlay_scenario(root):
    write_media(
        root,
        "a.jpg",
        metadata={"category": "x", "tags": ["x", "y"]},
        overlay={"tags_removed": ["y"], "sensitive_override": True},
    )
    snapshot = rebuild([root])
    result = query(snapshot, Filter(sensitive=True))
    assert [r.item.file_path.name for r in result.items] == ["a.jpg"]
    assert result.items[0].tags == {"x"}
    assert result.items[0].platform == "x"


def test_rebuild_errors(tmp_path):
    with pytest.raises(ConfigError):
        rebuild([])
    with pytest.raises(FatalScanError):
        rebuild([tmp_path / "missing"])


def test_rebuild_progress_callback(root):
    _populate(root)
    calls = []
    rebuild([root], workers=1, progress=lambda stage, done, total: calls.append((stage, done, total)))
    assert calls[-1] == ("load", 4, 4)


def test_cancelled_rebuild_raises(root):
    _populate(root)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(RebuildCancelled):
        rebuild([root], cancel=cancel)


def test_store_publishes_latest_generation_only(root):
    _populate(root)
    store = SnapshotStore()
    assert store.current is None

    old_generation, old_token = store.begin()
    new_generation, _ = store.begin()
    assert old_token.is_set()

    stale = rebuild([root], generation=old_generation)
    fresh = rebuild([root], generation=new_generation)
    assert store.publish(stale) is False
    assert store.current is None
    assert store.publish(fresh) is True
    assert store.current is fresh


def test_store_rebuild_and_cancel(root):
    _populate(root)
    store = SnapshotStore()
    snapshot = store.rebuild([root])
    assert store.current is snapshot
    assert snapshot.generation == store.generation

    generation, token = store.begin()
    store.cancel()
    assert token.is_set()
    late = rebuild([root], generation=generation)
    assert store.publish(late) is False
    assert store.current is snapshot


def test_non_finite_json_numbers_do_not_abort_rebuild(root):
    good = write_media(root, "good.jpg", metadata={"category": "twitter", "tweet_id": 1})
    bad = write_media(root, "bad.jpg")
    (root / "bad.jpg.json").write_text('{"category": "twitter", "width": NaN, "score": Infinity}', encoding="utf-8")

    snapshot = rebuild([root])

    assert len(snapshot) == 2
    record = snapshot.by_id[bad.resolve().as_posix()]
    assert record.metadata.width is None
    assert record.metadata.score is None
    assert snapshot.by_id[good.resolve().as_posix()].metadata.post_id == "1"


def test_unexpected_load_failure_becomes_parse_error(root, monkeypatch):
    write_media(root, "good.jpg", metadata={"category": "twitter"})
    broken = write_media(root, "broken.jpg", metadata={"category": "twitter"})
    real_load_item = store.load_item

    def _load_item(entry):
        if entry.media_path.name == "broken.jpg":
            raise ValueError("boom")
        return real_load_item(entry)

    monkeypatch.setattr(store, "load_item", _load_item)
    snapshot = rebuild([root])

    assert len(snapshot) == 2
    record = snapshot.by_id[broken.resolve().as_posix()]
    assert record.tags == frozenset()
    errors = snapshot.report.of_kind(IssueKind.PARSE_ERROR)
    assert [e.item_id for e in errors] == [record.item_id]
    assert "boom" in errors[0].message


def test_symlink_loop_does_not_abort_rebuild(root):
    good = write_media(root, "good.jpg", metadata={"category": "twitter"})
    loop = root / "loop.jpg"
    os.symlink(loop, loop)

    snapshot = rebuild([root])

    assert good.resolve().as_posix() in snapshot.by_id
    assert loop.absolute().as_posix() in snapshot.by_id
    assert "cannot stat media file" in " ".join(i.message for i in snapshot.report.of_kind(IssueKind.SCAN_WARNING))
