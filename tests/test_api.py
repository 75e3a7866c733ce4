"""Tests for the Library facade and module-level API."""

import pytest
from conftest import noise_array, write_image, write_json, write_media

from lightbooru import api
from lightbooru.errors import ConfigError, EditError, ItemNotFoundError
from lightbooru.index.query import Filter, Page
from lightbooru.models import EditDelta


@pytest.fixture
def library(root):
    write_media(
        root / "twitter" / "alice",
        "1.jpg",
        metadata={"category": "twitter", "tweet_id": 1, "author": {"name": "alice"}, "hashtags": ["yurucamp"]},
    )
    write_media(
        root / "pixiv" / "bob",
        "2.jpg",
        metadata={"category": "pixiv", "id": 2, "user": {"name": "bob"}, "tags": ["ゆるキャン"]},
    )
    write_media(
        root / "pixiv" / "bob",
        "3.jpg",
        metadata={"category": "pixiv", "id": 3, "user": {"name": "bob"}, "tags": ["cat"], "x_restrict": 1},
    )
    write_json(root / "alias.json", [["yurucamp", "ゆるキャン"]])
    return api.Library([root], workers=2)


def _names(records):
    return sorted(r.item.file_path.name for r in records)


def test_snapshot_is_built_on_demand(library):
    assert library.store.current is None
    snapshot = library.snapshot()
    assert len(snapshot) == 3
    assert library.snapshot() is snapshot


def test_search_with_and_without_aliases(library):
    plain = library.search(["YuruCamp"])
    assert plain.terms == ("yurucamp",)
    assert _names(plain.result.items) == ["1.jpg"]

    expanded = library.search(["YuruCamp"], use_aliases=True)
    assert expanded.expanded_terms == ("yurucamp", "ゆるキャン")
    assert _names(expanded.result.items) == ["1.jpg", "2.jpg"]
    assert expanded.alias_issues == ()


def test_search_combines_with_filter(library):
    result = library.search(["bob"], filter=Filter(sensitive=False)).result
    assert _names(result.items) == ["2.jpg"]


def test_search_without_terms_matches_everything(library):
    assert library.search([], page=Page(limit=1)).result.total_count == 3


def test_edit_is_visible_after_rebuild(library, root):
    before = library.snapshot()
    overlay = library.apply_edit("twitter/alice/1.jpg", EditDelta(add_tags=frozenset({"Camping"}), sensitive=True))
    assert overlay.tags_added == {"camping"}

    item_id = (root / "twitter" / "alice" / "1.jpg").resolve().as_posix()
    assert library.get_item(item_id).tags == {"yurucamp"}

    after = library.rebuild()
    assert after.generation > before.generation
    record = library.get_item(item_id)
    assert record.tags == {"yurucamp", "camping"}
    assert record.sensitive is True
    assert library.query(Filter(tags_all=frozenset({"camping"}))).total_count == 1


def test_edit_by_sidecar_path(library, root):
    library.apply_edit(root / "pixiv" / "bob" / "2.jpg.json", EditDelta(notes="fav"))
    assert (root / "pixiv" / "bob" / "2.jpg.booru.json").is_file()


def test_edit_missing_item(library):
    with pytest.raises(EditError):
        library.apply_edit("nope.jpg", EditDelta(notes="x"))


def test_resolve_relative_and_absolute(library, root):
    media = (root / "pixiv" / "bob" / "3.jpg").resolve()
    assert library.resolve("pixiv/bob/3.jpg") == media
    assert library.resolve(root / "pixiv" / "bob" / "3.jpg.booru.json") == media


def test_get_item_unknown(library):
    with pytest.raises(ItemNotFoundError):
        library.get_item("/does/not/exist.jpg")


def test_library_requires_a_root():
    with pytest.raises(ConfigError):
        api.Library([])


def test_module_level_functions(root):
    pixels = noise_array(5)
    write_image(root / "a" / "x.png", pixels, metadata={"category": "twitter"})
    write_image(root / "b" / "y.png", pixels, metadata={"category": "twitter"})
    snapshot = api.rebuild_snapshot([root], workers=1)

    assert api.query(snapshot).total_count == 2
    first = api.query(snapshot).items[0]
    assert api.get_item(snapshot, first.item_id) is first

    report = api.find_duplicates(snapshot, 0)
    assert [len(cluster) for cluster in report.clusters] == [2]
    assert api.find_duplicates(snapshot, 0, skip_same_dir=True).clusters != ()

    api.apply_edit(first.item_id, EditDelta(add_tags=frozenset({"dupe"})))
    rebuilt = api.rebuild_snapshot([root])
    assert rebuilt.by_id[first.item_id].tags == {"dupe"}
