"""Tests for alias groups and search-term expansion."""

import json

import pytest
from conftest import write_json

from lightbooru.errors import AliasFileError
from lightbooru.library.aliases import (
    add_terms,
    alias_map,
    expand_terms,
    load_alias_map,
    load_groups,
    load_groups_for_root,
    normalize_groups,
    normalize_terms,
    parse_groups,
    remove_terms,
    save_groups,
)
from lightbooru.models import IssueKind


def test_parse_array_of_groups(tmp_path):
    groups = parse_groups([["摇曳露营", "ゆるキャン", "yurucamp"]], tmp_path / "alias.json")
    assert len(groups) == 1
    assert len(groups[0]) == 3


def test_object_format_is_rejected(tmp_path):
    with pytest.raises(AliasFileError, match="root value must be an array"):
        parse_groups({"摇曳露营": ["ゆるキャン", "yurucamp"]}, tmp_path / "alias.json")


@pytest.mark.parametrize("data", [["a", "b"], [["a", 1]]])
def test_malformed_groups_are_rejected(tmp_path, data):
    with pytest.raises(AliasFileError):
        parse_groups(data, tmp_path / "alias.json")


def test_normalize_merges_connected_groups():
    assert normalize_groups([["a", "b"], ["b", "c"]]) == [["a", "b", "c"]]


def test_normalize_drops_singletons_and_orders_groups():
    groups = normalize_groups([["Zeta", "zeta"], ["Neko", "cat"], ["b", " B ", "a"]])
    assert groups == [["a", "b"], ["cat", "neko"]]


def test_alias_map_is_bidirectional():
    aliases = alias_map([["摇曳露营", "ゆるキャン", "yurucamp"]])
    assert aliases["摇曳露营"] == ["yurucamp", "ゆるキャン"]
    assert aliases["yurucamp"] == ["ゆるキャン", "摇曳露营"]


def test_add_terms_merges_overlapping_groups():
    groups, changed = add_terms([["a", "b"], ["x", "y"]], ["b", "x", "z"])
    assert changed is True
    assert groups == [["a", "b", "x", "y", "z"]]


def test_add_terms_without_change():
    groups, changed = add_terms([["a", "b"]], ["B", "a"])
    assert changed is False
    assert groups == [["a", "b"]]
    assert add_terms([], ["solo"]) == ([], False)


def test_remove_terms_drops_small_groups():
    groups, changed = remove_terms([["a", "b", "c"]], ["a", "b"])
    assert changed is True
    assert groups == []
    assert remove_terms([["a", "b"]], ["q"]) == ([["a", "b"]], False)


def test_expand_terms_bidirectional():
    aliases = {"摇曳露营": ["ゆるキャン", "yurucamp"]}
    expanded = expand_terms(["yurucamp"], aliases)
    assert expanded[0] == "yurucamp"
    assert set(expanded) == {"yurucamp", "ゆるキャン", "摇曳露营"}


def test_expand_terms_is_transitive():
    aliases = {"a": ["b"], "c": ["b"], "d": ["c"]}
    assert expand_terms(["A"], aliases) == ["a", "b", "c", "d"]
    assert expand_terms(["unrelated"], aliases) == ["unrelated"]


def test_normalize_terms_lowercases_and_dedupes():
    assert normalize_terms(["  YuruCamp ", "yurucamp", ""]) == ["yurucamp"]


def test_save_and_load_round_trip(tmp_path):
    path = tmp_path / "sub" / "alias.json"
    saved = save_groups(path, [["Neko", "cat"], ["cat", "猫"]])
    assert saved == [["cat", "neko", "猫"]]
    assert json.loads(path.read_text(encoding="utf-8")) == saved
    assert load_groups(path) == saved
    assert [p.name for p in path.parent.iterdir()] == ["alias.json"]


def test_load_groups_for_root(tmp_path):
    assert load_groups_for_root(tmp_path) == []
    write_json(tmp_path / "alias.json", [["a", "b"]])
    assert load_groups_for_root(tmp_path) == [["a", "b"]]


def test_load_alias_map_combines_roots_and_reports_broken_files(tmp_path):
    first, second, third = (tmp_path / name for name in ("one", "two", "three"))
    for root in (first, second, third):
        root.mkdir()
    write_json(first / "alias.json", [["a", "b"]])
    write_json(second / "alias.json", [["b", "c"]])
    (third / "alias.json").write_text("[[", encoding="utf-8")

    aliases, issues = load_alias_map([first, second, third])

    assert aliases["a"] == ["b", "c"]
    assert [issue.kind for issue in issues] == [IssueKind.SCAN_WARNING]
    assert "malformed JSON" in issues[0].message
