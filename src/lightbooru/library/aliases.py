"""Search-term alias groups stored in ``<root>/alias.json``.

The file is a JSON array of groups, each a list of equivalent terms::

    [["yurucamp", "ゆるキャン", "摇曳露营"], ["cat", "neko"]]

Groups that share a term are the same group, so normalization merges them.
"""

import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from lightbooru.config import ALIAS_FILE_NAME
from lightbooru.errors import AliasFileError
from lightbooru.library.sources import write_json_atomic
from lightbooru.models import IssueKind, ScanIssue

logger = logging.getLogger(__name__)

AliasGroups = list[list[str]]


def alias_path_for_root(root: Path) -> Path:
    return root / ALIAS_FILE_NAME


def normalize_term(term: str) -> str | None:
    term = term.strip()
    return term.lower() if term else None


def normalize_terms(terms: Iterable[str]) -> list[str]:
    """Lowercase, strip and dedupe, keeping first-seen order."""
    out: list[str] = []
    for term in terms:
        normalized = normalize_term(term)
        if normalized is not None and normalized not in out:
            out.append(normalized)
    return out


def _components(graph: Mapping[str, set[str]]) -> AliasGroups:
    seen: set[str] = set()
    groups: AliasGroups = []
    for start in graph:
        if start in seen:
            continue
        seen.add(start)
        stack = [start]
        component = []
        while stack:
            term = stack.pop()
            component.append(term)
            for nxt in graph[term]:
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        if len(component) >= 2:
            groups.append(sorted(component))
    return groups


def normalize_groups(groups: Iterable[Iterable[str]]) -> AliasGroups:
    """Merge overlapping groups; drop groups with fewer than two terms.

    Output groups are sorted internally and ordered by their first term.
    """
    graph: dict[str, set[str]] = {}
    for group in groups:
        terms = normalize_terms(group)
        if len(terms) < 2:
            continue
        anchor = terms[0]
        for term in terms:
            graph.setdefault(term, set())
        for term in terms[1:]:
            graph[anchor].add(term)
            graph[term].add(anchor)
    return sorted(_components(graph), key=lambda g: (g[0], len(g)))


def parse_groups(data: Any, path: Path) -> AliasGroups:
    if not isinstance(data, list):
        raise AliasFileError(path, "root value must be an array of alias groups")
    groups: AliasGroups = []
    for index, group in enumerate(data):
        if not isinstance(group, list):
            raise AliasFileError(path, f"group at index {index} must be an array")
        if not all(isinstance(term, str) for term in group):
            raise AliasFileError(path, f"group at index {index} contains a non-string value")
        groups.append(group)
    return normalize_groups(groups)


def load_groups(path: Path) -> AliasGroups:
    """Read one alias file.

    Raises:
        AliasFileError: the file is unreadable or not an array of string arrays.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        raise AliasFileError(path, f"failed to read alias file ({exc})") from exc
    except json.JSONDecodeError as exc:
        raise AliasFileError(path, f"malformed JSON at line {exc.lineno} column {exc.colno}") from exc
    return parse_groups(data, path)


def load_groups_for_root(root: Path) -> AliasGroups:
    path = alias_path_for_root(root)
    if not path.is_file():
        return []
    return load_groups(path)


def save_groups(path: Path, groups: Iterable[Iterable[str]]) -> AliasGroups:
    normalized = normalize_groups(groups)
    path.parent.mkdir(parents=True, exist_ok=True)
    write_json_atomic(path, normalized, AliasFileError, "alias file")
    return normalized


def add_terms(groups: AliasGroups, terms: Iterable[str]) -> tuple[AliasGroups, bool]:
    """Declare ``terms`` equivalent, merging every group that shares one of them.

    Returns the new groups and whether anything changed.
    """
    before = normalize_groups(groups)
    incoming = normalize_terms(terms)
    if len(incoming) < 2:
        return before, False
    merged = list(incoming)
    kept = []
    for group in before:
        if any(term in incoming for term in group):
            merged.extend(group)
        else:
            kept.append(group)
    after = normalize_groups([*kept, merged])
    return after, after != before


def remove_terms(groups: AliasGroups, terms: Iterable[str]) -> tuple[AliasGroups, bool]:
    """Drop ``terms`` from every group; groups left with one term disappear."""
    before = normalize_groups(groups)
    doomed = set(normalize_terms(terms))
    if not doomed:
        return before, False
    after = normalize_groups([t for t in group if t not in doomed] for group in before)
    return after, after != before


def alias_map(groups: Iterable[Iterable[str]]) -> dict[str, list[str]]:
    """term -> the other terms of its group."""
    out: dict[str, list[str]] = {}
    for group in normalize_groups(groups):
        for term in group:
            out[term] = [alias for alias in group if alias != term]
    return out


def load_alias_map(roots: Iterable[Path]) -> tuple[dict[str, list[str]], list[ScanIssue]]:
    """Combined alias map of all roots. Broken alias files become warnings."""
    groups: AliasGroups = []
    issues: list[ScanIssue] = []
    for root in roots:
        try:
            groups.extend(load_groups_for_root(root))
        except AliasFileError as exc:
            logger.warning("%s", exc)
            issues.append(ScanIssue(IssueKind.SCAN_WARNING, exc.path, exc.message))
    return alias_map(groups), issues


def expand_terms(terms: Iterable[str], aliases: Mapping[str, Iterable[str]]) -> list[str]:
    """Normalized ``terms`` followed by every alias reachable from them."""
    graph: dict[str, set[str]] = {}
    for term, others in aliases.items():
        for other in others:
            graph.setdefault(term, set()).add(other)
            graph.setdefault(other, set()).add(term)

    out = normalize_terms(terms)
    seen = set(out)
    queue = list(out)
    while queue:
        term = queue.pop(0)
        for alias in sorted(graph.get(term, ())):
            if alias not in seen:
                seen.add(alias)
                out.append(alias)
                queue.append(alias)
    return out
