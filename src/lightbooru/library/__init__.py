"""Library CLI: rebuild the index, inspect, edit and search items, manage aliases."""

import argparse
import sys


def main() -> None:
    """CLI entry point for library operations."""
    parser = argparse.ArgumentParser(prog="lightbooru", description="LightBooru library tools")
    parser.add_argument(
        "--base",
        "-b",
        action="append",
        default=None,
        help="gallery-dl download directory (repeatable; default: LIGHTBOORU_ROOTS or ~/Pictures/gallery-dl)",
    )
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress scan warnings")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads (default: LIGHTBOORU_WORKERS)")
    subparsers = parser.add_subparsers(dest="command")

    # rebuild
    rebuild_parser = subparsers.add_parser("rebuild", help="Scan the roots and report what was indexed")
    rebuild_parser.add_argument("--hash", action="store_true", help="Also compute perceptual hashes")
    rebuild_parser.add_argument(
        "--show-issues", action="store_true", help="List every scan issue, not only the counts"
    )

    # info
    info_parser = subparsers.add_parser("info", help="Show merged metadata for one media file")
    info_parser.add_argument("path", help="Media file or sidecar (absolute or relative to a root)")
    info_parser.add_argument("--original", action="store_true", help="Print the source metadata JSON")
    info_parser.add_argument("--booru", action="store_true", help="Print the overlay JSON")

    # edit
    edit_parser = subparsers.add_parser("edit", help="Edit tags, sensitivity or notes of one media file")
    edit_parser.add_argument("path", help="Media file or sidecar (absolute or relative to a root)")
    edit_parser.add_argument("--add-tag", action="append", default=[], help="Tag(s) to add, comma separated")
    edit_parser.add_argument(
        "--remove-tag", action="append", default=[], help="Tag(s) to remove, comma separated"
    )
    edit_parser.add_argument(
        "--set-tag", action="append", default=None, help="Replace the effective tags, comma separated"
    )
    edit_parser.add_argument("--clear-tags", action="store_true", help="Remove every effective tag")
    sensitive = edit_parser.add_mutually_exclusive_group()
    sensitive.add_argument("--sensitive", dest="sensitive", action="store_const", const=True, default=None)
    sensitive.add_argument("--not-sensitive", dest="sensitive", action="store_const", const=False)
    sensitive.add_argument(
        "--clear-sensitive", action="store_true", help="Fall back to the source's sensitive flag"
    )
    edit_parser.add_argument("--notes", default=None, help="Replace the notes (empty string clears them)")

    # search
    search_parser = subparsers.add_parser("search", help="Search tags, author and text by substring")
    search_parser.add_argument("terms", nargs="*", help="Search terms (any may match)")
    search_parser.add_argument("--no-alias", action="store_true", help="Do not expand terms with alias.json")
    search_parser.add_argument("--tag", action="append", default=[], help="Require an exact tag")
    search_parser.add_argument("--exclude-tag", action="append", default=[], help="Exclude an exact tag")
    search_parser.add_argument("--platform", action="append", default=[], help="Limit to a platform")
    search_parser.add_argument("--author", action="append", default=[], help="Limit to an author")
    rating = search_parser.add_mutually_exclusive_group()
    rating.add_argument("--sensitive", dest="sensitive", action="store_const", const=True, default=None)
    rating.add_argument("--safe", dest="sensitive", action="store_const", const=False)
    search_parser.add_argument(
        "--sort",
        choices=["posted_at", "score", "file_size", "platform_post_id"],
        default="posted_at",
        help="Sort key (default: posted_at)",
    )
    search_parser.add_argument("--ascending", action="store_true", help="Sort ascending")
    search_parser.add_argument("--offset", type=int, default=0)
    search_parser.add_argument("--limit", type=int, default=100, help="Max results (default: 100)")

    # alias
    alias_parser = subparsers.add_parser("alias", help="Show or manage alias groups in alias.json")
    alias_sub = alias_parser.add_subparsers(dest="alias_command")
    alias_sub.add_parser("list", help="Show alias groups")
    alias_add = alias_sub.add_parser("add", help="Put terms into one alias group")
    alias_add.add_argument("terms", nargs="+")
    alias_remove = alias_sub.add_parser("remove", help="Remove terms from all alias groups")
    alias_remove.add_argument("terms", nargs="+")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    setup_logging(args.quiet)

    from lightbooru.errors import LightbooruError

    try:
        if args.command == "rebuild":
            _cmd_rebuild(args)
        elif args.command == "info":
            _cmd_info(args)
        elif args.command == "edit":
            _cmd_edit(args)
        elif args.command == "search":
            _cmd_search(args)
        elif args.command == "alias":
            if args.alias_command is None:
                alias_parser.print_help()
                return
            _cmd_alias(args)
    except LightbooruError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)


def setup_logging(quiet: bool = False) -> None:
    """Route log records through rich; ``quiet`` hides per-item warnings."""
    import logging

    from rich.logging import RichHandler

    from lightbooru.config import LOG_LEVEL

    level = logging.ERROR if quiet else getattr(logging, LOG_LEVEL)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def progress_bar():
    """Rich progress display plus a callback feeding it per stage."""
    from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TextColumn("{task.completed}/{task.total}"),
    )
    labels = {"load": "Loading metadata", "hash": "Hashing images"}
    tasks: dict[str, int] = {}

    def callback(stage: str, completed: int, total: int) -> None:
        if stage not in tasks:
            tasks[stage] = progress.add_task(labels.get(stage, stage), total=total)
        progress.update(tasks[stage], completed=completed, total=total)

    return progress, callback


def _split_tags(values: list[str]) -> list[str]:
    out = []
    for value in values:
        out.extend(part.strip() for part in value.split(",") if part.strip())
    return out


def _library(args: argparse.Namespace):
    from lightbooru.api import Library

    return Library(args.base, workers=args.workers, compute_hashes=getattr(args, "hash", False))


def _load_snapshot(args: argparse.Namespace):
    library = _library(args)
    progress, callback = progress_bar()
    with progress:
        library.rebuild(progress=callback)
    return library


def _cmd_rebuild(args: argparse.Namespace) -> None:
    """Scan, index and summarize."""
    library = _load_snapshot(args)
    snapshot = library.snapshot()
    report = snapshot.report

    print(f"Roots: {', '.join(str(r) for r in snapshot.roots)}")
    print(f"Items: {len(snapshot)}")
    print(f"Tags: {len(snapshot.tag_index)}")
    print(f"Platforms: {', '.join(sorted(snapshot.platform_index)) or '(none)'}")
    if snapshot.hash_algorithm:
        print(f"Hashed: {len(snapshot.hashes)} ({snapshot.hash_algorithm})")
        print(f"Duplicate clusters: {len(snapshot.clusters)} (threshold {snapshot.cluster_threshold})")
    if report.issues:
        counts = ", ".join(f"{kind}: {count}" for kind, count in sorted(report.counts().items()))
        print(f"Issues: {len(report)} ({counts}) affecting {report.affected_items} items")
        if args.show_issues:
            for issue in report:
                print(f"  {issue}")
    else:
        print("Issues: none")


def _format_date(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S %Z") if value else "(none)"


def _cmd_info(args: argparse.Namespace) -> None:
    """Show merged metadata for one media file."""
    import json

    from lightbooru.library.overlay import load_overlay, overlay_to_dict
    from lightbooru.paths import item_id_for, overlay_path_for

    library = _load_snapshot(args)
    media_path = library.resolve(args.path)
    record = library.get_item(item_id_for(media_path))

    print(f"Image: {record.item.file_path}")
    print(f"Metadata: {record.item.metadata_path or '(none)'}")
    print(f"Booru edits: {overlay_path_for(record.item.file_path)}")
    print(f"Platform: {record.platform or '(unknown)'}")
    print(f"Tags: {' '.join(sorted(record.tags)) or '(none)'}")
    print(f"Author: {record.author_name or '(none)'}")
    print(f"Date: {_format_date(record.posted_at)}")
    print(f"Platform URL: {record.post_url or '(none)'}")
    detail = record.description or record.title
    if detail and "\n" in detail:
        print(f"Detail:\n{detail}")
    else:
        print(f"Detail: {detail or '(none)'}")
    print(f"Sensitive (NSFW): {'yes' if record.sensitive else 'no'}")
    print(f"Notes (user): {record.notes or '(none)'}")

    if args.original:
        print("\nOriginal metadata:")
        print(json.dumps(record.metadata.raw_extra, ensure_ascii=False, indent=2))
    if args.booru:
        overlay = load_overlay(overlay_path_for(record.item.file_path))
        print("\nBooru edits:")
        print(json.dumps(overlay_to_dict(overlay) if overlay else {}, ensure_ascii=False, indent=2))


def _cmd_edit(args: argparse.Namespace) -> None:
    """Write an overlay edit for one media file."""
    import json

    from lightbooru.api import Library
    from lightbooru.library.overlay import overlay_to_dict
    from lightbooru.models import EditDelta

    set_tags = None
    if args.clear_tags:
        set_tags = frozenset()
    elif args.set_tag is not None:
        set_tags = frozenset(_split_tags(args.set_tag))

    delta = EditDelta(
        add_tags=frozenset(_split_tags(args.add_tag)),
        remove_tags=frozenset(_split_tags(args.remove_tag)),
        set_tags=set_tags,
        sensitive=args.sensitive,
        clear_sensitive=args.clear_sensitive,
        notes=args.notes,
    )
    library = Library(args.base, workers=args.workers)
    media_path = library.resolve(args.path)
    overlay = library.apply_edit(media_path, delta)
    print(f"Updated: {media_path}")
    print(f"Booru edits: {json.dumps(overlay_to_dict(overlay), ensure_ascii=False, indent=2)}")


def _cmd_search(args: argparse.Namespace) -> None:
    """Search and print matching media paths."""
    from lightbooru.index.query import Filter, Page, Sort, SortKey

    flt = Filter(
        tags_all=frozenset(args.tag),
        tags_none=frozenset(args.exclude_tag),
        platforms=frozenset(args.platform),
        authors=frozenset(args.author),
        sensitive=args.sensitive,
    )
    if not args.terms and flt == Filter():
        print("error: no search terms or filters provided", file=sys.stderr)
        sys.exit(2)

    library = _load_snapshot(args)
    found = library.search(
        args.terms,
        use_aliases=not args.no_alias,
        filter=flt,
        sort=Sort(SortKey(args.sort), descending=not args.ascending),
        page=Page(args.offset, args.limit),
    )
    if found.expanded_terms != found.terms:
        print(f"Terms: {', '.join(found.expanded_terms)}", file=sys.stderr)
    for record in found.result.items:
        print(record.item.file_path)
    print(f"{found.result.total_count} matches", file=sys.stderr)


def _alias_edit_root(args: argparse.Namespace):
    from lightbooru.config import resolve_roots
    from lightbooru.errors import ConfigError

    roots = resolve_roots(args.base)
    if len(roots) != 1:
        raise ConfigError("alias add/remove requires exactly one root; pass a single --base")
    return roots[0]


def _cmd_alias(args: argparse.Namespace) -> None:
    """List, add or remove alias groups."""
    from lightbooru.config import resolve_roots
    from lightbooru.errors import AliasFileError, ConfigError
    from lightbooru.library.aliases import (
        add_terms,
        alias_path_for_root,
        load_groups_for_root,
        normalize_terms,
        remove_terms,
        save_groups,
    )

    if args.alias_command == "list":
        roots = resolve_roots(args.base)
        for idx, root in enumerate(roots):
            if len(roots) > 1:
                if idx > 0:
                    print()
                print(f"Root: {root}")
            try:
                groups = load_groups_for_root(root)
            except AliasFileError as exc:
                if not args.quiet:
                    print(f"warning: {exc}", file=sys.stderr)
                print("(invalid alias file)")
                continue
            if not groups:
                print("(none)")
            for group in groups:
                print(" | ".join(group))
        return

    terms = normalize_terms(args.terms)
    if args.alias_command == "add" and len(terms) < 2:
        raise ConfigError("alias add requires at least 2 non-empty terms")
    if args.alias_command == "remove" and not terms:
        raise ConfigError("alias remove requires at least 1 non-empty term")

    root = _alias_edit_root(args)
    path = alias_path_for_root(root)
    groups = load_groups_for_root(root)
    if args.alias_command == "add":
        groups, changed = add_terms(groups, terms)
    else:
        groups, changed = remove_terms(groups, terms)
    if changed:
        save_groups(path, groups)
        print(f"Updated {path}")
    else:
        print("No changes.")
