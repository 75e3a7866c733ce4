"""Duplicates CLI: perceptual hashing and near-duplicate clustering."""

import argparse
import sys


def main() -> None:
    """CLI entry point for duplicate detection."""
    parser = argparse.ArgumentParser(prog="lightbooru-dupes", description="LightBooru duplicate finder")
    parser.add_argument(
        "--base",
        "-b",
        action="append",
        default=None,
        help="gallery-dl download directory (repeatable; default: LIGHTBOORU_ROOTS or ~/Pictures/gallery-dl)",
    )
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress scan and hash warnings")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads (default: LIGHTBOORU_WORKERS)")
    subparsers = parser.add_subparsers(dest="command")

    # find
    find_parser = subparsers.add_parser("find", help="Group near-duplicate images")
    find_parser.add_argument(
        "--algo",
        choices=["phash", "dhash", "ahash"],
        default=None,
        help="Hash algorithm (default: LIGHTBOORU_HASH_ALGORITHM or phash)",
    )
    find_parser.add_argument(
        "--threshold",
        type=int,
        default=None,
        help="Max Hamming distance between duplicates (default: LIGHTBOORU_DUPLICATE_THRESHOLD or 8)",
    )
    find_parser.add_argument(
        "--skip-same-dir",
        action="store_true",
        help="Never link two images from the same directory directly",
    )
    find_parser.add_argument("--distances", action="store_true", help="Print pairwise distances per group")

    # hash
    hash_parser = subparsers.add_parser("hash", help="Print the perceptual hash of image files")
    hash_parser.add_argument("paths", nargs="+", help="Image files")
    hash_parser.add_argument("--algo", choices=["phash", "dhash", "ahash"], default=None)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    from lightbooru.errors import LightbooruError
    from lightbooru.library import setup_logging

    setup_logging(args.quiet)
    try:
        if args.command == "find":
            _cmd_find(args)
        elif args.command == "hash":
            _cmd_hash(args)
    except LightbooruError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)


def _cmd_find(args: argparse.Namespace) -> None:
    """Scan, hash and print duplicate groups."""
    from lightbooru.api import Library
    from lightbooru.library import progress_bar

    library = Library(args.base, workers=args.workers)
    progress, callback = progress_bar()
    with progress:
        snapshot = library.rebuild(progress=callback)
        report = library.find_duplicates(
            args.threshold,
            algorithm=args.algo,
            skip_same_dir=args.skip_same_dir,
            progress=callback,
        )

    if report.unhashed:
        print(f"Skipped {len(report.unhashed)} of {len(snapshot)} items without a hash.", file=sys.stderr)
    if not report.clusters:
        print("No duplicates found.")
        return

    for idx, cluster in enumerate(report.clusters, start=1):
        marker = "" if cluster.is_clique(report.threshold) else " (chained)"
        print(f"Group {idx}: {len(cluster)} items, max distance {cluster.max_distance}{marker}")
        for item_id in cluster.item_ids:
            print(f"  {item_id}")
        if args.distances:
            for a, b, distance in cluster.distances:
                print(f"    {distance:>3}  {a} <-> {b}")
    print(
        f"\n{len(report.clusters)} groups, {report.duplicate_count} redundant files "
        f"({report.algorithm}, threshold {report.threshold})"
    )


def _cmd_hash(args: argparse.Namespace) -> None:
    """Print one hash per file."""
    from pathlib import Path

    from lightbooru.config import HASH_ALGORITHM, expand_tilde
    from lightbooru.duplicates.hashing import compute_hash
    from lightbooru.errors import HashComputationError

    algorithm = args.algo or HASH_ALGORITHM
    failed = 0
    for raw in args.paths:
        path: Path = expand_tilde(raw)
        try:
            digest = compute_hash(path, algorithm)
        except HashComputationError as exc:
            failed += 1
            print(f"warning: {exc}", file=sys.stderr)
            continue
        print(f"{digest.hex}  {path}")
    if failed:
        sys.exit(1)
