"""Walk root directories and pair media files with their sidecars."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from lightbooru.config import ALIAS_FILE_NAME, MEDIA_EXTENSIONS, METADATA_SUFFIX, OVERLAY_SUFFIX
from lightbooru.errors import FatalScanError, MetadataParseError, OverlayParseError
from lightbooru.library.merger import merge
from lightbooru.library.overlay import load_overlay
from lightbooru.library.sources import load_source_metadata
from lightbooru.models import IssueKind, MediaItem, NormalizedMetadata, ScanIssue, ViewRecord
from lightbooru.paths import canonicalize, item_id_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Discovered:
    """A media file and the sidecars found next to it."""

    media_path: Path
    metadata_path: Path | None
    overlay_path: Path | None
    root: Path


@dataclass(frozen=True)
class LoadedItem:
    """Outcome of loading one discovered triple."""

    record: ViewRecord
    issues: tuple[ScanIssue, ...] = ()


def _warning(path: Path, message: str) -> ScanIssue:
    logger.warning("%s: %s", message, path)
    return ScanIssue(kind=IssueKind.SCAN_WARNING, path=path, message=message)


def _is_media_name(name: str, names: set[str]) -> bool:
    if name.startswith(".") or name == ALIAS_FILE_NAME:
        return False
    if name.endswith(METADATA_SUFFIX):
        return False
    extension = name.rpartition(".")[2].lower() if "." in name else ""
    return extension in MEDIA_EXTENSIONS or (name + METADATA_SUFFIX) in names


def _scan_directory(root: Path, dirpath: str, filenames: list[str]) -> tuple[list[Discovered], list[ScanIssue]]:
    names = set(filenames)
    found: list[Discovered] = []
    issues: list[ScanIssue] = []
    directory = Path(dirpath)

    for name in filenames:
        if name == ALIAS_FILE_NAME or name.startswith("."):
            continue
        if name.endswith(OVERLAY_SUFFIX):
            if name[: -len(OVERLAY_SUFFIX)] not in names:
                issues.append(_warning(directory / name, "overlay without media file"))
            continue
        if name.endswith(METADATA_SUFFIX):
            if name[: -len(METADATA_SUFFIX)] not in names:
                issues.append(_warning(directory / name, "metadata without media file"))
            continue
        if not _is_media_name(name, names):
            continue

        metadata_name = name + METADATA_SUFFIX
        overlay_name = name + OVERLAY_SUFFIX
        media_path = directory / name
        if metadata_name not in names:
            issues.append(_warning(media_path, "media file without metadata"))
        found.append(
            Discovered(
                media_path=media_path,
                metadata_path=directory / metadata_name if metadata_name in names else None,
                overlay_path=directory / overlay_name if overlay_name in names else None,
                root=root,
            )
        )
    return found, issues


def discover(roots: list[Path]) -> tuple[list[Discovered], list[ScanIssue]]:
    """Find every media file under ``roots``.

    Missing roots and unreadable directories become scan warnings. The result
    is sorted by path, so discovery order does not depend on the file system.

    Raises:
        FatalScanError: none of the roots could be read.
    """
    found: dict[str, Discovered] = {}
    issues: list[ScanIssue] = []
    readable = 0

    for root in roots:
        if not root.is_dir():
            issues.append(_warning(root, "root directory does not exist"))
            continue
        if not os.access(root, os.R_OK | os.X_OK):
            issues.append(_warning(root, "root directory is not readable"))
            continue
        readable += 1

        def _on_error(exc: OSError) -> None:
            issues.append(_warning(Path(exc.filename or root), f"unreadable directory ({exc.strerror})"))

        for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            entries, dir_issues = _scan_directory(root, dirpath, sorted(filenames))
            issues.extend(dir_issues)
            for entry in entries:
                # Overlapping roots must not yield the same file twice
                found.setdefault(item_id_for(entry.media_path), entry)

    if readable == 0:
        raise FatalScanError(
            "No readable root directory: " + ", ".join(str(r) for r in roots) if roots else "No root directories given"
        )
    return [found[key] for key in sorted(found)], issues


def platform_from_layout(media_path: Path, root: Path) -> str | None:
    """gallery-dl stores files as ``<root>/<platform>/<user>/...``."""
    try:
        parts = media_path.relative_to(root).parts
    except ValueError:
        return None
    return parts[0].lower() if len(parts) > 1 else None


def load_item(entry: Discovered) -> LoadedItem:
    """Read, normalize and merge one discovered media file. Never raises for bad data."""
    issues: list[ScanIssue] = []
    media_path = canonicalize(entry.media_path)
    item_id = media_path.as_posix()

    try:
        file_size: int | None = media_path.stat().st_size
    except OSError as exc:
        file_size = None
        issues.append(
            ScanIssue(IssueKind.SCAN_WARNING, media_path, f"cannot stat media file ({exc.strerror})", item_id)
        )

    platform = platform_from_layout(entry.media_path, entry.root)
    metadata = NormalizedMetadata.empty()
    if entry.metadata_path is not None:
        try:
            platform, metadata = load_source_metadata(entry.metadata_path, platform)
        except MetadataParseError as exc:
            logger.warning("%s", exc)
            issues.append(ScanIssue(IssueKind.PARSE_ERROR, exc.path, exc.message, item_id))

    overlay = None
    if entry.overlay_path is not None:
        try:
            overlay = load_overlay(entry.overlay_path)
        except OverlayParseError as exc:
            logger.warning("%s", exc)
            issues.append(ScanIssue(IssueKind.PARSE_ERROR, exc.path, exc.message, item_id))

    item = MediaItem(
        item_id=item_id,
        file_path=media_path,
        file_size=file_size,
        extension=media_path.suffix.lstrip(".").lower(),
        source_platform=platform,
        source_post_id=metadata.post_id,
        metadata_path=entry.metadata_path,
        overlay_path=entry.overlay_path,
    )
    return LoadedItem(record=merge(item, metadata, overlay), issues=tuple(issues))


def failed_item(entry: Discovered, exc: Exception) -> LoadedItem:
    """Stand-in for an item whose loading raised; keeps the file listed with empty metadata."""
    media_path = canonicalize(entry.media_path)
    item_id = media_path.as_posix()
    item = MediaItem(
        item_id=item_id,
        file_path=media_path,
        file_size=None,
        extension=media_path.suffix.lstrip(".").lower(),
        source_platform=platform_from_layout(entry.media_path, entry.root),
        source_post_id=None,
        metadata_path=entry.metadata_path,
        overlay_path=entry.overlay_path,
    )
    issue = ScanIssue(
        IssueKind.PARSE_ERROR,
        entry.metadata_path or entry.media_path,
        f"unexpected error while loading ({type(exc).__name__}: {exc})",
        item_id,
    )
    return LoadedItem(record=merge(item, NormalizedMetadata.empty(), None), issues=(issue,))
