"""Sidecar path conventions for media files."""

from pathlib import Path

from lightbooru.config import METADATA_SUFFIX, OVERLAY_SUFFIX, expand_tilde


def metadata_path_for(media_path: Path) -> Path:
    """``xxx.ext`` -> ``xxx.ext.json`` (written by gallery-dl)."""
    return media_path.with_name(media_path.name + METADATA_SUFFIX)


def overlay_path_for(media_path: Path) -> Path:
    """``xxx.ext`` -> ``xxx.ext.booru.json`` (written by us)."""
    return media_path.with_name(media_path.name + OVERLAY_SUFFIX)


def normalize_media_path(path: Path | str) -> Path:
    """Map a sidecar path back to its media file; media paths pass through."""
    path = expand_tilde(path)
    name = path.name
    if name.endswith(OVERLAY_SUFFIX):
        return path.with_name(name[: -len(OVERLAY_SUFFIX)])
    if name.endswith(METADATA_SUFFIX):
        return path.with_name(name[: -len(METADATA_SUFFIX)])
    return path


def canonicalize(path: Path) -> Path:
    try:
        return path.resolve(strict=True)
    # symlink loops raise RuntimeError before Python 3.13
    except (OSError, RuntimeError):
        return path.absolute()


def resolve_media_path(path: Path | str, roots: list[Path]) -> Path:
    """Resolve a user-supplied path (media or sidecar, absolute or root-relative)."""
    normalized = normalize_media_path(path)
    if normalized.is_absolute():
        return canonicalize(normalized)
    for root in roots:
        candidate = root / normalized
        if candidate.exists():
            return canonicalize(candidate)
    return canonicalize(normalized)


def item_id_for(media_path: Path) -> str:
    """Stable item id: the canonical absolute POSIX path of the media file."""
    return canonicalize(media_path).as_posix()
