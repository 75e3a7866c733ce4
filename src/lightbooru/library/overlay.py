"""Read and write the ``.booru.json`` overlay sidecar holding user edits.

Source metadata is never written; edits land here instead. Writes go through a
temporary file in the same directory followed by ``os.replace``, while holding
a per-path lock, so concurrent edits to one item serialize and a crash never
leaves a half-written sidecar behind.
"""

import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from lightbooru.errors import EditError, MetadataParseError, OverlayParseError
from lightbooru.library.normalizer import normalize_tags, parse_bool, parse_timestamp
from lightbooru.library.sources import load_source_metadata, read_json_object, write_json_atomic
from lightbooru.models import EditDelta, EditOverlay
from lightbooru.paths import metadata_path_for, overlay_path_for

logger = logging.getLogger(__name__)

_KNOWN_KEYS = frozenset({"tags_added", "tags_removed", "sensitive_override", "notes", "edited_at"})
# Layout written by earlier releases: {"tags": {"set", "add", "remove"}, "sensitive": ...}
_LEGACY_KEYS = frozenset({"tags", "sensitive"})

# path -> (lock, number of threads holding or waiting on it)
_locks: dict[str, tuple[threading.Lock, int]] = {}
_locks_guard = threading.Lock()


@contextmanager
def overlay_lock(path: Path) -> Iterator[None]:
    """Hold exclusive access to one overlay path for the duration of the block.

    The entry for ``path`` is dropped once no thread holds or waits on it.
    """
    key = os.path.abspath(path)
    with _locks_guard:
        lock, users = _locks.get(key, (None, 0))
        if lock is None:
            lock = threading.Lock()
        _locks[key] = (lock, users + 1)
    try:
        with lock:
            yield
    finally:
        with _locks_guard:
            lock, users = _locks[key]
            if users == 1:
                del _locks[key]
            else:
                _locks[key] = (lock, users - 1)


def _tag_list(value: Any, path: Path, key: str) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        logger.warning("Ignoring %s in %s: expected a list, got %s", key, path, type(value).__name__)
        return frozenset()
    if not all(isinstance(tag, str) for tag in value):
        logger.warning("Ignoring non-string entries of %s in %s", key, path)
    return normalize_tags(value)


def parse_overlay(data: dict[str, Any], path: Path) -> EditOverlay:
    """Build an EditOverlay, dropping individual fields that have the wrong type."""
    added = _tag_list(data.get("tags_added"), path, "tags_added")
    removed = _tag_list(data.get("tags_removed"), path, "tags_removed")

    legacy_tags = data.get("tags")
    if isinstance(legacy_tags, dict):
        added |= _tag_list(legacy_tags.get("add"), path, "tags.add")
        removed |= _tag_list(legacy_tags.get("remove"), path, "tags.remove")
        if legacy_tags.get("set") is not None:
            logger.warning("Ignoring tags.set in %s: overlays only add or remove tags", path)
    elif legacy_tags is not None:
        logger.warning("Ignoring tags in %s: expected an object", path)

    sensitive = None
    for key in ("sensitive_override", "sensitive"):
        if data.get(key) is None:
            continue
        sensitive = parse_bool(data[key])
        if sensitive is None:
            logger.warning("Ignoring %s in %s: not a boolean (%r)", key, path, data[key])
        break

    notes = data.get("notes")
    if notes is not None and not isinstance(notes, str):
        logger.warning("Ignoring notes in %s: expected a string", path)
        notes = None

    edited_at = None
    if data.get("edited_at") is not None:
        edited_at = parse_timestamp(data["edited_at"])
        if edited_at is None:
            logger.warning("Ignoring edited_at in %s: %r", path, data["edited_at"])

    return EditOverlay(
        # Removal wins when a tag somehow ended up in both lists
        tags_added=added - removed,
        tags_removed=removed,
        sensitive_override=sensitive,
        notes=notes or None,
        edited_at=edited_at,
        extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS and k not in _LEGACY_KEYS},
    )


def load_overlay(path: Path) -> EditOverlay | None:
    """Load an overlay sidecar; ``None`` when the file does not exist."""
    if not path.exists():
        return None
    return parse_overlay(read_json_object(path, OverlayParseError), path)


def overlay_to_dict(overlay: EditOverlay) -> dict[str, Any]:
    data = dict(overlay.extra)
    data["tags_added"] = sorted(overlay.tags_added)
    data["tags_removed"] = sorted(overlay.tags_removed)
    data["sensitive_override"] = overlay.sensitive_override
    data["notes"] = overlay.notes
    data["edited_at"] = overlay.edited_at.isoformat() if overlay.edited_at else None
    return data


def save_overlay(path: Path, overlay: EditOverlay) -> None:
    """Atomically replace the overlay file."""
    write_json_atomic(path, overlay_to_dict(overlay), EditError, "overlay")


def apply_delta(
    overlay: EditOverlay | None,
    delta: EditDelta,
    source_tags: frozenset[str] = frozenset(),
    now: datetime | None = None,
) -> EditOverlay:
    """Fold one edit request into an overlay.

    Only differences from the source tags are stored: adding a tag the source
    already has, or removing one it lacks, just cancels any earlier opposite
    edit. ``set_tags`` is stored as the add/remove difference to the source.
    """
    current = overlay or EditOverlay()
    added = set(current.tags_added)
    removed = set(current.tags_removed)

    if delta.set_tags is not None:
        target = normalize_tags(delta.set_tags)
        added = set(target - source_tags)
        removed = set(source_tags - target)

    to_add = normalize_tags(delta.add_tags)
    to_remove = normalize_tags(delta.remove_tags)
    for tag in to_add - to_remove:
        removed.discard(tag)
        if tag not in source_tags:
            added.add(tag)
    for tag in to_remove:
        added.discard(tag)
        if tag in source_tags:
            removed.add(tag)

    sensitive = current.sensitive_override
    if delta.clear_sensitive:
        sensitive = None
    if delta.sensitive is not None:
        sensitive = delta.sensitive

    notes = current.notes
    if delta.notes is not None:
        notes = delta.notes.strip() or None

    return EditOverlay(
        tags_added=frozenset(added),
        tags_removed=frozenset(removed),
        sensitive_override=sensitive,
        notes=notes,
        edited_at=now or datetime.now(UTC),
        extra=dict(current.extra),
    )


def _source_tags(media_path: Path) -> frozenset[str]:
    metadata_path = metadata_path_for(media_path)
    if not metadata_path.exists():
        return frozenset()
    try:
        _, metadata = load_source_metadata(metadata_path)
    except MetadataParseError as exc:
        logger.warning("Editing without source tags: %s", exc)
        return frozenset()
    return metadata.tags


def edit_media(media_path: Path, delta: EditDelta, now: datetime | None = None) -> EditOverlay:
    """Apply ``delta`` to the overlay of ``media_path`` and write it back.

    Raises:
        EditError: the media file is missing, the existing overlay cannot be
            parsed (it is left untouched), or the write fails.
    """
    if delta.is_empty():
        raise EditError(media_path, "nothing to edit")
    if not media_path.is_file():
        raise EditError(media_path, "media file not found")

    path = overlay_path_for(media_path)
    with overlay_lock(path):
        try:
            existing = load_overlay(path)
        except OverlayParseError as exc:
            raise EditError(path, f"refusing to overwrite unreadable overlay ({exc.message})") from exc
        updated = apply_delta(existing, delta, _source_tags(media_path), now=now)
        save_overlay(path, updated)
    logger.info("Updated overlay %s", path)
    return updated
