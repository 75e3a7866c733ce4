"""Combine normalized source metadata with an optional overlay."""

from lightbooru.models import EditOverlay, MediaItem, NormalizedMetadata, ViewRecord


def effective_tags(source: frozenset[str], overlay: EditOverlay | None) -> frozenset[str]:
    """(source | added) - removed."""
    if overlay is None:
        return source
    return (source | overlay.tags_added) - overlay.tags_removed


def effective_sensitive(source: bool | None, overlay: EditOverlay | None) -> bool:
    """Overlay override, then the source flag, then False."""
    if overlay is not None and overlay.sensitive_override is not None:
        return overlay.sensitive_override
    return bool(source)


def merge(item: MediaItem, metadata: NormalizedMetadata, overlay: EditOverlay | None) -> ViewRecord:
    """Build the query-facing record. Pure; the overlay only touches tags, sensitive and notes."""
    return ViewRecord(
        item=item,
        metadata=metadata,
        tags=effective_tags(metadata.tags, overlay),
        sensitive=effective_sensitive(metadata.sensitive, overlay),
        notes=overlay.notes if overlay is not None else None,
        has_overlay=overlay is not None,
    )
