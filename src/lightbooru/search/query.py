"""Translate web form input into queries and results into gallery items."""

from datetime import datetime

from lightbooru.duplicates.detector import DuplicateReport
from lightbooru.index.builder import Snapshot
from lightbooru.index.query import Filter, Sort, SortKey
from lightbooru.library.normalizer import split_tag_string
from lightbooru.models import ViewRecord

ANY_RATING = "any"
RATINGS = (ANY_RATING, "safe", "sensitive")

SORT_CHOICES = {
    "Newest": Sort(SortKey.POSTED_AT, descending=True),
    "Oldest": Sort(SortKey.POSTED_AT, descending=False),
    "Score": Sort(SortKey.SCORE, descending=True),
    "Largest file": Sort(SortKey.FILE_SIZE, descending=True),
    "Platform / post id": Sort(SortKey.PLATFORM_POST_ID, descending=False),
}


def parse_tag_input(text: str | None) -> frozenset[str]:
    """Comma- or space-separated tags from a text box."""
    if not text:
        return frozenset()
    return frozenset(tag.lower() for tag in split_tag_string(text))


def split_terms(text: str | None) -> list[str]:
    return text.split() if text else []


def build_filter(
    tags_text: str | None = None,
    exclude_text: str | None = None,
    platforms: list[str] | None = None,
    rating: str = ANY_RATING,
) -> Filter:
    sensitive = None
    if rating == "safe":
        sensitive = False
    elif rating == "sensitive":
        sensitive = True
    return Filter(
        tags_all=parse_tag_input(tags_text),
        tags_none=parse_tag_input(exclude_text),
        platforms=frozenset(platforms or ()),
        sensitive=sensitive,
    )


def gallery_caption(record: ViewRecord) -> str:
    parts = [record.platform or "unknown"]
    if record.author_name:
        parts.append(record.author_name)
    if record.posted_at is not None:
        parts.append(record.posted_at.strftime("%Y-%m-%d"))
    return " | ".join(parts)


def gallery_items(records: list[ViewRecord] | tuple[ViewRecord, ...]) -> list[tuple[str, str]]:
    return [(str(record.item.file_path), gallery_caption(record)) for record in records]


def _fmt_date(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC") if value else "(none)"


def describe(record: ViewRecord) -> str:
    """Markdown detail block for one item."""
    lines = [
        f"**File:** `{record.item.file_path}`",
        f"**Platform:** {record.platform or '(unknown)'}",
        f"**Author:** {record.author_name or '(none)'}",
        f"**Posted:** {_fmt_date(record.posted_at)}",
        f"**Sensitive:** {'yes' if record.sensitive else 'no'}",
    ]
    if record.score is not None:
        lines.append(f"**Score:** {record.score:g}")
    if record.post_url:
        lines.append(f"**Source:** [{record.post_url}]({record.post_url})")
    if record.title:
        lines.append(f"**Title:** {record.title}")
    lines.append(f"**Tags:** {', '.join(sorted(record.tags)) or '(none)'}")
    if record.notes:
        lines.append(f"**Notes:** {record.notes}")
    if record.description:
        lines.append("")
        lines.append(record.description)
    return "  \n".join(lines)


def duplicate_gallery(snapshot: Snapshot, report: DuplicateReport) -> list[tuple[str, str]]:
    """Flattened gallery: every member of every cluster, captioned with its group."""
    items = []
    for idx, cluster in enumerate(report.clusters, start=1):
        for item_id in cluster.item_ids:
            record = snapshot.by_id.get(item_id)
            path = str(record.item.file_path) if record else item_id
            items.append((path, f"group {idx} ({len(cluster)} items)"))
    return items


def duplicate_summary(report: DuplicateReport) -> str:
    if not report.clusters:
        summary = "No duplicates found."
    else:
        chained = sum(1 for c in report.clusters if not c.is_clique(report.threshold))
        summary = (
            f"Found {len(report.clusters)} groups ({report.duplicate_count} redundant files) "
            f"with {report.algorithm}, threshold {report.threshold}."
        )
        if chained:
            summary += f" {chained} groups are chained: some members differ by more than the threshold."
    if report.unhashed:
        summary += f" {len(report.unhashed)} items could not be hashed."
    return summary
