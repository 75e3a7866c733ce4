"""Map per-platform gallery-dl metadata onto one canonical record.

Every platform is described by rows in a declarative table: a canonical field
maps to an ordered tuple of candidate source keys and the first candidate that
yields a usable value wins. A candidate is either a key, a dotted path into
nested objects (``"status.user.screen_name"``), or a callable taking the raw
mapping. Platform rows are tried before the generic rows, so adding a platform
means adding rows, not code paths.
"""

import copy
import html
import logging
import math
import re
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from lightbooru.models import NormalizedMetadata

logger = logging.getLogger(__name__)

Candidate = str | Callable[[Mapping[str, Any]], Any]

FIELD_MAP: dict[str, tuple[Candidate, ...]] = {
    "post_id": ("post_id", "id", "status.id"),
    "author_name": (
        "author",
        "author.name",
        "username",
        "blog_name",
        "user.name",
        "user.username",
        "user.screen_name",
        "user.id",
        "status.user.name",
        "status.user.username",
        "status.user.screen_name",
        "status.user.idstr",
        "status.user.id",
        "account.display_name",
        "account.username",
        "account.acct",
        "blog.name",
        "blog.title",
        "tags_artist",
    ),
    "posted_at": (
        "date",
        "created_at",
        "create_date",
        "published_at",
        "timestamp",
        "detail.modules.module_author.pub_ts",
        "status.date",
        "status.created_at",
    ),
    "title": ("title",),
    "description": (
        "detail",
        "text_raw",
        "text",
        "content",
        "body",
        "caption",
        "description",
        "summary",
        "spoiler_text",
        "status.text_raw",
        "status.text",
        "status.longTextContent_raw",
        "status.longTextContent",
    ),
    "sensitive": ("sensitive", "nsfw", "is_sensitive", "is_nsfw", "possibly_sensitive", "rating"),
    "score": ("score", "fav_count", "favorite_count", "like_count", "total_bookmarks"),
    "media_url": ("file_url", "url", "image_url", "large_file_url", "source_url"),
    "post_url": ("post_url", "uri", "source_url", "url", "live_url"),
    "width": ("width", "image_width"),
    "height": ("height", "image_height"),
    "content_hash": ("md5", "hash", "sha256"),
}


def _bilibili_paragraphs(raw: Mapping[str, Any]) -> str | None:
    """Flatten Bilibili rich-text paragraph nodes into plain text."""
    paragraphs = _lookup(raw, "detail.modules.module_content.paragraphs")
    if not isinstance(paragraphs, list):
        return None
    parts: list[str] = []
    for paragraph in paragraphs:
        nodes = _lookup(paragraph, "text.nodes") if isinstance(paragraph, Mapping) else None
        if not isinstance(nodes, list):
            continue
        for node in nodes:
            if not isinstance(node, Mapping):
                continue
            words = _lookup(node, "word.words")
            if isinstance(words, str):
                parts.append(words)
                continue
            rich = node.get("rich")
            if isinstance(rich, Mapping):
                text = rich.get("orig_text", rich.get("text"))
                if isinstance(text, str):
                    parts.append(text)
    text = "".join(parts).strip()
    return text or None


PLATFORM_FIELD_MAPS: dict[str, dict[str, tuple[Candidate, ...]]] = {
    "twitter": {
        "post_id": ("tweet_id",),
        "author_name": ("author.name", "author.nick", "user.name"),
        "description": ("content",),
        "score": ("favorite_count",),
        "post_url": (),
    },
    "weibo": {
        "post_id": ("status.mblogid", "status.id"),
        "author_name": ("status.user.screen_name", "status.user.idstr"),
        "posted_at": ("status.created_at",),
        "description": ("status.text_raw", "status.text"),
        "post_url": ("status.url",),
    },
    "pixiv": {
        "author_name": ("user.name", "user.account"),
        "description": ("caption",),
        "score": ("total_bookmarks",),
        "sensitive": ("x_restrict",),
        "post_url": (),
    },
    "danbooru": {
        "author_name": ("tag_string_artist",),
        "media_url": ("file_url", "large_file_url"),
        "width": ("image_width",),
        "height": ("image_height",),
        "post_url": (),
    },
    "yandere": {"author_name": ("tags_artist",), "post_url": ()},
    "gelbooru": {"author_name": ("tags_artist", "owner"), "post_url": ()},
    "tumblr": {
        "author_name": ("blog_name", "blog.name"),
        "description": ("caption", "body", "summary"),
        "post_url": ("post_url", "short_url"),
    },
    "mastodon": {
        "author_name": ("account.username", "account.acct", "account.display_name"),
        "description": ("content", "spoiler_text"),
        "post_url": ("uri", "url"),
    },
    "bilibili": {
        "post_id": ("detail.id_str", "id"),
        "description": (_bilibili_paragraphs, "detail.modules.module_dynamic.desc.text"),
        "post_url": (),
    },
    "kemonoparty": {
        "author_name": ("username", "user"),
        "description": ("content",),
        "posted_at": ("published", "added"),
    },
}

# Tried in order after the post_url candidates; "{name}" is a canonical field
# or a dotted raw path and a template is skipped unless all names resolve.
POST_URL_TEMPLATES: dict[str, tuple[str, ...]] = {
    "twitter": (
        "https://x.com/{author_handle}/status/{post_id}",
        "https://x.com/i/status/{post_id}",
    ),
    "weibo": (
        "https://weibo.com/{status.user.idstr}/{status.mblogid}",
        "https://weibo.com/n/{status.mblogid}",
    ),
    "pixiv": ("https://www.pixiv.net/artworks/{post_id}",),
    "danbooru": ("https://danbooru.donmai.us/posts/{post_id}",),
    "yandere": ("https://yande.re/post/show/{post_id}",),
    "gelbooru": ("https://gelbooru.com/index.php?page=post&s=view&id={post_id}",),
    "bilibili": ("https://www.bilibili.com/opus/{post_id}",),
}

FLAT_TAG_FIELDS = ("tags", "hashtags", "tag_string", "keywords")
CATEGORY_TAG_PREFIXES = ("tag_string_", "tags_")

_TRUE_WORDS = frozenset({"1", "true", "yes", "y", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "n", "off"})
_SENSITIVE_WORDS = frozenset(
    {"sensitive", "nsfw", "adult", "explicit", "questionable", "r18", "r-18", "mature", "e", "q"}
)
_SAFE_WORDS = frozenset({"safe", "sfw", "general", "s", "g"})

_NUMERIC_RE = re.compile(r"^[+-]?\d+(\.\d+)?$")
_TEMPLATE_NAME_RE = re.compile(r"\{([^{}]+)\}")
_BLOCK_TAGS = frozenset({"br", "p", "div", "figure", "figcaption", "li", "tr"})
_HTML_TAG_RE = re.compile(r"<(/?)([a-zA-Z][a-zA-Z0-9]*)[^>]*>|<[!?][^>]*>")

_TIMESTAMP_FORMATS = (
    "%a %b %d %H:%M:%S %z %Y",  # Twitter / Weibo
    "%Y:%m:%d %H:%M:%S",  # EXIF style
    "%Y/%m/%d %H:%M:%S",
)

# Epoch values above this are milliseconds (1e11 seconds is year 5138).
_EPOCH_MS_THRESHOLD = 1e11


def detect_platform(raw: Mapping[str, Any], fallback: str | None = None) -> str | None:
    """gallery-dl records its extractor name in ``category``."""
    category = raw.get("category") if isinstance(raw, Mapping) else None
    if isinstance(category, str) and category.strip():
        return category.strip().lower()
    return fallback.lower() if fallback else None


def normalize(source_platform: str | None, raw: Mapping[str, Any]) -> NormalizedMetadata:
    """Project a raw metadata mapping onto NormalizedMetadata.

    Pure and deterministic: the result depends only on the arguments.
    Unusable values leave the canonical field unset; nothing here raises for
    bad data.
    """
    if not isinstance(raw, Mapping):
        logger.warning("Metadata record is not a JSON object (%s); ignoring it", type(raw).__name__)
        return NormalizedMetadata.empty()

    platform = source_platform.lower() if source_platform else None
    fields = _field_candidates(platform)

    post_id = _first(raw, fields["post_id"], _as_str)
    author_name = _first(raw, fields["author_name"], _as_str)
    description = _first(raw, fields["description"], _as_str)
    if description is not None and platform == "tumblr":
        description = strip_html(description)

    tags, categories = extract_tags(raw)

    canonical: dict[str, Any] = {"post_id": post_id, "author_name": author_name}
    canonical["author_handle"] = author_name.lstrip("@") if author_name else None

    return NormalizedMetadata(
        post_id=post_id,
        author_name=author_name,
        posted_at=_extract_timestamp(raw, fields["posted_at"]),
        title=_first(raw, fields["title"], _as_str),
        description=description,
        tags=tags,
        sensitive=_first(raw, fields["sensitive"], parse_sensitive),
        score=_first(raw, fields["score"], _as_float),
        media_url=_first(raw, fields["media_url"], _as_str),
        post_url=_first(raw, fields["post_url"], _as_str) or _post_url(platform, raw, canonical),
        width=_first(raw, fields["width"], _as_int),
        height=_first(raw, fields["height"], _as_int),
        content_hash=_first(raw, fields["content_hash"], _as_str),
        tag_categories=categories,
        raw_extra=copy.deepcopy(dict(raw)),
    )


def _field_candidates(platform: str | None) -> dict[str, tuple[Candidate, ...]]:
    overrides = PLATFORM_FIELD_MAPS.get(platform or "", {})
    merged: dict[str, tuple[Candidate, ...]] = {}
    for name, generic in FIELD_MAP.items():
        if name not in overrides:
            merged[name] = generic
            continue
        # An empty override row means "this platform has no such field"
        specific = overrides[name]
        merged[name] = specific + tuple(c for c in generic if c not in specific) if specific else ()
    return merged


# ── Value access ─────────────────────────────────────────────────────


def _lookup(raw: Any, path: str) -> Any:
    """Resolve a key or dotted path; a literal key containing dots wins."""
    if not isinstance(raw, Mapping):
        return None
    if path in raw:
        return raw[path]
    current: Any = raw
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def _resolve(raw: Mapping[str, Any], candidate: Candidate) -> Any:
    if callable(candidate):
        return candidate(raw)
    return _lookup(raw, candidate)


def _first(raw: Mapping[str, Any], candidates: tuple[Candidate, ...], convert: Callable[[Any], Any]) -> Any:
    for candidate in candidates:
        value = _resolve(raw, candidate)
        if value is None:
            continue
        converted = convert(value)
        if converted is not None:
            return converted
    return None


def _as_str(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        for element in value:
            text = _as_str(element)
            if text is not None:
                return text
        return None
    if isinstance(value, Mapping):
        for key in ("name", "username", "tag", "text"):
            text = _as_str(value.get(key)) if key in value else None
            if text is not None:
                return text
    return None


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and _NUMERIC_RE.match(value.strip()):
        value = value.strip()
    elif not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    # json.loads accepts NaN and Infinity
    return number if math.isfinite(number) else None


def _as_int(value: Any) -> int | None:
    number = _as_float(value)
    if number is None or number != int(number):
        return None
    return int(number)


def parse_bool(value: Any) -> bool | None:
    """Interpret JSON booleans, 0/1 integers and yes/no style strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return None


def parse_sensitive(value: Any) -> bool | None:
    """Like parse_bool, also accepting rating words such as ``explicit`` or ``s``."""
    flag = parse_bool(value)
    if flag is not None:
        return flag
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _SENSITIVE_WORDS:
            return True
        if word in _SAFE_WORDS:
            return False
    return None


# ── Timestamps ───────────────────────────────────────────────────────


def parse_timestamp(value: Any) -> datetime | None:
    """Parse epoch numbers or date strings into an aware UTC datetime."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_epoch(float(value))
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if _NUMERIC_RE.match(text):
        return _from_epoch(float(text))
    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00") if text.endswith("Z") else text)
    except ValueError:
        for fmt in _TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _from_epoch(seconds: float) -> datetime | None:
    if abs(seconds) > _EPOCH_MS_THRESHOLD:
        seconds /= 1000
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def _extract_timestamp(raw: Mapping[str, Any], candidates: tuple[Candidate, ...]) -> datetime | None:
    for candidate in candidates:
        value = _resolve(raw, candidate)
        if value is None or value == "":
            continue
        parsed = parse_timestamp(value)
        if parsed is not None:
            return parsed
        logger.warning("Unparseable timestamp in %r: %r", candidate, value)
    return None


# ── Tags ─────────────────────────────────────────────────────────────


def normalize_tag(tag: str) -> str:
    return tag.strip().lower()


def normalize_tags(tags) -> frozenset[str]:
    """Lowercase, trim and drop empty tags."""
    return frozenset(t for t in (normalize_tag(tag) for tag in tags if isinstance(tag, str)) if t)


def split_tag_string(text: str) -> list[str]:
    """Comma-separated when a comma is present, otherwise whitespace-separated."""
    parts = text.split(",") if "," in text else text.split()
    return [part.strip() for part in parts if part.strip()]


def _collect_tags(value: Any) -> list[str]:
    if isinstance(value, str):
        return split_tag_string(value)
    tags: list[str] = []
    if isinstance(value, list):
        for element in value:
            if isinstance(element, str):
                tags.append(element)
            elif isinstance(element, Mapping):
                for key in ("name", "tag", "text"):
                    if isinstance(element.get(key), str):
                        tags.append(element[key])
    return tags


def extract_tags(raw: Mapping[str, Any]) -> tuple[frozenset[str], dict[str, frozenset[str]]]:
    """Return the flat tag set plus a category -> tags mapping.

    Category fields (``tag_string_artist``, ``tags_character``, or a ``tags``
    object keyed by category) are unioned into the flat set as well.
    """
    flat: set[str] = set()
    categories: dict[str, frozenset[str]] = {}

    for key in FLAT_TAG_FIELDS:
        value = raw.get(key)
        if isinstance(value, Mapping):
            for category, members in value.items():
                tags = normalize_tags(_collect_tags(members))
                if tags:
                    name = str(category).lower()
                    categories[name] = categories.get(name, frozenset()) | tags
                    flat |= tags
        elif value is not None:
            flat |= normalize_tags(_collect_tags(value))

    for key in sorted(raw):
        if not isinstance(key, str):
            continue
        for prefix in CATEGORY_TAG_PREFIXES:
            if key.startswith(prefix) and len(key) > len(prefix):
                tags = normalize_tags(_collect_tags(raw[key]))
                if tags:
                    category = key[len(prefix):].lower()
                    categories[category] = categories.get(category, frozenset()) | tags
                    flat |= tags
                break

    return frozenset(flat), categories


# ── Derived fields ───────────────────────────────────────────────────


def strip_html(text: str) -> str | None:
    """Reduce an HTML fragment to text, breaking lines at block-level tags."""
    if "<" not in text:
        return text.strip() or None

    def _replace(match: re.Match) -> str:
        name = (match.group(2) or "").lower()
        return "\n" if name in _BLOCK_TAGS else ""

    stripped = _HTML_TAG_RE.sub(_replace, text)
    lines = [line.strip() for line in stripped.splitlines()]
    return html.unescape("\n".join(line for line in lines if line)) or None


def _post_url(platform: str | None, raw: Mapping[str, Any], canonical: Mapping[str, Any]) -> str | None:
    for template in POST_URL_TEMPLATES.get(platform or "", ()):
        values: dict[str, str] = {}
        for name in _TEMPLATE_NAME_RE.findall(template):
            value = canonical.get(name)
            if value is None:
                value = _as_str(_lookup(raw, name))
            if value is None:
                break
            values[name] = value
        else:
            return _TEMPLATE_NAME_RE.sub(lambda m: values[m.group(1)], template)
    return None
