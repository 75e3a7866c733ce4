"""Shared test fixtures."""

import json
from datetime import UTC, datetime
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from lightbooru.models import MediaItem, NormalizedMetadata, ViewRecord


@pytest.fixture
def root(tmp_path: Path) -> Path:
    """An empty gallery-dl download directory."""
    path = tmp_path / "gallery-dl"
    path.mkdir()
    return path


@pytest.fixture
def twitter_raw() -> dict:
    """A trimmed gallery-dl twitter record."""
    return {
        "category": "twitter",
        "subcategory": "tweet",
        "tweet_id": 1750000000000000001,
        "author": {"id": 42, "name": "alice_draws", "nick": "Alice"},
        "content": "New piece! #oc",
        "date": "2024-01-15 12:30:00",
        "favorite_count": 120,
        "hashtags": ["OC", "Illustration"],
        "sensitive": False,
        "width": 1200,
        "height": 900,
        "extension": "jpg",
    }


@pytest.fixture
def danbooru_raw() -> dict:
    """A trimmed gallery-dl danbooru record with category tag fields."""
    return {
        "category": "danbooru",
        "id": 7001234,
        "created_at": "2023-06-01T08:15:30.123-04:00",
        "rating": "e",
        "score": 57,
        "md5": "0123456789abcdef0123456789abcdef",
        "image_width": 2000,
        "image_height": 3000,
        "file_url": "https://cdn.donmai.us/original/01/23/0123.png",
        "tag_string": "1girl solo long_hair",
        "tag_string_artist": "some_artist",
        "tag_string_character": "hatsune_miku",
        "tag_string_general": "1girl solo long_hair",
    }


def write_json(path: Path, data) -> Path:
    path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    return path


def write_media(
    directory: Path,
    name: str,
    metadata: dict | None = None,
    overlay: dict | None = None,
    content: bytes = b"not really an image",
) -> Path:
    """Create ``directory/name`` plus the optional ``.json`` and ``.booru.json`` sidecars."""
    directory.mkdir(parents=True, exist_ok=True)
    media = directory / name
    media.write_bytes(content)
    if metadata is not None:
        write_json(directory / f"{name}.json", metadata)
    if overlay is not None:
        write_json(directory / f"{name}.booru.json", overlay)
    return media


def noise_array(seed: int, size: int = 64) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(size, size, 3), dtype=np.uint8)


def write_image(path: Path, pixels: np.ndarray, metadata: dict | None = None) -> Path:
    """Save ``pixels`` as an image (format from the suffix) with an optional metadata sidecar."""
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(pixels).save(path)
    if metadata is not None:
        write_json(path.with_name(path.name + ".json"), metadata)
    return path


def make_record(
    item_id: str,
    tags: set[str] | frozenset[str] = frozenset(),
    platform: str | None = "twitter",
    post_id: str | None = None,
    author: str | None = None,
    posted_at: datetime | None = None,
    sensitive: bool = False,
    score: float | None = None,
    file_size: int | None = 100,
    title: str | None = None,
    description: str | None = None,
    notes: str | None = None,
) -> ViewRecord:
    """Helper to create a ViewRecord without touching the file system."""
    item = MediaItem(
        item_id=item_id,
        file_path=Path(item_id),
        file_size=file_size,
        extension=Path(item_id).suffix.lstrip("."),
        source_platform=platform,
        source_post_id=post_id,
    )
    metadata = NormalizedMetadata(
        post_id=post_id,
        author_name=author,
        posted_at=posted_at,
        title=title,
        description=description,
        tags=frozenset(tags),
        sensitive=sensitive,
        score=score,
    )
    return ViewRecord(
        item=item,
        metadata=metadata,
        tags=frozenset(tags),
        sensitive=sensitive,
        notes=notes,
        has_overlay=notes is not None,
    )


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=UTC)
