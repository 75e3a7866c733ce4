"""JSON sidecar I/O: reading gallery-dl source metadata, atomic writes of our own files."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from lightbooru.errors import MetadataParseError, PathError
from lightbooru.library.normalizer import detect_platform, normalize
from lightbooru.models import NormalizedMetadata


def read_json_object(path: Path, error_cls: type[PathError] = MetadataParseError) -> dict[str, Any]:
    """Read a JSON file whose top level must be an object."""
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise error_cls(path, f"not valid UTF-8 ({exc.reason})") from exc
    except OSError as exc:
        raise error_cls(path, f"unreadable ({exc.strerror or exc})") from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise error_cls(path, f"malformed JSON at line {exc.lineno} column {exc.colno}") from exc
    if not isinstance(data, dict):
        raise error_cls(path, f"expected a JSON object, got {type(data).__name__}")
    return data


def load_source_metadata(
    metadata_path: Path, fallback_platform: str | None = None
) -> tuple[str | None, NormalizedMetadata]:
    """Read and normalize one source record. Returns (platform, metadata)."""
    raw = read_json_object(metadata_path)
    platform = detect_platform(raw, fallback_platform)
    return platform, normalize(platform, raw)


def write_json_atomic(path: Path, data: Any, error_cls: type[PathError], what: str = "file") -> None:
    """Replace ``path`` with ``data`` via a temp file in the same directory and ``os.replace``."""
    payload = json.dumps(data, ensure_ascii=False, indent=2) + "\n"
    tmp_name = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as handle:
            tmp_name = handle.name
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except OSError as exc:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
        raise error_cls(path, f"failed to write {what} ({exc.strerror or exc})") from exc
