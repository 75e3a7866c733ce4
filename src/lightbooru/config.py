"""Project-wide configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv

from lightbooru.errors import ConfigError

PROJECT_ROOT = Path(os.environ.get("LIGHTBOORU_PROJECT_ROOT", Path.cwd()))

load_dotenv(PROJECT_ROOT / ".env")

# Sidecar naming (gallery-dl writes <media>.json; we own <media>.booru.json)
METADATA_SUFFIX = ".json"
OVERLAY_SUFFIX = ".booru.json"
ALIAS_FILE_NAME = "alias.json"

MEDIA_EXTENSIONS = frozenset(
    {
        "jpg", "jpeg", "png", "gif", "webp", "bmp", "tif", "tiff", "avif", "heic",
        "jxl", "mp4", "webm", "mkv", "mov", "m4v", "avi",
    }
)
# Discovered and indexed, but never decoded for hashing
VIDEO_EXTENSIONS = frozenset({"mp4", "webm", "mkv", "mov", "m4v", "avi"})

# Perceptual hashing
HASH_ALGORITHMS = ("phash", "dhash", "ahash")
HASH_SIZE = 8  # 8x8 grid -> 64-bit fingerprint


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    if raw not in choices:
        raise ConfigError(f"{name} must be one of {', '.join(choices)}, got {raw!r}")
    return raw


def expand_tilde(path: Path | str) -> Path:
    """Expand a leading ``~`` to the user's home directory."""
    return Path(path).expanduser()


def default_root() -> Path:
    """gallery-dl's default download location."""
    return Path.home() / "Pictures" / "gallery-dl"


def _env_roots() -> list[Path]:
    raw = os.environ.get("LIGHTBOORU_ROOTS", "")
    return [expand_tilde(part) for part in raw.split(os.pathsep) if part.strip()]


ROOTS: list[Path] = _env_roots() or [default_root()]
WORKERS = _env_int("LIGHTBOORU_WORKERS", min(8, os.cpu_count() or 1), minimum=1)
HASH_ALGORITHM = _env_choice("LIGHTBOORU_HASH_ALGORITHM", "phash", HASH_ALGORITHMS)
DUPLICATE_THRESHOLD = _env_int("LIGHTBOORU_DUPLICATE_THRESHOLD", 8)
LOG_LEVEL = _env_choice(
    "LIGHTBOORU_LOG_LEVEL", "info", ("debug", "info", "warning", "error", "critical")
).upper()


def resolve_roots(roots: list[Path | str] | None = None) -> list[Path]:
    """Return the roots to scan: explicit ones (tilde-expanded) or the configured default."""
    if roots is None:
        return list(ROOTS)
    resolved = [expand_tilde(r) for r in roots]
    if not resolved:
        raise ConfigError("At least one root directory is required.")
    return resolved
