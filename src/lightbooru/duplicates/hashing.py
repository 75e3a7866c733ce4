"""Perceptual hashing of media files with imagehash."""

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import imagehash
import numpy as np
from PIL import Image

from lightbooru.config import HASH_ALGORITHMS, HASH_SIZE, VIDEO_EXTENSIONS, WORKERS
from lightbooru.errors import HashComputationError, RebuildCancelled
from lightbooru.models import IssueKind, PerceptualHash, ScanIssue, ViewRecord

logger = logging.getLogger(__name__)

HASH_FUNCTIONS = {
    "phash": imagehash.phash,
    "dhash": imagehash.dhash,
    "ahash": imagehash.average_hash,
}

ProgressCallback = Callable[[str, int, int], None]


def compute_hash(path: Path, algorithm: str = "phash", hash_size: int = HASH_SIZE) -> PerceptualHash:
    """Fingerprint one image.

    Animated images are hashed on their first frame.

    Raises:
        ValueError: unknown algorithm.
        HashComputationError: the file cannot be opened or decoded.
    """
    if algorithm not in HASH_ALGORITHMS:
        raise ValueError(f"Unknown hash algorithm {algorithm!r}; expected one of {HASH_ALGORITHMS}")
    try:
        with Image.open(path) as img:
            img.seek(0)
            digest = HASH_FUNCTIONS[algorithm](img.convert("RGB"), hash_size=hash_size)
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
        raise HashComputationError(path, f"cannot decode image ({exc})") from exc

    bits = digest.hash.flatten()
    packed = np.packbits(bits.astype(np.uint8))
    # packbits pads the tail with zeros; drop them to keep the value exact
    value = int.from_bytes(packed.tobytes(), "big") >> (len(packed) * 8 - bits.size)
    return PerceptualHash(algorithm=algorithm, bits=value, width=int(bits.size))


def is_hashable(record: ViewRecord) -> bool:
    return record.item.extension not in VIDEO_EXTENSIONS


def compute_hashes(
    records: Iterable[ViewRecord],
    algorithm: str = "phash",
    *,
    workers: int | None = None,
    cancel: threading.Event | None = None,
    progress: ProgressCallback | None = None,
) -> tuple[dict[str, PerceptualHash], list[ScanIssue]]:
    """Hash every image record on a thread pool.

    Videos are skipped silently. Decoding failures become ``hash_error``
    issues; the item simply has no entry in the returned mapping.

    Raises:
        RebuildCancelled: ``cancel`` was set while hashing.
    """
    targets = [r for r in records if is_hashable(r)]
    total = len(targets)
    done = 0
    lock = threading.Lock()

    def _hash_one(record: ViewRecord) -> PerceptualHash | HashComputationError | None:
        nonlocal done
        if cancel is not None and cancel.is_set():
            return None
        try:
            result: PerceptualHash | HashComputationError = compute_hash(record.item.file_path, algorithm)
        except HashComputationError as exc:
            result = exc
        if progress is not None:
            with lock:
                done += 1
                progress("hash", done, total)
        return result

    with ThreadPoolExecutor(max_workers=workers or WORKERS) as pool:
        results = list(pool.map(_hash_one, targets))

    if cancel is not None and cancel.is_set():
        raise RebuildCancelled("Hashing cancelled")

    hashes: dict[str, PerceptualHash] = {}
    issues: list[ScanIssue] = []
    for record, result in zip(targets, results):
        if isinstance(result, PerceptualHash):
            hashes[record.item_id] = result
        elif isinstance(result, HashComputationError):
            logger.warning("%s", result)
            issues.append(ScanIssue(IssueKind.HASH_ERROR, result.path, result.message, record.item_id))
    logger.info("Hashed %d of %d images with %s", len(hashes), total, algorithm)
    return hashes, issues
