"""Exception hierarchy shared by the scanner, index and edit paths."""

from pathlib import Path


class LightbooruError(Exception):
    """Base class for all errors raised by lightbooru."""


class ConfigError(LightbooruError):
    """Invalid configuration. Fatal."""


class FatalScanError(LightbooruError):
    """No root directory could be read, so no snapshot can be built."""


class RebuildCancelled(LightbooruError):
    """A rebuild was abandoned before publishing its snapshot."""


class PathError(LightbooruError):
    """An error tied to one file on disk."""

    def __init__(self, path: Path | str, message: str) -> None:
        self.path = Path(path)
        self.message = message
        super().__init__(f"{message}: {self.path}")


class MetadataParseError(PathError):
    """Source metadata JSON could not be read or decoded."""


class OverlayParseError(PathError):
    """Overlay sidecar JSON could not be read or decoded."""


class HashComputationError(PathError):
    """The image could not be decoded for perceptual hashing."""


class EditError(PathError):
    """Writing an overlay sidecar failed."""


class MalformedRecordError(LightbooruError):
    """A view record failed validation while building a snapshot."""


class ItemNotFoundError(LightbooruError, KeyError):
    """No item with the requested id exists in the snapshot."""

    def __init__(self, item_id: str) -> None:
        self.item_id = item_id
        super().__init__(item_id)

    def __str__(self) -> str:
        return f"No such item: {self.item_id}"


class AliasFileError(PathError):
    """An ``alias.json`` file could not be read, decoded or written."""
