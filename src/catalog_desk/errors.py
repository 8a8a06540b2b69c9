from __future__ import annotations

from typing import Sequence


class CatalogError(Exception):
    pass


class ImageDecodeError(CatalogError):
    """The source bytes could not be decoded as an image."""


class StorageFullError(CatalogError):
    """A store refused a write because its quota or disk is exhausted."""


class StorageIOError(CatalogError, OSError):
    """Any other failure of the underlying storage."""


class CorruptStateError(CatalogError):
    """A persisted collection could not be parsed; callers see it as empty."""


class SchemaMismatchError(CatalogError):
    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"table is missing required columns: {', '.join(self.missing)}")


class NotFoundError(CatalogError):
    pass


class KeyCollisionError(CatalogError):
    """Two different (code, supplier) pairs map onto the same storage id."""


class SyncError(CatalogError):
    pass


class ReportEmptyError(CatalogError):
    pass
