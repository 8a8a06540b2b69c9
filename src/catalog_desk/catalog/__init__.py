"""Catalog operations built on the stores.

Modules:
- service: uploads, table import, folder matching, batch edit/delete, views
- orders: the orders collection
- settings: persisted UI preferences
- table_import: product table header mapping and .xlsx reading
"""

from .orders import OrderBook
from .service import (
    BatchResult,
    CatalogService,
    DeleteResult,
    ImportResult,
    MatchResult,
    SourceFile,
    UploadOutcome,
    UploadState,
)
from .settings import Preferences

__all__ = [
    "BatchResult",
    "CatalogService",
    "DeleteResult",
    "ImportResult",
    "MatchResult",
    "OrderBook",
    "Preferences",
    "SourceFile",
    "UploadOutcome",
    "UploadState",
]
