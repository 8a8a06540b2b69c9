"""Local persistence: SQLite image store and JSON record store.

Modules:
- blobs: async image payload store keyed by (code, supplier)
- records: whole-document products/orders collections plus settings
"""

from .blobs import BlobStore, ConnectionState
from .records import ORDERS, PRODUCTS, RecordStore

__all__ = [
    "BlobStore",
    "ConnectionState",
    "ORDERS",
    "PRODUCTS",
    "RecordStore",
]
