"""Value types shared by the stores and the catalog service."""

from .models import (
    UNCLASSIFIED,
    CatalogEntry,
    ImageBlob,
    OrderRecord,
    ProductKey,
    ProductPatch,
    ProductRecord,
)

__all__ = [
    "UNCLASSIFIED",
    "CatalogEntry",
    "ImageBlob",
    "OrderRecord",
    "ProductKey",
    "ProductPatch",
    "ProductRecord",
]
