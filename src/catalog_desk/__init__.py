"""
Catalog Desk – local product catalog, image store and order book.

This package keeps a small shop's product records and compressed product
photos on local disk, tracks orders, and exports daily spreadsheets.

Sub-packages: imaging, store, catalog, reports, sync, cli.
"""

__all__ = [
    "config",
    "errors",
    "logging",
    "paths",
]
