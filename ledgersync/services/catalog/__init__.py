"""
Product catalog mapping: store/booking products to ledger items.
"""

from .mapper import (
    BASE_KEY,
    EXTRAS_KEY,
    Catalog,
    CatalogEntry,
    CatalogValidation,
    ItemMapping,
    build_catalog,
)

__all__ = [
    "BASE_KEY",
    "EXTRAS_KEY",
    "Catalog",
    "CatalogEntry",
    "CatalogValidation",
    "ItemMapping",
    "build_catalog",
]
