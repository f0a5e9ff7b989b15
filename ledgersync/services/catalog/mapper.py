"""
Product catalog mapping for LedgerSync.

Maps store and booking product identifiers onto ledger items. Matching is
deterministic: exact SKU first, then case-insensitive keyword containment,
both in table-declaration order. There is no best-match scoring.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple, Any

import structlog

from ledgersync.core.config import Settings, get_settings
from ledgersync.core.models import ZERO

logger = structlog.get_logger(__name__)

BASE_KEY = "base-package"
EXTRAS_KEY = "additional-member"


@dataclass(frozen=True)
class CatalogEntry:
    """One catalog row"""
    key: str
    item_name: str
    standard_price: Decimal
    keywords: Tuple[str, ...] = ()
    sku: Optional[str] = None
    item_ref: Optional[str] = None
    description: str = ""


@dataclass(frozen=True)
class ItemMapping:
    """Result of mapping a product onto the catalog"""
    item_ref: Optional[str]
    item_name: str
    standard_price: Decimal
    matched: bool
    matched_by: Optional[str] = None
    matched_key: Optional[str] = None


@dataclass
class CatalogValidation:
    valid: bool
    missing: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.valid:
            return "All products have ledger item references configured"
        return f"Missing ledger item references for: {', '.join(self.missing)}"


class Catalog:
    """Immutable, injected catalog table"""

    def __init__(self, entries: Sequence[CatalogEntry]):
        keys = [entry.key for entry in entries]
        if len(keys) != len(set(keys)):
            raise ValueError(f"Duplicate catalog keys: {keys}")
        self._entries: Tuple[CatalogEntry, ...] = tuple(entries)
        self._by_key: Dict[str, CatalogEntry] = {e.key: e for e in self._entries}
        self._logger = logger.bind(component="catalog_mapper")

    @property
    def entries(self) -> Tuple[CatalogEntry, ...]:
        return self._entries

    def get(self, key: str) -> Optional[CatalogEntry]:
        return self._by_key.get(key)

    def map_to_ledger_item(self, product_name: Optional[str], sku: Optional[str] = None) -> ItemMapping:
        """
        Map a product onto a ledger item.

        Args:
            product_name: Product name as shown by the store
            sku: Store SKU, matched exactly (case-insensitive) before keywords

        Returns:
            ItemMapping; ``matched=False`` carries the raw name and a zero price
        """
        name_lower = (product_name or "").lower().strip()
        sku_lower = (sku or "").lower().strip()

        if sku_lower:
            for entry in self._entries:
                if entry.sku and entry.sku.lower() == sku_lower:
                    return self._mapping(entry, "sku")

        if name_lower:
            for entry in self._entries:
                if any(kw.lower() in name_lower for kw in entry.keywords if kw):
                    return self._mapping(entry, "keyword")

        self._logger.warning(
            "catalog_mapping_missing",
            product_name=product_name,
            sku=sku,
        )
        return ItemMapping(
            item_ref=None,
            item_name=product_name or "",
            standard_price=ZERO,
            matched=False,
        )

    def all_products(self) -> List[Dict[str, Any]]:
        """All configured products, for diagnostics"""
        return [
            {
                "key": entry.key,
                "item_name": entry.item_name,
                "sku": entry.sku,
                "keywords": list(entry.keywords),
                "item_ref": entry.item_ref,
                "standard_price": entry.standard_price,
                "description": entry.description,
                "has_item_ref": bool(entry.item_ref),
            }
            for entry in self._entries
        ]

    def validate(self) -> CatalogValidation:
        """Report entries without a ledger item reference"""
        missing = [entry.key for entry in self._entries if not entry.item_ref]
        return CatalogValidation(valid=not missing, missing=missing)

    @staticmethod
    def _mapping(entry: CatalogEntry, matched_by: str) -> ItemMapping:
        return ItemMapping(
            item_ref=entry.item_ref,
            item_name=entry.item_name,
            standard_price=entry.standard_price,
            matched=True,
            matched_by=matched_by,
            matched_key=entry.key,
        )


def build_catalog(settings: Optional[Settings] = None) -> Catalog:
    """Build the default two-entry catalog (base package, extra member)."""
    settings = settings or get_settings()
    catalog_cfg = settings.catalog
    ledger_cfg = settings.ledger

    return Catalog([
        CatalogEntry(
            key=BASE_KEY,
            item_name=catalog_cfg.catalog_base_name,
            standard_price=catalog_cfg.catalog_base_price,
            keywords=tuple(catalog_cfg.base_keywords),
            sku=catalog_cfg.catalog_base_sku,
            item_ref=ledger_cfg.ledger_item_base,
            description="Base program package",
        ),
        CatalogEntry(
            key=EXTRAS_KEY,
            item_name=catalog_cfg.catalog_extras_name,
            standard_price=catalog_cfg.catalog_extras_price,
            keywords=tuple(catalog_cfg.extras_keywords),
            sku=catalog_cfg.catalog_extras_sku,
            item_ref=ledger_cfg.ledger_item_extras,
            description="Additional member beyond those included in the base package",
        ),
    ])
