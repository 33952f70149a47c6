"""
Master-data lookups for suppliers, products and stores.

The purchase order core only needs these for reference checks and for
denormalised display names.  Each list is loaded from its own CSV:

  suppliers.csv  id, name, code, tax_id, email, phone, aliases
                 aliases: pipe-separated alternative names, e.g. "ACME|ACME Ltd"
  products.csv   id, code, name, category, unit_of_measure, tax_class
  stores.csv     id, code, name, address, manager_name, is_active

A missing file leaves that list empty.  An empty supplier or product list
disables the corresponding existence check; stores are always checked.
"""
import logging
from pathlib import Path
from typing import Optional

from rapidfuzz import fuzz

from models.product import Product
from models.store import Store
from models.supplier import Supplier
from .csv_manager import csv_manager
from .errors import NotFoundError

logger = logging.getLogger(__name__)

# Minimum fuzzy score (0-100) to accept a supplier name lookup
FUZZY_THRESHOLD = 75

_FALSE_VALUES = {"0", "false", "no", "n", "inactive"}


class Directory:
    """In-memory master data with lookups used by the service layer."""

    def __init__(
        self,
        suppliers: Optional[list[Supplier]] = None,
        products: Optional[list[Product]] = None,
        stores: Optional[list[Store]] = None,
    ) -> None:
        self.suppliers: dict[str, Supplier] = {s.id: s for s in suppliers or []}
        self.products: dict[str, Product] = {p.id: p for p in products or []}
        self.stores: dict[str, Store] = {s.id: s for s in stores or []}

    @classmethod
    def from_csv(
        cls,
        suppliers_csv: str | Path,
        products_csv: str | Path,
        stores_csv: str | Path,
    ) -> "Directory":
        directory = cls(
            suppliers=[_supplier_from_row(r) for r in csv_manager.load_dicts(Path(suppliers_csv))],
            products=[_product_from_row(r) for r in csv_manager.load_dicts(Path(products_csv))],
            stores=[_store_from_row(r) for r in csv_manager.load_dicts(Path(stores_csv))],
        )
        logger.info(
            "Loaded master data: %d suppliers, %d products, %d stores",
            len(directory.suppliers), len(directory.products), len(directory.stores),
        )
        if not directory.suppliers:
            logger.warning("No suppliers loaded; supplier references will not be checked")
        return directory

    # ------------------------------------------------------------------
    # Checked lookups (raise NotFoundError)
    # ------------------------------------------------------------------

    def require_supplier(self, supplier_id: str) -> Optional[Supplier]:
        """Return the supplier, or None when no supplier list is loaded."""
        if not self.suppliers:
            return None
        supplier = self.suppliers.get(supplier_id)
        if supplier is None:
            raise NotFoundError("supplier", supplier_id)
        return supplier

    def require_product(self, product_id: str) -> Optional[Product]:
        """Return the product, or None when no product list is loaded."""
        if not self.products:
            return None
        product = self.products.get(product_id)
        if product is None:
            raise NotFoundError("product", product_id)
        return product

    def require_active_store(self, store_id: str) -> Store:
        store = self.stores.get(store_id)
        if store is None:
            raise NotFoundError("store", store_id)
        if not store.is_active:
            raise NotFoundError("store", store_id, f"Store {store_id} ({store.name}) is inactive")
        return store

    # ------------------------------------------------------------------
    # Display lookups (never raise)
    # ------------------------------------------------------------------

    def supplier_name(self, supplier_id: Optional[str]) -> Optional[str]:
        s = self.suppliers.get(supplier_id or "")
        return s.name if s else None

    def product_name(self, product_id: Optional[str]) -> Optional[str]:
        p = self.products.get(product_id or "")
        return p.name if p else None

    def store_name(self, store_id: Optional[str]) -> Optional[str]:
        s = self.stores.get(store_id or "")
        return s.name if s else None

    def find_supplier(self, name: str) -> Optional[Supplier]:
        """
        Resolve a supplier by id, exact name/alias, or fuzzy name match
        (rapidfuzz token_sort_ratio >= FUZZY_THRESHOLD).
        """
        query = (name or "").strip()
        if not query:
            return None
        if query in self.suppliers:
            return self.suppliers[query]

        lowered = query.lower()
        for s in self.suppliers.values():
            if any(n.lower() == lowered for n in s.all_names):
                return s

        best_score = 0.0
        best: Optional[Supplier] = None
        for s in self.suppliers.values():
            for candidate in s.all_names:
                score = fuzz.token_sort_ratio(lowered, candidate.lower())
                if score > best_score:
                    best_score = score
                    best = s

        if best and best_score >= FUZZY_THRESHOLD:
            logger.info("Supplier fuzzy matched: '%s' -> '%s' (score=%d)", query, best.name, best_score)
            return best

        logger.debug("Best fuzzy match score was %d (threshold=%d)", best_score, FUZZY_THRESHOLD)
        return None


# ------------------------------------------------------------------
# Row parsing
# ------------------------------------------------------------------

def _supplier_from_row(row: dict) -> Supplier:
    aliases = [a.strip() for a in row.get("aliases", "").split("|") if a.strip()]
    return Supplier(
        id=row["id"],
        name=row["name"],
        code=row.get("code") or None,
        tax_id=row.get("tax_id") or None,
        email=row.get("email") or None,
        phone=row.get("phone") or None,
        aliases=aliases,
    )


def _product_from_row(row: dict) -> Product:
    return Product(
        id=row["id"],
        code=row.get("code") or row["id"],
        name=row["name"],
        category=row.get("category") or None,
        unit_of_measure=row.get("unit_of_measure") or None,
        tax_class=row.get("tax_class") or None,
    )


def _store_from_row(row: dict) -> Store:
    return Store(
        id=row["id"],
        code=row.get("code") or row["id"],
        name=row["name"],
        address=row.get("address") or None,
        manager_name=row.get("manager_name") or None,
        is_active=(row.get("is_active") or "true").lower() not in _FALSE_VALUES,
    )
