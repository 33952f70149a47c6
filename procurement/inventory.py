"""
Read side of store inventory.

store_inventory rows are maintained by the receiving reconciler; this module
only reads them, enriches them with master data, and checks them against the
receipt ledger they are derived from.
"""
import logging
from datetime import date, datetime, timezone
from typing import Optional, Union

from models.inventory import InventoryMismatch, StockLevel, StoreInventory, StoreInventorySummary
from .database import Database
from .directory import Directory
from .tax import to_money

logger = logging.getLogger(__name__)


class StoreInventoryProjection:
    def __init__(self, db: Database, directory: Directory, low_stock_threshold: int = 10) -> None:
        self.db = db
        self.directory = directory
        self.low_stock_threshold = low_stock_threshold

    # ------------------------------------------------------------------
    # Current stock
    # ------------------------------------------------------------------

    def quantity_of(self, store_id: str, product_id: str) -> int:
        """Current quantity of a product in a store (0 if never received there)."""
        rows = self.db.get_store_inventory(store_id=store_id, product_id=product_id)
        return rows[0].quantity if rows else 0

    def all_for_store(self, store_id: str) -> list[StoreInventory]:
        return [self._enrich(r) for r in self.db.get_store_inventory(store_id=store_id)]

    def all_for_product(self, product_id: str) -> list[StoreInventory]:
        return [self._enrich(r) for r in self.db.get_store_inventory(product_id=product_id)]

    def summary_by_store(self) -> list[StoreInventorySummary]:
        """Product count, item count and total value per store that holds stock records."""
        summaries: dict[str, StoreInventorySummary] = {}
        for row in self.db.get_store_inventory():
            summary = summaries.get(row.store_id)
            if summary is None:
                store = self.directory.stores.get(row.store_id)
                summary = summaries[row.store_id] = StoreInventorySummary(
                    store_id=row.store_id,
                    store_name=store.name if store else None,
                    store_code=store.code if store else None,
                )
            summary.total_products += 1
            summary.total_items += row.quantity
            summary.total_inventory_value += row.inventory_value

        for summary in summaries.values():
            summary.total_inventory_value = to_money(summary.total_inventory_value)
        return list(summaries.values())

    def low_stock(
        self,
        threshold: Optional[int] = None,
        store_id: Optional[str] = None,
    ) -> list[StoreInventory]:
        """Rows at or below the threshold, lowest quantity first."""
        limit = self.low_stock_threshold if threshold is None else threshold
        rows = [
            self._enrich(r)
            for r in self.db.get_store_inventory(store_id=store_id)
            if r.quantity <= limit
        ]
        return sorted(rows, key=lambda r: (r.quantity, r.store_id, r.product_id))

    # ------------------------------------------------------------------
    # Ledger-backed views
    # ------------------------------------------------------------------

    def as_of(
        self,
        when: Union[date, datetime, str],
        store_id: Optional[str] = None,
    ) -> list[StockLevel]:
        """
        Stock per (store, product) summed from the ledger up to and including
        `when`.  A date (or YYYY-MM-DD string) includes that whole day.
        """
        if isinstance(when, datetime) and when.tzinfo is not None:
            # received_at is stored in UTC
            when = when.astimezone(timezone.utc).replace(tzinfo=None)
        cutoff = when.isoformat() if isinstance(when, (date, datetime)) else str(when)
        return [
            StockLevel(
                store_id=row["store_id"],
                product_id=row["product_id"],
                quantity=row["quantity"],
                store_name=self.directory.store_name(row["store_id"]),
                product_name=self.directory.product_name(row["product_id"]),
            )
            for row in self.db.ledger_totals(as_of=cutoff, store_id=store_id)
        ]

    def reconcile(self) -> list[InventoryMismatch]:
        """
        Compare every derived quantity with the ledger.

        Reports (store, product) pairs whose projection differs from the sum
        of their receipts, and order items whose received_quantity differs
        from theirs.  An empty list means the stores and orders agree with
        the ledger.
        """
        mismatches: list[InventoryMismatch] = []

        ledger = {(r["store_id"], r["product_id"]): r["quantity"] for r in self.db.ledger_totals()}
        projection = {(r.store_id, r.product_id): r.quantity for r in self.db.get_store_inventory()}
        for key in sorted(set(ledger) | set(projection)):
            expected = ledger.get(key, 0)
            recorded = projection.get(key, 0)
            if expected != recorded:
                mismatches.append(InventoryMismatch(
                    kind="store_inventory",
                    store_id=key[0],
                    product_id=key[1],
                    ledger_quantity=expected,
                    recorded_quantity=recorded,
                ))

        for row in self.db.item_ledger_totals():
            if row["ledger_quantity"] != row["received_quantity"]:
                mismatches.append(InventoryMismatch(
                    kind="order_item",
                    product_id=row["product_id"],
                    purchase_order_item_id=row["item_id"],
                    ledger_quantity=row["ledger_quantity"],
                    recorded_quantity=row["received_quantity"],
                ))

        if mismatches:
            logger.warning("Inventory reconciliation found %d mismatches", len(mismatches))
        else:
            logger.info("Inventory reconciliation: projection matches ledger")
        return mismatches

    # ------------------------------------------------------------------

    def _enrich(self, row: StoreInventory) -> StoreInventory:
        product = self.directory.products.get(row.product_id)
        return row.model_copy(update={
            "store_name":      self.directory.store_name(row.store_id),
            "product_name":    product.name if product else None,
            "product_code":    product.code if product else None,
            "category":        product.category if product else None,
            "unit_of_measure": product.unit_of_measure if product else None,
        })
