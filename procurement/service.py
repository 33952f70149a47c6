"""
Purchase order service.

PurchaseOrderService is the inbound API of the procurement core.  It ties
together master data, the order aggregate, the receiving reconciler, the
inventory projection and the query functions:

  create_purchase_order()            new draft, numbered PO-YYYYMMDD-NNNN
  update_purchase_order()            draft edits (header and/or items)
  send_purchase_order()              draft -> sent
  cancel_purchase_order()            draft / sent / partially_received -> cancelled
  receive_items()                    one receiving event into one store
  list_purchase_orders()             filtered, sorted order list
  get_purchase_order_with_receipts() order plus its receiving ledger

Every mutation runs in one database transaction (retried on contention by
Database.run) and appends an audit_log entry in that same transaction.
"""
import logging
import sqlite3
from datetime import date
from typing import Callable, Optional, Sequence

from config import Config
from models.purchase_order import PurchaseOrder, PurchaseOrderInput, PurchaseOrderUpdate
from models.result import PurchaseOrderWithReceipts, ReceivingLine, ReceivingResult
from .backup import BackupService
from .csv_manager import csv_manager
from .database import Database
from .directory import Directory
from .errors import NotFoundError
from .inventory import StoreInventoryProjection
from .query import OrderFilter, filter_orders, status_counts
from .receiving import ReceivingReconciler

logger = logging.getLogger(__name__)


class PurchaseOrderService:
    def __init__(
        self,
        config: Optional[Config] = None,
        db: Optional[Database] = None,
        directory: Optional[Directory] = None,
    ):
        self.config = config or Config()
        self.config.ensure_output_dir()

        self.db = db or Database(
            self.config.db_path,
            lock_timeout=self.config.lock_timeout_seconds,
            max_retries=self.config.receive_max_retries,
            retry_backoff=self.config.retry_backoff_seconds,
        )
        self.directory = directory or Directory.from_csv(
            self.config.suppliers_csv,
            self.config.products_csv,
            self.config.stores_csv,
        )
        self.reconciler = ReceivingReconciler(self.db, self.directory)
        self.inventory = StoreInventoryProjection(
            self.db, self.directory, low_stock_threshold=self.config.low_stock_threshold
        )
        self.backup_service = BackupService(self.config)

    # ------------------------------------------------------------------
    # Order lifecycle
    # ------------------------------------------------------------------

    def create_purchase_order(self, data: PurchaseOrderInput, actor: str = "system") -> PurchaseOrder:
        order = PurchaseOrder.create(data, created_by=actor)
        self.directory.require_supplier(order.supplier_id)
        self._apply_master_data(order)

        def work(conn: sqlite3.Connection) -> PurchaseOrder:
            stored = self.db.insert_order(conn, order)
            self.db.log_audit(conn, stored.id, "created", actor=actor, detail={
                "po_number":    stored.po_number,
                "supplier_id":  stored.supplier_id,
                "items":        len(stored.items),
                "total_amount": str(stored.total_amount),
            })
            return stored

        stored = self.db.run("create purchase order", work)
        logger.info(
            "Created %s for supplier %s: %d items, total %s",
            stored.po_number, stored.supplier_id, len(stored.items), stored.total_amount,
        )
        return stored

    def update_purchase_order(
        self,
        order_id: int,
        changes: PurchaseOrderUpdate,
        actor: str = "system",
    ) -> PurchaseOrder:
        fields = changes.model_fields_set
        replace_items = "items" in fields and changes.items is not None

        def work(conn: sqlite3.Connection) -> PurchaseOrder:
            order = self._load(conn, order_id)
            order.update(changes, supplier_name=self.directory.supplier_name(changes.supplier_id))
            if "supplier_id" in fields:
                self.directory.require_supplier(order.supplier_id)
            self._apply_master_data(order)

            stored = self.db.save_order(conn, order, replace_items=replace_items)
            self.db.log_audit(conn, order_id, "updated", actor=actor, detail={
                "fields":       sorted(fields),
                "total_amount": str(stored.total_amount),
            })
            return stored

        stored = self.db.run(f"update purchase order {order_id}", work)
        logger.info("Updated %s (%s)", stored.po_number, ", ".join(sorted(fields)) or "no fields")
        return stored

    def send_purchase_order(self, order_id: int, actor: str = "system") -> PurchaseOrder:
        return self._transition(order_id, "sent", actor, PurchaseOrder.send)

    def cancel_purchase_order(
        self,
        order_id: int,
        actor: str = "system",
        reason: Optional[str] = None,
    ) -> PurchaseOrder:
        return self._transition(
            order_id, "cancelled", actor, PurchaseOrder.cancel,
            detail={"reason": reason} if reason else None,
        )

    def receive_items(
        self,
        order_id: int,
        store_id: str,
        lines: Sequence[ReceivingLine],
        notes: Optional[str] = None,
        actor: str = "system",
        reference: Optional[str] = None,
    ) -> ReceivingResult:
        result = self.reconciler.receive(
            order_id, store_id, lines, notes=notes, actor=actor, reference=reference
        )
        return result.model_copy(update={"receipts": [self._enrich_receipt(r) for r in result.receipts]})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_purchase_order(self, order_id: int) -> PurchaseOrder:
        order = self.db.get_order(order_id)
        if order is None:
            raise NotFoundError("purchase order", order_id)
        return order

    def get_purchase_order_with_receipts(self, order_id: int) -> PurchaseOrderWithReceipts:
        order = self.get_purchase_order(order_id)
        receipts = [self._enrich_receipt(r) for r in self.db.get_receipts(order_id=order_id)]
        return PurchaseOrderWithReceipts(order=order, receipts=receipts)

    def list_purchase_orders(
        self,
        criteria: Optional[OrderFilter] = None,
        today: Optional[date] = None,
    ) -> list[PurchaseOrder]:
        return filter_orders(self.db.list_orders(), criteria, today=today)

    def get_status_counts(self) -> dict[str, int]:
        return status_counts(self.db.list_orders())

    def get_audit_log(self, order_id: int) -> list[dict]:
        self.get_purchase_order(order_id)
        return self.db.get_audit_log(order_id)

    def check_setup(self) -> dict:
        """Report the database location, the newest backup and the state of each master-data file."""
        last_backup = self.backup_service.get_last_backup_time()
        return {
            "db_path": str(self.config.db_path),
            "last_backup": last_backup.isoformat(timespec="seconds") if last_backup else None,
            "master_data": {
                "suppliers": csv_manager.get_metadata(self.config.suppliers_csv),
                "products":  csv_manager.get_metadata(self.config.products_csv),
                "stores":    csv_manager.get_metadata(self.config.stores_csv),
            },
            "loaded": {
                "suppliers": len(self.directory.suppliers),
                "products":  len(self.directory.products),
                "stores":    len(self.directory.stores),
            },
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, conn: sqlite3.Connection, order_id: int) -> PurchaseOrder:
        order = self.db.load_order(conn, order_id)
        if order is None:
            raise NotFoundError("purchase order", order_id)
        return order

    def _transition(
        self,
        order_id: int,
        action: str,
        actor: str,
        apply: Callable[[PurchaseOrder], None],
        detail: Optional[dict] = None,
    ) -> PurchaseOrder:
        def work(conn: sqlite3.Connection) -> PurchaseOrder:
            order = self._load(conn, order_id)
            previous = order.status
            apply(order)
            stored = self.db.save_order(conn, order)
            self.db.log_audit(conn, order_id, action, actor=actor, detail={
                "from_status": previous,
                "to_status":   stored.status,
                **(detail or {}),
            })
            return stored

        stored = self.db.run(f"{action} purchase order {order_id}", work)
        logger.info("%s -> %s by %s", stored.po_number, stored.status, actor)
        return stored

    def _apply_master_data(self, order: PurchaseOrder) -> None:
        """Check product references and fill denormalised display names."""
        if order.supplier_name is None:
            order.supplier_name = self.directory.supplier_name(order.supplier_id)
        for item in order.items:
            self.directory.require_product(item.product_id)
            item.product_name = self.directory.product_name(item.product_id)

    def _enrich_receipt(self, receipt):
        return receipt.model_copy(update={
            "product_name": self.directory.product_name(receipt.product_id),
            "store_name":   self.directory.store_name(receipt.store_id),
        })
