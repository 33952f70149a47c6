"""
SQLite persistence for purchase orders, receipts and store inventory.

Tables
------
  purchase_orders        order header, status and totals (+ optimistic version)
  purchase_order_items   ordered lines with the cumulative received quantity
  inventory_receipts     append-only receiving ledger (UPDATE/DELETE abort)
  store_inventory        quantity per (store, product), maintained from the ledger
  audit_log              who did what to which order, and when

purchase_order_items.received_quantity and store_inventory.quantity are
derived values; inventory_receipts is their ground truth.

Concurrency
-----------
Reads use a short-lived connection with no explicit transaction.  Writes go
through transaction(), which issues BEGIN IMMEDIATE so that only one writer
holds the database at a time; the check-then-act of a receiving event is
therefore never interleaved with another writer.  Header writes are also
guarded by purchase_orders.version and raise StaleWriteError when the row
changed underneath the caller.

Monetary columns are TEXT holding a Decimal string, so values round-trip
exactly.
"""
import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Optional, TypeVar

from models.inventory import InventoryReceipt, StoreInventory
from models.purchase_order import PurchaseOrder, PurchaseOrderItem
from .errors import ConcurrencyError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS purchase_orders (
    id                     INTEGER PRIMARY KEY AUTOINCREMENT,
    po_number              TEXT    NOT NULL UNIQUE,
    supplier_id            TEXT    NOT NULL,
    supplier_name          TEXT,
    order_date             TEXT    NOT NULL,   -- YYYY-MM-DD
    expected_delivery_date TEXT,
    status                 TEXT    NOT NULL DEFAULT 'draft',

    -- Decimal strings; total_amount = subtotal + tax_amount
    subtotal               TEXT    NOT NULL DEFAULT '0.00',
    tax_amount             TEXT    NOT NULL DEFAULT '0.00',
    total_amount           TEXT    NOT NULL DEFAULT '0.00',

    notes                  TEXT,
    created_by             TEXT,
    created_at             TEXT    NOT NULL,   -- ISO-8601 UTC
    updated_at             TEXT    NOT NULL,
    version                INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_po_status     ON purchase_orders (status);
CREATE INDEX IF NOT EXISTS idx_po_order_date ON purchase_orders (order_date DESC);
CREATE INDEX IF NOT EXISTS idx_po_supplier   ON purchase_orders (supplier_id);

CREATE TABLE IF NOT EXISTS purchase_order_items (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    purchase_order_id  INTEGER NOT NULL REFERENCES purchase_orders (id),
    line_number        INTEGER,
    product_id         TEXT    NOT NULL,
    product_name       TEXT,
    quantity           INTEGER NOT NULL CHECK (quantity > 0),
    unit_price         TEXT    NOT NULL,       -- tax-inclusive, as entered
    tax_class          TEXT    NOT NULL,
    received_quantity  INTEGER NOT NULL DEFAULT 0
                       CHECK (received_quantity >= 0 AND received_quantity <= quantity)
);

CREATE INDEX IF NOT EXISTS idx_items_order ON purchase_order_items (purchase_order_id);

CREATE TABLE IF NOT EXISTS inventory_receipts (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    reference               TEXT    NOT NULL,  -- one receiving event
    purchase_order_id       INTEGER NOT NULL REFERENCES purchase_orders (id),
    purchase_order_item_id  INTEGER NOT NULL REFERENCES purchase_order_items (id),
    product_id              TEXT    NOT NULL,
    store_id                TEXT    NOT NULL,
    quantity                INTEGER NOT NULL CHECK (quantity > 0),
    unit_cost               TEXT    NOT NULL,  -- tax-exclusive
    total_cost              TEXT    NOT NULL,
    received_at             TEXT    NOT NULL,  -- ISO-8601 UTC
    received_by             TEXT    NOT NULL DEFAULT 'system',
    notes                   TEXT
);

CREATE INDEX IF NOT EXISTS idx_receipts_order     ON inventory_receipts (purchase_order_id);
CREATE INDEX IF NOT EXISTS idx_receipts_reference ON inventory_receipts (purchase_order_id, reference);
CREATE INDEX IF NOT EXISTS idx_receipts_store     ON inventory_receipts (store_id, product_id);

CREATE TRIGGER IF NOT EXISTS trg_receipts_no_update
BEFORE UPDATE ON inventory_receipts
BEGIN
    SELECT RAISE(ABORT, 'inventory receipts are immutable');
END;

CREATE TRIGGER IF NOT EXISTS trg_receipts_no_delete
BEFORE DELETE ON inventory_receipts
BEGIN
    SELECT RAISE(ABORT, 'inventory receipts are immutable');
END;

CREATE TABLE IF NOT EXISTS store_inventory (
    store_id      TEXT    NOT NULL,
    product_id    TEXT    NOT NULL,
    quantity      INTEGER NOT NULL DEFAULT 0,
    unit_cost     TEXT    NOT NULL DEFAULT '0.00',  -- latest receipt's cost
    last_updated  TEXT    NOT NULL,
    PRIMARY KEY (store_id, product_id)
);

CREATE TABLE IF NOT EXISTS audit_log (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    purchase_order_id  INTEGER NOT NULL,
    timestamp          TEXT    NOT NULL,   -- ISO-8601 UTC
    action             TEXT    NOT NULL,   -- created | updated | sent | cancelled | received
    actor              TEXT    NOT NULL DEFAULT 'system',
    detail             TEXT                -- optional JSON blob with action-specific context
);

CREATE INDEX IF NOT EXISTS idx_audit_order     ON audit_log (purchase_order_id);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log (timestamp DESC);
"""


class StaleWriteError(Exception):
    """A version-guarded write found the row changed by another writer."""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """Thin wrapper around an SQLite database file for purchase order state."""

    def __init__(
        self,
        db_path: Path,
        lock_timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 0.05,
    ) -> None:
        self.db_path = Path(db_path)
        self.lock_timeout = lock_timeout
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=self.lock_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection for reads and schema setup."""
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Exclusive write transaction.

        BEGIN IMMEDIATE takes the write lock up front (waiting up to
        lock_timeout), so reads made inside the block cannot be invalidated
        by another writer before commit.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

    def run(self, operation: str, work: Callable[[sqlite3.Connection], T]) -> T:
        """
        Run work(conn) inside transaction(), retrying on lock contention or a
        stale version guard.  Business errors raised by work() roll back and
        propagate immediately.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                with self.transaction() as conn:
                    return work(conn)
            except StaleWriteError as exc:
                reason = str(exc)
            except sqlite3.OperationalError as exc:
                if not _is_contention(exc):
                    raise
                reason = str(exc)

            logger.warning(
                "%s: attempt %d/%d conflicted (%s)", operation, attempt, self.max_retries, reason
            )
            if attempt < self.max_retries:
                time.sleep(self.retry_backoff * attempt)

        raise ConcurrencyError(operation, self.max_retries)

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Database schema ready: %s", self.db_path)

    # ------------------------------------------------------------------
    # Write operations (called inside transaction())
    # ------------------------------------------------------------------

    def next_po_number(self, conn: sqlite3.Connection, order_date: date) -> str:
        prefix = f"PO-{order_date.strftime('%Y%m%d')}"
        count = conn.execute(
            "SELECT COUNT(*) FROM purchase_orders WHERE po_number LIKE ?",
            (f"{prefix}-%",),
        ).fetchone()[0]
        return f"{prefix}-{count + 1:04d}"

    def insert_order(self, conn: sqlite3.Connection, order: PurchaseOrder) -> PurchaseOrder:
        """Insert a new order and its items; returns the stored copy (ids, number, timestamps)."""
        now = utc_now()
        po_number = order.po_number or self.next_po_number(conn, order.order_date)
        cur = conn.execute(
            """
            INSERT INTO purchase_orders (
                po_number, supplier_id, supplier_name,
                order_date, expected_delivery_date, status,
                subtotal, tax_amount, total_amount,
                notes, created_by, created_at, updated_at, version
            ) VALUES (
                :po_number, :supplier_id, :supplier_name,
                :order_date, :expected_delivery_date, :status,
                :subtotal, :tax_amount, :total_amount,
                :notes, :created_by, :created_at, :updated_at, 0
            )
            """,
            {
                **_header_params(order),
                "po_number":  po_number,
                "created_by": order.created_by,
                "created_at": now,
                "updated_at": now,
            },
        )
        order_id = cur.lastrowid
        self._insert_items(conn, order_id, order.items)
        stored = self.load_order(conn, order_id)
        logger.info("DB inserted purchase order %s (id=%d)", po_number, order_id)
        return stored

    def save_order(
        self,
        conn: sqlite3.Connection,
        order: PurchaseOrder,
        replace_items: bool = False,
    ) -> PurchaseOrder:
        """
        Write the header (version-guarded) and, for draft edits, replace the
        items wholesale.  Returns the stored copy with the bumped version.
        """
        cur = conn.execute(
            """
            UPDATE purchase_orders SET
                supplier_id            = :supplier_id,
                supplier_name          = :supplier_name,
                order_date             = :order_date,
                expected_delivery_date = :expected_delivery_date,
                status                 = :status,
                subtotal               = :subtotal,
                tax_amount             = :tax_amount,
                total_amount           = :total_amount,
                notes                  = :notes,
                updated_at             = :updated_at,
                version                = version + 1
            WHERE id = :id AND version = :version
            """,
            {
                **_header_params(order),
                "updated_at": utc_now(),
                "id":         order.id,
                "version":    order.version,
            },
        )
        if cur.rowcount != 1:
            raise StaleWriteError(f"purchase order {order.id} changed since version {order.version}")

        if replace_items:
            conn.execute("DELETE FROM purchase_order_items WHERE purchase_order_id = ?", (order.id,))
            self._insert_items(conn, order.id, order.items)

        return self.load_order(conn, order.id)

    def _insert_items(
        self,
        conn: sqlite3.Connection,
        order_id: int,
        items: list[PurchaseOrderItem],
    ) -> None:
        conn.executemany(
            """
            INSERT INTO purchase_order_items (
                purchase_order_id, line_number, product_id, product_name,
                quantity, unit_price, tax_class, received_quantity
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    order_id, item.line_number, item.product_id, item.product_name,
                    item.quantity, str(item.unit_price), item.tax_class, item.received_quantity,
                )
                for item in items
            ],
        )

    def add_received_quantity(
        self,
        conn: sqlite3.Connection,
        item_id: int,
        quantity: int,
    ) -> None:
        """Increment an item's received quantity, refusing to pass the ordered quantity."""
        cur = conn.execute(
            """
            UPDATE purchase_order_items
               SET received_quantity = received_quantity + :qty
             WHERE id = :id AND received_quantity + :qty <= quantity
            """,
            {"qty": quantity, "id": item_id},
        )
        if cur.rowcount != 1:
            raise StaleWriteError(f"purchase order item {item_id} cannot take {quantity} more units")

    def insert_receipt(self, conn: sqlite3.Connection, receipt: InventoryReceipt) -> InventoryReceipt:
        cur = conn.execute(
            """
            INSERT INTO inventory_receipts (
                reference, purchase_order_id, purchase_order_item_id,
                product_id, store_id, quantity, unit_cost, total_cost,
                received_at, received_by, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                receipt.reference, receipt.purchase_order_id, receipt.purchase_order_item_id,
                receipt.product_id, receipt.store_id, receipt.quantity,
                str(receipt.unit_cost), str(receipt.total_cost),
                receipt.received_at, receipt.received_by, receipt.notes,
            ),
        )
        return receipt.model_copy(update={"id": cur.lastrowid})

    def add_to_store_inventory(
        self,
        conn: sqlite3.Connection,
        store_id: str,
        product_id: str,
        quantity: int,
        unit_cost: Decimal,
        at: str,
    ) -> None:
        """Apply a ledger delta to the (store, product) row, creating it on first receipt."""
        conn.execute(
            """
            INSERT INTO store_inventory (store_id, product_id, quantity, unit_cost, last_updated)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(store_id, product_id) DO UPDATE SET
                quantity     = store_inventory.quantity + excluded.quantity,
                unit_cost    = excluded.unit_cost,
                last_updated = excluded.last_updated
            """,
            (store_id, product_id, quantity, str(unit_cost), at),
        )

    def log_audit(
        self,
        conn: sqlite3.Connection,
        order_id: int,
        action: str,
        actor: str = "system",
        detail: Optional[dict] = None,
    ) -> None:
        """Append one entry to the audit log."""
        conn.execute(
            """INSERT INTO audit_log (purchase_order_id, timestamp, action, actor, detail)
               VALUES (?, ?, ?, ?, ?)""",
            (
                order_id,
                utc_now(),
                action,
                actor,
                json.dumps(detail, default=str) if detail is not None else None,
            ),
        )

    # ------------------------------------------------------------------
    # Read operations usable inside or outside a transaction
    # ------------------------------------------------------------------

    def load_order(self, conn: sqlite3.Connection, order_id: int) -> Optional[PurchaseOrder]:
        row = conn.execute("SELECT * FROM purchase_orders WHERE id = ?", (order_id,)).fetchone()
        if row is None:
            return None
        items = conn.execute(
            "SELECT * FROM purchase_order_items WHERE purchase_order_id = ? ORDER BY line_number, id",
            (order_id,),
        ).fetchall()
        return _order_from_row(row, items)

    def load_receipts(
        self,
        conn: sqlite3.Connection,
        order_id: int,
        reference: Optional[str] = None,
    ) -> list[InventoryReceipt]:
        sql = "SELECT * FROM inventory_receipts WHERE purchase_order_id = ?"
        params: list = [order_id]
        if reference is not None:
            sql += " AND reference = ?"
            params.append(reference)
        rows = conn.execute(sql + " ORDER BY id", params).fetchall()
        return [_receipt_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get_order(self, order_id: int) -> Optional[PurchaseOrder]:
        with self._conn() as conn:
            return self.load_order(conn, order_id)

    def list_orders(self) -> list[PurchaseOrder]:
        """Return every order with its items, newest order date first."""
        with self._conn() as conn:
            headers = conn.execute(
                "SELECT * FROM purchase_orders ORDER BY order_date DESC, id DESC"
            ).fetchall()
            items = conn.execute(
                "SELECT * FROM purchase_order_items ORDER BY purchase_order_id, line_number, id"
            ).fetchall()

        by_order: dict[int, list] = {}
        for item in items:
            by_order.setdefault(item["purchase_order_id"], []).append(item)
        return [_order_from_row(h, by_order.get(h["id"], [])) for h in headers]

    def get_receipts(
        self,
        order_id: Optional[int] = None,
        store_id: Optional[str] = None,
        product_id: Optional[str] = None,
    ) -> list[InventoryReceipt]:
        clauses: list[str] = []
        params: list = []
        if order_id is not None:
            clauses.append("purchase_order_id = ?")
            params.append(order_id)
        if store_id is not None:
            clauses.append("store_id = ?")
            params.append(store_id)
        if product_id is not None:
            clauses.append("product_id = ?")
            params.append(product_id)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM inventory_receipts {where} ORDER BY received_at, id", params
            ).fetchall()
        return [_receipt_from_row(r) for r in rows]

    def get_store_inventory(
        self,
        store_id: Optional[str] = None,
        product_id: Optional[str] = None,
    ) -> list[StoreInventory]:
        clauses: list[str] = []
        params: list = []
        if store_id is not None:
            clauses.append("store_id = ?")
            params.append(store_id)
        if product_id is not None:
            clauses.append("product_id = ?")
            params.append(product_id)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM store_inventory {where} ORDER BY store_id, product_id", params
            ).fetchall()
        return [
            StoreInventory(
                store_id=r["store_id"],
                product_id=r["product_id"],
                quantity=r["quantity"],
                unit_cost=Decimal(r["unit_cost"]),
                last_updated=r["last_updated"],
            )
            for r in rows
        ]

    def ledger_totals(
        self,
        as_of: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> list[dict]:
        """
        Sum ledger quantities per (store, product).

        as_of is an ISO timestamp or date; entries received at or before it
        are included (a bare date includes the whole day).
        """
        clauses: list[str] = []
        params: list = []
        if as_of is not None:
            clauses.append("substr(received_at, 1, ?) <= ?")
            params.extend([len(as_of), as_of])
        if store_id is not None:
            clauses.append("store_id = ?")
            params.append(store_id)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT store_id, product_id, SUM(quantity) AS quantity
                FROM inventory_receipts
                {where}
                GROUP BY store_id, product_id
                ORDER BY store_id, product_id
                """,
                params,
            ).fetchall()
        return [dict(r) for r in rows]

    def item_ledger_totals(self) -> list[dict]:
        """Per order item: ledger sum next to the recorded received_quantity."""
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT i.id AS item_id, i.product_id, i.received_quantity,
                       COALESCE(SUM(r.quantity), 0) AS ledger_quantity
                FROM purchase_order_items i
                LEFT JOIN inventory_receipts r ON r.purchase_order_item_id = i.id
                GROUP BY i.id
                ORDER BY i.id
                """
            ).fetchall()
        return [dict(r) for r in rows]

    def get_audit_log(self, order_id: int) -> list[dict]:
        """Return all audit entries for one order, oldest first."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT id, timestamp, action, actor, detail
                   FROM audit_log WHERE purchase_order_id = ?
                   ORDER BY timestamp ASC, id ASC""",
                (order_id,),
            ).fetchall()
        entries = []
        for r in rows:
            entry = dict(r)
            entry["detail"] = json.loads(entry["detail"]) if entry["detail"] else None
            entries.append(entry)
        return entries


# ------------------------------------------------------------------
# Row mapping
# ------------------------------------------------------------------

def _is_contention(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def _header_params(order: PurchaseOrder) -> dict:
    return {
        "supplier_id":            order.supplier_id,
        "supplier_name":          order.supplier_name,
        "order_date":             order.order_date.isoformat(),
        "expected_delivery_date": (
            order.expected_delivery_date.isoformat() if order.expected_delivery_date else None
        ),
        "status":                 order.status,
        "subtotal":               str(order.subtotal),
        "tax_amount":             str(order.tax_amount),
        "total_amount":           str(order.total_amount),
        "notes":                  order.notes,
    }


def _order_from_row(row: sqlite3.Row, item_rows: list[sqlite3.Row]) -> PurchaseOrder:
    return PurchaseOrder(
        id=row["id"],
        po_number=row["po_number"],
        supplier_id=row["supplier_id"],
        supplier_name=row["supplier_name"],
        order_date=date.fromisoformat(row["order_date"]),
        expected_delivery_date=(
            date.fromisoformat(row["expected_delivery_date"])
            if row["expected_delivery_date"] else None
        ),
        status=row["status"],
        subtotal=Decimal(row["subtotal"]),
        tax_amount=Decimal(row["tax_amount"]),
        total_amount=Decimal(row["total_amount"]),
        notes=row["notes"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        version=row["version"],
        items=[
            PurchaseOrderItem(
                id=i["id"],
                line_number=i["line_number"],
                product_id=i["product_id"],
                product_name=i["product_name"],
                quantity=i["quantity"],
                unit_price=Decimal(i["unit_price"]),
                tax_class=i["tax_class"],
                received_quantity=i["received_quantity"],
            )
            for i in item_rows
        ],
    )


def _receipt_from_row(row: sqlite3.Row) -> InventoryReceipt:
    return InventoryReceipt(
        id=row["id"],
        reference=row["reference"],
        purchase_order_id=row["purchase_order_id"],
        purchase_order_item_id=row["purchase_order_item_id"],
        product_id=row["product_id"],
        store_id=row["store_id"],
        quantity=row["quantity"],
        unit_cost=Decimal(row["unit_cost"]),
        total_cost=Decimal(row["total_cost"]),
        received_at=row["received_at"],
        received_by=row["received_by"],
        notes=row["notes"],
    )
