"""
Receiving reconciler: posts goods received against a purchase order into a
store.

This is the only code path that changes purchase_order_items.received_quantity,
writes inventory_receipts, or increments store_inventory.  One call is one
receiving event and runs in a single IMMEDIATE transaction, so the remaining
quantities it checks are the ones it writes against.

Checks, in order (each raises before anything is written):
  1. order exists                                      NotFoundError
  2. reference already applied  -> replay, no writes
  3. order is sent / partially_received                InvalidStateError
     (received -> OrderFullyReceivedError)
  4. store exists and is active                        NotFoundError
  5. every line names an item of this order            NotFoundError
     no item named twice, no negative qty or cost      ValidationError
  6. at least one positive line                        ValidationError
  7. qty <= remaining for every line                   QuantityExceededError
"""
import logging
import sqlite3
import uuid
from decimal import Decimal
from typing import Optional, Sequence

from models.inventory import InventoryReceipt
from models.purchase_order import STATUS_RECEIVED, PurchaseOrder, PurchaseOrderItem
from models.result import ReceivingLine, ReceivingResult
from .database import Database, utc_now
from .directory import Directory
from .errors import (
    InvalidStateError,
    NotFoundError,
    OrderFullyReceivedError,
    ValidationError,
)
from .tax import to_decimal, to_money

logger = logging.getLogger(__name__)


def new_reference() -> str:
    return f"RCV-{uuid.uuid4().hex[:12].upper()}"


class ReceivingReconciler:
    """Validates and applies receiving events."""

    def __init__(self, db: Database, directory: Directory) -> None:
        self.db = db
        self.directory = directory

    def receive(
        self,
        order_id: int,
        store_id: str,
        lines: Sequence[ReceivingLine],
        notes: Optional[str] = None,
        actor: str = "system",
        reference: Optional[str] = None,
    ) -> ReceivingResult:
        """
        Receive the given lines into store_id.

        Returns the ledger entries written and the order's new status.  When
        reference names an event already applied to this order, the stored
        entries are returned with replayed=True and nothing is written.
        """
        reference = (reference or "").strip() or new_reference()
        lines = list(lines)

        def work(conn: sqlite3.Connection) -> ReceivingResult:
            return self._receive_in(conn, order_id, store_id, lines, notes, actor, reference)

        result = self.db.run(f"receive into order {order_id}", work)
        if result.replayed:
            logger.debug("Receiving reference %s already applied to order %d", reference, order_id)
        else:
            logger.info(
                "Received %d units (%d lines) into store %s for %s -> %s [%s]",
                result.total_quantity, len(result.receipts), store_id,
                result.po_number, result.status, reference,
            )
        return result

    # ------------------------------------------------------------------
    # Transaction body
    # ------------------------------------------------------------------

    def _receive_in(
        self,
        conn: sqlite3.Connection,
        order_id: int,
        store_id: str,
        lines: list[ReceivingLine],
        notes: Optional[str],
        actor: str,
        reference: str,
    ) -> ReceivingResult:
        order = self.db.load_order(conn, order_id)
        if order is None:
            raise NotFoundError("purchase order", order_id)

        previous = self.db.load_receipts(conn, order_id, reference=reference)
        if previous:
            if not _matches_event(order, store_id, lines, previous):
                logger.warning(
                    "Reference %s on order %d was first applied to store %s with different "
                    "lines; returning the original event unchanged",
                    reference, order_id, previous[0].store_id,
                )
            return ReceivingResult(
                purchase_order_id=order.id,
                po_number=order.po_number,
                reference=reference,
                status=order.status,
                receipts=previous,
                replayed=True,
            )

        self._check_status(order, lines)
        self.directory.require_active_store(store_id)

        postings = _resolve_lines(order, lines)
        for item, quantity, _ in postings:
            item.record_receipt(quantity)

        received_at = utc_now()
        receipts: list[InventoryReceipt] = []
        for item, quantity, unit_cost in postings:
            receipt = self.db.insert_receipt(conn, InventoryReceipt(
                reference=reference,
                purchase_order_id=order.id,
                purchase_order_item_id=item.id,
                product_id=item.product_id,
                store_id=store_id,
                quantity=quantity,
                unit_cost=unit_cost,
                total_cost=to_money(quantity * unit_cost),
                received_at=received_at,
                received_by=actor,
                notes=notes,
            ))
            self.db.add_received_quantity(conn, item.id, quantity)
            self.db.add_to_store_inventory(
                conn, store_id, item.product_id, quantity, unit_cost, received_at
            )
            receipts.append(receipt)

        previous_status = order.status
        order.recompute_status_from_items()
        stored = self.db.save_order(conn, order)

        self.db.log_audit(conn, order.id, "received", actor=actor, detail={
            "reference":   reference,
            "store_id":    store_id,
            "from_status": previous_status,
            "to_status":   stored.status,
            "lines": [
                {"item_id": r.purchase_order_item_id, "product_id": r.product_id,
                 "quantity": r.quantity, "unit_cost": str(r.unit_cost)}
                for r in receipts
            ],
        })

        return ReceivingResult(
            purchase_order_id=stored.id,
            po_number=stored.po_number,
            reference=reference,
            status=stored.status,
            receipts=receipts,
        )

    def _check_status(self, order: PurchaseOrder, lines: list[ReceivingLine]) -> None:
        if order.can_receive:
            return
        if order.status == STATUS_RECEIVED:
            # Name the first requested line so the caller sees which product was refused.
            first = next((line for line in lines if line.quantity > 0), None)
            item = order.find_item(first.item_id, first.product_id) if first else None
            raise OrderFullyReceivedError(
                item_id=item.id if item else None,
                product_id=item.product_id if item else "",
                requested=first.quantity if first else 0,
            )
        raise InvalidStateError("receive", order.status)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _matches_event(
    order: PurchaseOrder,
    store_id: str,
    lines: list[ReceivingLine],
    previous: list[InventoryReceipt],
) -> bool:
    """True when a replayed request asks for what the stored event recorded."""
    if any(r.store_id != store_id for r in previous):
        return False
    requested: dict[Optional[int], int] = {}
    for line in lines:
        if line.quantity == 0:
            continue
        item = order.find_item(item_id=line.item_id, product_id=line.product_id)
        key = item.id if item is not None else None
        requested[key] = requested.get(key, 0) + line.quantity
    recorded: dict[Optional[int], int] = {}
    for r in previous:
        recorded[r.purchase_order_item_id] = recorded.get(r.purchase_order_item_id, 0) + r.quantity
    return requested == recorded


def _resolve_lines(
    order: PurchaseOrder,
    lines: list[ReceivingLine],
) -> list[tuple[PurchaseOrderItem, int, Decimal]]:
    """Map request lines onto order items; drop zero lines, reject malformed ones."""
    postings = []
    seen: set[int] = set()

    for n, line in enumerate(lines, start=1):
        if line.item_id is None and not (line.product_id or "").strip():
            raise ValidationError(f"Receiving line {n} names no item or product", line=n)

        item = order.find_item(item_id=line.item_id, product_id=(line.product_id or "").strip() or None)
        if item is None:
            raise NotFoundError(
                "purchase order item",
                line.item_id if line.item_id is not None else line.product_id,
                message=(
                    f"Receiving line {n} does not match any item on {order.po_number} "
                    f"(item_id={line.item_id}, product_id={line.product_id})"
                ),
            )
        if item.id in seen:
            raise ValidationError(
                f"Item {item.id} (product {item.product_id}) appears more than once",
                item_id=item.id,
            )
        seen.add(item.id)

        if line.quantity < 0:
            raise ValidationError(
                f"Received quantity for product {item.product_id} cannot be negative "
                f"(got {line.quantity})",
                item_id=item.id,
                quantity=line.quantity,
            )
        if line.quantity == 0:
            continue

        if line.unit_cost is None:
            unit_cost = item.unit_price_exclusive
        else:
            unit_cost = to_money(to_decimal(line.unit_cost))
            if unit_cost < 0:
                raise ValidationError(
                    f"Unit cost for product {item.product_id} cannot be negative",
                    item_id=item.id,
                    unit_cost=str(line.unit_cost),
                )
        postings.append((item, line.quantity, unit_cost))

    if not postings:
        raise ValidationError("Nothing to receive: every line has zero quantity")
    return postings
