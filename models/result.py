from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from .inventory import InventoryReceipt
from .purchase_order import OrderStatus, PurchaseOrder


class ReceivingLine(BaseModel):
    """
    One line of a receiving request.

    The order item is referenced by item_id, or by product_id when the caller
    only knows the product.  unit_cost is tax-exclusive; when omitted the
    item's tax-exclusive unit price is used.
    """
    item_id: Optional[int] = None
    product_id: Optional[str] = None
    quantity: int
    unit_cost: Optional[Decimal] = None


class ReceivingResult(BaseModel):
    """Outcome of one receiving event."""
    purchase_order_id: int
    po_number: str
    reference: str
    status: OrderStatus                     # Order status after the event
    receipts: List[InventoryReceipt] = Field(default_factory=list)
    replayed: bool = False                  # True when the reference had already been applied

    @property
    def total_quantity(self) -> int:
        return sum(r.quantity for r in self.receipts)

    @property
    def total_cost(self) -> Decimal:
        return sum((r.total_cost for r in self.receipts), Decimal("0.00"))


class PurchaseOrderWithReceipts(BaseModel):
    """A purchase order together with its full receiving history."""
    order: PurchaseOrder
    receipts: List[InventoryReceipt] = Field(default_factory=list)
