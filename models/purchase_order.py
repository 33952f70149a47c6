from datetime import date
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, computed_field

from procurement.errors import InvalidStateError, QuantityExceededError, ValidationError
from procurement.tax import (
    TAX_STANDARD,
    TaxClass,
    exclusive_from_inclusive,
    line_total_inclusive,
    rate_for,
    to_money,
)

OrderStatus = Literal["draft", "sent", "partially_received", "received", "cancelled"]

STATUS_DRAFT              = "draft"
STATUS_SENT               = "sent"
STATUS_PARTIALLY_RECEIVED = "partially_received"
STATUS_RECEIVED           = "received"
STATUS_CANCELLED          = "cancelled"
ALL_STATUSES = (
    STATUS_DRAFT, STATUS_SENT, STATUS_PARTIALLY_RECEIVED, STATUS_RECEIVED, STATUS_CANCELLED,
)
RECEIVABLE_STATUSES = {STATUS_SENT, STATUS_PARTIALLY_RECEIVED}
TERMINAL_STATUSES   = {STATUS_RECEIVED, STATUS_CANCELLED}


class PurchaseOrderItemInput(BaseModel):
    """A line as submitted by the purchaser (unit price is tax-inclusive)."""
    product_id: str
    quantity: int
    unit_price: Decimal
    tax_class: TaxClass = TAX_STANDARD


class PurchaseOrderInput(BaseModel):
    """Header + lines for creating a purchase order."""
    supplier_id: Optional[str] = None
    order_date: date = Field(default_factory=date.today)
    expected_delivery_date: Optional[date] = None
    notes: Optional[str] = None
    items: List[PurchaseOrderItemInput] = Field(default_factory=list)


class PurchaseOrderUpdate(BaseModel):
    """Partial edit of a draft order. Omitted fields are left unchanged."""
    supplier_id: Optional[str] = None
    order_date: Optional[date] = None
    expected_delivery_date: Optional[date] = None
    notes: Optional[str] = None
    items: Optional[List[PurchaseOrderItemInput]] = None


class PurchaseOrderItem(BaseModel):
    """
    One ordered product on a purchase order.

    unit_price is stored exactly as entered (tax-inclusive); the exclusive
    price is derived from it and rounded to cents per unit, and the line tax
    is whatever remains of the inclusive total after the exclusive subtotal.
    received_quantity is only ever changed through record_receipt().
    """
    id: Optional[int] = None
    line_number: Optional[int] = None
    product_id: str
    product_name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    tax_class: TaxClass = TAX_STANDARD
    received_quantity: int = 0

    @computed_field
    @property
    def tax_rate(self) -> Decimal:
        return rate_for(self.tax_class)

    @computed_field
    @property
    def unit_price_exclusive(self) -> Decimal:
        return to_money(exclusive_from_inclusive(self.unit_price, self.tax_class))

    @computed_field
    @property
    def subtotal(self) -> Decimal:
        return self.quantity * self.unit_price_exclusive

    @computed_field
    @property
    def tax_amount(self) -> Decimal:
        return self.total_price - self.subtotal

    @computed_field
    @property
    def total_price(self) -> Decimal:
        return to_money(line_total_inclusive(self.quantity, self.unit_price))

    @computed_field
    @property
    def remaining_quantity(self) -> int:
        return self.quantity - self.received_quantity

    def record_receipt(self, quantity: int) -> None:
        """Add a received quantity, refusing anything outside (0, remaining]."""
        if quantity <= 0:
            raise ValidationError(
                f"Received quantity must be positive for product {self.product_id}",
                item_id=self.id,
                quantity=quantity,
            )
        if quantity > self.remaining_quantity:
            raise QuantityExceededError(
                item_id=self.id,
                product_id=self.product_id,
                requested=quantity,
                remaining=self.remaining_quantity,
            )
        self.received_quantity += quantity


class PurchaseOrder(BaseModel):
    """
    Purchase order aggregate: header, status and the ordered lines.

    State machine
    -------------
      draft --send()--> sent --receive--> partially_received --receive--> received
      draft / sent / partially_received --cancel()--> cancelled
      received and cancelled are terminal.

    The two receiving statuses are only ever set by
    recompute_status_from_items().  Totals are recomputed from the lines on
    every mutation, so total_amount == subtotal + tax_amount always holds.
    """
    id: Optional[int] = None
    po_number: Optional[str] = None         # Assigned on first save, immutable after
    supplier_id: str
    supplier_name: Optional[str] = None     # Denormalised from the supplier master list
    order_date: date
    expected_delivery_date: Optional[date] = None
    status: OrderStatus = STATUS_DRAFT
    subtotal: Decimal = Decimal("0.00")     # Tax-exclusive
    tax_amount: Decimal = Decimal("0.00")
    total_amount: Decimal = Decimal("0.00")
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None        # ISO 8601
    updated_at: Optional[str] = None
    version: int = 0
    items: List[PurchaseOrderItem] = Field(default_factory=list)

    # ------------------------------------------------------------------
    # Construction / editing
    # ------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        data: PurchaseOrderInput,
        created_by: Optional[str] = None,
        supplier_name: Optional[str] = None,
    ) -> "PurchaseOrder":
        if not (data.supplier_id or "").strip():
            raise ValidationError("A supplier is required", field="supplier_id")
        _check_dates(data.order_date, data.expected_delivery_date)
        order = cls(
            supplier_id=data.supplier_id.strip(),
            supplier_name=supplier_name,
            order_date=data.order_date,
            expected_delivery_date=data.expected_delivery_date,
            notes=data.notes,
            created_by=created_by,
            items=_build_items(data.items),
        )
        order.recompute_totals()
        return order

    def update(self, changes: PurchaseOrderUpdate, supplier_name: Optional[str] = None) -> None:
        """Apply a partial edit. Only draft orders can be edited."""
        if self.status != STATUS_DRAFT:
            raise InvalidStateError("update", self.status)

        fields = changes.model_fields_set
        if "supplier_id" in fields:
            if not (changes.supplier_id or "").strip():
                raise ValidationError("A supplier is required", field="supplier_id")
            self.supplier_id = changes.supplier_id.strip()
            self.supplier_name = supplier_name
        if "order_date" in fields and changes.order_date is not None:
            self.order_date = changes.order_date
        if "expected_delivery_date" in fields:
            self.expected_delivery_date = changes.expected_delivery_date
        _check_dates(self.order_date, self.expected_delivery_date)
        if "notes" in fields:
            self.notes = changes.notes
        if "items" in fields and changes.items is not None:
            self.items = _build_items(changes.items)

        self.recompute_totals()

    def recompute_totals(self) -> None:
        self.subtotal = sum((item.subtotal for item in self.items), Decimal("0.00"))
        self.total_amount = sum((item.total_price for item in self.items), Decimal("0.00"))
        self.tax_amount = self.total_amount - self.subtotal

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def send(self) -> None:
        if self.status != STATUS_DRAFT:
            raise InvalidStateError("send", self.status)
        self.status = STATUS_SENT

    def cancel(self) -> None:
        # Posted receipts stay in the ledger; cancelling only blocks new receiving.
        if self.status in TERMINAL_STATUSES:
            raise InvalidStateError("cancel", self.status)
        self.status = STATUS_CANCELLED

    def recompute_status_from_items(self) -> None:
        """Derive sent / partially_received / received from the lines."""
        if self.status not in RECEIVABLE_STATUSES:
            raise InvalidStateError("recompute receiving status for", self.status)
        if self.total_received == self.total_ordered:
            self.status = STATUS_RECEIVED
        elif self.total_received > 0:
            self.status = STATUS_PARTIALLY_RECEIVED

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def total_ordered(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def total_received(self) -> int:
        return sum(item.received_quantity for item in self.items)

    @property
    def can_receive(self) -> bool:
        return self.status in RECEIVABLE_STATUSES

    def find_item(
        self,
        item_id: Optional[int] = None,
        product_id: Optional[str] = None,
    ) -> Optional[PurchaseOrderItem]:
        """Look up a line by item id, or else by product (first match)."""
        if item_id is not None:
            return next((i for i in self.items if i.id == item_id), None)
        if product_id is not None:
            return next((i for i in self.items if i.product_id == product_id), None)
        return None


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _build_items(lines: List[PurchaseOrderItemInput]) -> List[PurchaseOrderItem]:
    if not lines:
        raise ValidationError("A purchase order needs at least one item", field="items")
    items = []
    for n, line in enumerate(lines, start=1):
        if not (line.product_id or "").strip():
            raise ValidationError(f"Item {n} has no product", field=f"items[{n - 1}].product_id")
        if line.quantity <= 0:
            raise ValidationError(
                f"Item {n} quantity must be positive (got {line.quantity})",
                field=f"items[{n - 1}].quantity",
            )
        if line.unit_price <= 0:
            raise ValidationError(
                f"Item {n} unit price must be positive (got {line.unit_price})",
                field=f"items[{n - 1}].unit_price",
            )
        items.append(PurchaseOrderItem(
            line_number=n,
            product_id=line.product_id.strip(),
            quantity=line.quantity,
            unit_price=to_money(line.unit_price),
            tax_class=line.tax_class,
        ))
    return items


def _check_dates(order_date: date, expected: Optional[date]) -> None:
    if expected is not None and expected < order_date:
        raise ValidationError(
            f"Expected delivery date {expected.isoformat()} is before "
            f"order date {order_date.isoformat()}",
            field="expected_delivery_date",
        )
