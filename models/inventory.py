from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, computed_field

from procurement.tax import to_money


class InventoryReceipt(BaseModel):
    """
    One ledger entry: a quantity of one product moved into one store at one
    tax-exclusive unit cost.  Never edited once written; corrections are
    new offsetting entries.
    """
    id: Optional[int] = None
    reference: str                          # Groups the entries of one receiving event
    purchase_order_id: int
    purchase_order_item_id: int
    product_id: str
    store_id: str
    quantity: int
    unit_cost: Decimal                      # Tax-exclusive
    total_cost: Decimal                     # quantity * unit_cost, rounded to cents
    received_at: str                        # ISO 8601 UTC
    received_by: str = "system"
    notes: Optional[str] = None

    # Display fields filled from master data
    product_name: Optional[str] = None
    store_name: Optional[str] = None


class StoreInventory(BaseModel):
    """Current quantity of one product in one store (projection of the ledger)."""
    store_id: str
    product_id: str
    quantity: int
    unit_cost: Decimal                      # Latest receipt's unit cost
    last_updated: str

    store_name: Optional[str] = None
    product_name: Optional[str] = None
    product_code: Optional[str] = None
    category: Optional[str] = None
    unit_of_measure: Optional[str] = None

    @computed_field
    @property
    def inventory_value(self) -> Decimal:
        return to_money(self.quantity * self.unit_cost)


class StoreInventorySummary(BaseModel):
    """Aggregate stock figures for one store."""
    store_id: str
    store_name: Optional[str] = None
    store_code: Optional[str] = None
    total_products: int = 0
    total_items: int = 0
    total_inventory_value: Decimal = Decimal("0.00")


class StockLevel(BaseModel):
    """Quantity of a product in a store as of a point in time, summed from the ledger."""
    store_id: str
    product_id: str
    quantity: int
    store_name: Optional[str] = None
    product_name: Optional[str] = None


class InventoryMismatch(BaseModel):
    """A derived quantity that disagrees with the ledger it is derived from."""
    kind: str                               # "store_inventory" | "order_item"
    store_id: Optional[str] = None
    product_id: str
    purchase_order_item_id: Optional[int] = None
    ledger_quantity: int
    recorded_quantity: int
