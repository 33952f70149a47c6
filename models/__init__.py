from .purchase_order import (
    PurchaseOrder, PurchaseOrderItem, PurchaseOrderInput, PurchaseOrderItemInput,
    PurchaseOrderUpdate, OrderStatus,
)
from .inventory import (
    InventoryReceipt, StoreInventory, StoreInventorySummary, StockLevel, InventoryMismatch,
)
from .supplier import Supplier
from .store import Store
from .product import Product
from .result import ReceivingLine, ReceivingResult, PurchaseOrderWithReceipts

__all__ = [
    "PurchaseOrder", "PurchaseOrderItem", "PurchaseOrderInput", "PurchaseOrderItemInput",
    "PurchaseOrderUpdate", "OrderStatus",
    "InventoryReceipt", "StoreInventory", "StoreInventorySummary", "StockLevel",
    "InventoryMismatch",
    "Supplier", "Store", "Product",
    "ReceivingLine", "ReceivingResult", "PurchaseOrderWithReceipts",
]
