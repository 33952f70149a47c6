"""
Purchase order lifecycle and multi-store receiving.

Only the dependency-free leaf modules are re-exported here; the database,
reconciler and service modules import the pydantic models, which in turn
import from this package.
"""
from .errors import (
    ProcurementError, ValidationError, InvalidStateError, QuantityExceededError,
    OrderFullyReceivedError, NotFoundError, ConcurrencyError,
)
from .tax import (
    TaxClass, TAX_RATES, rate_for, exclusive_from_inclusive, inclusive_from_exclusive,
    tax_amount, line_total_inclusive, to_money,
)

__all__ = [
    "ProcurementError", "ValidationError", "InvalidStateError", "QuantityExceededError",
    "OrderFullyReceivedError", "NotFoundError", "ConcurrencyError",
    "TaxClass", "TAX_RATES", "rate_for", "exclusive_from_inclusive",
    "inclusive_from_exclusive", "tax_amount", "line_total_inclusive", "to_money",
]
