"""
Error taxonomy for purchase order and receiving operations.

Every failure raised by this package is scoped to a single operation and
leaves persisted state unchanged (the surrounding transaction rolls back).

  ValidationError        malformed or missing input; fix the input and resend
  InvalidStateError      operation not legal for the order's current status
  QuantityExceededError  receiving more than the remaining allowance of an item
  NotFoundError          order / item / store / supplier reference unknown
  ConcurrencyError       transaction could not be serialised after retries
"""
from typing import Any, Optional


class ProcurementError(Exception):
    """Base class for all business-rule failures."""

    code = "procurement_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.context}


class ValidationError(ProcurementError):
    code = "validation_error"


class NotFoundError(ProcurementError):
    code = "not_found"

    def __init__(self, entity: str, key: Any, message: Optional[str] = None) -> None:
        ProcurementError.__init__(
            self, message or f"{entity} not found: {key}", entity=entity, key=key
        )
        self.entity = entity
        self.key = key


class InvalidStateError(ProcurementError):
    code = "invalid_state"

    def __init__(self, action: str, status: str, message: Optional[str] = None) -> None:
        ProcurementError.__init__(
            self,
            message or f"Cannot {action} a purchase order in status '{status}'",
            action=action,
            status=status,
        )
        self.action = action
        self.status = status


class QuantityExceededError(ProcurementError):
    code = "quantity_exceeded"

    def __init__(
        self,
        item_id: Optional[int],
        product_id: str,
        requested: int,
        remaining: int,
        message: Optional[str] = None,
    ) -> None:
        ProcurementError.__init__(
            self,
            message or (
                f"Cannot receive {requested} units of product {product_id}; "
                f"only {remaining} remain"
            ),
            item_id=item_id,
            product_id=product_id,
            requested=requested,
            remaining=remaining,
        )
        self.item_id = item_id
        self.product_id = product_id
        self.requested = requested
        self.remaining = remaining


class OrderFullyReceivedError(QuantityExceededError, InvalidStateError):
    """
    Receiving against an order that is already fully received.

    Both a state violation (status 'received' is terminal) and a quantity
    violation (every item has remaining = 0), so callers may catch either.
    """

    code = "order_fully_received"

    def __init__(self, item_id: Optional[int], product_id: str, requested: int) -> None:
        QuantityExceededError.__init__(
            self,
            item_id=item_id,
            product_id=product_id,
            requested=requested,
            remaining=0,
            message=(
                f"Cannot receive {requested} units of product {product_id}; "
                f"the order is fully received and 0 remain"
            ),
        )
        self.action = "receive"
        self.status = "received"
        self.context.update(action="receive", status="received")


class ConcurrencyError(ProcurementError):
    code = "concurrency_conflict"

    def __init__(self, operation: str, attempts: int) -> None:
        super().__init__(
            f"{operation} could not be completed after {attempts} attempts "
            f"because of concurrent updates; retry the whole operation",
            operation=operation,
            attempts=attempts,
        )
        self.operation = operation
        self.attempts = attempts
