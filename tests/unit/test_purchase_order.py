"""
Unit tests for the purchase order aggregate (no database).
"""
from datetime import date
from decimal import Decimal

import pytest

from models.purchase_order import (
    STATUS_CANCELLED,
    STATUS_DRAFT,
    STATUS_PARTIALLY_RECEIVED,
    STATUS_RECEIVED,
    STATUS_SENT,
    PurchaseOrder,
    PurchaseOrderInput,
    PurchaseOrderItemInput,
    PurchaseOrderUpdate,
)
from procurement.errors import InvalidStateError, QuantityExceededError, ValidationError


def _input(**overrides) -> PurchaseOrderInput:
    data = {
        "supplier_id": "SUP-001",
        "order_date": date(2026, 1, 15),
        "items": [PurchaseOrderItemInput(product_id="P-001", quantity=100, unit_price=Decimal("116.00"))],
    }
    data.update(overrides)
    return PurchaseOrderInput(**data)


@pytest.mark.unit
class TestCreate:
    """Tests for PurchaseOrder.create()."""

    def test_totals_for_single_standard_line(self):
        """100 x 116.00 inclusive at 16% -> 10,000 + 1,600 = 11,600."""
        order = PurchaseOrder.create(_input())
        item = order.items[0]

        assert order.status == STATUS_DRAFT
        assert item.unit_price_exclusive == Decimal("100.00")
        assert item.tax_amount == Decimal("1600.00")
        assert item.total_price == Decimal("11600.00")
        assert order.subtotal == Decimal("10000.00")
        assert order.tax_amount == Decimal("1600.00")
        assert order.total_amount == Decimal("11600.00")

    def test_mixed_tax_classes(self):
        order = PurchaseOrder.create(_input(items=[
            PurchaseOrderItemInput(product_id="P-001", quantity=3, unit_price=Decimal("10.00")),
            PurchaseOrderItemInput(product_id="P-002", quantity=2, unit_price=Decimal("250.00"),
                                   tax_class="zero_rated"),
            PurchaseOrderItemInput(product_id="P-003", quantity=1, unit_price=Decimal("800.00"),
                                   tax_class="exempted"),
        ]))
        # 30 / 1.16 = 25.8620..., tax 4.1379...
        assert order.subtotal == Decimal("1325.86")
        assert order.tax_amount == Decimal("4.14")
        assert order.total_amount == order.subtotal + order.tax_amount

    def test_total_is_sum_of_rounded_parts(self):
        """Rounding each of subtotal and tax keeps total == subtotal + tax exactly."""
        order = PurchaseOrder.create(_input(items=[
            PurchaseOrderItemInput(product_id="P-001", quantity=7, unit_price=Decimal("13.33")),
            PurchaseOrderItemInput(product_id="P-002", quantity=11, unit_price=Decimal("0.99")),
        ]))
        assert order.total_amount == order.subtotal + order.tax_amount

    def test_subtotal_matches_exposed_exclusive_prices(self):
        """10 x 10.00 at 16%: 8.62 per unit exclusive, so subtotal 86.20 and tax 13.80."""
        order = PurchaseOrder.create(_input(items=[
            PurchaseOrderItemInput(product_id="P-001", quantity=10, unit_price=Decimal("10.00")),
            PurchaseOrderItemInput(product_id="P-002", quantity=3, unit_price=Decimal("13.33")),
        ]))
        item = order.items[0]

        assert item.unit_price_exclusive == Decimal("8.62")
        assert item.tax_amount == Decimal("13.80")
        assert order.subtotal == sum(i.quantity * i.unit_price_exclusive for i in order.items)
        assert order.tax_amount == sum(i.tax_amount for i in order.items)
        assert order.subtotal == Decimal("120.67")
        assert order.total_amount == Decimal("139.99")
        assert order.total_amount == order.subtotal + order.tax_amount

    def test_line_numbers_assigned(self):
        order = PurchaseOrder.create(_input(items=[
            PurchaseOrderItemInput(product_id="P-001", quantity=1, unit_price=Decimal("1")),
            PurchaseOrderItemInput(product_id="P-002", quantity=1, unit_price=Decimal("1")),
        ]))
        assert [i.line_number for i in order.items] == [1, 2]

    def test_missing_supplier_rejected(self):
        with pytest.raises(ValidationError):
            PurchaseOrder.create(_input(supplier_id=None))
        with pytest.raises(ValidationError):
            PurchaseOrder.create(_input(supplier_id="   "))

    def test_empty_items_rejected(self):
        with pytest.raises(ValidationError):
            PurchaseOrder.create(_input(items=[]))

    @pytest.mark.parametrize("quantity,price", [(0, "10"), (-1, "10"), (1, "0"), (1, "-5")])
    def test_non_positive_quantity_or_price_rejected(self, quantity, price):
        with pytest.raises(ValidationError):
            PurchaseOrder.create(_input(items=[
                PurchaseOrderItemInput(product_id="P-001", quantity=quantity, unit_price=Decimal(price)),
            ]))

    def test_delivery_before_order_date_rejected(self):
        with pytest.raises(ValidationError):
            PurchaseOrder.create(_input(expected_delivery_date=date(2026, 1, 1)))


@pytest.mark.unit
class TestStateMachine:
    """Tests for send / cancel / update transitions."""

    def test_send_from_draft(self):
        order = PurchaseOrder.create(_input())
        order.send()
        assert order.status == STATUS_SENT

    def test_send_twice_rejected(self):
        order = PurchaseOrder.create(_input())
        order.send()
        with pytest.raises(InvalidStateError):
            order.send()

    def test_cancel_draft_then_send_rejected(self):
        order = PurchaseOrder.create(_input())
        order.cancel()
        assert order.status == STATUS_CANCELLED
        with pytest.raises(InvalidStateError):
            order.send()

    def test_cancel_twice_rejected(self):
        order = PurchaseOrder.create(_input())
        order.cancel()
        with pytest.raises(InvalidStateError):
            order.cancel()

    def test_cancel_received_rejected(self):
        order = PurchaseOrder.create(_input())
        order.send()
        order.items[0].record_receipt(100)
        order.recompute_status_from_items()
        assert order.status == STATUS_RECEIVED
        with pytest.raises(InvalidStateError):
            order.cancel()

    def test_update_only_in_draft(self):
        order = PurchaseOrder.create(_input())
        order.send()
        with pytest.raises(InvalidStateError):
            order.update(PurchaseOrderUpdate(notes="late"))

    def test_update_recomputes_totals(self):
        order = PurchaseOrder.create(_input())
        order.update(PurchaseOrderUpdate(items=[
            PurchaseOrderItemInput(product_id="P-001", quantity=10, unit_price=Decimal("116.00")),
        ]))
        assert order.subtotal == Decimal("1000.00")
        assert order.total_amount == Decimal("1160.00")

    def test_update_leaves_unset_fields(self):
        order = PurchaseOrder.create(_input(notes="keep me"))
        order.update(PurchaseOrderUpdate(expected_delivery_date=date(2026, 2, 1)))
        assert order.notes == "keep me"
        assert order.expected_delivery_date == date(2026, 2, 1)
        assert order.total_amount == Decimal("11600.00")


@pytest.mark.unit
class TestReceivingArithmetic:
    """Tests for item receipt bounds and status derivation."""

    def test_partial_then_full(self):
        order = PurchaseOrder.create(_input())
        order.send()
        item = order.items[0]

        item.record_receipt(40)
        order.recompute_status_from_items()
        assert order.status == STATUS_PARTIALLY_RECEIVED
        assert item.remaining_quantity == 60

        item.record_receipt(60)
        order.recompute_status_from_items()
        assert order.status == STATUS_RECEIVED

    def test_over_receipt_rejected_not_clamped(self):
        order = PurchaseOrder.create(_input())
        item = order.items[0]
        item.record_receipt(95)
        with pytest.raises(QuantityExceededError) as exc_info:
            item.record_receipt(6)
        assert exc_info.value.remaining == 5
        assert exc_info.value.requested == 6
        assert item.received_quantity == 95

    def test_zero_receipt_rejected(self):
        order = PurchaseOrder.create(_input())
        with pytest.raises(ValidationError):
            order.items[0].record_receipt(0)

    def test_status_stays_sent_without_receipts(self):
        order = PurchaseOrder.create(_input())
        order.send()
        order.recompute_status_from_items()
        assert order.status == STATUS_SENT

    def test_recompute_outside_receiving_rejected(self):
        order = PurchaseOrder.create(_input())
        with pytest.raises(InvalidStateError):
            order.recompute_status_from_items()
