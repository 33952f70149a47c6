"""
Read-side filtering, sorting and status aggregation for order lists.

Pure functions over an already-loaded list of orders: no database access and
no mutation, so identical inputs always give identical output.
"""
from datetime import date, timedelta
from typing import Iterable, Literal, Optional

from pydantic import BaseModel

from models.purchase_order import ALL_STATUSES, PurchaseOrder

DateRange = Literal["all", "today", "7d", "30d", "90d", "custom"]
SortKey = Literal["order_date", "po_number", "total_amount"]
SortOrder = Literal["asc", "desc"]

_RELATIVE_DAYS = {"7d": 7, "30d": 30, "90d": 90}


class OrderFilter(BaseModel):
    """Criteria for listing purchase orders. Defaults return everything, newest first."""
    status: Optional[str] = None            # None or "all" for every status
    search: Optional[str] = None            # matched against po_number, supplier name, notes
    supplier_id: Optional[str] = None
    date_range: DateRange = "all"
    start_date: Optional[date] = None       # custom range only, inclusive
    end_date: Optional[date] = None
    sort_by: SortKey = "order_date"
    sort_order: SortOrder = "desc"


def filter_orders(
    orders: Iterable[PurchaseOrder],
    criteria: Optional[OrderFilter] = None,
    today: Optional[date] = None,
) -> list[PurchaseOrder]:
    """Apply status, supplier, search and date filters, then sort."""
    criteria = criteria or OrderFilter()
    today = today or date.today()

    result = list(orders)

    if criteria.status and criteria.status != "all":
        result = [o for o in result if o.status == criteria.status]

    if criteria.supplier_id:
        result = [o for o in result if o.supplier_id == criteria.supplier_id]

    term = (criteria.search or "").strip().lower()
    if term:
        result = [o for o in result if _matches(o, term)]

    start, end = date_bounds(criteria, today)
    if start is not None:
        result = [o for o in result if o.order_date >= start]
    if end is not None:
        result = [o for o in result if o.order_date <= end]

    return sort_orders(result, criteria.sort_by, criteria.sort_order)


def date_bounds(criteria: OrderFilter, today: date) -> tuple[Optional[date], Optional[date]]:
    """Inclusive (start, end) order-date bounds for the criteria's range; None means open."""
    if criteria.date_range == "today":
        return today, today
    if criteria.date_range in _RELATIVE_DAYS:
        return today - timedelta(days=_RELATIVE_DAYS[criteria.date_range]), None
    if criteria.date_range == "custom":
        return criteria.start_date, criteria.end_date
    return None, None


def sort_orders(
    orders: list[PurchaseOrder],
    sort_by: SortKey = "order_date",
    sort_order: SortOrder = "desc",
) -> list[PurchaseOrder]:
    # Ties fall back to id so that the order is stable across calls.
    if sort_by == "po_number":
        key = lambda o: (o.po_number or "", o.id or 0)
    elif sort_by == "total_amount":
        key = lambda o: (o.total_amount, o.id or 0)
    else:
        key = lambda o: (o.order_date, o.id or 0)
    return sorted(orders, key=key, reverse=(sort_order == "desc"))


def status_counts(orders: Iterable[PurchaseOrder]) -> dict[str, int]:
    """Number of orders per status, plus "all"."""
    counts = {status: 0 for status in ALL_STATUSES}
    total = 0
    for order in orders:
        counts[order.status] = counts.get(order.status, 0) + 1
        total += 1
    counts["all"] = total
    return counts


def _matches(order: PurchaseOrder, term: str) -> bool:
    haystack = (order.po_number, order.supplier_name, order.notes)
    return any(term in (field or "").lower() for field in haystack)
