"""
Procurement API: FastAPI backend.

Exposes the purchase order lifecycle, receiving and store inventory views
over HTTP.  All state lives in a single SQLite database (output/procurement.db).

Endpoints
---------
  GET   /api/health                               → liveness probe
  GET   /api/stats                                → order counts by status
  GET   /api/purchase-orders                      → filtered, sorted list
  POST  /api/purchase-orders                      → create a draft
  GET   /api/purchase-orders/{id}                 → order + receiving history
  PATCH /api/purchase-orders/{id}                 → edit a draft
  POST  /api/purchase-orders/{id}/send            → draft → sent
  POST  /api/purchase-orders/{id}/cancel          → → cancelled
  POST  /api/purchase-orders/{id}/receive         → receive items into a store
  GET   /api/purchase-orders/{id}/audit           → audit trail
  GET   /api/stores/{store_id}/inventory          → stock held by one store
  GET   /api/products/{product_id}/inventory      → stock of one product per store
  GET   /api/inventory/summary                    → per-store totals
  GET   /api/inventory/low-stock                  → rows at or below the threshold
  GET   /api/inventory/as-of                      → ledger-derived stock at a date
  GET   /api/inventory/reconcile                  → projection vs. ledger mismatches
  POST  /api/backup                               → write a ZIP backup

Business failures are returned as JSON {"error": code, "message": ..., ...}
with 400 / 404 / 409 / 503 depending on the error type.
"""
import logging
from datetime import date
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from config import Config
from dashboard.models import ActorAction, CancelRequest, ReceiveRequest
from models.purchase_order import PurchaseOrderInput, PurchaseOrderUpdate
from procurement.errors import (
    ConcurrencyError,
    InvalidStateError,
    NotFoundError,
    ProcurementError,
    QuantityExceededError,
    ValidationError,
)
from procurement.query import DateRange, OrderFilter, SortKey, SortOrder
from procurement.service import PurchaseOrderService

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Service (lazy: built on first request, so importing the app touches neither
# the database nor the master data)
# ---------------------------------------------------------------------------
_service: Optional[PurchaseOrderService] = None


def get_service() -> PurchaseOrderService:
    global _service
    if _service is None:
        _service = PurchaseOrderService(Config())
    return _service


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title="Procurement API")


def _status_for(exc: ProcurementError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (InvalidStateError, QuantityExceededError)):
        return 409
    if isinstance(exc, ConcurrencyError):
        return 503
    return 400


@app.exception_handler(ProcurementError)
async def procurement_error_handler(request: Request, exc: ProcurementError) -> JSONResponse:
    status_code = _status_for(exc)
    logger.info("%s %s → %d %s", request.method, request.url.path, status_code, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# ── Routes ───────────────────────────────────────────────────────────────────

@app.get("/api/health")
def health():
    service = get_service()
    return {
        "status":  "ok",
        "db_path": str(service.config.db_path),
        "stores":  len(service.directory.stores),
    }


@app.get("/api/stats")
def stats():
    return get_service().get_status_counts()


@app.get("/api/purchase-orders")
def list_purchase_orders(
    status: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    supplier_id: Optional[str] = Query(default=None),
    date_range: DateRange = Query(default="all"),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    sort_by: SortKey = Query(default="order_date"),
    sort_order: SortOrder = Query(default="desc"),
):
    criteria = OrderFilter(
        status=status or None,
        search=search or None,
        supplier_id=supplier_id or None,
        date_range=date_range,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return get_service().list_purchase_orders(criteria)


@app.post("/api/purchase-orders", status_code=201)
def create_purchase_order(body: PurchaseOrderInput, actor: str = Query(default="system")):
    return get_service().create_purchase_order(body, actor=actor)


@app.get("/api/purchase-orders/{order_id}")
def get_purchase_order(order_id: int):
    return get_service().get_purchase_order_with_receipts(order_id)


@app.patch("/api/purchase-orders/{order_id}")
def update_purchase_order(
    order_id: int,
    body: PurchaseOrderUpdate,
    actor: str = Query(default="system"),
):
    return get_service().update_purchase_order(order_id, body, actor=actor)


@app.post("/api/purchase-orders/{order_id}/send")
def send_purchase_order(order_id: int, body: Optional[ActorAction] = None):
    actor = body.actor if body else "system"
    return get_service().send_purchase_order(order_id, actor=actor)


@app.post("/api/purchase-orders/{order_id}/cancel")
def cancel_purchase_order(order_id: int, body: Optional[CancelRequest] = None):
    body = body or CancelRequest()
    return get_service().cancel_purchase_order(order_id, actor=body.actor, reason=body.reason)


@app.post("/api/purchase-orders/{order_id}/receive")
def receive_items(order_id: int, body: ReceiveRequest):
    result = get_service().receive_items(
        order_id,
        body.store_id,
        body.items,
        notes=body.notes,
        actor=body.actor,
        reference=body.reference,
    )
    return {
        **result.model_dump(mode="json"),
        "total_quantity": result.total_quantity,
        "total_cost":     str(result.total_cost),
    }


@app.get("/api/purchase-orders/{order_id}/audit")
def get_audit_log(order_id: int):
    return get_service().get_audit_log(order_id)


@app.get("/api/stores/{store_id}/inventory")
def store_inventory(store_id: str):
    service = get_service()
    if store_id not in service.directory.stores:
        raise NotFoundError("store", store_id)
    return service.inventory.all_for_store(store_id)


@app.get("/api/products/{product_id}/inventory")
def product_inventory(product_id: str):
    return get_service().inventory.all_for_product(product_id)


@app.get("/api/inventory/summary")
def inventory_summary():
    return get_service().inventory.summary_by_store()


@app.get("/api/inventory/low-stock")
def low_stock(
    threshold: Optional[int] = Query(default=None, ge=0),
    store_id: Optional[str] = Query(default=None),
):
    return get_service().inventory.low_stock(threshold=threshold, store_id=store_id or None)


@app.get("/api/inventory/as-of")
def inventory_as_of(
    on: date = Query(..., alias="date"),
    store_id: Optional[str] = Query(default=None),
):
    return get_service().inventory.as_of(on, store_id=store_id or None)


@app.get("/api/inventory/reconcile")
def reconcile_inventory():
    mismatches = get_service().inventory.reconcile()
    return {"consistent": not mismatches, "mismatches": mismatches}


@app.post("/api/backup")
def create_backup():
    service = get_service()
    if not service.config.backup_enabled:
        raise ValidationError("Backups are disabled (BACKUP_ENABLED=false)")
    return {"backup": service.backup_service.create_backup()}
