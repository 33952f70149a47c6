#!/usr/bin/env python3
"""
Procurement CLI entry point.

Usage examples:
  python main.py check                                  # Verify master data and database
  python main.py create order.json                      # Create a draft from a JSON file
  python main.py update 12 changes.json                 # Edit a draft
  python main.py send 12                                # draft -> sent
  python main.py receive 12 --store S1 --item 34:40     # Receive 40 units of item 34
  python main.py receive 12 --store S2 --product P1:60:100.00
  python main.py cancel 12 --reason "Supplier closed"
  python main.py list --status sent --range 30d --sort total_amount
  python main.py list --supplier "acme"                 # Fuzzy supplier name
  python main.py show 12                                # Order + receiving history
  python main.py inventory --store S1                   # Stock in one store
  python main.py inventory --summary
  python main.py inventory --low-stock --threshold 5
  python main.py inventory --as-of 2026-01-31
  python main.py reconcile                              # Projection vs. ledger
  python main.py backup
"""
import functools
import json
import logging
import sys
from decimal import Decimal
from pathlib import Path

import click
import pydantic

from config import Config
from models.purchase_order import PurchaseOrderInput, PurchaseOrderUpdate
from models.result import ReceivingLine
from procurement.errors import ProcurementError
from procurement.query import OrderFilter
from procurement.service import PurchaseOrderService


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )


def _service(ctx: click.Context) -> PurchaseOrderService:
    if "service" not in ctx.obj:
        config = Config()
        if ctx.obj.get("db_path"):
            config.db_path = Path(ctx.obj["db_path"])
        ctx.obj["service"] = PurchaseOrderService(config)
    return ctx.obj["service"]


def _handle_errors(fn):
    """Report business-rule failures and malformed input files as a one-line error and exit 1."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ProcurementError as exc:
            raise click.ClickException(exc.message) from exc
        except pydantic.ValidationError as exc:
            raise click.ClickException(_field_errors(exc)) from exc
    return wrapper


def _field_errors(exc: pydantic.ValidationError) -> str:
    problems = [
        f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
        for err in exc.errors()
    ]
    return "Invalid input: " + "; ".join(problems)


def _load_json(path: str) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"{path} is not valid JSON: {exc}") from exc


def _parse_line(text: str, by_product: bool) -> ReceivingLine:
    """Parse REF:QTY[:UNIT_COST] where REF is an item id or a product id."""
    parts = text.split(":")
    if len(parts) not in (2, 3):
        raise click.BadParameter(f"expected REF:QTY[:UNIT_COST], got {text!r}")
    ref, qty = parts[0], parts[1]
    try:
        quantity = int(qty)
        unit_cost = Decimal(parts[2]) if len(parts) == 3 else None
        item_id = None if by_product else int(ref)
    except (ValueError, ArithmeticError):
        raise click.BadParameter(f"cannot parse {text!r}")
    return ReceivingLine(
        item_id=item_id,
        product_id=ref if by_product else None,
        quantity=quantity,
        unit_cost=unit_cost,
    )


def _echo_order(order) -> None:
    click.echo(f"\n  {order.po_number}  [{order.status}]  id={order.id}")
    click.echo(f"  Supplier:   {order.supplier_name or order.supplier_id}")
    click.echo(f"  Ordered:    {order.order_date}   Expected: {order.expected_delivery_date or '-'}")
    if order.notes:
        click.echo(f"  Notes:      {order.notes}")
    click.echo()
    click.echo(f"  {'#':>3}  {'Item':>5}  {'Product':<24} {'Qty':>6} {'Recv':>6} {'Unit (incl)':>12} {'Tax':>6}")
    for item in order.items:
        name = (item.product_name or item.product_id)[:24]
        click.echo(
            f"  {item.line_number or '':>3}  {item.id or '':>5}  {name:<24} "
            f"{item.quantity:>6} {item.received_quantity:>6} {item.unit_price:>12} {item.tax_class:>6}"
        )
    click.echo()
    click.echo(f"  Subtotal: {order.subtotal:>12}")
    click.echo(f"  Tax:      {order.tax_amount:>12}")
    click.echo(f"  Total:    {order.total_amount:>12}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--db", "db_path", default=None, type=click.Path(), help="Path to the SQLite database")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, db_path: str | None) -> None:
    """Procurement: purchase orders, receiving and store inventory."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["db_path"] = db_path
    _setup_logging(verbose)


# --------------------------------------------------------------------
# check command
# --------------------------------------------------------------------

@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Verify that master data is present and the database opens."""
    status = _service(ctx).check_setup()

    click.echo("\n=== Procurement Setup Check ===\n")
    for key, label in [("suppliers", "suppliers.csv"), ("products", "products.csv"), ("stores", "stores.csv")]:
        info = status["master_data"][key]
        tick = "✓" if info["exists"] else "✗"
        count_str = f" ({status['loaded'][key]} loaded)" if info["exists"] else " (file not found)"
        click.echo(f"  {label:<28} {tick}{count_str}")

    click.echo()
    click.echo(f"  Database:                     ✓  {status['db_path']}")
    click.echo(f"  {'Last backup:':<30}   {status['last_backup'] or 'never'}")
    if not status["loaded"]["stores"]:
        click.echo("  → No stores loaded: receiving will fail until stores.csv is provided")
    click.echo()


# --------------------------------------------------------------------
# order lifecycle commands
# --------------------------------------------------------------------

@cli.command()
@click.argument("order_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--actor", default="system", help="User recorded in the audit log")
@click.pass_context
@_handle_errors
def create(ctx: click.Context, order_file: str, actor: str) -> None:
    """Create a draft purchase order from a JSON file."""
    data = PurchaseOrderInput.model_validate(_load_json(order_file))
    order = _service(ctx).create_purchase_order(data, actor=actor)
    click.echo(f"✓ Created {order.po_number} (id={order.id}), total {order.total_amount}")


@cli.command()
@click.argument("order_id", type=int)
@click.argument("changes_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--actor", default="system", help="User recorded in the audit log")
@click.pass_context
@_handle_errors
def update(ctx: click.Context, order_id: int, changes_file: str, actor: str) -> None:
    """Edit a draft purchase order from a JSON file of changed fields."""
    changes = PurchaseOrderUpdate.model_validate(_load_json(changes_file))
    order = _service(ctx).update_purchase_order(order_id, changes, actor=actor)
    click.echo(f"✓ Updated {order.po_number}, total {order.total_amount}")


@cli.command()
@click.argument("order_id", type=int)
@click.option("--actor", default="system", help="User recorded in the audit log")
@click.pass_context
@_handle_errors
def send(ctx: click.Context, order_id: int, actor: str) -> None:
    """Mark a draft purchase order as sent to the supplier."""
    order = _service(ctx).send_purchase_order(order_id, actor=actor)
    click.echo(f"✓ {order.po_number} is now {order.status}")


@cli.command()
@click.argument("order_id", type=int)
@click.option("--reason", default=None, help="Why the order is cancelled")
@click.option("--actor", default="system", help="User recorded in the audit log")
@click.pass_context
@_handle_errors
def cancel(ctx: click.Context, order_id: int, reason: str | None, actor: str) -> None:
    """Cancel a purchase order. Posted receipts are kept."""
    order = _service(ctx).cancel_purchase_order(order_id, actor=actor, reason=reason)
    click.echo(f"✓ {order.po_number} is now {order.status}")


@cli.command()
@click.argument("order_id", type=int)
@click.option("--store", "store_id", required=True, help="Destination store id")
@click.option("--item", "item_specs", multiple=True, help="ITEM_ID:QTY[:UNIT_COST] (repeatable)")
@click.option("--product", "product_specs", multiple=True, help="PRODUCT_ID:QTY[:UNIT_COST] (repeatable)")
@click.option("--notes", default=None, help="Notes stored on each receipt")
@click.option("--reference", default=None, help="Receiving reference; reusing one is a no-op")
@click.option("--actor", default="system", help="User recorded on the receipts")
@click.pass_context
@_handle_errors
def receive(
    ctx: click.Context,
    order_id: int,
    store_id: str,
    item_specs: tuple[str, ...],
    product_specs: tuple[str, ...],
    notes: str | None,
    reference: str | None,
    actor: str,
) -> None:
    """
    Receive goods against a purchase order into one store.

    Unit costs are tax-exclusive; when omitted the order line's
    tax-exclusive price is used.
    """
    lines = [_parse_line(s, by_product=False) for s in item_specs]
    lines += [_parse_line(s, by_product=True) for s in product_specs]
    if not lines:
        raise click.UsageError("Give at least one --item or --product")

    result = _service(ctx).receive_items(
        order_id, store_id, lines, notes=notes, actor=actor, reference=reference
    )
    if result.replayed:
        click.echo(f"Reference {result.reference} was already received; nothing written.")
    for r in result.receipts:
        click.echo(
            f"  + {r.quantity:>6} x {(r.product_name or r.product_id):<24} @ {r.unit_cost:>10}"
            f" = {r.total_cost:>12}  → {r.store_name or r.store_id}"
        )
    click.echo(f"✓ {result.po_number} is now {result.status} (reference {result.reference})")


# --------------------------------------------------------------------
# read commands
# --------------------------------------------------------------------

@cli.command("list")
@click.option("--status", default=None, help="draft | sent | partially_received | received | cancelled")
@click.option("--search", default=None, help="Text in PO number, supplier name or notes")
@click.option("--supplier", default=None, help="Supplier id or name (fuzzy matched)")
@click.option(
    "--range", "date_range", default="all",
    type=click.Choice(["all", "today", "7d", "30d", "90d", "custom"]),
)
@click.option("--from", "start_date", default=None, type=click.DateTime(formats=["%Y-%m-%d"]))
@click.option("--to", "end_date", default=None, type=click.DateTime(formats=["%Y-%m-%d"]))
@click.option(
    "--sort", "sort_by", default="order_date",
    type=click.Choice(["order_date", "po_number", "total_amount"]),
)
@click.option("--asc", is_flag=True, help="Sort ascending (default descending)")
@click.pass_context
@_handle_errors
def list_orders(
    ctx: click.Context,
    status: str | None,
    search: str | None,
    supplier: str | None,
    date_range: str,
    start_date,
    end_date,
    sort_by: str,
    asc: bool,
) -> None:
    """List purchase orders."""
    service = _service(ctx)
    supplier_id = None
    if supplier:
        match = service.directory.find_supplier(supplier)
        if match is None:
            raise click.ClickException(f"No supplier matches {supplier!r}")
        supplier_id = match.id

    if start_date or end_date:
        date_range = "custom"
    criteria = OrderFilter(
        status=status,
        search=search,
        supplier_id=supplier_id,
        date_range=date_range,
        start_date=start_date.date() if start_date else None,
        end_date=end_date.date() if end_date else None,
        sort_by=sort_by,
        sort_order="asc" if asc else "desc",
    )
    orders = service.list_purchase_orders(criteria)
    counts = service.get_status_counts()

    click.echo("  " + "  ".join(f"{k}={v}" for k, v in counts.items()))
    click.echo()
    for o in orders:
        click.echo(
            f"  {o.po_number:<18} {o.order_date}  {o.status:<19} "
            f"{(o.supplier_name or o.supplier_id)[:28]:<28} {o.total_amount:>12}"
        )
    click.echo(f"\n  {len(orders)} order(s)")


@cli.command()
@click.argument("order_id", type=int)
@click.option("--audit", is_flag=True, help="Also print the audit trail")
@click.pass_context
@_handle_errors
def show(ctx: click.Context, order_id: int, audit: bool) -> None:
    """Show a purchase order with its receiving history."""
    service = _service(ctx)
    view = service.get_purchase_order_with_receipts(order_id)
    _echo_order(view.order)

    if view.receipts:
        click.echo("\n  Receipts:")
        for r in view.receipts:
            click.echo(
                f"  {r.received_at[:19]}  {r.reference:<16} {(r.store_name or r.store_id):<16} "
                f"{(r.product_name or r.product_id)[:24]:<24} {r.quantity:>6} @ {r.unit_cost}"
            )

    if audit:
        click.echo("\n  Audit:")
        for entry in service.get_audit_log(order_id):
            click.echo(f"  {entry['timestamp'][:19]}  {entry['action']:<10} {entry['actor']}")
    click.echo()


@cli.command()
@click.option("--store", "store_id", default=None, help="Only this store")
@click.option("--product", "product_id", default=None, help="Only this product, across stores")
@click.option("--summary", is_flag=True, help="Per-store totals")
@click.option("--low-stock", is_flag=True, help="Rows at or below the low-stock threshold")
@click.option("--threshold", default=None, type=int, help="Override the low-stock threshold")
@click.option("--as-of", "as_of", default=None, type=click.DateTime(formats=["%Y-%m-%d"]))
@click.pass_context
@_handle_errors
def inventory(
    ctx: click.Context,
    store_id: str | None,
    product_id: str | None,
    summary: bool,
    low_stock: bool,
    threshold: int | None,
    as_of,
) -> None:
    """Show store inventory."""
    projection = _service(ctx).inventory

    if summary:
        for s in projection.summary_by_store():
            click.echo(
                f"  {(s.store_name or s.store_id):<24} products={s.total_products:<5} "
                f"items={s.total_items:<8} value={s.total_inventory_value}"
            )
        return

    if as_of:
        for level in projection.as_of(as_of.date(), store_id=store_id):
            click.echo(
                f"  {(level.store_name or level.store_id):<24} "
                f"{(level.product_name or level.product_id):<28} {level.quantity:>8}"
            )
        return

    if low_stock:
        rows = projection.low_stock(threshold=threshold, store_id=store_id)
    elif product_id:
        rows = projection.all_for_product(product_id)
    elif store_id:
        rows = projection.all_for_store(store_id)
    else:
        raise click.UsageError("Give --store, --product, --summary, --low-stock or --as-of")

    for row in rows:
        click.echo(
            f"  {(row.store_name or row.store_id):<24} {(row.product_name or row.product_id):<28} "
            f"{row.quantity:>8} @ {row.unit_cost:>10} = {row.inventory_value:>12}"
        )


@cli.command()
@click.pass_context
def reconcile(ctx: click.Context) -> None:
    """Check store inventory and received quantities against the receipt ledger."""
    mismatches = _service(ctx).inventory.reconcile()
    if not mismatches:
        click.echo("✓ Store inventory and order items match the receipt ledger")
        return
    for m in mismatches:
        where = f"store {m.store_id}" if m.kind == "store_inventory" else f"item {m.purchase_order_item_id}"
        click.echo(
            f"  ✗ {m.kind:<16} {where:<16} product {m.product_id}: "
            f"ledger={m.ledger_quantity} recorded={m.recorded_quantity}"
        )
    sys.exit(1)


# --------------------------------------------------------------------
# backup command
# --------------------------------------------------------------------

@cli.command()
@click.pass_context
def backup(ctx: click.Context) -> None:
    """
    Create a timestamped backup of the database, settings and master data.
    """
    service = _service(ctx)
    zip_name = service.backup_service.create_backup()
    click.echo(f"✓ Backup written: {service.backup_service.backup_dir / zip_name}")


if __name__ == "__main__":
    cli()
