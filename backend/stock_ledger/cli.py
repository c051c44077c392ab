# Overview: Flask CLI commands for ledger bootstrap and reconciliation.

# backend/stock_ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask ledger <command> [options]
#
# - python -m flask ledger init-main [--name "Ana Depo"]
#   Idempotent: create the MAIN warehouse if none exists.
# - python -m flask ledger check-main
#   Print the resolved canonical MAIN warehouse (exit code 1 if none).
# - python -m flask ledger recalc-lots [--chunk-size 200]
#   Set every lot's master quantity to the sum of its stock locations.
# - python -m flask ledger sync-main [--chunk-size 200] [--main-warehouse-id 1]
#   Backfill untracked lot quantity into the MAIN warehouse.
#   Stop stock-moving traffic first: this pass reads then writes.

import click
from flask.cli import with_appcontext

from .errors import MainWarehouseNotFound
from .extensions import db
from .models import Warehouse
from .models.inventory import WAREHOUSE_KIND_MAIN
from .services import reconciliation_service, warehouse_service
from .services.concurrency import commit_with_retry


@click.group('ledger')
def ledger_group():
    """Stock ledger bootstrap and reconciliation commands."""


@ledger_group.command('init-main')
@click.option('--name', default='Main Warehouse', show_default=True, help='Warehouse name')
@with_appcontext
def init_main(name):
    """Create the MAIN warehouse unless one already exists."""
    try:
        main_id = warehouse_service.resolve_main_warehouse_id()
    except MainWarehouseNotFound:
        main_id = None

    if main_id is not None:
        warehouse = db.session.get(Warehouse, main_id)
        click.echo(f"PASS Using existing MAIN warehouse: {warehouse.name} (ID: {warehouse.id})")
        return

    warehouse = warehouse_service.create_warehouse(name, WAREHOUSE_KIND_MAIN)
    commit_with_retry()
    warehouse_service.reset_main_warehouse_cache()
    click.echo(f"PASS Created MAIN warehouse: {warehouse.name} (ID: {warehouse.id})")


@ledger_group.command('check-main')
@with_appcontext
def check_main():
    """Show which warehouse is the canonical MAIN."""
    try:
        main_id = warehouse_service.get_main_warehouse_id()
    except MainWarehouseNotFound as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    warehouse = db.session.get(Warehouse, main_id)
    others = (
        db.session.query(Warehouse)
        .filter(Warehouse.kind == WAREHOUSE_KIND_MAIN, Warehouse.id != main_id)
        .count()
    )
    click.echo(f"PASS MAIN warehouse: {warehouse.name} (ID: {warehouse.id})")
    if others:
        click.echo(f"WARN  {others} other MAIN warehouse(s) exist and are ignored")


@ledger_group.command('recalc-lots')
@click.option('--chunk-size', type=int, default=None, help='Lots per batch (default: LEDGER_RECONCILE_CHUNK_SIZE)')
@with_appcontext
def recalc_lots(chunk_size):
    """Recompute lot master quantities from stock locations."""
    result = reconciliation_service.recalculate_lot_quantities(chunk_size)
    click.echo(f"PASS Scanned {result.scanned} lots, updated {result.updated}")


@ledger_group.command('sync-main')
@click.option('--chunk-size', type=int, default=None, help='Lots per batch (default: LEDGER_RECONCILE_CHUNK_SIZE)')
@click.option('--main-warehouse-id', type=int, default=None, help='Override the resolved MAIN warehouse')
@with_appcontext
def sync_main(chunk_size, main_warehouse_id):
    """Backfill untracked lot quantity into the MAIN warehouse."""
    try:
        if main_warehouse_id is not None:
            main_id = warehouse_service.resolve_main_warehouse_id(main_warehouse_id)
        else:
            main_id = warehouse_service.get_main_warehouse_id()
    except MainWarehouseNotFound as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    result = reconciliation_service.sync_main_warehouse_stock(main_id, chunk_size)
    click.echo(f"PASS Scanned {result.scanned} lots, backfilled {result.updated} into warehouse {main_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
