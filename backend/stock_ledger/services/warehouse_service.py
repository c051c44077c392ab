# Overview: Warehouse and customer lifecycle, and the canonical MAIN warehouse.

from __future__ import annotations

from flask import current_app

from ..errors import CustomerNotFound, InvalidOperation, MainWarehouseNotFound, WarehouseNotFound
from ..extensions import db
from ..models import Customer, StockLocation, Transfer, Warehouse
from ..models.inventory import WAREHOUSE_KIND_CUSTOMER, WAREHOUSE_KIND_MAIN, WAREHOUSE_KINDS
from .concurrency import lock_for_update, run_with_retry

_MAIN_WAREHOUSE_CACHE_KEY = "stock_ledger.main_warehouse_id"


def get_warehouse(warehouse_id: int) -> Warehouse:
    warehouse = db.session.get(Warehouse, warehouse_id)
    if warehouse is None:
        raise WarehouseNotFound(warehouse_id)
    return warehouse


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise CustomerNotFound(customer_id)
    return customer


def resolve_main_warehouse_id(explicit_id: int | None = None) -> int:
    """
    Resolve the canonical MAIN warehouse.

    - explicit_id given: must exist and be of kind MAIN.
    - otherwise: the oldest MAIN warehouse (created_at, then id).

    Raises:
        MainWarehouseNotFound: nothing usable exists.
    """
    if explicit_id is not None:
        warehouse = db.session.get(Warehouse, explicit_id)
        if warehouse is None or warehouse.kind != WAREHOUSE_KIND_MAIN:
            raise MainWarehouseNotFound(f"Configured main warehouse {explicit_id} is missing or not MAIN")
        return warehouse.id

    warehouse_id = (
        db.session.query(Warehouse.id)
        .filter_by(kind=WAREHOUSE_KIND_MAIN)
        .order_by(Warehouse.created_at.asc(), Warehouse.id.asc())
        .limit(1)
        .scalar()
    )
    if warehouse_id is None:
        raise MainWarehouseNotFound()
    return warehouse_id


def get_main_warehouse_id() -> int:
    """
    Main warehouse id for the running application, resolved once and cached.

    Honors the MAIN_WAREHOUSE_ID setting when present.
    """
    cached = current_app.extensions.get(_MAIN_WAREHOUSE_CACHE_KEY)
    if cached is not None:
        return cached
    main_id = resolve_main_warehouse_id(current_app.config.get("MAIN_WAREHOUSE_ID"))
    current_app.extensions[_MAIN_WAREHOUSE_CACHE_KEY] = main_id
    return main_id


def reset_main_warehouse_cache() -> None:
    current_app.extensions.pop(_MAIN_WAREHOUSE_CACHE_KEY, None)


def create_warehouse(name: str, kind: str = WAREHOUSE_KIND_MAIN, customer_id: int | None = None) -> Warehouse:
    """Create a warehouse; optionally attach it to an existing customer."""
    def _op():
        if not name or not name.strip():
            raise InvalidOperation("Warehouse name is required")
        if kind not in WAREHOUSE_KINDS:
            raise InvalidOperation(f"Unknown warehouse kind: {kind}")

        customer = get_customer(customer_id) if customer_id is not None else None

        warehouse = Warehouse(name=name.strip(), kind=kind)
        db.session.add(warehouse)
        db.session.flush()

        if customer is not None:
            customer.warehouse_id = warehouse.id
            db.session.flush()
        return warehouse

    return run_with_retry(_op)


def update_warehouse(warehouse_id: int, *, name: str | None = None, kind: str | None = None) -> Warehouse:
    def _op():
        warehouse = lock_for_update(db.session.query(Warehouse).filter_by(id=warehouse_id)).first()
        if warehouse is None:
            raise WarehouseNotFound(warehouse_id)
        if name is None and kind is None:
            raise InvalidOperation("At least one field must be updated")

        if name is not None:
            if not name.strip():
                raise InvalidOperation("Warehouse name is required")
            warehouse.name = name.strip()
        if kind is not None:
            if kind not in WAREHOUSE_KINDS:
                raise InvalidOperation(f"Unknown warehouse kind: {kind}")
            warehouse.kind = kind
        db.session.flush()
        return warehouse

    return run_with_retry(_op)


def delete_warehouse(warehouse_id: int, *, main_warehouse_id: int | None = None) -> Warehouse:
    """
    Delete a warehouse without touching anyone's stock.

    Customer references are cleared first. Deletion is refused while any of its
    locations holds stock, while transfers reference it, or when it is the
    canonical main warehouse. Empty location rows are removed with it.
    """
    def _op():
        warehouse = lock_for_update(db.session.query(Warehouse).filter_by(id=warehouse_id)).first()
        if warehouse is None:
            raise WarehouseNotFound(warehouse_id)
        if main_warehouse_id is not None and warehouse.id == main_warehouse_id:
            raise InvalidOperation("The main warehouse cannot be deleted")

        held = (
            db.session.query(StockLocation)
            .filter(StockLocation.warehouse_id == warehouse.id, StockLocation.quantity > 0)
            .count()
        )
        if held:
            raise InvalidOperation(f"Warehouse {warehouse.id} still holds stock in {held} location(s)")

        has_transfers = (
            db.session.query(Transfer.id)
            .filter((Transfer.from_warehouse_id == warehouse.id) | (Transfer.to_warehouse_id == warehouse.id))
            .first()
        )
        if has_transfers:
            raise InvalidOperation(f"Warehouse {warehouse.id} has transfer history")

        db.session.query(Customer).filter_by(warehouse_id=warehouse.id).update(
            {Customer.warehouse_id: None}, synchronize_session="fetch"
        )
        db.session.query(StockLocation).filter_by(warehouse_id=warehouse.id, quantity=0).delete(
            synchronize_session="fetch"
        )
        db.session.delete(warehouse)
        db.session.flush()
        return warehouse

    return run_with_retry(_op)


def create_customer(
    name: str,
    *,
    email: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    tax_office: str | None = None,
    tax_number: str | None = None,
) -> Customer:
    """Create a customer together with its CUSTOMER warehouse."""
    def _op():
        if not name or not name.strip():
            raise InvalidOperation("Customer name is required")

        warehouse = Warehouse(name=name.strip(), kind=WAREHOUSE_KIND_CUSTOMER)
        db.session.add(warehouse)
        db.session.flush()

        customer = Customer(
            name=name.strip(),
            email=email,
            phone=phone,
            address=address,
            tax_office=tax_office,
            tax_number=tax_number,
            warehouse_id=warehouse.id,
        )
        db.session.add(customer)
        db.session.flush()
        return customer

    return run_with_retry(_op)
