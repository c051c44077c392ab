# Overview: Staff-facing stock edits (lot quantity, warehouse stock, bulk import) and stock summaries.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy.exc import IntegrityError

from ..errors import (
    InvalidOperation,
    LotNotFound,
    ProductNotFound,
    StockLocationNotFound,
)
from ..extensions import db
from ..models import Lot, Product, StockLocation, Warehouse
from ..models.audit import ACTION_CSV_IMPORT, ACTION_MANUAL_ADJUSTMENT, ACTION_WAREHOUSE_STOCK_EDIT
from ..models.inventory import WAREHOUSE_KIND_CUSTOMER, WAREHOUSE_KIND_EMPLOYEE, WAREHOUSE_KIND_MAIN
from ..time_utils import parse_expiry_date
from .audit_service import record_log
from .concurrency import lock_for_update, run_with_retry
from .import_schemas import ImportRow
from .ledger_service import (
    Movement,
    adjust,
    apply_movements,
    delete_location_if_empty,
    ensure_location,
    find_location,
    get_location_quantity,
)
from .warehouse_service import get_warehouse

STOCK_EDIT_SET = "set"
STOCK_EDIT_ADD = "add"
STOCK_EDIT_REMOVE = "remove"
STOCK_EDIT_MODES = (STOCK_EDIT_SET, STOCK_EDIT_ADD, STOCK_EDIT_REMOVE)


@dataclass
class StockEditResult:
    warehouse_id: int
    lot_id: int
    quantity: int
    delta: int
    deleted: bool
    location: StockLocation | None = None

    def to_dict(self) -> dict:
        payload = {
            "warehouse_id": self.warehouse_id,
            "lot_id": self.lot_id,
            "quantity": self.quantity,
            "delta": self.delta,
            "deleted": self.deleted,
        }
        if self.location is not None and not self.deleted:
            payload["location"] = self.location.to_dict()
        return payload


def _get_lot(lot_id: int, *, for_update: bool = False) -> Lot:
    query = db.session.query(Lot).filter_by(id=lot_id)
    if for_update:
        query = lock_for_update(query)
    lot = query.first()
    if lot is None:
        raise LotNotFound(lot_id)
    return lot


def _check_lot_number_free(product_id: int, lot_number: str, exclude_lot_id: int | None = None) -> None:
    query = db.session.query(Lot.id).filter(Lot.product_id == product_id, Lot.lot_number == lot_number)
    if exclude_lot_id is not None:
        query = query.filter(Lot.id != exclude_lot_id)
    if query.first() is not None:
        raise InvalidOperation(f"Lot number {lot_number!r} already exists for product {product_id}")


# =============================================================================
# Lot master quantity
# =============================================================================

def set_lot_quantity(
    lot_id: int,
    quantity: int,
    *,
    main_warehouse_id: int,
    user_id: int | None = None,
    lot_number: str | None = None,
) -> Lot:
    """
    Staff sets a lot's quantity.

    The MAIN location is moved to `quantity` (through adjust, so it cannot go
    negative) and the master quantity follows. When all of the lot's stock
    lives in MAIN the lot stays reconciled; stock held elsewhere is left for
    the reconciliation job.

    Optionally renames the lot.
    """
    def _op():
        if quantity is None or quantity < 0:
            raise InvalidOperation("Quantity cannot be negative")
        lot = _get_lot(lot_id, for_update=True)
        get_warehouse(main_warehouse_id)

        if lot_number is not None:
            new_number = lot_number.strip()
            if not new_number:
                raise InvalidOperation("Lot number is required")
            if new_number != lot.lot_number:
                _check_lot_number_free(lot.product_id, new_number, exclude_lot_id=lot.id)
                lot.lot_number = new_number

        delta = quantity - get_location_quantity(main_warehouse_id, lot.id)
        adjust(main_warehouse_id, lot.id, delta)

        lot.quantity = quantity
        db.session.flush()

        record_log(
            ACTION_MANUAL_ADJUSTMENT,
            f"Lot {lot.lot_number} quantity set to {quantity}",
            user_id=user_id,
            product_id=lot.product_id,
            lot_id=lot.id,
            warehouse_id=main_warehouse_id,
        )
        return lot

    return run_with_retry(_op)


def create_lot(
    product_id: int,
    lot_number: str,
    quantity: int,
    *,
    main_warehouse_id: int,
    user_id: int | None = None,
    barcode: str | None = None,
    expiry_date=None,
) -> Lot:
    """Create a lot under a product and place its initial quantity in the main warehouse."""
    def _op():
        product = db.session.get(Product, product_id)
        if product is None:
            raise ProductNotFound(product_id)
        number = (lot_number or "").strip()
        if not number:
            raise InvalidOperation("Lot number is required")
        if quantity is None or quantity < 0:
            raise InvalidOperation("Quantity cannot be negative")
        get_warehouse(main_warehouse_id)
        _check_lot_number_free(product.id, number)

        lot = Lot(
            product_id=product.id,
            lot_number=number,
            barcode=(barcode or "").strip() or None,
            expiry_date=parse_expiry_date(expiry_date),
            quantity=quantity,
        )
        try:
            with db.session.begin_nested():
                db.session.add(lot)
                db.session.flush()
        except IntegrityError:
            raise InvalidOperation(f"Lot number {number!r} already exists for product {product.id}")

        ensure_location(main_warehouse_id, lot.id)
        adjust(main_warehouse_id, lot.id, quantity)

        record_log(
            ACTION_MANUAL_ADJUSTMENT,
            f"Lot {lot.lot_number} created with {quantity} units in the main warehouse",
            user_id=user_id,
            product_id=product.id,
            lot_id=lot.id,
            warehouse_id=main_warehouse_id,
        )
        return lot

    return run_with_retry(_op)


# =============================================================================
# Warehouse-scoped stock
# =============================================================================

def edit_warehouse_stock(
    warehouse_id: int,
    lot_id: int,
    quantity: int,
    *,
    mode: str = STOCK_EDIT_SET,
    main_warehouse_id: int,
    user_id: int | None = None,
) -> StockEditResult:
    """
    Set, add to or remove from a non-MAIN location.

    Stock outside MAIN comes from MAIN, so the target change is mirrored on the
    main location with the opposite sign. Both sides are applied together; a
    shortfall on either side changes nothing. A location that ends at 0 is
    deleted.
    """
    def _op():
        if mode not in STOCK_EDIT_MODES:
            raise InvalidOperation(f"Unknown stock edit mode: {mode}")
        if quantity is None or quantity < 0:
            raise InvalidOperation("Quantity cannot be negative")
        warehouse = get_warehouse(warehouse_id)
        if warehouse.id == main_warehouse_id:
            raise InvalidOperation("Main warehouse stock is edited through the lot quantity")
        get_warehouse(main_warehouse_id)
        lot = _get_lot(lot_id)

        current = get_location_quantity(warehouse.id, lot.id)
        if mode == STOCK_EDIT_ADD:
            delta = quantity
        elif mode == STOCK_EDIT_REMOVE:
            delta = -quantity
        else:
            delta = quantity - current

        # Debits first so a shortfall is found before anything is credited
        if delta > 0:
            steps = [Movement(main_warehouse_id, lot.id, -delta), Movement(warehouse.id, lot.id, delta)]
        else:
            steps = [Movement(warehouse.id, lot.id, delta), Movement(main_warehouse_id, lot.id, -delta)]
        apply_movements(steps)

        location = find_location(warehouse.id, lot.id)
        new_quantity = location.quantity if location is not None else 0
        deleted = False
        if location is not None and new_quantity == 0:
            deleted = delete_location_if_empty(location)

        record_log(
            ACTION_WAREHOUSE_STOCK_EDIT,
            f"Lot {lot.lot_number} in warehouse {warehouse.name}: {mode} {quantity} "
            f"({current} -> {new_quantity})",
            user_id=user_id,
            product_id=lot.product_id,
            lot_id=lot.id,
            warehouse_id=warehouse.id,
        )
        return StockEditResult(
            warehouse_id=warehouse.id,
            lot_id=lot.id,
            quantity=new_quantity,
            delta=delta,
            deleted=deleted,
            location=None if deleted else location,
        )

    return run_with_retry(_op)


def find_location_by_id(location_id: int) -> StockLocation | None:
    return db.session.get(StockLocation, location_id)


def delete_stock_location(location_id: int, *, main_warehouse_id: int, user_id: int | None = None) -> StockLocation:
    """Remove a non-MAIN location, returning whatever it holds to MAIN first."""
    def _op():
        location = lock_for_update(db.session.query(StockLocation).filter_by(id=location_id)).first()
        if location is None:
            raise StockLocationNotFound(location_id)
        if location.warehouse_id == main_warehouse_id:
            raise InvalidOperation("Main warehouse locations cannot be deleted")
        get_warehouse(main_warehouse_id)

        returned = location.quantity
        apply_movements([
            Movement(location.warehouse_id, location.lot_id, -returned),
            Movement(main_warehouse_id, location.lot_id, returned),
        ])
        delete_location_if_empty(location)

        record_log(
            ACTION_WAREHOUSE_STOCK_EDIT,
            f"Stock location {location.id} removed; {returned} units returned to the main warehouse",
            user_id=user_id,
            lot_id=location.lot_id,
            warehouse_id=location.warehouse_id,
        )
        return location

    return run_with_retry(_op)


# =============================================================================
# Bulk import
# =============================================================================

def _upsert_product(row: ImportRow) -> Product:
    product = db.session.query(Product).filter_by(reference_code=row.reference_code).first()
    if product is None:
        product = Product(reference_code=row.reference_code, name=row.name or row.reference_code)
        db.session.add(product)
    elif row.name:
        product.name = row.name
    if row.brand is not None:
        product.brand = row.brand
    if row.category is not None:
        product.category = row.category
    if row.sale_price_cents is not None:
        product.sale_price_cents = row.sale_price_cents
    if row.critical_stock_level is not None:
        product.critical_stock_level = row.critical_stock_level
    product.is_active = row.is_active
    db.session.flush()
    return product


def _upsert_lot(product: Product, row: ImportRow) -> Lot:
    lot = db.session.query(Lot).filter_by(product_id=product.id, lot_number=row.lot_number).first()
    if lot is None:
        lot = Lot(product_id=product.id, lot_number=row.lot_number)
        db.session.add(lot)
    if row.barcode is not None:
        lot.barcode = row.barcode
    if row.expiry_date is not None:
        lot.expiry_date = row.expiry_date
    lot.quantity = row.quantity
    db.session.flush()
    return lot


def import_stock_rows(rows: Iterable, *, warehouse_id: int, user_id: int | None = None) -> int:
    """
    Apply normalized import rows to one warehouse.

    For each row: upsert product by reference code, upsert lot by
    (product, lot number), set the lot master quantity, then move the
    destination location to the row quantity through adjust(). No MAIN
    compensation: an import is an initial stocking event. Returns the number
    of rows applied.

    Rows may be ImportRow instances or dicts accepted by ImportRow.from_mapping.
    """
    def _op():
        warehouse = get_warehouse(warehouse_id)
        parsed = [row if isinstance(row, ImportRow) else ImportRow.from_mapping(row) for row in rows]

        applied = 0
        for row in parsed:
            product = _upsert_product(row)
            lot = _upsert_lot(product, row)

            current = get_location_quantity(warehouse.id, lot.id)
            adjust(warehouse.id, lot.id, row.quantity - current)

            record_log(
                ACTION_CSV_IMPORT,
                f"Import: {row.quantity} units of {product.reference_code} lot {lot.lot_number}",
                user_id=user_id,
                product_id=product.id,
                lot_id=lot.id,
                warehouse_id=warehouse.id,
            )
            applied += 1
        return applied

    return run_with_retry(_op)


# =============================================================================
# Summaries
# =============================================================================

def summarize_lot(lot: Lot) -> dict:
    """
    Per-lot stock picture.

    tracked = sum over all locations; on_hand = MAIN + EMPLOYEE; customer = CUSTOMER.
    """
    rows = (
        db.session.query(StockLocation, Warehouse)
        .join(Warehouse, StockLocation.warehouse_id == Warehouse.id)
        .filter(StockLocation.lot_id == lot.id)
        .order_by(StockLocation.id.asc())
        .all()
    )
    by_kind: dict[str, int] = {}
    locations = []
    for location, warehouse in rows:
        by_kind[warehouse.kind] = by_kind.get(warehouse.kind, 0) + location.quantity
        locations.append({
            "id": location.id,
            "quantity": location.quantity,
            "warehouse": {"id": warehouse.id, "name": warehouse.name, "kind": warehouse.kind},
        })

    payload = lot.to_dict()
    payload.update({
        "tracked_quantity": sum(by_kind.values()),
        "on_hand_quantity": by_kind.get(WAREHOUSE_KIND_MAIN, 0) + by_kind.get(WAREHOUSE_KIND_EMPLOYEE, 0),
        "customer_quantity": by_kind.get(WAREHOUSE_KIND_CUSTOMER, 0),
        "stock_locations": locations,
    })
    return payload


def summarize_product(product_id: int) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)

    lots = (
        db.session.query(Lot)
        .filter(Lot.product_id == product.id)
        .order_by(Lot.created_at.desc(), Lot.id.desc())
        .all()
    )
    lot_summaries = [summarize_lot(lot) for lot in lots]

    payload = product.to_dict()
    payload.update({
        "on_hand_quantity": sum(s["on_hand_quantity"] for s in lot_summaries),
        "customer_quantity": sum(s["customer_quantity"] for s in lot_summaries),
        "tracked_quantity": sum(s["tracked_quantity"] for s in lot_summaries),
        "lots": lot_summaries,
    })
    return payload
