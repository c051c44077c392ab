# Overview: Ledger engine; the single choke point for stock location quantities.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientStock
from ..extensions import db
from ..models import StockLocation
from ..time_utils import utcnow
"""
Stock Ledger Invariants (authoritative)

- StockLocation(warehouse_id, lot_id) is unique and quantity >= 0; both are
  database constraints, not just application checks.
- adjust() is the only code path that writes StockLocation.quantity.
- adjust() is one conditional UPDATE (quantity + delta >= 0 in the WHERE clause),
  so concurrent writers on the same row cannot lose updates or go negative.
- Multi-location operations go through apply_movements(), which applies every
  step inside one SAVEPOINT: all steps land or none do.
- Nothing here commits and nothing here logs; callers own both.
- InsufficientStock is never caught in this module.
"""


@dataclass(frozen=True)
class Movement:
    """One signed quantity change at one (warehouse, lot) location."""
    warehouse_id: int
    lot_id: int
    delta: int


def _location_query(warehouse_id: int, lot_id: int):
    return db.session.query(StockLocation).filter_by(warehouse_id=warehouse_id, lot_id=lot_id)


def find_location(warehouse_id: int, lot_id: int) -> StockLocation | None:
    return _location_query(warehouse_id, lot_id).first()


def get_location_quantity(warehouse_id: int, lot_id: int) -> int:
    """Current quantity at a location; 0 when the row does not exist."""
    qty = (
        db.session.query(StockLocation.quantity)
        .filter_by(warehouse_id=warehouse_id, lot_id=lot_id)
        .scalar()
    )
    return int(qty or 0)


def get_lot_tracked_quantity(lot_id: int) -> int:
    """SUM of the lot's quantities across every warehouse."""
    total = (
        db.session.query(func.coalesce(func.sum(StockLocation.quantity), 0))
        .filter(StockLocation.lot_id == lot_id)
        .scalar()
    )
    return int(total or 0)


def ensure_location(warehouse_id: int, lot_id: int) -> StockLocation:
    """
    Return the (warehouse, lot) row, creating it with quantity 0 if absent.

    Idempotent. The insert runs in a SAVEPOINT so that losing a creation race
    against another writer (unique constraint) only discards our insert, and
    we re-read the winner's row.
    """
    location = find_location(warehouse_id, lot_id)
    if location is not None:
        return location

    try:
        with db.session.begin_nested():
            location = StockLocation(warehouse_id=warehouse_id, lot_id=lot_id, quantity=0)
            db.session.add(location)
            db.session.flush()
    except IntegrityError:
        location = find_location(warehouse_id, lot_id)
        if location is None:
            raise
    return location


def adjust(warehouse_id: int, lot_id: int, delta: int) -> StockLocation:
    """
    Apply a signed quantity change to one location and return the updated row.

    Raises:
        InsufficientStock: the result would be negative. Nothing is written,
            including a location row created for this call.
    """
    with db.session.begin_nested():
        location = ensure_location(warehouse_id, lot_id)
        if delta == 0:
            return location

        stmt = (
            update(StockLocation)
            .where(
                StockLocation.id == location.id,
                StockLocation.quantity + delta >= 0,
            )
            .values(quantity=StockLocation.quantity + delta, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)

        db.session.refresh(location)
        if not result.rowcount:
            raise InsufficientStock(
                warehouse_id=warehouse_id,
                lot_id=lot_id,
                available=int(location.quantity),
                requested=-delta,
            )
    return location


def apply_movements(movements: Iterable[Movement]) -> list[StockLocation]:
    """
    Apply several movements as one unit, in order.

    Runs inside a SAVEPOINT: if step k fails, steps 1..k-1 are rolled back with
    it and the error propagates unchanged.
    """
    steps = [m for m in movements if m.delta != 0]
    applied: list[StockLocation] = []
    with db.session.begin_nested():
        for step in steps:
            applied.append(adjust(step.warehouse_id, step.lot_id, step.delta))

    for location in applied:
        db.session.refresh(location)
    return applied


def check_movements(movements: Iterable[Movement]) -> int | None:
    """
    Dry-run sufficiency check.

    Returns the index of the first movement that would drive its location
    negative (accounting for earlier movements on the same location), or None
    when every step fits. Does not write.
    """
    running: dict[tuple[int, int], int] = {}
    for index, step in enumerate(movements):
        key = (step.warehouse_id, step.lot_id)
        if key not in running:
            running[key] = get_location_quantity(step.warehouse_id, step.lot_id)
        running[key] += step.delta
        if running[key] < 0:
            return index
    return None


def delete_location_if_empty(location: StockLocation) -> bool:
    """Delete a location row whose quantity is 0. Returns True when deleted."""
    db.session.refresh(location)
    if location.quantity != 0:
        return False
    db.session.delete(location)
    db.session.flush()
    return True
