# Overview: Batch passes restoring lot master quantities against stock locations.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Lot, StockLocation
from ..models.audit import ACTION_RECONCILIATION
from .audit_service import record_log
from .concurrency import commit_with_retry
from .ledger_service import adjust
from .warehouse_service import get_warehouse


@dataclass
class ReconciliationResult:
    scanned: int = 0
    updated: int = 0
    lot_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"scanned": self.scanned, "updated": self.updated, "lot_ids": list(self.lot_ids)}


def _chunk_size(chunk_size: int | None) -> int:
    size = chunk_size or current_app.config.get("LEDGER_RECONCILE_CHUNK_SIZE", 200)
    return max(1, int(size))


def _iter_lot_chunks(size: int):
    """Yield lots in id order, `size` at a time. Restartable: each chunk is keyed by the last id seen."""
    last_id = 0
    while True:
        chunk = (
            db.session.query(Lot)
            .filter(Lot.id > last_id)
            .order_by(Lot.id.asc())
            .limit(size)
            .all()
        )
        if not chunk:
            return
        yield chunk
        last_id = chunk[-1].id


def _tracked_totals(lot_ids: list[int]) -> dict[int, int]:
    rows = (
        db.session.query(StockLocation.lot_id, func.coalesce(func.sum(StockLocation.quantity), 0))
        .filter(StockLocation.lot_id.in_(lot_ids))
        .group_by(StockLocation.lot_id)
        .all()
    )
    return {lot_id: int(total) for lot_id, total in rows}


def recalculate_lot_quantities(chunk_size: int | None = None) -> ReconciliationResult:
    """
    Set every lot's master quantity to the sum of its location quantities.

    Only lots that differ are written, so a second run changes nothing.
    Commits after each chunk; an interrupted run can simply be started again.
    Location rows are never touched.
    """
    size = _chunk_size(chunk_size)
    result = ReconciliationResult()

    for chunk in _iter_lot_chunks(size):
        totals = _tracked_totals([lot.id for lot in chunk])
        changed = 0
        for lot in chunk:
            result.scanned += 1
            tracked = totals.get(lot.id, 0)
            if lot.quantity == tracked:
                continue
            current_app.logger.info("Lot %s master quantity %s -> %s", lot.id, lot.quantity, tracked)
            lot.quantity = tracked
            result.lot_ids.append(lot.id)
            changed += 1

        if changed:
            db.session.flush()
            record_log(
                ACTION_RECONCILIATION,
                f"Recalculated master quantity of {changed} lot(s)",
            )
            result.updated += changed
        commit_with_retry()

    current_app.logger.info(
        "Lot quantity recalculation: scanned=%s updated=%s", result.scanned, result.updated
    )
    return result


def sync_main_warehouse_stock(main_warehouse_id: int, chunk_size: int | None = None) -> ReconciliationResult:
    """
    Backfill the main warehouse with quantity no location tracks yet.

    For each lot, untracked = master quantity - SUM(location quantities). When
    positive, the main location is credited by that amount through adjust().
    Negative drift is left alone (see recalculate_lot_quantities).

    Must not run alongside live stock movements: it reads then writes.
    """
    get_warehouse(main_warehouse_id)
    size = _chunk_size(chunk_size)
    result = ReconciliationResult()

    for chunk in _iter_lot_chunks(size):
        totals = _tracked_totals([lot.id for lot in chunk])
        for lot in chunk:
            result.scanned += 1
            untracked = lot.quantity - totals.get(lot.id, 0)
            if untracked <= 0:
                continue
            adjust(main_warehouse_id, lot.id, untracked)
            record_log(
                ACTION_RECONCILIATION,
                f"Backfilled {untracked} untracked units of lot {lot.lot_number} into the main warehouse",
                product_id=lot.product_id,
                lot_id=lot.id,
                warehouse_id=main_warehouse_id,
            )
            result.lot_ids.append(lot.id)
            result.updated += 1
        commit_with_retry()

    current_app.logger.info(
        "Main warehouse sync: scanned=%s backfilled=%s", result.scanned, result.updated
    )
    return result


def find_untracked_lots(limit: int = 50) -> list[dict]:
    """Lots whose master quantity differs from their tracked total. Read only."""
    tracked = (
        db.session.query(
            StockLocation.lot_id.label("lot_id"),
            func.sum(StockLocation.quantity).label("tracked"),
        )
        .group_by(StockLocation.lot_id)
        .subquery()
    )
    rows = (
        db.session.query(Lot, func.coalesce(tracked.c.tracked, 0))
        .outerjoin(tracked, tracked.c.lot_id == Lot.id)
        .filter(Lot.quantity != func.coalesce(tracked.c.tracked, 0))
        .order_by(Lot.id.asc())
        .limit(limit)
        .all()
    )
    return [
        {"lot_id": lot.id, "lot_number": lot.lot_number, "quantity": lot.quantity, "tracked": int(total)}
        for lot, total in rows
    ]
