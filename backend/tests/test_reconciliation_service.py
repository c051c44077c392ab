"""
Reconciliation passes: master quantity recalculation and main warehouse backfill.
"""

import pytest

from stock_ledger.errors import WarehouseNotFound
from stock_ledger.models import AuditLog, Lot
from stock_ledger.models.audit import ACTION_RECONCILIATION
from stock_ledger.services.ledger_service import get_location_quantity
from stock_ledger.services.reconciliation_service import (
    find_untracked_lots,
    recalculate_lot_quantities,
    sync_main_warehouse_stock,
)


def test_recalculate_restores_master_quantity(db_session, main_warehouse, customer_a, product, make_lot):
    drifted = make_lot(product, "L1", stock={main_warehouse.id: 10, customer_a.warehouse_id: 5}, quantity=40)
    clean = make_lot(product, "L2", stock={main_warehouse.id: 3})
    orphan = make_lot(product, "L3", quantity=9)

    result = recalculate_lot_quantities(chunk_size=2)

    assert result.scanned == 3
    assert result.updated == 2
    assert sorted(result.lot_ids) == sorted([drifted.id, orphan.id])
    assert db_session.get(Lot, drifted.id).quantity == 15
    assert db_session.get(Lot, clean.id).quantity == 3
    assert db_session.get(Lot, orphan.id).quantity == 0
    # One log per chunk that changed something
    assert db_session.query(AuditLog).filter_by(action_type=ACTION_RECONCILIATION).count() == 2
    assert find_untracked_lots() == []


def test_recalculate_is_idempotent(db_session, main_warehouse, product, make_lot):
    make_lot(product, "L1", stock={main_warehouse.id: 10}, quantity=12)

    first = recalculate_lot_quantities()
    second = recalculate_lot_quantities()

    assert first.updated == 1
    assert second.updated == 0
    assert second.to_dict() == {"scanned": 1, "updated": 0, "lot_ids": []}


def test_sync_main_backfills_untracked(db_session, main_warehouse, employee_warehouse, product, make_lot):
    lot = make_lot(product, "L1", stock={employee_warehouse.id: 4}, quantity=10)
    over = make_lot(product, "L2", stock={main_warehouse.id: 5}, quantity=2)

    assert {row["lot_id"] for row in find_untracked_lots()} == {lot.id, over.id}

    result = sync_main_warehouse_stock(main_warehouse.id)

    assert result.updated == 1
    assert result.lot_ids == [lot.id]
    assert get_location_quantity(main_warehouse.id, lot.id) == 6
    assert get_location_quantity(employee_warehouse.id, lot.id) == 4
    # Negative drift is untouched
    assert get_location_quantity(main_warehouse.id, over.id) == 5

    again = sync_main_warehouse_stock(main_warehouse.id)
    assert again.updated == 0
    assert get_location_quantity(main_warehouse.id, lot.id) == 6


def test_sync_main_requires_warehouse(db_session):
    with pytest.raises(WarehouseNotFound):
        sync_main_warehouse_stock(999999)
