"""
Audit log writer tests.
"""

import pytest

from stock_ledger.models import AuditLog
from stock_ledger.models.audit import ACTION_INVOICE_CREATED, ACTION_MANUAL_ADJUSTMENT
from stock_ledger.services.audit_service import record_log


def test_record_log_keeps_references(db_session, main_warehouse, product, make_lot):
    lot = make_lot(product, "L1")

    entry = record_log(
        ACTION_MANUAL_ADJUSTMENT,
        "Lot L1 set to 5",
        user_id=3,
        product_id=product.id,
        lot_id=lot.id,
        warehouse_id=main_warehouse.id,
    )
    db_session.commit()

    stored = db_session.get(AuditLog, entry.id)
    assert stored.user_id == 3
    assert stored.lot_id == lot.id
    assert stored.warehouse_id == main_warehouse.id
    assert stored.barcode_used is False
    assert stored.to_dict()["created_at"].endswith("Z")


def test_dangling_reference_is_stripped(db_session, customer_a):
    entry = record_log(
        ACTION_INVOICE_CREATED,
        "Invoice created",
        user_id=3,
        customer_id=customer_a.id,
        invoice_id=999999,
    )
    db_session.commit()

    stored = db_session.get(AuditLog, entry.id)
    assert stored.invoice_id is None
    assert stored.customer_id == customer_a.id


def test_unknown_action_rejected(db_session):
    with pytest.raises(ValueError):
        record_log("SOMETHING_ELSE", "nope")
    assert db_session.query(AuditLog).count() == 0
