"""
Ledger engine tests: location lifecycle, non-negativity, multi-step atomicity and concurrent writers.
"""

import threading

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from stock_ledger import create_app
from stock_ledger.errors import InsufficientStock
from stock_ledger.extensions import db
from stock_ledger.models import Lot, Product, StockLocation, Warehouse
from stock_ledger.models.inventory import WAREHOUSE_KIND_CUSTOMER, WAREHOUSE_KIND_MAIN
from stock_ledger.services import ledger_service
from stock_ledger.services.concurrency import run_with_retry
from stock_ledger.services.ledger_service import (
    Movement,
    adjust,
    apply_movements,
    check_movements,
    delete_location_if_empty,
    ensure_location,
    get_location_quantity,
    get_lot_tracked_quantity,
)


def test_ensure_location_is_idempotent(db_session, main_warehouse, product, make_lot):
    lot = make_lot(product, "L1")

    first = ensure_location(main_warehouse.id, lot.id)
    second = ensure_location(main_warehouse.id, lot.id)

    assert first.id == second.id
    assert first.quantity == 0
    assert db_session.query(StockLocation).filter_by(lot_id=lot.id).count() == 1


def test_adjust_applies_signed_deltas(db_session, main_warehouse, product, make_lot):
    lot = make_lot(product, "L1")

    adjust(main_warehouse.id, lot.id, 10)
    adjust(main_warehouse.id, lot.id, -4)
    location = adjust(main_warehouse.id, lot.id, 0)

    assert location.quantity == 6
    assert get_location_quantity(main_warehouse.id, lot.id) == 6


def test_adjust_never_goes_negative(db_session, main_warehouse, product, make_lot):
    """A sequence of adjustments never leaves a negative quantity; failures change nothing."""
    lot = make_lot(product, "L1", stock={main_warehouse.id: 5})

    sequence = [-3, -3, +4, -7, -6, +1, -1]
    for delta in sequence:
        before = get_location_quantity(main_warehouse.id, lot.id)
        if before + delta < 0:
            with pytest.raises(InsufficientStock) as exc:
                adjust(main_warehouse.id, lot.id, delta)
            assert exc.value.available == before
            assert exc.value.requested == -delta
            assert get_location_quantity(main_warehouse.id, lot.id) == before
        else:
            adjust(main_warehouse.id, lot.id, delta)
        assert get_location_quantity(main_warehouse.id, lot.id) >= 0

    assert get_location_quantity(main_warehouse.id, lot.id) == 0


def test_insufficient_stock_error_shape(db_session, main_warehouse, product, make_lot):
    lot = make_lot(product, "L1", stock={main_warehouse.id: 2})

    with pytest.raises(InsufficientStock) as exc:
        adjust(main_warehouse.id, lot.id, -3)

    payload = exc.value.to_dict()
    assert payload["error"] == "insufficient_stock"
    assert payload["warehouse_id"] == main_warehouse.id
    assert payload["lot_id"] == lot.id
    assert payload["available"] == 2
    assert payload["requested"] == 3
    assert exc.value.status_code == 409


def test_database_rejects_negative_quantity(db_session, main_warehouse, product, make_lot):
    lot = make_lot(product, "L1", stock={main_warehouse.id: 1})
    location = ensure_location(main_warehouse.id, lot.id)

    with pytest.raises(IntegrityError):
        with db_session.begin_nested():
            db_session.execute(
                update(StockLocation).where(StockLocation.id == location.id).values(quantity=-1)
            )

    assert get_location_quantity(main_warehouse.id, lot.id) == 1


def test_apply_movements_is_all_or_nothing(db_session, main_warehouse, product, make_lot):
    other = Warehouse(name="Customer", kind=WAREHOUSE_KIND_CUSTOMER)
    db_session.add(other)
    db_session.commit()
    lot = make_lot(product, "L1", stock={main_warehouse.id: 10})

    with pytest.raises(InsufficientStock):
        apply_movements([
            Movement(main_warehouse.id, lot.id, -4),
            Movement(other.id, lot.id, 4),
            Movement(main_warehouse.id, lot.id, -7),
        ])

    assert get_location_quantity(main_warehouse.id, lot.id) == 10
    assert get_location_quantity(other.id, lot.id) == 0
    assert get_lot_tracked_quantity(lot.id) == 10


def test_check_movements_reports_first_failing_index(db_session, main_warehouse, product, make_lot):
    lot = make_lot(product, "L1", stock={main_warehouse.id: 5})

    assert check_movements([Movement(main_warehouse.id, lot.id, -5)]) is None
    assert check_movements([
        Movement(main_warehouse.id, lot.id, -3),
        Movement(main_warehouse.id, lot.id, -3),
    ]) == 1
    # Dry run only
    assert get_location_quantity(main_warehouse.id, lot.id) == 5


def test_delete_location_if_empty(db_session, main_warehouse, product, make_lot):
    lot = make_lot(product, "L1", stock={main_warehouse.id: 3})
    location = ensure_location(main_warehouse.id, lot.id)

    assert delete_location_if_empty(location) is False

    adjust(main_warehouse.id, lot.id, -3)
    assert delete_location_if_empty(location) is True
    assert db_session.query(StockLocation).filter_by(lot_id=lot.id).count() == 0


def test_rejected_adjust_leaves_no_new_location(db_session, main_warehouse, employee_warehouse, product, make_lot):
    lot = make_lot(product, "L1", stock={main_warehouse.id: 5})

    with pytest.raises(InsufficientStock) as exc:
        adjust(employee_warehouse.id, lot.id, -1)

    assert exc.value.available == 0
    assert db_session.query(StockLocation).filter_by(warehouse_id=employee_warehouse.id).count() == 0
    assert db_session.query(StockLocation).filter_by(lot_id=lot.id).count() == 1


def test_ensure_location_rereads_after_losing_insert_race(db_session, main_warehouse, product, make_lot, monkeypatch):
    """A concurrent writer created the row between our lookup and our insert."""
    lot = make_lot(product, "L1", stock={main_warehouse.id: 4})
    existing = ensure_location(main_warehouse.id, lot.id)
    real_find = ledger_service.find_location
    calls = []

    def stale_first_lookup(warehouse_id, lot_id):
        calls.append((warehouse_id, lot_id))
        if len(calls) == 1:
            return None
        return real_find(warehouse_id, lot_id)

    monkeypatch.setattr(ledger_service, "find_location", stale_first_lookup)

    location = ensure_location(main_warehouse.id, lot.id)

    assert len(calls) == 2
    assert location.id == existing.id
    assert location.quantity == 4
    assert db_session.query(StockLocation).filter_by(lot_id=lot.id).count() == 1


# =============================================================================
# CONCURRENT WRITERS
# =============================================================================


@pytest.fixture
def file_app(tmp_path):
    """Separate app on a file database so that threads use their own connections."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'MAIN_WAREHOUSE_ID': None,
        'REQUIRE_MAIN_WAREHOUSE': False,
        'INVOICE_PROVIDER_API_KEY': '',
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()


def test_concurrent_debits_never_lose_updates(file_app):
    """Four writers race to take 20 units out of 10: exactly 10 succeed and the row ends at 0."""
    with file_app.app_context():
        warehouse = Warehouse(name="Main", kind=WAREHOUSE_KIND_MAIN)
        product = Product(reference_code="REF-C", name="Contended", sale_price_cents=100, vat_rate_bps=0)
        db.session.add_all([warehouse, product])
        db.session.flush()
        lot = Lot(product_id=product.id, lot_number="C1", quantity=10)
        db.session.add(lot)
        db.session.flush()
        adjust(warehouse.id, lot.id, 10)
        db.session.commit()
        warehouse_id, lot_id = warehouse.id, lot.id

    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(4)

    def worker():
        with file_app.app_context():
            barrier.wait()
            try:
                for _ in range(5):
                    def _op():
                        adjust(warehouse_id, lot_id, -1)
                        db.session.commit()
                    try:
                        run_with_retry(_op, attempts=10, backoff_base=0.01)
                        with lock:
                            results.append("debited")
                    except InsufficientStock:
                        db.session.rollback()
                        with lock:
                            results.append("rejected")
                    except Exception as exc:
                        db.session.rollback()
                        with lock:
                            results.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    errors = [r for r in results if r not in ("debited", "rejected")]
    assert errors == []
    assert results.count("debited") == 10
    assert results.count("rejected") == 10

    with file_app.app_context():
        assert get_location_quantity(warehouse_id, lot_id) == 0
