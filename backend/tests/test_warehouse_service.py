"""
Warehouse and customer lifecycle, main warehouse resolution.
"""

import pytest

from stock_ledger.errors import InvalidOperation, MainWarehouseNotFound, WarehouseNotFound
from stock_ledger.models import Customer, StockLocation, Warehouse
from stock_ledger.models.inventory import WAREHOUSE_KIND_CUSTOMER, WAREHOUSE_KIND_EMPLOYEE, WAREHOUSE_KIND_MAIN
from stock_ledger.services import transfer_service
from stock_ledger.services.ledger_service import adjust, ensure_location
from stock_ledger.services.warehouse_service import (
    create_customer,
    create_warehouse,
    delete_warehouse,
    get_main_warehouse_id,
    resolve_main_warehouse_id,
    update_warehouse,
)


def test_resolve_main_prefers_oldest(db_session):
    first = create_warehouse("Main")
    create_warehouse("Overflow")
    db_session.commit()

    assert resolve_main_warehouse_id() == first.id
    assert get_main_warehouse_id() == first.id


def test_resolve_main_honors_explicit_id(db_session):
    create_warehouse("Main")
    second = create_warehouse("Second main")
    employee = create_warehouse("Rep", WAREHOUSE_KIND_EMPLOYEE)
    db_session.commit()

    assert resolve_main_warehouse_id(second.id) == second.id
    with pytest.raises(MainWarehouseNotFound):
        resolve_main_warehouse_id(employee.id)


def test_resolve_main_without_any(db_session, employee_warehouse):
    with pytest.raises(MainWarehouseNotFound):
        resolve_main_warehouse_id()
    with pytest.raises(MainWarehouseNotFound):
        get_main_warehouse_id()


def test_main_warehouse_id_is_cached(db_session, main_warehouse):
    assert get_main_warehouse_id() == main_warehouse.id

    create_warehouse("Another main")
    db_session.delete(db_session.get(Warehouse, main_warehouse.id))
    db_session.commit()

    # Still the cached value until the cache is reset
    assert get_main_warehouse_id() == main_warehouse.id


def test_create_customer_gets_customer_warehouse(db_session):
    customer = create_customer("  Acme Pharmacy ", tax_number="42")
    db_session.commit()

    warehouse = db_session.get(Warehouse, customer.warehouse_id)
    assert customer.name == "Acme Pharmacy"
    assert warehouse.kind == WAREHOUSE_KIND_CUSTOMER
    assert warehouse.name == "Acme Pharmacy"

    with pytest.raises(InvalidOperation):
        create_customer(" ")


def test_create_and_update_warehouse_validation(db_session):
    with pytest.raises(InvalidOperation):
        create_warehouse("")
    with pytest.raises(InvalidOperation):
        create_warehouse("Odd", "VAN")

    warehouse = create_warehouse("Rep", WAREHOUSE_KIND_EMPLOYEE)
    db_session.commit()

    updated = update_warehouse(warehouse.id, name="Rep North")
    assert updated.name == "Rep North"
    assert updated.kind == WAREHOUSE_KIND_EMPLOYEE

    with pytest.raises(InvalidOperation):
        update_warehouse(warehouse.id)
    with pytest.raises(InvalidOperation):
        update_warehouse(warehouse.id, kind="VAN")
    with pytest.raises(WarehouseNotFound):
        update_warehouse(999999, name="x")


def test_delete_customer_warehouse_clears_reference(db_session, customer_a, product, make_lot):
    lot = make_lot(product, "L1")
    ensure_location(customer_a.warehouse_id, lot.id)
    db_session.commit()
    warehouse_id = customer_a.warehouse_id

    delete_warehouse(warehouse_id)
    db_session.commit()

    assert db_session.get(Warehouse, warehouse_id) is None
    assert db_session.get(Customer, customer_a.id).warehouse_id is None
    assert db_session.query(StockLocation).filter_by(warehouse_id=warehouse_id).count() == 0


def test_delete_warehouse_refusals(db_session, main_warehouse, employee_warehouse, customer_a, product, make_lot):
    lot = make_lot(product, "L1", stock={main_warehouse.id: 10})

    with pytest.raises(InvalidOperation):
        delete_warehouse(main_warehouse.id, main_warehouse_id=main_warehouse.id)

    adjust(employee_warehouse.id, lot.id, 1)
    db_session.commit()
    with pytest.raises(InvalidOperation):
        delete_warehouse(employee_warehouse.id, main_warehouse_id=main_warehouse.id)
    db_session.rollback()

    transfer = transfer_service.create_transfer(
        main_warehouse.id, customer_a.warehouse_id, product.id, 2, lot_id=lot.id,
    )
    transfer_service.reverse_transfer(transfer.id)
    db_session.commit()
    # Empty again, but transfer history remains
    with pytest.raises(InvalidOperation):
        delete_warehouse(customer_a.warehouse_id, main_warehouse_id=main_warehouse.id)

    with pytest.raises(WarehouseNotFound):
        delete_warehouse(999999)


def test_default_kind_is_main(db_session):
    warehouse = create_warehouse("Depot")
    assert warehouse.kind == WAREHOUSE_KIND_MAIN
