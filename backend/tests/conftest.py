"""
Pytest fixtures for stock ledger tests.

Provides the in-memory application, a per-test clean database and small
factories for warehouses, customers, products and lots.
"""

import pytest
from stock_ledger import create_app
from stock_ledger.extensions import db
from stock_ledger.models import Lot, Product, Warehouse
from stock_ledger.models.inventory import WAREHOUSE_KIND_EMPLOYEE, WAREHOUSE_KIND_MAIN
from stock_ledger.services.ledger_service import adjust
from stock_ledger.services.warehouse_service import create_customer, reset_main_warehouse_cache
from stock_ledger.time_utils import parse_expiry_date


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'MAIN_WAREHOUSE_ID': None,
        'REQUIRE_MAIN_WAREHOUSE': False,
        'BARCODE_SCOPE_TO_PRODUCT': True,
        'INVOICE_PROVIDER_API_KEY': '',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def auth_headers():
    return {"X-User-Id": "7"}


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        reset_main_warehouse_cache()
        app.config['BARCODE_SCOPE_TO_PRODUCT'] = True

        yield db.session

        # Cleanup after test
        db.session.rollback()
        reset_main_warehouse_cache()


@pytest.fixture(scope='function')
def main_warehouse(db_session):
    warehouse = Warehouse(name="Main", kind=WAREHOUSE_KIND_MAIN)
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def employee_warehouse(db_session):
    warehouse = Warehouse(name="Field Rep", kind=WAREHOUSE_KIND_EMPLOYEE)
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def customer_a(db_session):
    """Customer A with its CUSTOMER warehouse."""
    customer = create_customer("Customer A", tax_number="1234567890", tax_office="Kadikoy")
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session):
    customer = create_customer("Customer B")
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def product(db_session):
    product = Product(
        reference_code="REF-001",
        name="Saline 500ml",
        sale_price_cents=1250,
        vat_rate_bps=1800,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def make_product(db_session):
    counter = {"n": 100}

    def _make(name="Product", **kwargs):
        counter["n"] += 1
        product = Product(reference_code=kwargs.pop("reference_code", f"REF-{counter['n']}"), name=name, **kwargs)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_lot(db_session):
    """
    Create a lot; optionally place stock in a warehouse.

    make_lot(product, "L1", stock={warehouse_id: qty}, expiry="2025-01-01")
    The master quantity defaults to the total placed.
    """
    def _make(product, lot_number, *, stock=None, expiry=None, barcode=None, quantity=None):
        stock = stock or {}
        lot = Lot(
            product_id=product.id,
            lot_number=lot_number,
            barcode=barcode,
            expiry_date=parse_expiry_date(expiry),
            quantity=sum(stock.values()) if quantity is None else quantity,
        )
        db_session.add(lot)
        db_session.flush()
        for warehouse_id, qty in stock.items():
            adjust(warehouse_id, lot.id, qty)
        db_session.commit()
        return lot

    return _make
