from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z

WAREHOUSE_KIND_MAIN = "MAIN"
WAREHOUSE_KIND_CUSTOMER = "CUSTOMER"
WAREHOUSE_KIND_EMPLOYEE = "EMPLOYEE"
WAREHOUSE_KINDS = (WAREHOUSE_KIND_MAIN, WAREHOUSE_KIND_CUSTOMER, WAREHOUSE_KIND_EMPLOYEE)


class Warehouse(db.Model):
    """
    A place where lots are held.

    KINDS:
    - MAIN: the company stock room. One is canonical (see warehouse_service).
    - CUSTOMER: consignment stock placed with a customer, created with the customer.
    - EMPLOYEE: stock carried by field staff; counts as on-hand.
    """
    __tablename__ = "warehouses"
    __table_args__ = (
        db.Index("ix_warehouses_kind_created", "kind", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    kind = db.Column(db.String(16), nullable=False, default=WAREHOUSE_KIND_MAIN)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} name={self.name!r} kind={self.kind}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    Prices are stored in cents and VAT as basis points (1800 = 18%).
    Stock never lives on the product itself; it is held per lot and per location.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reference_code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    brand = db.Column(db.String(100), nullable=True)
    category = db.Column(db.String(100), nullable=True)

    sale_price_cents = db.Column(db.Integer, nullable=True)
    purchase_price_cents = db.Column(db.Integer, nullable=True)
    vat_rate_bps = db.Column(db.Integer, nullable=True)
    critical_stock_level = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    lots = db.relationship("Lot", back_populates="product", lazy=True, order_by="Lot.id")

    def __repr__(self) -> str:
        return f"<Product id={self.id} reference_code={self.reference_code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference_code": self.reference_code,
            "name": self.name,
            "brand": self.brand,
            "category": self.category,
            "sale_price_cents": self.sale_price_cents,
            "purchase_price_cents": self.purchase_price_cents,
            "vat_rate_bps": self.vat_rate_bps,
            "critical_stock_level": self.critical_stock_level,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Lot(db.Model):
    """
    A batch of one product sharing lot number, barcode and expiry.

    MASTER QUANTITY:
    `quantity` is a cached projection of SUM(stock_locations.quantity) for the lot.
    StockLocation rows are the source of truth; reconciliation_service restores
    the projection after drift.

    Barcodes are not unique; lookups take the first match in creation order.
    """
    __tablename__ = "lots"
    __table_args__ = (
        db.UniqueConstraint("product_id", "lot_number", name="uq_lots_product_lot_number"),
        db.CheckConstraint("quantity >= 0", name="ck_lots_quantity_nonnegative"),
        db.Index("ix_lots_barcode", "barcode"),
        db.Index("ix_lots_product_expiry", "product_id", "expiry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    lot_number = db.Column(db.String(128), nullable=False)
    barcode = db.Column(db.String(128), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="lots")
    stock_locations = db.relationship("StockLocation", back_populates="lot", lazy=True)

    def __repr__(self) -> str:
        return f"<Lot id={self.id} product_id={self.product_id} lot_number={self.lot_number!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "lot_number": self.lot_number,
            "barcode": self.barcode,
            "expiry_date": to_iso_date(self.expiry_date),
            "quantity": self.quantity,
            "created_at": to_utc_z(self.created_at),
        }


class StockLocation(db.Model):
    """
    Quantity of one lot held at one warehouse. The ledger's primary record.

    INVARIANTS (enforced by the database, not only the application):
    - (warehouse_id, lot_id) is unique
    - quantity >= 0

    Only ledger_service.adjust() changes `quantity`.
    """
    __tablename__ = "stock_locations"
    __table_args__ = (
        db.UniqueConstraint("warehouse_id", "lot_id", name="uq_stock_locations_warehouse_lot"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_locations_quantity_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("lots.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    warehouse = db.relationship("Warehouse", backref=db.backref("stock_locations", lazy=True))
    lot = db.relationship("Lot", back_populates="stock_locations")

    def __repr__(self) -> str:
        return (
            f"<StockLocation id={self.id} warehouse_id={self.warehouse_id} "
            f"lot_id={self.lot_id} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "warehouse_id": self.warehouse_id,
            "lot_id": self.lot_id,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }
